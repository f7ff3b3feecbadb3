"""Upload normalization: format validation, HEIC conversion, resize and recompress."""

import io
import logging
from pathlib import PurePath

import pillow_heif
from PIL import Image

from ..config import PreprocessConfig
from ..errors import PreprocessingError
from ..models import ASPECT_PRESETS, AspectPreset, EncodedImage
from ..models.generation import DEFAULT_PRESET_VALUES

logger = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

SUPPORTED_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/heic",
    "image/heif",
    "image/gif",
    "image/bmp",
    "image/tiff",
}

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".heic", ".heif", ".gif", ".bmp", ".tiff"}

HEIC_ERROR = "Could not convert HEIC image. Please try using a different image format."


def is_supported(filename: str, content_type: str | None) -> bool:
    """Declared type first, file extension as the fallback.

    Browsers and phones often send HEIC files with an empty or generic type.
    """
    if content_type and content_type.lower() in SUPPORTED_TYPES:
        return True
    return PurePath(filename.lower()).suffix in SUPPORTED_EXTENSIONS


def is_heic(filename: str, content_type: str | None) -> bool:
    kind = (content_type or "").lower()
    name = filename.lower()
    return "heic" in kind or "heif" in kind or name.endswith((".heic", ".heif"))


def detect_aspect_ratio(width: int, height: int) -> AspectPreset:
    """Closest preset to ``width / height`` (first preset wins ties)."""
    ratio = width / height
    best = ASPECT_PRESETS[0]
    smallest = abs(ratio - best.ratio)
    for preset in ASPECT_PRESETS:
        diff = abs(ratio - preset.ratio)
        if diff < smallest:
            smallest = diff
            best = preset
    return best


def is_default_preset(preset: AspectPreset) -> bool:
    return preset.value in DEFAULT_PRESET_VALUES


class ImagePreprocessor:
    """Turns arbitrary uploads into compact JPEGs the provider accepts."""

    def __init__(self, config: PreprocessConfig | None = None):
        self.config = config or PreprocessConfig()

    def prepare(self, filename: str, data: bytes, content_type: str | None = None) -> EncodedImage:
        """Validate, convert and compress one upload.

        Raises:
            PreprocessingError: unsupported format or failed HEIC conversion
        """
        if not is_supported(filename, content_type):
            raise PreprocessingError("Please select a valid image file.")

        current_type = content_type or "application/octet-stream"
        if is_heic(filename, content_type):
            logger.info("Converting HEIC image %s to JPEG", filename)
            data = self._transcode_heic(data)
            filename = str(PurePath(filename).with_suffix(".jpg"))
            current_type = "image/jpeg"

        try:
            compressed, width, height = self._compress(data)
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.warning("Could not compress %s, using it unmodified: %s", filename, exc)
            return EncodedImage(data=data, content_type=current_type, filename=filename)

        logger.info(
            "Image compressed from %d to %d bytes (%dx%d)",
            len(data), len(compressed), width, height,
        )
        return EncodedImage(
            data=compressed,
            content_type="image/jpeg",
            filename=filename,
            width=width,
            height=height,
        )

    def _transcode_heic(self, data: bytes) -> bytes:
        try:
            with Image.open(io.BytesIO(data)) as img:
                output = io.BytesIO()
                img.convert("RGB").save(output, format="JPEG", quality=self.config.heic_quality)
                return output.getvalue()
        except (OSError, ValueError) as exc:
            logger.error("HEIC conversion error: %s", exc)
            raise PreprocessingError(HEIC_ERROR) from exc

    def _compress(self, data: bytes) -> tuple[bytes, int, int]:
        """Fit the longer edge into ``max_edge`` and re-encode as JPEG."""
        with Image.open(io.BytesIO(data)) as img:
            # Convert to RGB if needed (e.g., RGBA, P mode)
            rgb = img.convert("RGB")
        edge = self.config.max_edge
        if max(rgb.size) > edge:
            rgb.thumbnail((edge, edge), Image.LANCZOS)
        output = io.BytesIO()
        rgb.save(output, format="JPEG", quality=self.config.jpeg_quality)
        return output.getvalue(), rgb.width, rgb.height
