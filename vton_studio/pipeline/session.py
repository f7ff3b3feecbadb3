"""Studio session: the upload sets, settings and readiness behind the UI."""

import logging

from ..errors import PreprocessingError
from ..models import ASPECT_PRESETS, AspectPreset, AspectRatio, UploadEntry, UploadSet
from ..utils.image_preprocessor import ImagePreprocessor, detect_aspect_ratio, is_default_preset
from .orchestrator import JobOrchestrator, Notifier, log_notification

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = (
    "Model wearing the product naturally, professional ecommerce photography. "
    "Depending on the article of clothing, the model should be wearing it in a "
    "natural way, not forced."
)

MODEL = "model"
PRODUCT = "product"


class StudioSession:
    """Single coordinator for one user's uploads and generation settings.

    Upload sets and the preset list are only ever swapped for new values,
    the same way the orchestrator treats its job list.
    """

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        preprocessor: ImagePreprocessor | None = None,
        notify: Notifier | None = None,
    ):
        self.orchestrator = orchestrator
        self.preprocessor = preprocessor or ImagePreprocessor()
        self._notify = notify or log_notification

        self.models = UploadSet(MODEL)
        self.products = UploadSet(PRODUCT)

        self.prompt = DEFAULT_PROMPT
        self.aspect_ratio = AspectRatio.PORTRAIT.value
        self.generate_all = True
        self.available_aspect_ratios: tuple[AspectPreset, ...] = tuple(
            preset for preset in ASPECT_PRESETS if is_default_preset(preset)
        )

    def _uploads(self, kind: str) -> UploadSet:
        if kind == MODEL:
            return self.models
        if kind == PRODUCT:
            return self.products
        raise ValueError(f"Unknown upload kind: {kind!r}")

    @property
    def can_generate(self) -> bool:
        return bool(self.prompt.strip()) and len(self.models) > 0 and len(self.products) > 0

    def add_image(
        self,
        kind: str,
        filename: str,
        data: bytes,
        content_type: str | None = None,
    ) -> UploadEntry:
        """Preprocess and append one upload.

        The first model image also picks the aspect ratio.
        """
        uploads = self._uploads(kind)
        first_model = kind == MODEL and len(self.models) == 0

        try:
            encoded = self.preprocessor.prepare(filename, data, content_type)
        except PreprocessingError as exc:
            self._notify(str(exc), "error")
            raise

        entry = UploadEntry(original_filename=filename, image=encoded)
        uploads.add(entry)

        if first_model and encoded.width and encoded.height:
            self._apply_detected_ratio(encoded.width, encoded.height)

        self._notify(f"{kind.capitalize()} image added", "success")
        return entry

    def _apply_detected_ratio(self, width: int, height: int) -> None:
        preset = detect_aspect_ratio(width, height)
        if not any(p.value == preset.value for p in self.available_aspect_ratios):
            self.available_aspect_ratios = tuple(
                sorted(self.available_aspect_ratios + (preset,), key=lambda p: p.ratio)
            )
        self.aspect_ratio = preset.value
        logger.info("Auto-detected aspect ratio %s from %dx%d", preset.value, width, height)
        self._notify(f"Aspect ratio set to {preset.value}", "success")

    def remove_image(self, kind: str, index: int) -> UploadEntry:
        return self._uploads(kind).remove(index)

    def clear_images(self) -> None:
        self.models.clear()
        self.products.clear()
        self._notify("All images cleared", "success")

    def generate(self) -> list[str]:
        """Start a batch for the current uploads, or do nothing if not ready."""
        if not self.can_generate:
            return []
        return self.orchestrator.start_batch(
            self.models.snapshot(),
            self.products.snapshot(),
            self.prompt,
            aspect_ratio=self.aspect_ratio,
            all_combinations=self.generate_all,
        )
