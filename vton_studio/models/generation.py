"""Generation request and result models."""

import base64
from enum import Enum

from pydantic import BaseModel, Field, model_validator


class GenerationMode(str, Enum):
    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_EDITING = "image-editing"
    VIRTUAL_TRY_ON = "virtual-try-on"


class AspectRatio(str, Enum):
    """Aspect ratios the provider understands by name."""
    SQUARE = "square"
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"
    WIDE = "wide"


ASPECT_RATIO_TOKENS = {
    AspectRatio.SQUARE: "1:1",
    AspectRatio.PORTRAIT: "9:16",
    AspectRatio.LANDSCAPE: "16:9",
    AspectRatio.WIDE: "21:9",
}


def aspect_ratio_token(value: str | None) -> str:
    """Map an aspect ratio name to the provider's ratio string.

    Anything outside the closed set (including discovered presets such as
    "4:3") falls back to square.
    """
    try:
        return ASPECT_RATIO_TOKENS[AspectRatio(value)]
    except ValueError:
        return ASPECT_RATIO_TOKENS[AspectRatio.SQUARE]


class AspectPreset(BaseModel):
    """A selectable aspect ratio and its numeric width/height ratio."""
    value: str
    label: str
    ratio: float


ASPECT_PRESETS: list[AspectPreset] = [
    AspectPreset(value="square", label="1:1", ratio=1),
    AspectPreset(value="portrait", label="9:16", ratio=9 / 16),
    AspectPreset(value="landscape", label="16:9", ratio=16 / 9),
    AspectPreset(value="wide", label="21:9", ratio=21 / 9),
    AspectPreset(value="4:3", label="4:3", ratio=4 / 3),
    AspectPreset(value="3:2", label="3:2", ratio=3 / 2),
    AspectPreset(value="2:3", label="2:3", ratio=2 / 3),
    AspectPreset(value="3:4", label="3:4", ratio=3 / 4),
    AspectPreset(value="5:4", label="5:4", ratio=5 / 4),
    AspectPreset(value="4:5", label="4:5", ratio=4 / 5),
]

DEFAULT_PRESET_VALUES = {ratio.value for ratio in AspectRatio}


class ImageInput(BaseModel):
    """One image slot: inline bytes or an already-hosted URL, never both."""

    data: bytes | None = None
    content_type: str = "image/jpeg"
    filename: str = "image.jpg"
    url: str | None = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "ImageInput":
        if (self.data is None) == (self.url is None):
            raise ValueError("ImageInput needs exactly one of data or url")
        return self

    @property
    def is_inline(self) -> bool:
        return self.data is not None

    def as_reference(self) -> str:
        """Return a data URL for inline bytes, or the hosted URL."""
        if self.data is not None:
            encoded = base64.b64encode(self.data).decode("ascii")
            return f"data:{self.content_type};base64,{encoded}"
        return self.url  # type: ignore[return-value]


class GenerationRequest(BaseModel):
    """Everything the adapter needs for one provider call."""
    mode: GenerationMode
    prompt: str
    aspect_ratio: str = AspectRatio.SQUARE.value
    images: list[ImageInput] = Field(default_factory=list)


class GenerationResult(BaseModel):
    """Normalized provider output."""
    url: str
    prompt: str = ""
    description: str = ""
