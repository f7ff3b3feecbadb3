"""Data models for the virtual try-on studio."""

from .generation import (
    ASPECT_PRESETS,
    AspectPreset,
    AspectRatio,
    GenerationMode,
    GenerationRequest,
    GenerationResult,
    ImageInput,
    aspect_ratio_token,
)
from .job import Job, JobStatus
from .upload import EncodedImage, UploadEntry, UploadSet

__all__ = [
    "ASPECT_PRESETS",
    "AspectPreset",
    "AspectRatio",
    "GenerationMode",
    "GenerationRequest",
    "GenerationResult",
    "ImageInput",
    "aspect_ratio_token",
    "Job",
    "JobStatus",
    "EncodedImage",
    "UploadEntry",
    "UploadSet",
]
