from .image_preprocessor import ImagePreprocessor, detect_aspect_ratio, is_default_preset

__all__ = ["ImagePreprocessor", "detect_aspect_ratio", "is_default_preset"]
