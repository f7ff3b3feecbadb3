"""Virtual try-on studio: batch model x product compositing over a hosted image model."""

__version__ = "1.0.0"
