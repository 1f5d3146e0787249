"""scenegen - staged document-to-scene media pipeline."""

__version__ = "0.1.0"
