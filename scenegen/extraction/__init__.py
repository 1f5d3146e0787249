"""Text loading and chapter splitting for the document creation path."""

from .splitter import build_chapters, split_text
from .text_loader import SUPPORTED_SUFFIXES, load_text

__all__ = ["SUPPORTED_SUFFIXES", "build_chapters", "load_text", "split_text"]
