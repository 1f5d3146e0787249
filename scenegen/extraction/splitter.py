"""Split a document's text into chapters."""

import structlog
from langchain_text_splitters import CharacterTextSplitter

from scenegen.errors import SplitError

logger = structlog.get_logger(__name__)


def split_text(
    text: str,
    chunk_size: int = 2000,
    chunk_overlap: int = 100,
    separator: str = "\n\n",
) -> list[str]:
    """Split ``text`` on ``separator`` into chunks of about ``chunk_size`` characters.

    A single paragraph longer than ``chunk_size`` stays one chunk.

    Raises:
        SplitError: If the text is empty or the sizes are inconsistent.
    """
    if chunk_size <= 0:
        raise SplitError("chunk_size must be positive")
    if chunk_overlap < 0 or chunk_overlap >= chunk_size:
        raise SplitError("chunk_overlap must be >= 0 and smaller than chunk_size")

    normalized = text.replace("\r\n", "\n").replace("\r", "\n").strip()
    if not normalized:
        raise SplitError("Document has no text")

    splitter = CharacterTextSplitter(
        separator=separator,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        strip_whitespace=True,
    )
    chunks = [chunk for chunk in splitter.split_text(normalized) if chunk.strip()]
    if not chunks:
        raise SplitError("Document has no text")

    logger.info(
        "text_split",
        total_chars=len(normalized),
        chunks=len(chunks),
        chunk_size=chunk_size,
    )
    return chunks


def build_chapters(chunks: list[str]) -> list[tuple[str, str]]:
    """(title, content) pairs in reading order."""
    return [(f"Chapter {i}", chunk) for i, chunk in enumerate(chunks, start=1)]
