"""Read an uploaded document's text (.txt, .md or .pdf via pdfplumber)."""

import re
from pathlib import Path

import pdfplumber
import structlog

from scenegen.errors import InvalidDocument

logger = structlog.get_logger(__name__)

TEXT_SUFFIXES = {".txt", ".md"}
SUPPORTED_SUFFIXES = TEXT_SUFFIXES | {".pdf"}

_SPACE_RUN = re.compile(r"[ \t]{2,}")
_BLANK_RUN = re.compile(r"\n{3,}")


def load_text(path: str | Path) -> str:
    """Return the full text of the file at ``path``.

    Raises:
        InvalidDocument: If the file is missing, unsupported or unreadable.
    """
    path = Path(path)

    if not path.exists():
        raise InvalidDocument(f"File not found: {path}")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise InvalidDocument(
            f"Unsupported file type {suffix or '(none)'}; expected one of {sorted(SUPPORTED_SUFFIXES)}"
        )

    if suffix == ".pdf":
        return _load_pdf(path)

    try:
        text = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise InvalidDocument(f"File is not UTF-8 text: {path.name}") from e

    logger.info("text_loaded", path=str(path), chars=len(text))
    return text


def _load_pdf(path: Path) -> str:
    pages = []
    try:
        with pdfplumber.open(path) as pdf:
            for page in pdf.pages:
                text = _clean_page_text(page.extract_text() or "")
                if text:
                    pages.append(text)
    except Exception as e:
        logger.error("pdf_extraction_failed", path=str(path), error=str(e))
        raise InvalidDocument(f"Failed to extract PDF: {e}") from e

    text = "\n\n".join(pages)
    logger.info("pdf_loaded", path=str(path), pages=len(pages), chars=len(text))
    return text


def _clean_page_text(text: str) -> str:
    """Collapse runs of spaces and blank lines, keeping paragraph breaks."""
    text = _SPACE_RUN.sub(" ", text)
    text = "\n".join(line.rstrip() for line in text.splitlines())
    return _BLANK_RUN.sub("\n\n", text).strip()
