"""
Document creation path and operator actions.

Creation is synchronous and happens outside the pipeline: the uploaded text
is split into chapters and the document is stored at ``chapterReady`` together
with its chapters, which makes it a candidate for role extraction.
"""

import asyncio
from pathlib import Path
from typing import Optional

import structlog

from scenegen.config.settings import Settings, get_settings
from scenegen.errors import IllegalTransition, InvalidDocument
from scenegen.extraction import build_chapters, load_text, split_text
from scenegen.models import Document, DocumentStatus, status_rank
from scenegen.store.repository import DocumentStore

logger = structlog.get_logger(__name__)


def validate_name(name: Optional[str], max_length: int = 50) -> str:
    """Strip and check a document name.

    Raises:
        InvalidDocument: If the name is empty or longer than ``max_length``.
    """
    name = (name or "").strip()
    if not name:
        raise InvalidDocument("Document name is required")
    if len(name) > max_length:
        raise InvalidDocument(f"Document name is longer than {max_length} characters")
    return name


async def ingest_text(
    store: DocumentStore,
    name: str,
    text: str,
    settings: Settings | None = None,
) -> Document:
    """Split ``text`` into chapters and create the document.

    Raises:
        InvalidDocument: Bad name or no text (``SplitError``).
        DuplicateDocument: A document with this name exists.
    """
    settings = settings or get_settings()
    name = validate_name(name, settings.max_name_length)

    chunks = split_text(
        text,
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        separator=settings.chunk_separator,
    )
    return await store.create_document(name, build_chapters(chunks))


async def ingest_file(
    store: DocumentStore,
    path: str | Path,
    name: str | None = None,
    settings: Settings | None = None,
) -> Document:
    """Create a document from a .txt, .md or .pdf file.

    The file stem is used as the name when none is given.
    """
    path = Path(path)
    text = await asyncio.to_thread(load_text, path)
    logger.info("ingesting_file", path=str(path), name=name or path.stem)
    return await ingest_text(store, name or path.stem, text, settings)


async def infer_resume_status(store: DocumentStore, document_id: str) -> DocumentStatus:
    """The stage a failed document stopped in, judged from its committed rows.

    Roles are only ever committed with the move to ``roleReady`` and the last
    chapter's scenes with the move to ``sceneReady``.
    """
    roles = await store.list_roles(document_id)
    if not roles:
        return DocumentStatus.CHAPTER_READY

    chapters = await store.list_chapters(document_id)
    if any(not chapter.scenes_extracted for chapter in chapters):
        return DocumentStatus.ROLE_READY

    return DocumentStatus.SCENE_READY


async def reset_document(
    store: DocumentStore,
    document_id: str,
    status: DocumentStatus | None = None,
) -> Document:
    """Put a failed document back into the pipeline.

    An explicit ``status`` may be earlier than the stage the committed results
    reach, never later, so no stage is skipped.

    Args:
        store: Document store.
        document_id: Id of a document in ``failed``.
        status: Pre-stage status to resume from; inferred when None.

    Raises:
        DocumentNotFound: No such document.
        IllegalTransition: The document is not failed, or ``status`` is not a
            pre-stage status or lies beyond the committed results.
    """
    resume = await infer_resume_status(store, document_id)
    if status is None:
        status = resume
    elif status != DocumentStatus.FAILED and status_rank(status) > status_rank(resume):
        raise IllegalTransition(
            f"Cannot resume from {status.value}: committed results only reach {resume.value}"
        )
    return await store.reset_document(document_id, status)


async def rename_document(
    store: DocumentStore,
    document_id: str,
    name: str,
    settings: Settings | None = None,
) -> Document:
    """Validate ``name`` and give it to the document.

    Raises:
        InvalidDocument: Bad name.
        DuplicateDocument: Another document has this name.
    """
    settings = settings or get_settings()
    return await store.rename_document(document_id, validate_name(name, settings.max_name_length))
