"""
Document Routes

Create documents from uploads and read their chapters, roles and scenes.
Only committed state is returned.
"""

from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os
import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from scenegen.api.deps import get_app_settings, get_store
from scenegen.api.schemas import (
    ChapterListResponse,
    DocumentListResponse,
    ResetRequest,
    RoleListResponse,
    SceneListResponse,
    UpdateChapterRequest,
    UpdateDocumentRequest,
)
from scenegen.config.settings import Settings
from scenegen.extraction import SUPPORTED_SUFFIXES
from scenegen.ingest import ingest_file, rename_document, reset_document
from scenegen.models import Chapter, Document, DocumentStatus
from scenegen.store import make_id
from scenegen.store.repository import DocumentStore

logger = structlog.get_logger(__name__)

router = APIRouter()

# Maximum upload size: 20MB
MAX_FILE_SIZE = 20 * 1024 * 1024


# =============================================================================
# Documents
# =============================================================================

@router.post("/documents", response_model=Document, status_code=status.HTTP_201_CREATED)
async def create_document(
    name: str = Form(...),
    file: UploadFile = File(...),
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> Document:
    """
    Upload a .txt, .md or .pdf file and create a document from it.

    The text is split into chapters immediately; the document starts at
    chapterReady and is picked up by the pipeline.
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    suffix = Path(file.filename).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type; expected one of {sorted(SUPPORTED_SUFFIXES)}",
        )

    content = await file.read()
    if len(content) == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {MAX_FILE_SIZE // (1024 * 1024)}MB",
        )

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    upload_path = upload_dir / f"{make_id()}{suffix}"

    async with aiofiles.open(upload_path, "wb") as f:
        await f.write(content)

    try:
        return await ingest_file(store, upload_path, name, settings)
    finally:
        await aiofiles.os.remove(upload_path)


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(
    status_filter: Optional[DocumentStatus] = Query(default=None, alias="status"),
    store: DocumentStore = Depends(get_store),
) -> DocumentListResponse:
    """List documents, oldest first, optionally filtered by status."""
    documents = await store.list_documents()
    if status_filter is not None:
        documents = [d for d in documents if d.status == status_filter]
    return DocumentListResponse(documents=documents, total_count=len(documents))


@router.get("/documents/{document_id}", response_model=Document)
async def get_document(document_id: str, store: DocumentStore = Depends(get_store)) -> Document:
    return await store.get_document(document_id)


@router.put("/documents/{document_id}", response_model=Document)
async def update_document(
    document_id: str,
    body: UpdateDocumentRequest,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
) -> Document:
    """Rename a document. Names stay unique."""
    return await rename_document(store, document_id, body.name, settings)


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(document_id: str, store: DocumentStore = Depends(get_store)) -> None:
    await store.delete_document(document_id)
    logger.info("document_deleted", document_id=document_id)


@router.post("/documents/{document_id}/reset", response_model=Document)
async def reset_failed_document(
    document_id: str,
    body: Optional[ResetRequest] = None,
    store: DocumentStore = Depends(get_store),
) -> Document:
    """Return a failed document to the pipeline with a cleared failure count."""
    return await reset_document(store, document_id, body.status if body else None)


# =============================================================================
# Chapters, roles and scenes
# =============================================================================

@router.get("/documents/{document_id}/chapters", response_model=ChapterListResponse)
async def list_chapters(
    document_id: str, store: DocumentStore = Depends(get_store)
) -> ChapterListResponse:
    await store.get_document(document_id)
    chapters = await store.list_chapters(document_id)
    return ChapterListResponse(document_id=document_id, chapters=chapters, total_count=len(chapters))


@router.get("/documents/{document_id}/chapters/{chapter_id}", response_model=Chapter)
async def get_chapter(
    document_id: str, chapter_id: str, store: DocumentStore = Depends(get_store)
) -> Chapter:
    return await store.get_chapter(document_id, chapter_id)


@router.put("/documents/{document_id}/chapters/{chapter_id}", response_model=Chapter)
async def update_chapter(
    document_id: str,
    chapter_id: str,
    body: UpdateChapterRequest,
    store: DocumentStore = Depends(get_store),
) -> Chapter:
    """
    Edit a chapter's title or content.

    Only allowed while the document is at chapterReady or failed. New content
    drops the chapter's scenes so scene extraction runs on it again.
    """
    return await store.update_chapter(document_id, chapter_id, body.title, body.content)


@router.delete(
    "/documents/{document_id}/chapters/{chapter_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_chapter(
    document_id: str, chapter_id: str, store: DocumentStore = Depends(get_store)
) -> None:
    """Remove a chapter and its scenes. A document keeps at least one chapter."""
    await store.delete_chapter(document_id, chapter_id)


@router.get("/documents/{document_id}/roles", response_model=RoleListResponse)
async def list_roles(document_id: str, store: DocumentStore = Depends(get_store)) -> RoleListResponse:
    await store.get_document(document_id)
    roles = await store.list_roles(document_id)
    return RoleListResponse(document_id=document_id, roles=roles, total_count=len(roles))


@router.get("/documents/{document_id}/scenes", response_model=SceneListResponse)
async def list_document_scenes(
    document_id: str, store: DocumentStore = Depends(get_store)
) -> SceneListResponse:
    await store.get_document(document_id)
    scenes = await store.list_scenes(document_id)
    return SceneListResponse(
        scenes=scenes,
        total_count=len(scenes),
        with_media=sum(1 for s in scenes if s.has_media),
    )


@router.get("/chapters/{chapter_id}/scenes", response_model=SceneListResponse)
async def list_chapter_scenes(
    chapter_id: str, store: DocumentStore = Depends(get_store)
) -> SceneListResponse:
    scenes = await store.list_scenes_by_chapter(chapter_id)
    return SceneListResponse(
        scenes=scenes,
        total_count=len(scenes),
        with_media=sum(1 for s in scenes if s.has_media),
    )
