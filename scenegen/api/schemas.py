"""
Response and request schemas for the API.

Key Design Decisions:
- Every list includes a count
- Records are returned as committed in the store
"""

from typing import Optional

from pydantic import BaseModel, Field

from scenegen.models import Chapter, Document, DocumentStatus, Role, Scene


class DocumentListResponse(BaseModel):
    documents: list[Document]
    total_count: int


class ChapterListResponse(BaseModel):
    document_id: str
    chapters: list[Chapter]
    total_count: int


class RoleListResponse(BaseModel):
    document_id: str
    roles: list[Role]
    total_count: int


class SceneListResponse(BaseModel):
    scenes: list[Scene]
    total_count: int
    with_media: int = Field(0, description="Scenes that have both an image and a voice URL")


class UpdateDocumentRequest(BaseModel):
    name: str


class UpdateChapterRequest(BaseModel):
    """Fields left out keep their value. New content drops the chapter's scenes."""

    title: Optional[str] = Field(None, max_length=255)
    content: Optional[str] = Field(None, min_length=1)


class ResetRequest(BaseModel):
    """Resume a failed document; the status is inferred when omitted."""

    status: Optional[DocumentStatus] = None


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    pipeline_running: bool = False
