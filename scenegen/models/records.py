"""Committed entities as read from the document store."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import DocumentStatus


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Document(_Record):
    """A long-form document moving through the pipeline."""

    id: str
    name: str
    status: DocumentStatus
    failure_count: int = Field(default=0, ge=0, description="Consecutive failed attempts")
    next_attempt_at: Optional[datetime] = Field(
        None, description="Earliest time the document may be claimed again"
    )
    last_error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class Chapter(_Record):
    """An ordered slice of a document's text."""

    id: str
    document_id: str
    index: int = Field(ge=0)
    title: str = ""
    content: str
    scene_ids: Optional[list[str]] = Field(
        None, description="None until scene extraction has processed this chapter"
    )

    @property
    def scenes_extracted(self) -> bool:
        return self.scene_ids is not None


class Role(_Record):
    """A character extracted from a document."""

    id: str
    document_id: str
    name: str
    gender: str = ""
    character: str = ""
    appearance: str = ""


class Scene(_Record):
    """An ordered scene within a chapter, with its generated media."""

    id: str
    chapter_id: str
    document_id: str
    index: int = Field(ge=0)
    content: str
    image_url: str = ""
    voice_url: str = ""

    @property
    def has_media(self) -> bool:
        return bool(self.image_url) and bool(self.voice_url)
