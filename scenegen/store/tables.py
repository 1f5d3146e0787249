"""
ORM tables for documents and their derived entities.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DocumentRow(Base):
    __tablename__ = "documents"

    id = Column(String(32), primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    status = Column(String(20), nullable=False, index=True)
    failure_count = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<DocumentRow(id={self.id!r}, name={self.name!r}, status={self.status!r})>"


class ChapterRow(Base):
    __tablename__ = "chapters"

    id = Column(String(32), primary_key=True)
    document_id = Column(
        String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    index = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False, default="")
    content = Column(Text, nullable=False)
    # NULL until scene extraction has processed the chapter
    scene_ids = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class RoleRow(Base):
    __tablename__ = "roles"

    id = Column(String(32), primary_key=True)
    document_id = Column(
        String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(100), nullable=False)
    gender = Column(String(20), nullable=False, default="")
    character = Column(Text, nullable=False, default="")
    appearance = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class SceneRow(Base):
    __tablename__ = "scenes"

    id = Column(String(32), primary_key=True)
    chapter_id = Column(
        String(32), ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_id = Column(
        String(32), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    image_url = Column(String(1024), nullable=False, default="")
    voice_url = Column(String(1024), nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
