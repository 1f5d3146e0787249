"""
Document store.

The pipeline consumes the store through ``DocumentStore``; ``SqlDocumentStore``
implements it on SQLAlchemy. Every method is one transaction. Sessions are
synchronous and run on ``asyncio.to_thread`` so the event loop stays free
while the database works.

Design Decisions:
- Stage commits are guarded by a conditional UPDATE on the expected status,
  so a stale worker can never overwrite newer committed state
- Derived rows get ids computed from their parent and position, so
  re-running a stage from the same committed state writes identical rows
- Scene rows and the chapter's scene_ids are written in one transaction
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

import structlog
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from scenegen.errors import (
    ChapterNotFound,
    CommitConflict,
    DocumentNotFound,
    DuplicateDocument,
    IllegalTransition,
    InvalidDocument,
    PersistenceError,
)
from scenegen.models import (
    Chapter,
    ChapterScenes,
    Document,
    DocumentStatus,
    Role,
    RoleSet,
    Scene,
    SceneMedia,
    StageOutput,
    check_transition,
    is_terminal,
)

from .tables import ChapterRow, DocumentRow, RoleRow, SceneRow, utcnow

logger = structlog.get_logger(__name__)

_ID_NAMESPACE = uuid.UUID("6f1c1f5e-3c1a-4d0e-9a47-51c4b2d0a6e3")

# Statuses in which chapters may be edited or removed
_EDITABLE_STATUSES = frozenset({DocumentStatus.CHAPTER_READY, DocumentStatus.FAILED})


def make_id() -> str:
    return uuid.uuid4().hex


def derived_id(*parts: object) -> str:
    """Deterministic id for a row derived from its parent and position."""
    return uuid.uuid5(_ID_NAMESPACE, ":".join(str(p) for p in parts)).hex


class DocumentStore(ABC):
    """Durable storage consumed by the pipeline and the API."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time on the store's clock (naive UTC)."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document: ...

    @abstractmethod
    async def list_documents(self) -> list[Document]: ...

    @abstractmethod
    async def list_by_status(self, status: DocumentStatus, limit: int) -> list[Document]:
        """Documents in ``status`` whose retry time has passed, oldest-updated first."""

    @abstractmethod
    async def list_chapters(self, document_id: str) -> list[Chapter]: ...

    @abstractmethod
    async def list_roles(self, document_id: str) -> list[Role]: ...

    @abstractmethod
    async def list_scenes(self, document_id: str) -> list[Scene]:
        """Scenes in reading order: chapter index, then scene index."""

    @abstractmethod
    async def list_scenes_by_chapter(self, chapter_id: str) -> list[Scene]: ...

    @abstractmethod
    async def commit_stage(
        self,
        document_id: str,
        expected_status: DocumentStatus,
        output: Optional[StageOutput],
        next_status: DocumentStatus,
    ) -> Document:
        """Atomically write ``output`` and move the document to ``next_status``.

        Raises:
            CommitConflict: If the document is no longer in ``expected_status``.
        """

    @abstractmethod
    async def increment_failure(self, document_id: str, error: str | None = None) -> int: ...

    @abstractmethod
    async def schedule_retry(self, document_id: str, delay_seconds: float) -> None: ...

    @abstractmethod
    async def reset_failure(self, document_id: str) -> None: ...

    @abstractmethod
    async def mark_failed(self, document_id: str) -> None: ...

    @abstractmethod
    async def create_document(
        self, name: str, chapters: Sequence[tuple[str, str]]
    ) -> Document:
        """Create a document at ``chapterReady`` with its (title, content) chapters."""

    @abstractmethod
    async def delete_document(self, document_id: str) -> None: ...

    @abstractmethod
    async def rename_document(self, document_id: str, name: str) -> Document:
        """Raises ``DuplicateDocument`` if another document has ``name``."""

    @abstractmethod
    async def get_chapter(self, document_id: str, chapter_id: str) -> Chapter: ...

    @abstractmethod
    async def update_chapter(
        self,
        document_id: str,
        chapter_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Chapter:
        """Edit a chapter of a document in ``chapterReady`` or ``failed``.

        New content drops the chapter's scenes so they are extracted again.
        """

    @abstractmethod
    async def delete_chapter(self, document_id: str, chapter_id: str) -> None:
        """Remove a chapter and its scenes; the last chapter cannot be removed."""

    @abstractmethod
    async def reset_document(self, document_id: str, status: DocumentStatus) -> Document:
        """Return a failed document to ``status`` with a cleared failure record."""


class SqlDocumentStore(DocumentStore):
    """SQLAlchemy implementation of ``DocumentStore``."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    async def _run(self, fn: Callable, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except SQLAlchemyError as e:
            logger.error("store_operation_failed", operation=fn.__name__, error=str(e))
            raise PersistenceError(f"{fn.__name__} failed: {e}") from e

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_document(self, document_id: str) -> Document:
        return await self._run(self._get_document, document_id)

    def _get_document(self, document_id: str) -> Document:
        with self._session_factory() as session:
            row = session.get(DocumentRow, document_id)
            if row is None:
                raise DocumentNotFound(document_id)
            return Document.model_validate(row)

    async def list_documents(self) -> list[Document]:
        return await self._run(self._list_documents)

    def _list_documents(self) -> list[Document]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(DocumentRow).order_by(DocumentRow.created_at, DocumentRow.name)
            )
            return [Document.model_validate(r) for r in rows]

    async def list_by_status(self, status: DocumentStatus, limit: int) -> list[Document]:
        return await self._run(self._list_by_status, status, limit)

    def _list_by_status(self, status: DocumentStatus, limit: int) -> list[Document]:
        now = self._clock()
        with self._session_factory() as session:
            rows = session.scalars(
                select(DocumentRow)
                .where(DocumentRow.status == status.value)
                .where(
                    or_(
                        DocumentRow.next_attempt_at.is_(None),
                        DocumentRow.next_attempt_at <= now,
                    )
                )
                .order_by(DocumentRow.updated_at, DocumentRow.created_at)
                .limit(limit)
            )
            return [Document.model_validate(r) for r in rows]

    async def list_chapters(self, document_id: str) -> list[Chapter]:
        return await self._run(self._list_chapters, document_id)

    def _list_chapters(self, document_id: str) -> list[Chapter]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(ChapterRow)
                .where(ChapterRow.document_id == document_id)
                .order_by(ChapterRow.index)
            )
            return [Chapter.model_validate(r) for r in rows]

    async def list_roles(self, document_id: str) -> list[Role]:
        return await self._run(self._list_roles, document_id)

    def _list_roles(self, document_id: str) -> list[Role]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(RoleRow)
                .where(RoleRow.document_id == document_id)
                .order_by(RoleRow.created_at, RoleRow.id)
            )
            return [Role.model_validate(r) for r in rows]

    async def list_scenes(self, document_id: str) -> list[Scene]:
        return await self._run(self._list_scenes, document_id)

    def _list_scenes(self, document_id: str) -> list[Scene]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(SceneRow)
                .join(ChapterRow, ChapterRow.id == SceneRow.chapter_id)
                .where(SceneRow.document_id == document_id)
                .order_by(ChapterRow.index, SceneRow.index)
            )
            return [Scene.model_validate(r) for r in rows]

    async def list_scenes_by_chapter(self, chapter_id: str) -> list[Scene]:
        return await self._run(self._list_scenes_by_chapter, chapter_id)

    def _list_scenes_by_chapter(self, chapter_id: str) -> list[Scene]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(SceneRow).where(SceneRow.chapter_id == chapter_id).order_by(SceneRow.index)
            )
            return [Scene.model_validate(r) for r in rows]

    # =========================================================================
    # Stage commits
    # =========================================================================

    async def commit_stage(
        self,
        document_id: str,
        expected_status: DocumentStatus,
        output: Optional[StageOutput],
        next_status: DocumentStatus,
    ) -> Document:
        check_transition(expected_status, next_status)
        return await self._run(
            self._commit_stage, document_id, expected_status, output, next_status
        )

    def _commit_stage(
        self,
        document_id: str,
        expected_status: DocumentStatus,
        output: Optional[StageOutput],
        next_status: DocumentStatus,
    ) -> Document:
        now = self._clock()
        with self._session_factory() as session, session.begin():
            # Conditional update first: takes the write lock and checks the guard
            result = session.execute(
                update(DocumentRow)
                .where(DocumentRow.id == document_id)
                .where(DocumentRow.status == expected_status.value)
                .values(status=next_status.value, updated_at=now)
            )
            if result.rowcount != 1:
                self._raise_conflict(session, document_id, expected_status)

            if isinstance(output, RoleSet):
                self._apply_roles(session, document_id, output, now)
            elif isinstance(output, ChapterScenes):
                self._apply_chapter_scenes(session, document_id, expected_status, output, now)
            elif isinstance(output, SceneMedia):
                self._apply_scene_media(session, document_id, expected_status, output, now)
            elif output is not None:
                raise TypeError(f"Unsupported stage output: {type(output).__name__}")

            row = session.get(DocumentRow, document_id)
            session.refresh(row)
            document = Document.model_validate(row)

        logger.debug(
            "stage_committed",
            document_id=document_id,
            from_status=expected_status.value,
            to_status=next_status.value,
            output=type(output).__name__ if output is not None else None,
        )
        return document

    def _raise_conflict(
        self, session: Session, document_id: str, expected_status: DocumentStatus
    ) -> None:
        actual = session.scalar(select(DocumentRow.status).where(DocumentRow.id == document_id))
        if actual is None:
            raise DocumentNotFound(document_id)
        raise CommitConflict(document_id, expected_status.value, actual)

    def _apply_roles(self, session: Session, document_id: str, output: RoleSet, now: datetime) -> None:
        session.execute(delete(RoleRow).where(RoleRow.document_id == document_id))
        session.add_all(
            RoleRow(
                id=derived_id(document_id, "role", i),
                document_id=document_id,
                name=draft.name,
                gender=draft.gender,
                character=draft.character,
                appearance=draft.appearance,
                created_at=now,
                updated_at=now,
            )
            for i, draft in enumerate(output.roles)
        )

    def _apply_chapter_scenes(
        self,
        session: Session,
        document_id: str,
        expected_status: DocumentStatus,
        output: ChapterScenes,
        now: datetime,
    ) -> None:
        chapter = session.get(ChapterRow, output.chapter_id)
        if chapter is None or chapter.document_id != document_id:
            raise CommitConflict(document_id, expected_status.value, f"chapter {output.chapter_id} missing")

        session.execute(delete(SceneRow).where(SceneRow.chapter_id == chapter.id))
        scene_ids = []
        for i, draft in enumerate(output.scenes):
            scene_id = derived_id(chapter.id, "scene", i)
            scene_ids.append(scene_id)
            session.add(
                SceneRow(
                    id=scene_id,
                    chapter_id=chapter.id,
                    document_id=document_id,
                    index=i,
                    content=draft.content,
                    created_at=now,
                    updated_at=now,
                )
            )
        chapter.scene_ids = scene_ids
        chapter.updated_at = now

    def _apply_scene_media(
        self,
        session: Session,
        document_id: str,
        expected_status: DocumentStatus,
        output: SceneMedia,
        now: datetime,
    ) -> None:
        result = session.execute(
            update(SceneRow)
            .where(SceneRow.id == output.scene_id)
            .where(SceneRow.document_id == document_id)
            .values(image_url=output.image_url, voice_url=output.voice_url, updated_at=now)
        )
        if result.rowcount != 1:
            raise CommitConflict(document_id, expected_status.value, f"scene {output.scene_id} missing")

    # =========================================================================
    # Failure bookkeeping
    # =========================================================================

    async def increment_failure(self, document_id: str, error: str | None = None) -> int:
        return await self._run(self._increment_failure, document_id, error)

    def _increment_failure(self, document_id: str, error: str | None) -> int:
        with self._session_factory() as session, session.begin():
            result = session.execute(
                update(DocumentRow)
                .where(DocumentRow.id == document_id)
                .values(
                    failure_count=DocumentRow.failure_count + 1,
                    last_error=error[:2000] if error else None,
                    updated_at=self._clock(),
                )
            )
            if result.rowcount != 1:
                raise DocumentNotFound(document_id)
            return session.scalar(
                select(DocumentRow.failure_count).where(DocumentRow.id == document_id)
            )

    async def schedule_retry(self, document_id: str, delay_seconds: float) -> None:
        await self._run(self._schedule_retry, document_id, delay_seconds)

    def _schedule_retry(self, document_id: str, delay_seconds: float) -> None:
        retry_at = self._clock() + timedelta(seconds=delay_seconds)
        with self._session_factory() as session, session.begin():
            session.execute(
                update(DocumentRow)
                .where(DocumentRow.id == document_id)
                .values(next_attempt_at=retry_at)
            )

    async def reset_failure(self, document_id: str) -> None:
        await self._run(self._reset_failure, document_id)

    def _reset_failure(self, document_id: str) -> None:
        with self._session_factory() as session, session.begin():
            session.execute(
                update(DocumentRow)
                .where(DocumentRow.id == document_id)
                .values(failure_count=0, next_attempt_at=None, last_error=None)
            )

    async def mark_failed(self, document_id: str) -> None:
        await self._run(self._mark_failed, document_id)

    def _mark_failed(self, document_id: str) -> None:
        with self._session_factory() as session, session.begin():
            row = session.get(DocumentRow, document_id)
            if row is None:
                raise DocumentNotFound(document_id)
            check_transition(DocumentStatus(row.status), DocumentStatus.FAILED)
            row.status = DocumentStatus.FAILED.value
            row.next_attempt_at = None
            row.updated_at = self._clock()

    # =========================================================================
    # Creation path and operator actions
    # =========================================================================

    async def create_document(
        self, name: str, chapters: Sequence[tuple[str, str]]
    ) -> Document:
        if not chapters:
            raise ValueError("A document needs at least one chapter")
        return await self._run(self._create_document, name, list(chapters))

    def _create_document(self, name: str, chapters: list[tuple[str, str]]) -> Document:
        now = self._clock()
        document_id = make_id()
        try:
            with self._session_factory() as session, session.begin():
                exists = session.scalar(
                    select(func.count()).select_from(DocumentRow).where(DocumentRow.name == name)
                )
                if exists:
                    raise DuplicateDocument(f"Document already exists: {name}")
                row = DocumentRow(
                    id=document_id,
                    name=name,
                    status=DocumentStatus.CHAPTER_READY.value,
                    failure_count=0,
                    next_attempt_at=None,
                    last_error=None,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
                session.flush()
                session.add_all(
                    ChapterRow(
                        id=make_id(),
                        document_id=document_id,
                        index=i,
                        title=title,
                        content=content,
                        created_at=now,
                        updated_at=now,
                    )
                    for i, (title, content) in enumerate(chapters)
                )
        except IntegrityError as e:
            raise DuplicateDocument(f"Document already exists: {name}") from e

        logger.info("document_created", document_id=document_id, name=name, chapters=len(chapters))
        return Document.model_validate(row)

    async def delete_document(self, document_id: str) -> None:
        await self._run(self._delete_document, document_id)

    def _delete_document(self, document_id: str) -> None:
        with self._session_factory() as session, session.begin():
            if session.get(DocumentRow, document_id) is None:
                raise DocumentNotFound(document_id)
            session.execute(delete(SceneRow).where(SceneRow.document_id == document_id))
            session.execute(delete(RoleRow).where(RoleRow.document_id == document_id))
            session.execute(delete(ChapterRow).where(ChapterRow.document_id == document_id))
            session.execute(delete(DocumentRow).where(DocumentRow.id == document_id))

    async def rename_document(self, document_id: str, name: str) -> Document:
        return await self._run(self._rename_document, document_id, name)

    def _rename_document(self, document_id: str, name: str) -> Document:
        try:
            with self._session_factory() as session, session.begin():
                row = session.get(DocumentRow, document_id)
                if row is None:
                    raise DocumentNotFound(document_id)
                taken = session.scalar(
                    select(func.count())
                    .select_from(DocumentRow)
                    .where(DocumentRow.name == name, DocumentRow.id != document_id)
                )
                if taken:
                    raise DuplicateDocument(f"Document already exists: {name}")
                row.name = name
                row.updated_at = self._clock()
                session.flush()
                document = Document.model_validate(row)
        except IntegrityError as e:
            raise DuplicateDocument(f"Document already exists: {name}") from e

        logger.info("document_renamed", document_id=document_id, name=name)
        return document

    # =========================================================================
    # Chapter edits
    # =========================================================================

    async def get_chapter(self, document_id: str, chapter_id: str) -> Chapter:
        return await self._run(self._get_chapter, document_id, chapter_id)

    def _get_chapter(self, document_id: str, chapter_id: str) -> Chapter:
        with self._session_factory() as session:
            row = session.get(ChapterRow, chapter_id)
            if row is None or row.document_id != document_id:
                if session.get(DocumentRow, document_id) is None:
                    raise DocumentNotFound(document_id)
                raise ChapterNotFound(document_id, chapter_id)
            return Chapter.model_validate(row)

    def _editable_chapter(
        self, session: Session, document_id: str, chapter_id: str
    ) -> tuple[DocumentRow, ChapterRow]:
        document = session.get(DocumentRow, document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        if DocumentStatus(document.status) not in _EDITABLE_STATUSES:
            raise IllegalTransition(
                f"Chapters can only change in chapterReady or failed (document is {document.status})"
            )
        chapter = session.get(ChapterRow, chapter_id)
        if chapter is None or chapter.document_id != document_id:
            raise ChapterNotFound(document_id, chapter_id)
        return document, chapter

    async def update_chapter(
        self,
        document_id: str,
        chapter_id: str,
        title: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Chapter:
        return await self._run(self._update_chapter, document_id, chapter_id, title, content)

    def _update_chapter(
        self,
        document_id: str,
        chapter_id: str,
        title: Optional[str],
        content: Optional[str],
    ) -> Chapter:
        now = self._clock()
        content_changed = False
        with self._session_factory() as session, session.begin():
            document, row = self._editable_chapter(session, document_id, chapter_id)
            if title is not None:
                row.title = title
            if content is not None and content != row.content:
                content_changed = True
                row.content = content
                session.execute(delete(SceneRow).where(SceneRow.chapter_id == chapter_id))
                row.scene_ids = None
            row.updated_at = now
            document.updated_at = now
            session.flush()
            chapter = Chapter.model_validate(row)

        logger.info(
            "chapter_updated",
            document_id=document_id,
            chapter_id=chapter_id,
            content_changed=content_changed,
        )
        return chapter

    async def delete_chapter(self, document_id: str, chapter_id: str) -> None:
        await self._run(self._delete_chapter, document_id, chapter_id)

    def _delete_chapter(self, document_id: str, chapter_id: str) -> None:
        now = self._clock()
        with self._session_factory() as session, session.begin():
            document, row = self._editable_chapter(session, document_id, chapter_id)
            remaining = session.scalars(
                select(ChapterRow)
                .where(ChapterRow.document_id == document_id, ChapterRow.id != chapter_id)
                .order_by(ChapterRow.index)
            ).all()
            if not remaining:
                raise InvalidDocument("A document needs at least one chapter")

            session.execute(delete(SceneRow).where(SceneRow.chapter_id == chapter_id))
            session.delete(row)
            # Keep chapter indexes contiguous
            for i, chapter in enumerate(remaining):
                if chapter.index != i:
                    chapter.index = i
                    chapter.updated_at = now
            document.updated_at = now

        logger.info("chapter_deleted", document_id=document_id, chapter_id=chapter_id)

    async def reset_document(self, document_id: str, status: DocumentStatus) -> Document:
        if is_terminal(status) or status == DocumentStatus.UPLOADED:
            raise IllegalTransition(f"Cannot reset a document to {status.value}")
        return await self._run(self._reset_document, document_id, status)

    def _reset_document(self, document_id: str, status: DocumentStatus) -> Document:
        with self._session_factory() as session, session.begin():
            row = session.get(DocumentRow, document_id)
            if row is None:
                raise DocumentNotFound(document_id)
            if row.status != DocumentStatus.FAILED.value:
                raise IllegalTransition(
                    f"Only failed documents can be reset (document is {row.status})"
                )
            row.status = status.value
            row.failure_count = 0
            row.next_attempt_at = None
            row.last_error = None
            row.updated_at = self._clock()
            session.flush()
            document = Document.model_validate(row)

        logger.info("document_reset", document_id=document_id, status=status.value)
        return document
