"""Unit tests for text loading, chapter splitting and document creation."""

import asyncio

import pytest

from scenegen.config.settings import Settings
from scenegen.errors import DuplicateDocument, IllegalTransition, InvalidDocument, SplitError
from scenegen.extraction import build_chapters, load_text, split_text
from scenegen.ingest import (
    infer_resume_status,
    ingest_file,
    ingest_text,
    rename_document,
    reset_document,
    validate_name,
)
from scenegen.models import ChapterScenes, DocumentStatus, RoleDraft, RoleSet


class TestSplitText:
    def test_short_text_is_one_chunk(self, story_text):
        assert split_text(story_text) == [story_text]

    def test_splits_on_paragraphs(self):
        paragraphs = [f"Paragraph {i} " + "x" * 60 for i in range(10)]
        chunks = split_text("\n\n".join(paragraphs), chunk_size=200, chunk_overlap=0)

        assert len(chunks) > 1
        assert all(len(chunk) <= 200 for chunk in chunks)
        assert chunks[0].startswith("Paragraph 0")
        assert "Paragraph 9" in chunks[-1]

    def test_normalizes_line_endings(self):
        assert split_text("one\r\ntwo") == ["one\ntwo"]

    @pytest.mark.parametrize("text", ["", "   \n\n  "])
    def test_empty_text_rejected(self, text):
        with pytest.raises(SplitError):
            split_text(text)

    def test_overlap_must_be_smaller_than_size(self):
        with pytest.raises(SplitError):
            split_text("text", chunk_size=100, chunk_overlap=100)

    def test_build_chapters_titles(self):
        assert build_chapters(["a", "b"]) == [("Chapter 1", "a"), ("Chapter 2", "b")]


class TestLoadText:
    def test_reads_text_files(self, tmp_path):
        path = tmp_path / "story.md"
        path.write_text("# Title\n\nBody", encoding="utf-8")
        assert load_text(path) == "# Title\n\nBody"

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "story.docx"
        path.write_bytes(b"PK")
        with pytest.raises(InvalidDocument):
            load_text(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidDocument):
            load_text(tmp_path / "missing.txt")


class TestValidateName:
    def test_strips(self):
        assert validate_name("  Story  ") == "Story"

    @pytest.mark.parametrize("name", [None, "", "   "])
    def test_required(self, name):
        with pytest.raises(InvalidDocument):
            validate_name(name)

    def test_max_length(self):
        validate_name("x" * 50)
        with pytest.raises(InvalidDocument):
            validate_name("x" * 51)


class TestIngest:
    @pytest.fixture
    def settings(self, tmp_path) -> Settings:
        return Settings(_env_file=None, chunk_size=60, chunk_overlap=0)

    def test_ingest_text_creates_chapters(self, store, settings):
        text = "\n\n".join(f"Paragraph number {i} of the story." for i in range(4))

        async def main():
            document = await ingest_text(store, "Story", text, settings)
            return document, await store.list_chapters(document.id)

        document, chapters = asyncio.run(main())

        assert document.status == DocumentStatus.CHAPTER_READY
        assert len(chapters) > 1
        assert chapters[0].title == "Chapter 1"
        assert chapters[0].content.startswith("Paragraph number 0")

    def test_ingest_file_uses_stem_as_default_name(self, store, settings, tmp_path):
        path = tmp_path / "the-tale.txt"
        path.write_text("Once upon a time.", encoding="utf-8")

        document = asyncio.run(ingest_file(store, path, settings=settings))
        assert document.name == "the-tale"

    def test_duplicate_name(self, store, settings):
        asyncio.run(ingest_text(store, "Story", "text", settings))
        with pytest.raises(DuplicateDocument):
            asyncio.run(ingest_text(store, "Story", "other text", settings))

    def test_empty_text_creates_nothing(self, store, settings):
        with pytest.raises(SplitError):
            asyncio.run(ingest_text(store, "Story", "  ", settings))
        assert asyncio.run(store.list_documents()) == []


class TestResetDocument:
    def test_infers_stage_from_committed_rows(self, store):
        async def main():
            document = await store.create_document("Story", [("Chapter 1", "a"), ("Chapter 2", "b")])
            statuses = [await infer_resume_status(store, document.id)]

            await store.commit_stage(
                document.id,
                DocumentStatus.CHAPTER_READY,
                RoleSet(roles=[RoleDraft(name="Alice")]),
                DocumentStatus.ROLE_READY,
            )
            statuses.append(await infer_resume_status(store, document.id))

            chapters = await store.list_chapters(document.id)
            for chapter, next_status in zip(
                chapters, (DocumentStatus.ROLE_READY, DocumentStatus.SCENE_READY)
            ):
                await store.commit_stage(
                    document.id,
                    DocumentStatus.ROLE_READY,
                    ChapterScenes(chapter_id=chapter.id, scenes=[]),
                    next_status,
                )
            statuses.append(await infer_resume_status(store, document.id))
            return statuses

        assert asyncio.run(main()) == [
            DocumentStatus.CHAPTER_READY,
            DocumentStatus.ROLE_READY,
            DocumentStatus.SCENE_READY,
        ]

    def test_reset_failed_document(self, store):
        async def main():
            document = await store.create_document("Story", [("Chapter 1", "a")])
            await store.increment_failure(document.id, "boom")
            await store.mark_failed(document.id)
            return await reset_document(store, document.id)

        document = asyncio.run(main())
        assert document.status == DocumentStatus.CHAPTER_READY
        assert document.failure_count == 0
        assert document.last_error is None

    def test_reset_requires_failed(self, store):
        async def main():
            document = await store.create_document("Story", [("Chapter 1", "a")])
            await reset_document(store, document.id)

        with pytest.raises(IllegalTransition):
            asyncio.run(main())

    def test_explicit_status_cannot_skip_uncommitted_stages(self, store):
        async def main():
            document = await store.create_document("Story", [("Chapter 1", "Scene one.\nScene two.")])
            await store.mark_failed(document.id)
            with pytest.raises(IllegalTransition):
                await reset_document(store, document.id, DocumentStatus.SCENE_READY)
            return await store.get_document(document.id)

        document = asyncio.run(main())
        assert document.status == DocumentStatus.FAILED

    def test_reset_then_pipeline_runs_every_stage(self, store, client, make_controller):
        controller = make_controller()

        async def main():
            document = await store.create_document("Story", [("Chapter 1", "Scene one.\nScene two.")])
            await store.mark_failed(document.id)
            await reset_document(store, document.id)
            for _ in range(5):
                await controller.run_once()
            return await store.get_document(document.id), await store.list_scenes(document.id)

        document, scenes = asyncio.run(main())

        assert document.status == DocumentStatus.IMG_READY
        assert [s.content for s in scenes] == ["Scene one.", "Scene two."]
        assert len(client.calls_to("extract_roles")) == 1

    def test_explicit_earlier_status_allowed(self, store):
        async def main():
            document = await store.create_document("Story", [("Chapter 1", "a")])
            await store.commit_stage(
                document.id,
                DocumentStatus.CHAPTER_READY,
                RoleSet(roles=[RoleDraft(name="Alice")]),
                DocumentStatus.ROLE_READY,
            )
            await store.mark_failed(document.id)
            return await reset_document(store, document.id, DocumentStatus.CHAPTER_READY)

        assert asyncio.run(main()).status == DocumentStatus.CHAPTER_READY


class TestRenameDocument:
    def test_name_validated(self, store):
        document = asyncio.run(store.create_document("Story", [("Chapter 1", "a")]))
        settings = Settings(_env_file=None)

        assert asyncio.run(rename_document(store, document.id, "  Sequel ", settings)).name == "Sequel"
        with pytest.raises(InvalidDocument):
            asyncio.run(rename_document(store, document.id, "   ", settings))
