"""Scene Extraction: roleReady → sceneReady, one chapter per unit.

A chapter is pending while its ``scene_ids`` is None. The chapters are
processed in index order and the document advances with the last one.
"""

import structlog

from scenegen.models import ChapterScenes, Document, DocumentStatus, StageResult

from .base import StageProcessor

logger = structlog.get_logger(__name__)


class SceneExtraction(StageProcessor):
    name = "scene_extraction"
    pre_status = DocumentStatus.ROLE_READY
    post_status = DocumentStatus.SCENE_READY

    async def execute(self, document: Document) -> StageResult:
        chapters = await self.store.list_chapters(document.id)
        pending = [chapter for chapter in chapters if not chapter.scenes_extracted]
        if not pending:
            return StageResult(next_status=self.post_status)

        chapter = pending[0]
        logger.info(
            "scene_extraction_start",
            document_id=document.id,
            chapter_id=chapter.id,
            chapter_index=chapter.index,
            remaining=len(pending),
        )

        scenes = await self.client.extract_scenes(chapter.content)
        return self._result(ChapterScenes(chapter_id=chapter.id, scenes=scenes), len(pending))
