"""Role Extraction: chapterReady → roleReady.

The whole document is one unit: every chapter's text goes to the generation
service at once and the returned characters replace the document's roles.
"""

import structlog

from scenegen.errors import PermanentGenerationError
from scenegen.models import Document, DocumentStatus, RoleSet, StageResult

from .base import StageProcessor

logger = structlog.get_logger(__name__)

CHAPTER_SEPARATOR = "\n\n"


class RoleExtraction(StageProcessor):
    name = "role_extraction"
    pre_status = DocumentStatus.CHAPTER_READY
    post_status = DocumentStatus.ROLE_READY

    async def execute(self, document: Document) -> StageResult:
        chapters = await self.store.list_chapters(document.id)
        if not chapters:
            raise PermanentGenerationError(f"Document {document.id} has no chapters")

        text = CHAPTER_SEPARATOR.join(chapter.content for chapter in chapters)
        logger.info(
            "role_extraction_start",
            document_id=document.id,
            chapters=len(chapters),
            text_length=len(text),
        )

        roles = await self.client.extract_roles(text)
        return StageResult(output=RoleSet(roles=roles), next_status=self.post_status)
