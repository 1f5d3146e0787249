"""Media Generation: sceneReady → imgReady, one scene per unit.

Scenes are processed in reading order (chapter index, then scene index).
A scene is done once it has both an image and a voice URL; the document
advances when the last scene is done.
"""

import structlog

from scenegen.models import Document, DocumentStatus, Role, SceneMedia, StageResult

from .base import StageProcessor

logger = structlog.get_logger(__name__)


def build_image_prompt(scene_text: str, roles: list[Role]) -> str:
    """Scene text plus the appearance of every role named in it.

    Keeps a character's look consistent across the scenes they appear in.
    """
    lowered = scene_text.casefold()
    described = [
        f"- {role.name}: {role.appearance}"
        for role in roles
        if role.appearance and role.name.casefold() in lowered
    ]
    if not described:
        return scene_text
    return scene_text + "\n\nCharacters:\n" + "\n".join(described)


class MediaGeneration(StageProcessor):
    name = "media_generation"
    pre_status = DocumentStatus.SCENE_READY
    post_status = DocumentStatus.IMG_READY

    async def execute(self, document: Document) -> StageResult:
        scenes = await self.store.list_scenes(document.id)
        pending = [scene for scene in scenes if not scene.has_media]
        if not pending:
            return StageResult(next_status=self.post_status)

        scene = pending[0]
        roles = await self.store.list_roles(document.id)
        logger.info(
            "media_generation_start",
            document_id=document.id,
            scene_id=scene.id,
            remaining=len(pending),
        )

        image_url = await self.client.generate_image(build_image_prompt(scene.content, roles))
        voice_url = await self.client.generate_voice(scene.content)

        return self._result(
            SceneMedia(scene_id=scene.id, image_url=image_url, voice_url=voice_url),
            len(pending),
        )
