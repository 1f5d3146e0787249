"""Generation drafts and the stage result sets committed by the pipeline.

Stage Flow:
1. Role Extraction   → RoleSet        (whole document, one commit)
2. Scene Extraction  → ChapterScenes  (one commit per chapter)
3. Media Generation  → SceneMedia     (one commit per scene)
"""

from typing import Optional, Union

from pydantic import BaseModel, Field

from .enums import DocumentStatus


class RoleDraft(BaseModel):
    """A character as returned by the generation service."""

    name: str = Field(min_length=1, max_length=100)
    gender: str = Field(default="", max_length=20)
    character: str = Field(default="", description="Personality summary")
    appearance: str = Field(default="", description="Visual description for image prompts")


class SceneDraft(BaseModel):
    """A scene as returned by the generation service, in narrative order."""

    content: str = Field(min_length=1)


class RoleSet(BaseModel):
    """Replaces every role of the document."""

    roles: list[RoleDraft] = Field(default_factory=list)


class ChapterScenes(BaseModel):
    """Replaces every scene of one chapter and its ``scene_ids``."""

    chapter_id: str
    scenes: list[SceneDraft] = Field(default_factory=list)


class SceneMedia(BaseModel):
    """Generated artifacts for one scene."""

    scene_id: str
    image_url: str = Field(min_length=1)
    voice_url: str = Field(min_length=1)


StageOutput = Union[RoleSet, ChapterScenes, SceneMedia]


class StageResult(BaseModel):
    """One unit of stage work, ready to commit.

    ``output`` is None when the stage has nothing left to write and only the
    status needs to advance.
    """

    output: Optional[StageOutput] = None
    next_status: DocumentStatus
