"""Pydantic data models for the pipeline."""

from .enums import (
    PIPELINE_ORDER,
    TERMINAL_STATUSES,
    DocumentStatus,
    check_transition,
    is_terminal,
    next_status,
    status_rank,
)
from .records import Chapter, Document, Role, Scene
from .results import (
    ChapterScenes,
    RoleDraft,
    RoleSet,
    SceneDraft,
    SceneMedia,
    StageOutput,
    StageResult,
)

__all__ = [
    # Status
    "DocumentStatus",
    "PIPELINE_ORDER",
    "TERMINAL_STATUSES",
    "check_transition",
    "is_terminal",
    "next_status",
    "status_rank",
    # Records
    "Document",
    "Chapter",
    "Role",
    "Scene",
    # Drafts and results
    "RoleDraft",
    "SceneDraft",
    "RoleSet",
    "ChapterScenes",
    "SceneMedia",
    "StageOutput",
    "StageResult",
]
