"""Stage processors, one per pipeline stage.

Each processor handles documents in exactly one status:
- RoleExtraction   chapterReady → roleReady
- SceneExtraction  roleReady    → sceneReady (per chapter)
- MediaGeneration  sceneReady   → imgReady   (per scene)
"""

from .base import StageProcessor
from .media import MediaGeneration, build_image_prompt
from .roles import RoleExtraction
from .scenes import SceneExtraction

__all__ = [
    "StageProcessor",
    "RoleExtraction",
    "SceneExtraction",
    "MediaGeneration",
    "build_image_prompt",
]
