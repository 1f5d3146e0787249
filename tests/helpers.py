"""Test doubles shared by the unit tests."""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

from scenegen.config.settings import PipelineConfig
from scenegen.errors import TransientGenerationError
from scenegen.llm.generation import GenerationClient
from scenegen.models import RoleDraft, SceneDraft


class FakeClock:
    """Store clock that only moves when told to.

    Every reading ticks one microsecond so rows written in sequence keep
    their order.
    """

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(microseconds=1)
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class ScriptedGenerationClient(GenerationClient):
    """Deterministic generation service.

    - extract_roles returns ``roles``
    - extract_scenes returns one scene per non-empty line of the chapter
    - generate_image / generate_voice return numbered URLs

    ``fail(...)`` queues errors for matching calls; ``gate`` (an
    asyncio.Event) holds every call until it is set.
    """

    def __init__(self, roles: Optional[list[RoleDraft]] = None):
        self.roles = roles if roles is not None else [
            RoleDraft(name="Alice", gender="female", character="curious", appearance="red coat"),
        ]
        self.calls: list[tuple[str, str]] = []
        self.gate: Optional[asyncio.Event] = None
        self.started: Optional[asyncio.Event] = None
        self._failures: list[list] = []
        self._counter = 0

    def fail(
        self,
        operation: str,
        times: int = 1,
        match: Optional[str] = None,
        error: Callable[[], Exception] = lambda: TransientGenerationError("service unavailable"),
    ) -> None:
        self._failures.append([operation, match, times, error])

    def calls_to(self, operation: str) -> list[str]:
        return [text for op, text in self.calls if op == operation]

    async def _call(self, operation: str, text: str) -> None:
        self.calls.append((operation, text))
        if self.started is not None:
            self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        for failure in self._failures:
            op, match, remaining, error = failure
            if op == operation and remaining > 0 and (match is None or match in text):
                failure[2] -= 1
                raise error()

    async def extract_roles(self, text: str) -> list[RoleDraft]:
        await self._call("extract_roles", text)
        return list(self.roles)

    async def extract_scenes(self, chapter_text: str) -> list[SceneDraft]:
        await self._call("extract_scenes", chapter_text)
        return [SceneDraft(content=line.strip()) for line in chapter_text.splitlines() if line.strip()]

    async def generate_image(self, scene_text: str) -> str:
        await self._call("generate_image", scene_text)
        self._counter += 1
        return f"https://media.test/images/{self._counter}.png"

    async def generate_voice(self, scene_text: str) -> str:
        await self._call("generate_voice", scene_text)
        self._counter += 1
        return f"https://media.test/voices/{self._counter}.mp3"


def fast_config(**overrides) -> PipelineConfig:
    """Pipeline settings with short waits for tests."""
    values = dict(
        workers=2,
        batch_size=8,
        poll_interval=0.01,
        poll_max_interval=0.05,
        lease_ttl=5.0,
        renew_interval=0.05,
        stage_timeout=5.0,
        max_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
    )
    values.update(overrides)
    return PipelineConfig(**values)
