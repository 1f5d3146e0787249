"""Pytest configuration and fixtures."""

from typing import Optional

import pytest

from scenegen.config.settings import PipelineConfig
from scenegen.pipeline.controller import PipelineController
from scenegen.pipeline.lease import MemoryLeaseManager
from scenegen.pipeline.stages import MediaGeneration, RoleExtraction, SceneExtraction
from scenegen.store import open_store

from tests.helpers import FakeClock, ScriptedGenerationClient, fast_config


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    """SQLite store in a temporary directory, on the fake clock."""
    return open_store(f"sqlite:///{tmp_path / 'scenegen.db'}", clock=clock)


@pytest.fixture
def leases() -> MemoryLeaseManager:
    return MemoryLeaseManager()


@pytest.fixture
def client() -> ScriptedGenerationClient:
    return ScriptedGenerationClient()


@pytest.fixture
def make_controller(store, leases, client):
    """Factory for controllers sharing the test store, leases and client."""

    def _make(config: Optional[PipelineConfig] = None, **kwargs) -> PipelineController:
        processors = [
            RoleExtraction(store, client),
            SceneExtraction(store, client),
            MediaGeneration(store, client),
        ]
        return PipelineController(
            store,
            kwargs.pop("leases", leases),
            processors,
            config=config or fast_config(),
            **kwargs,
        )

    return _make


@pytest.fixture
def story_text() -> str:
    """One paragraph per chapter, one line per scene."""
    return (
        "Alice walks into the forest.\nShe finds a hidden door.\n\n"
        "Bob waits at the old mill.\n\n"
        "The two meet at dawn.\nThey open the door together."
    )
