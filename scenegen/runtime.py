"""Wiring: builds the store, lease manager, generation client and controller from settings."""

import asyncio
from typing import Optional

import structlog

from scenegen.config.settings import Settings, get_settings
from scenegen.llm.generation import GenerationClient, ServiceGenerationClient
from scenegen.pipeline.controller import PipelineController
from scenegen.pipeline.lease import LeaseManager, MemoryLeaseManager, RedisLeaseManager
from scenegen.pipeline.stages import MediaGeneration, RoleExtraction, SceneExtraction, StageProcessor
from scenegen.store import SqlDocumentStore, open_store
from scenegen.store.repository import DocumentStore

logger = structlog.get_logger(__name__)


def build_store(settings: Settings | None = None) -> SqlDocumentStore:
    settings = settings or get_settings()
    return open_store(settings.database_url)


def build_lease_manager(settings: Settings | None = None) -> LeaseManager:
    settings = settings or get_settings()
    if settings.lease_backend == "memory":
        logger.warning("memory_lease_backend", detail="leases are not shared between processes")
        return MemoryLeaseManager()
    return RedisLeaseManager.from_url(settings.redis_url)


def build_generation_client(settings: Settings | None = None) -> GenerationClient:
    return ServiceGenerationClient(settings or get_settings())


def build_processors(store: DocumentStore, client: GenerationClient) -> list[StageProcessor]:
    return [
        RoleExtraction(store, client),
        SceneExtraction(store, client),
        MediaGeneration(store, client),
    ]


def build_controller(
    store: DocumentStore,
    leases: LeaseManager,
    client: GenerationClient,
    settings: Settings | None = None,
    instance_id: Optional[str] = None,
) -> PipelineController:
    settings = settings or get_settings()
    return PipelineController(
        store,
        leases,
        build_processors(store, client),
        config=settings.pipeline,
        instance_id=instance_id,
    )


async def run_worker(settings: Settings | None = None, stop: asyncio.Event | None = None) -> None:
    """Run a controller until ``stop`` is set, then shut it down."""
    settings = settings or get_settings()
    stop = stop or asyncio.Event()

    store = build_store(settings)
    leases = build_lease_manager(settings)
    client = build_generation_client(settings)
    controller = build_controller(store, leases, client, settings)

    handle = controller.start()
    try:
        await stop.wait()
    finally:
        logger.info("worker_shutdown_requested")
        await handle.shutdown(timeout=settings.pipeline.renew_interval * 2)
        await client.close()
        await leases.close()
