"""
Pipeline Controller - the document manager.

A fixed pool of worker loops per instance. Each loop:
1. Polls the store for documents in a stage's pre-status whose retry time
   has arrived, least recently updated first
2. Claims each candidate with a lease; a busy lease means another worker
   (in this or another instance) has it, so the candidate is skipped
3. Renews the lease in the background; losing it cancels the stage work
4. Runs one unit of stage work under a deadline, then commits it with a
   status guard, repeating while the document stays claimable
5. On failure commits nothing, counts the failure and schedules the retry
   (or marks the document failed)
6. Releases the lease

Only the lease manager coordinates instances. Shutdown is cooperative:
stopping the handle prevents new claims and cancels in-flight stage work,
which exits without committing.
"""

import asyncio
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

import structlog

from scenegen.config.settings import PipelineConfig
from scenegen.errors import (
    CommitConflict,
    DocumentNotFound,
    GenerationError,
    IllegalTransition,
    LeaseLost,
    PersistenceError,
)
from scenegen.models import Document, DocumentStatus, StageResult

from .lease import LeaseManager, lease_key
from .retry import PollBackoff, RetryPolicy
from .stages import StageProcessor

logger = structlog.get_logger(__name__)

# Failures with these types are expected; anything else is logged with a traceback
_EXPECTED_FAILURES = (LeaseLost, GenerationError, PersistenceError, asyncio.TimeoutError)


class Outcome(str, Enum):
    """What happened to one claimed candidate."""

    BUSY = "busy"            # lease held elsewhere
    SKIPPED = "skipped"      # no longer claimable after the fresh read
    ADVANCED = "advanced"    # at least one unit committed
    CONFLICT = "conflict"    # status changed underneath the commit
    FAILED = "failed"        # failure recorded, retry scheduled or given up


@dataclass
class _Claim:
    """A held lease and the stage work running under it."""

    document_id: str
    key: str
    token: str
    lost: bool = False
    work: Optional[asyncio.Task] = None


class PipelineHandle:
    """Running worker loops of a started controller."""

    def __init__(self, stop_event: asyncio.Event, tasks: list[asyncio.Task]):
        self._stop_event = stop_event
        self._tasks = tasks

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def stop(self) -> None:
        """Stop claiming and cancel in-flight work. Returns immediately."""
        self._stop_event.set()
        for task in self._tasks:
            task.cancel()

    async def join(self, timeout: float | None = None) -> bool:
        """Wait for every worker loop to exit.

        Returns:
            True if all loops exited within ``timeout``.
        """
        if not self._tasks:
            return True
        _, pending = await asyncio.wait(self._tasks, timeout=timeout)
        if pending:
            logger.warning("controller_join_timeout", pending_workers=len(pending))
        return not pending

    async def shutdown(self, timeout: float | None = 30.0) -> bool:
        self.stop()
        return await self.join(timeout)


class PipelineController:
    """Claims documents and drives them through the stage processors.

    Args:
        store: Document store shared by every instance.
        leases: Lease manager shared by every instance.
        processors: One processor per pre-stage status.
        config: Pool, polling, lease and retry settings.
        policy: Retry policy; built from ``config`` if not given.
        instance_id: Name of this instance in logs.
    """

    def __init__(
        self,
        store,
        leases: LeaseManager,
        processors: Iterable[StageProcessor],
        config: PipelineConfig | None = None,
        policy: RetryPolicy | None = None,
        instance_id: str | None = None,
    ):
        self.store = store
        self.leases = leases
        self.config = config or PipelineConfig()
        self.policy = policy or RetryPolicy.from_config(self.config)
        self.instance_id = instance_id or uuid.uuid4().hex[:8]

        self._processors: dict[DocumentStatus, StageProcessor] = {}
        for processor in processors:
            if processor.pre_status in self._processors:
                raise ValueError(f"Two processors for status {processor.pre_status.value}")
            self._processors[processor.pre_status] = processor

        self._stop_event = asyncio.Event()
        self._log = logger.bind(instance=self.instance_id)

    @property
    def eligible_statuses(self) -> list[DocumentStatus]:
        return list(self._processors)

    def processor_for(self, status: DocumentStatus) -> Optional[StageProcessor]:
        return self._processors.get(status)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> PipelineHandle:
        """Start the worker loops on the running event loop."""
        self._stop_event.clear()
        tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"scenegen-worker-{self.instance_id}-{i}")
            for i in range(self.config.workers)
        ]
        self._log.info(
            "controller_started",
            workers=self.config.workers,
            stages=[p.name for p in self._processors.values()],
        )
        return PipelineHandle(self._stop_event, tasks)

    async def _worker_loop(self, worker_id: int) -> None:
        log = self._log.bind(worker=worker_id)
        backoff = PollBackoff(self.config.poll_interval, self.config.poll_max_interval)

        while not self._stop_event.is_set():
            try:
                outcomes = await self.run_once()
            except PersistenceError as e:
                log.error("poll_failed", error=str(e))
                outcomes = []
            except Exception as e:
                log.error("worker_iteration_failed", error=str(e), exc_info=True)
                outcomes = []

            if any(o not in (Outcome.BUSY, Outcome.SKIPPED) for o in outcomes):
                backoff.reset()
                continue

            delay = backoff.next_delay()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        log.info("worker_stopped")

    # =========================================================================
    # Polling
    # =========================================================================

    async def poll(self) -> list[Document]:
        """Claimable candidates across every eligible status, oldest first."""
        limit = self.config.batch_size
        candidates: list[Document] = []
        for status in self.eligible_statuses:
            candidates.extend(await self.store.list_by_status(status, limit))
        candidates.sort(key=lambda d: (d.updated_at, d.created_at))
        return candidates[:limit]

    async def run_once(self) -> list[Outcome]:
        """Poll once and process the batch. Used by the worker loops and tests."""
        outcomes = []
        for document in await self.poll():
            if self._stop_event.is_set():
                break
            outcomes.append(await self.process_document(document))
        return outcomes

    # =========================================================================
    # One claim
    # =========================================================================

    async def process_document(self, document: Document) -> Outcome:
        if self.processor_for(document.status) is None:
            return Outcome.SKIPPED

        key = lease_key(document.id)
        token = await self.leases.acquire(key, self.config.lease_ttl)
        if token is None:
            self._log.debug("document_busy", document_id=document.id)
            return Outcome.BUSY

        claim = _Claim(document_id=document.id, key=key, token=token)
        renewer = asyncio.create_task(self._renew_loop(claim))
        try:
            return await self._drive(claim)
        finally:
            renewer.cancel()
            await asyncio.wait([renewer])
            await self.leases.release(key, token)

    async def _renew_loop(self, claim: _Claim) -> None:
        while True:
            await asyncio.sleep(self.config.renew_interval)
            try:
                await self.leases.renew(claim.key, claim.token, self.config.lease_ttl)
                continue
            except LeaseLost:
                self._log.warning("lease_lost", document_id=claim.document_id)
            except Exception as e:
                # Ownership can no longer be proven once renewal breaks
                self._log.error(
                    "lease_renewal_failed", document_id=claim.document_id, error=str(e), exc_info=e
                )
            claim.lost = True
            if claim.work is not None:
                claim.work.cancel()
            return

    async def _drive(self, claim: _Claim) -> Outcome:
        """Run and commit units while the claimed document stays claimable."""
        try:
            document = await self.store.get_document(claim.document_id)
        except DocumentNotFound:
            return Outcome.SKIPPED

        # The candidate list may be stale by the time the lease is ours
        if document.next_attempt_at is not None and document.next_attempt_at > self.store.now():
            return Outcome.SKIPPED

        committed = 0
        max_units = self.config.max_units_per_claim
        while not self._stop_event.is_set():
            processor = self.processor_for(document.status)
            if processor is None or not processor.applicable(document):
                break
            if max_units and committed >= max_units:
                break

            try:
                result = await self._execute_unit(claim, processor, document)
                # Fencing: never commit under a lease that is no longer ours
                await self.leases.renew(claim.key, claim.token, self.config.lease_ttl)
                document = await self.store.commit_stage(
                    document.id, processor.pre_status, result.output, result.next_status
                )
            except CommitConflict as e:
                await self._on_conflict(document, processor, e)
                return Outcome.CONFLICT
            except DocumentNotFound:
                self._log.warning("document_vanished", document_id=document.id)
                return Outcome.SKIPPED
            except Exception as e:
                await self._record_failure(document, processor, e)
                return Outcome.FAILED

            committed += 1
            if document.failure_count or document.next_attempt_at is not None:
                await self.store.reset_failure(document.id)
                document = document.model_copy(
                    update={"failure_count": 0, "next_attempt_at": None, "last_error": None}
                )

            self._log.info(
                "stage_unit_committed",
                document_id=document.id,
                stage=processor.name,
                status=document.status.value,
                advanced=document.status != processor.pre_status,
            )

        return Outcome.ADVANCED if committed else Outcome.SKIPPED

    async def _execute_unit(
        self, claim: _Claim, processor: StageProcessor, document: Document
    ) -> StageResult:
        """Run ``processor`` in its own task so lease loss can cancel it alone."""
        if claim.lost:
            raise LeaseLost(claim.key)

        claim.work = asyncio.create_task(
            asyncio.wait_for(processor.execute(document), timeout=self.config.stage_timeout)
        )
        try:
            return await claim.work
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if claim.lost and not (current is not None and current.cancelling()):
                raise LeaseLost(claim.key) from None
            # Shutdown: the stage work exits without committing
            claim.work.cancel()
            await asyncio.wait([claim.work])
            raise
        finally:
            claim.work = None

    # =========================================================================
    # Failure paths
    # =========================================================================

    async def _on_conflict(
        self, document: Document, processor: StageProcessor, error: CommitConflict
    ) -> None:
        try:
            current = await self.store.get_document(document.id)
            actual = current.status.value
        except (DocumentNotFound, PersistenceError):
            actual = error.actual
        self._log.warning(
            "commit_conflict",
            document_id=document.id,
            stage=processor.name,
            expected=processor.pre_status.value,
            actual=actual,
        )

    async def _record_failure(
        self, document: Document, processor: StageProcessor, error: Exception
    ) -> None:
        if isinstance(error, asyncio.TimeoutError):
            message = f"Stage timed out after {self.config.stage_timeout}s"
        else:
            message = f"{type(error).__name__}: {error}"

        if not isinstance(error, _EXPECTED_FAILURES):
            self._log.error(
                "stage_unexpected_error",
                document_id=document.id,
                stage=processor.name,
                error=message,
                exc_info=error,
            )

        try:
            count = await self.store.increment_failure(document.id, message)
            decision = self.policy.on_failure(count)
            if decision.give_up:
                await self.store.mark_failed(document.id)
                self._log.error(
                    "document_failed",
                    document_id=document.id,
                    name=document.name,
                    stage=processor.name,
                    status=document.status.value,
                    failure_count=count,
                    error=message,
                )
            else:
                await self.store.schedule_retry(document.id, decision.delay)
                self._log.warning(
                    "stage_attempt_failed",
                    document_id=document.id,
                    stage=processor.name,
                    attempt=count,
                    retry_in=decision.delay,
                    error=message,
                )
        except (PersistenceError, DocumentNotFound, IllegalTransition) as e:
            self._log.error(
                "failure_record_failed",
                document_id=document.id,
                stage=processor.name,
                error=str(e),
            )
