"""Unit tests for the pipeline controller."""

import asyncio
from collections import defaultdict

import pytest

from scenegen.models import DocumentStatus, status_rank
from scenegen.pipeline.controller import Outcome
from scenegen.pipeline.lease import MemoryLeaseManager, lease_key

from tests.helpers import ScriptedGenerationClient, fast_config


async def drain(controller, store, document_id, status, max_rounds=30):
    """Call run_once until the document reaches ``status``."""
    for _ in range(max_rounds):
        document = await store.get_document(document_id)
        if document.status == status:
            return document
        await controller.run_once()
    return await store.get_document(document_id)


async def wait_for_status(store, document_id, statuses, timeout=5.0):
    async def poll():
        while True:
            document = await store.get_document(document_id)
            if document.status in statuses:
                return document
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(poll(), timeout)


class TestEndToEnd:
    def test_one_chapter_two_scenes_with_transient_image_failures(self, store, client, make_controller):
        client.fail("generate_image", times=2, match="Scene two")
        controller = make_controller()

        async def main():
            document = await store.create_document("Story", [("Chapter 1", "Scene one.\nScene two.")])
            document = await drain(controller, store, document.id, DocumentStatus.IMG_READY)
            return document, await store.list_scenes(document.id), await store.list_chapters(document.id)

        document, scenes, chapters = asyncio.run(main())

        assert document.status == DocumentStatus.IMG_READY
        assert document.failure_count == 0
        assert document.last_error is None
        assert [s.content for s in scenes] == ["Scene one.", "Scene two."]
        assert all(s.has_media for s in scenes)
        assert chapters[0].scene_ids == [s.id for s in scenes]
        assert len(client.calls_to("generate_image")) == 4
        # Scene one is never regenerated after its commit
        assert client.calls_to("generate_voice") == ["Scene one.", "Scene two."]

    def test_started_controller_completes_documents(self, store, client, make_controller, story_text):
        controller = make_controller()

        async def main():
            document = await store.create_document("Story", [("Chapter 1", story_text)])
            handle = controller.start()
            try:
                return await wait_for_status(store, document.id, {DocumentStatus.IMG_READY})
            finally:
                assert await handle.shutdown(timeout=5)

        document = asyncio.run(main())
        assert document.status == DocumentStatus.IMG_READY


class TestRetryExhaustion:
    def test_failed_at_exactly_max_attempts(self, store, client, make_controller):
        client.fail("extract_roles", times=100)
        controller = make_controller(fast_config(max_attempts=3))

        async def main():
            document = await store.create_document("Story", [("Chapter 1", "text")])
            outcomes = []
            for _ in range(10):
                outcomes.extend(await controller.run_once())
            return await store.get_document(document.id), outcomes

        document, outcomes = asyncio.run(main())

        assert document.status == DocumentStatus.FAILED
        assert document.failure_count == 3
        assert "service unavailable" in document.last_error
        assert outcomes == [Outcome.FAILED] * 3
        # Failed documents are never polled again
        assert len(client.calls_to("extract_roles")) == 3

    def test_retry_waits_for_backoff_delay(self, store, client, clock, make_controller):
        client.fail("extract_roles", times=1)
        controller = make_controller(fast_config(retry_base_delay=10.0, retry_max_delay=60.0))

        async def main():
            await store.create_document("Story", [("Chapter 1", "text")])
            first = await controller.run_once()
            too_early = await controller.run_once()
            clock.advance(11)
            later = await controller.run_once()
            return first, too_early, later

        first, too_early, later = asyncio.run(main())
        assert first == [Outcome.FAILED]
        assert too_early == []
        assert later == [Outcome.ADVANCED]

    def test_permanent_errors_count_toward_threshold(self, store, client, make_controller):
        from scenegen.errors import PermanentGenerationError

        client.fail("extract_roles", times=100, error=lambda: PermanentGenerationError("rejected"))
        controller = make_controller(fast_config(max_attempts=2))

        async def main():
            document = await store.create_document("Story", [("Chapter 1", "text")])
            for _ in range(5):
                await controller.run_once()
            return await store.get_document(document.id)

        document = asyncio.run(main())
        assert document.status == DocumentStatus.FAILED
        assert document.failure_count == 2

    def test_unexpected_error_is_counted(self, store, client, make_controller):
        client.fail("extract_roles", error=lambda: RuntimeError("bug"))
        controller = make_controller()

        async def main():
            document = await store.create_document("Story", [("Chapter 1", "text")])
            outcomes = await controller.run_once()
            return outcomes, await store.get_document(document.id)

        outcomes, document = asyncio.run(main())
        assert outcomes == [Outcome.FAILED]
        assert document.failure_count == 1
        assert document.last_error.startswith("RuntimeError")

    def test_stage_timeout_is_counted(self, store, client, make_controller):
        controller = make_controller(fast_config(stage_timeout=0.1))

        async def main():
            client.gate = asyncio.Event()
            document = await store.create_document("Story", [("Chapter 1", "text")])
            outcomes = await controller.run_once()
            return outcomes, await store.get_document(document.id)

        outcomes, document = asyncio.run(main())
        assert outcomes == [Outcome.FAILED]
        assert document.status == DocumentStatus.CHAPTER_READY
        assert "timed out" in document.last_error


class TestScheduling:
    def test_least_recently_updated_first(self, store, client, make_controller):
        controller = make_controller(fast_config(batch_size=1, max_units_per_claim=1))

        async def main():
            for name in ("A", "B", "C"):
                await store.create_document(name, [("Chapter 1", f"Story {name}")])
            for _ in range(4):
                await controller.run_once()

        asyncio.run(main())

        assert client.calls_to("extract_roles") == ["Story A", "Story B", "Story C"]
        # A comes round again only after B and C had their turn
        assert client.calls_to("extract_scenes") == ["Story A"]

    def test_busy_document_skipped(self, store, client, leases, make_controller):
        controller = make_controller()

        async def main():
            document = await store.create_document("Story", [("Chapter 1", "text")])
            await leases.acquire(lease_key(document.id), 60)
            return await controller.run_once()

        assert asyncio.run(main()) == [Outcome.BUSY]
        assert client.calls == []

    def test_status_walk_is_monotone(self, store, client, make_controller, story_text):
        controller = make_controller(fast_config(max_units_per_claim=1))

        async def main():
            document = await store.create_document("Story", [("Chapter 1", story_text)])
            seen = [document.status]
            for _ in range(20):
                await controller.run_once()
                status = (await store.get_document(document.id)).status
                if status != seen[-1]:
                    seen.append(status)
            return seen

        seen = asyncio.run(main())

        assert seen == [
            DocumentStatus.CHAPTER_READY,
            DocumentStatus.ROLE_READY,
            DocumentStatus.SCENE_READY,
            DocumentStatus.IMG_READY,
        ]
        assert [status_rank(s) for s in seen] == sorted(status_rank(s) for s in seen)


class TestCancellation:
    def test_lease_loss_cancels_stage_without_commit(self, store, client, leases, make_controller):
        controller = make_controller()

        async def main():
            client.gate = asyncio.Event()
            client.started = asyncio.Event()
            document = await store.create_document("Story", [("Chapter 1", "text")])
            key = lease_key(document.id)

            task = asyncio.create_task(controller.process_document(document))
            await client.started.wait()

            # Another owner takes the lease over
            await leases.release(key, leases.holder(key))
            thief = await leases.acquire(key, 60)

            outcome = await asyncio.wait_for(task, 2)
            return outcome, thief, await store.get_document(document.id), await store.list_roles(document.id)

        outcome, thief, document, roles = asyncio.run(main())

        assert outcome == Outcome.FAILED
        assert document.status == DocumentStatus.CHAPTER_READY
        assert document.failure_count == 1
        assert "LeaseLost" in document.last_error
        assert roles == []
        # The stale owner's release left the new lease alone
        assert leases.holder(lease_key(document.id)) == thief

    def test_renewal_error_abandons_claim(self, store, client, make_controller):
        leases = _BrokenRenewLeases()
        controller = make_controller(leases=leases)

        async def main():
            client.gate = asyncio.Event()
            document = await store.create_document("Story", [("Chapter 1", "text")])
            outcome = await asyncio.wait_for(controller.process_document(document), 2)
            return outcome, await store.get_document(document.id), await store.list_roles(document.id)

        outcome, document, roles = asyncio.run(main())

        assert outcome == Outcome.FAILED
        assert document.status == DocumentStatus.CHAPTER_READY
        assert document.failure_count == 1
        assert "LeaseLost" in document.last_error
        assert roles == []
        # The lease was still released on the way out
        assert leases.holder(lease_key(document.id)) is None

    def test_shutdown_cancels_without_commit_or_failure(self, store, client, leases, make_controller):
        controller = make_controller(fast_config(workers=1))

        async def main():
            client.gate = asyncio.Event()
            client.started = asyncio.Event()
            document = await store.create_document("Story", [("Chapter 1", "text")])

            handle = controller.start()
            await asyncio.wait_for(client.started.wait(), 2)
            handle.stop()
            joined = await handle.join(timeout=2)
            return joined, handle.running, await store.get_document(document.id)

        joined, running, document = asyncio.run(main())

        assert joined
        assert not running
        assert document.status == DocumentStatus.CHAPTER_READY
        assert document.failure_count == 0
        assert leases.holder(lease_key(document.id)) is None

    def test_commit_conflict_discards_without_failure(self, store, client, make_controller):
        controller = make_controller()

        async def main():
            client.gate = asyncio.Event()
            client.started = asyncio.Event()
            document = await store.create_document("Story", [("Chapter 1", "text")])

            task = asyncio.create_task(controller.process_document(document))
            await client.started.wait()
            # The status changes underneath the running stage
            await store.mark_failed(document.id)
            client.gate.set()

            outcome = await asyncio.wait_for(task, 2)
            return outcome, await store.get_document(document.id), await store.list_roles(document.id)

        outcome, document, roles = asyncio.run(main())

        assert outcome == Outcome.CONFLICT
        assert document.status == DocumentStatus.FAILED
        assert document.failure_count == 0
        assert roles == []


class _BrokenRenewLeases(MemoryLeaseManager):
    """Acquires normally, but every renewal fails with a backend error."""

    async def renew(self, key, token, ttl):
        raise RuntimeError("lease backend down")


class _TrackingClient(ScriptedGenerationClient):
    """Records the peak number of concurrent calls per input text."""

    def __init__(self):
        super().__init__()
        self.active = defaultdict(int)
        self.peak = defaultdict(int)

    async def _call(self, operation, text):
        self.active[text] += 1
        self.peak[text] = max(self.peak[text], self.active[text])
        try:
            await asyncio.sleep(0.01)
            await super()._call(operation, text)
        finally:
            self.active[text] -= 1


class TestMultipleInstances:
    def test_two_controllers_never_share_a_document(self, store, leases):
        from scenegen.pipeline.controller import PipelineController
        from scenegen.pipeline.stages import MediaGeneration, RoleExtraction, SceneExtraction

        client = _TrackingClient()

        def build(instance_id):
            processors = [
                RoleExtraction(store, client),
                SceneExtraction(store, client),
                MediaGeneration(store, client),
            ]
            return PipelineController(
                store, leases, processors, config=fast_config(workers=3), instance_id=instance_id
            )

        async def main():
            ids = []
            for i in range(3):
                document = await store.create_document(
                    f"Story {i}", [("Chapter 1", f"Doc {i} scene one.\nDoc {i} scene two.")]
                )
                ids.append(document.id)

            handles = [build("one").start(), build("two").start()]
            try:
                for document_id in ids:
                    await wait_for_status(store, document_id, {DocumentStatus.IMG_READY}, timeout=10)
            finally:
                for handle in handles:
                    await handle.shutdown(timeout=5)
            return [await store.get_document(i) for i in ids]

        documents = asyncio.run(main())

        assert all(d.status == DocumentStatus.IMG_READY for d in documents)
        assert client.peak
        assert max(client.peak.values()) == 1


class TestControllerSetup:
    def test_duplicate_processor_rejected(self, store, client, leases):
        from scenegen.pipeline.controller import PipelineController
        from scenegen.pipeline.stages import RoleExtraction

        with pytest.raises(ValueError):
            PipelineController(store, leases, [RoleExtraction(store, client), RoleExtraction(store, client)])

    def test_polls_only_statuses_with_a_processor(self, store, client, leases):
        from scenegen.pipeline.controller import PipelineController
        from scenegen.pipeline.stages import SceneExtraction

        controller = PipelineController(store, leases, [SceneExtraction(store, client)], config=fast_config())

        async def main():
            await store.create_document("Story", [("Chapter 1", "text")])
            return await controller.poll()

        assert controller.eligible_statuses == [DocumentStatus.ROLE_READY]
        assert asyncio.run(main()) == []
