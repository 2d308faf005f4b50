"""End-to-end tests: producer -> queue -> worker -> store -> metrics.

All components run in-process on the memory backends with no simulated delay
unless a test needs one.
"""

import asyncio

import pytest

from evidence_verifier.agents.verification.verification_worker import (
    REJECTED_REASON,
    VERIFIED_REASON,
    VerificationWorker,
)
from evidence_verifier.config.settings import Settings
from evidence_verifier.data_management.evidence_store import InMemoryEvidenceStore
from evidence_verifier.data_management.schemas import EvidenceStatus
from evidence_verifier.errors import EvidenceStoreError
from evidence_verifier.observability.metrics import MetricsSink
from evidence_verifier.orchestration.job_queue import InMemoryJobQueue, RetryPolicy
from evidence_verifier.pipeline.verification_producer import VerificationProducer
from evidence_verifier.pipeline.worker_runtime import WorkerRuntime


# ── Helpers ──────────────────────────────────────────────────────────────


class RecordingStore(InMemoryEvidenceStore):
    """Store that records every update as (task name, status)."""

    def __init__(self):
        super().__init__()
        self.writes: list[tuple[str, str]] = []

    async def update(self, evidence_id, **fields):
        updated = await super().update(evidence_id, **fields)
        task = asyncio.current_task()
        self.writes.append((task.get_name() if task else "-", str(fields.get("status"))))
        return updated


class FailingTerminalStore(InMemoryEvidenceStore):
    """Store whose first `failures` terminal writes raise."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures

    async def update(self, evidence_id, **fields):
        if fields.get("status") in (EvidenceStatus.VERIFIED, EvidenceStatus.REJECTED) and self.failures:
            self.failures -= 1
            raise EvidenceStoreError("write failed")
        return await super().update(evidence_id, **fields)


def _queue(max_attempts: int = 3) -> InMemoryJobQueue:
    return InMemoryJobQueue(
        retry_policy=RetryPolicy(max_attempts=max_attempts, strategy="fixed", base_delay=0.0)
    )


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def store() -> InMemoryEvidenceStore:
    return InMemoryEvidenceStore()


@pytest.fixture
def queue() -> InMemoryJobQueue:
    return _queue()


@pytest.fixture
def metrics() -> MetricsSink:
    return MetricsSink(include_default_metrics=False)


@pytest.fixture
def producer(store: InMemoryEvidenceStore, queue: InMemoryJobQueue) -> VerificationProducer:
    return VerificationProducer(store=store, queue=queue)


@pytest.fixture
def worker(store: InMemoryEvidenceStore, metrics: MetricsSink) -> VerificationWorker:
    return VerificationWorker(store=store, metrics=metrics)


# ── Scenarios ────────────────────────────────────────────────────────────


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_journal_evidence_verified(
        self, producer, queue, worker, store, metrics
    ) -> None:
        evidence, _ = await producer.submit_text_evidence(1, "Journal of X", "A" * 300)
        outcomes = await queue.drain(worker.handle_job)

        assert [o.status for o in outcomes] == ["completed"]
        stored = await store.get_by_id(evidence.id)
        assert (stored.status, stored.score, stored.reason) == (
            EvidenceStatus.VERIFIED, 6, VERIFIED_REASON
        )
        assert metrics.outcome_count("verified") == 1

    @pytest.mark.asyncio
    async def test_wikipedia_evidence_rejected_without_retry(
        self, producer, queue, worker, store, metrics
    ) -> None:
        evidence, _ = await producer.submit_text_evidence(1, "wikipedia", "short")
        outcomes = await queue.drain(worker.handle_job)

        assert [o.status for o in outcomes] == ["completed"]
        stored = await store.get_by_id(evidence.id)
        assert (stored.status, stored.score, stored.reason) == (
            EvidenceStatus.REJECTED, -4, REJECTED_REASON
        )
        assert metrics.outcome_count("rejected") == 1
        assert await queue.history("failed") == []

    @pytest.mark.asyncio
    async def test_missing_evidence_completes_silently(
        self, producer, queue, worker, metrics
    ) -> None:
        await producer.request_verification(12345)
        outcomes = await queue.drain(worker.handle_job)

        assert outcomes[0].status == "completed"
        assert outcomes[0].result["status"] == "skipped"
        assert metrics.outcome_count("verified") == 0
        assert metrics.outcome_count("rejected") == 0

    @pytest.mark.asyncio
    async def test_reverification_of_terminal_evidence(
        self, producer, queue, worker, store, metrics
    ) -> None:
        evidence, _ = await producer.submit_text_evidence(1, "Book", "x" * 100)
        await queue.drain(worker.handle_job)
        await producer.request_reverification(evidence.id)
        await queue.drain(worker.handle_job)

        stored = await store.get_by_id(evidence.id)
        assert stored.status == EvidenceStatus.VERIFIED
        assert stored.score == 3
        assert metrics.outcome_count("verified") == 2

    @pytest.mark.asyncio
    async def test_concurrent_jobs_for_same_evidence_last_write_wins(self, metrics) -> None:
        store = RecordingStore()
        queue = _queue()
        producer = VerificationProducer(store=store, queue=queue)
        evidence, _ = await producer.submit_text_evidence(1, "Journal", "A" * 300)
        await producer.request_reverification(evidence.id)

        # job-A takes longer than job-B, so the first-delivered job writes last
        gates = {"job-A": 0.05, "job-B": 0.0}

        async def gated_sleep(seconds: float) -> None:
            await asyncio.sleep(gates[asyncio.current_task().get_name()])

        worker = VerificationWorker(
            store=store, metrics=metrics, simulated_delay=1.0, sleep=gated_sleep
        )
        first = asyncio.create_task(queue.process_next(worker.handle_job, timeout=0), name="job-A")
        second = asyncio.create_task(queue.process_next(worker.handle_job, timeout=0), name="job-B")
        outcomes = await asyncio.gather(first, second)

        assert [o.status for o in outcomes] == ["completed", "completed"]
        assert store.writes[-1][0] == "job-A"
        terminal = [w for w in store.writes if w[1] != str(EvidenceStatus.RUNNING)]
        assert [w[0] for w in terminal] == ["job-B", "job-A"]
        assert (await store.get_by_id(evidence.id)).status == EvidenceStatus.VERIFIED
        # Both jobs count, no deduplication
        assert metrics.outcome_count("verified") == 2


class TestFailureHandling:
    @pytest.mark.asyncio
    async def test_fail_once_then_succeed_counts_once(self, metrics) -> None:
        store = FailingTerminalStore(failures=1)
        queue = _queue()
        producer = VerificationProducer(store=store, queue=queue)
        worker = VerificationWorker(store=store, metrics=metrics)
        evidence, _ = await producer.submit_text_evidence(1, "Journal", "A" * 300)

        outcomes = await queue.drain(worker.handle_job)

        assert [o.status for o in outcomes] == ["retrying", "completed"]
        assert (await store.get_by_id(evidence.id)).status == EvidenceStatus.VERIFIED
        assert metrics.outcome_count("verified") == 1

    @pytest.mark.asyncio
    async def test_permanent_failure_leaves_running(self, metrics) -> None:
        store = FailingTerminalStore(failures=100)
        queue = _queue(max_attempts=3)
        producer = VerificationProducer(store=store, queue=queue)
        worker = VerificationWorker(store=store, metrics=metrics)
        evidence, _ = await producer.submit_text_evidence(1, "Journal", "A" * 300)

        outcomes = await queue.drain(worker.handle_job)

        assert [o.status for o in outcomes] == ["retrying", "retrying", "failed"]
        assert (await store.get_by_id(evidence.id)).status == EvidenceStatus.RUNNING
        failed = await queue.history("failed")
        assert len(failed) == 1
        assert "EvidenceStoreError" in failed[0].last_error
        assert metrics.outcome_count("verified") == 0

    @pytest.mark.asyncio
    async def test_malformed_job_does_not_stop_consumer(
        self, producer, queue, worker, store, metrics
    ) -> None:
        await queue.enqueue({"evidenceId": "not-a-number"})
        evidence, _ = await producer.submit_text_evidence(1, "Journal", "A" * 300)

        stop = asyncio.Event()
        consumer = asyncio.create_task(worker.run(queue, stop))

        for _ in range(100):
            if metrics.outcome_count("verified") == 1 and await queue.history("failed"):
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(consumer, timeout=2.0)

        failed = await queue.history("failed")
        assert len(failed) == 1
        assert failed[0].attempt == 3
        assert "MalformedJobError" in failed[0].last_error
        assert (await store.get_by_id(evidence.id)).status == EvidenceStatus.VERIFIED


class TestWorkerRuntime:
    @pytest.mark.asyncio
    async def test_runtime_processes_and_stops(self) -> None:
        settings = Settings(
            queue_backend="memory",
            store_backend="memory",
            simulated_delay_seconds=0.0,
            backoff_base_seconds=0.0,
        )
        metrics = MetricsSink(include_default_metrics=False)
        runtime = WorkerRuntime(settings, metrics=metrics, serve_metrics=False)
        evidence = await runtime.store.create(claim_id=1, source="Journal", excerpt="A" * 300)
        await runtime.queue.enqueue({"evidenceId": evidence.id})

        task = asyncio.create_task(runtime.run())
        for _ in range(100):
            if metrics.outcome_count("verified") == 1:
                break
            await asyncio.sleep(0.01)
        runtime.request_stop()
        await asyncio.wait_for(task, timeout=3.0)

        assert (await runtime.store.get_by_id(evidence.id)).status == EvidenceStatus.VERIFIED
        assert (await runtime.queue.history("completed"))[0].evidence_id == evidence.id
