"""Tests for RedisJobQueue against a live Redis server.

Skipped unless REDIS_URL points at a disposable Redis instance.
"""

import asyncio
import os
import uuid

import pytest
import pytest_asyncio

from evidence_verifier.errors import QueueError
from evidence_verifier.orchestration.job_queue import RetryPolicy, VerificationJob
from evidence_verifier.orchestration.redis_queue import RedisJobQueue

REDIS_URL = os.environ.get("REDIS_URL")

pytestmark = pytest.mark.skipif(not REDIS_URL, reason="REDIS_URL not set")


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def queue():
    queue = RedisJobQueue(
        url=REDIS_URL,
        name=f"test-verify-{uuid.uuid4().hex[:8]}",
        retry_policy=RetryPolicy(max_attempts=2, strategy="fixed", base_delay=0.0),
        history_limit=5,
        lease_seconds=0.2,
    )
    await queue.connect()
    yield queue
    await queue.clear()
    await queue.close()


async def _ok(job: VerificationJob) -> dict:
    return {"handled": job.evidence_id}


async def _boom(job: VerificationJob) -> None:
    raise RuntimeError("boom")


# ── Tests ────────────────────────────────────────────────────────────────


class TestRedisJobQueue:
    @pytest.mark.asyncio
    async def test_enqueue_and_complete(self, queue: RedisJobQueue) -> None:
        job = await queue.enqueue({"evidenceId": 42})
        assert (await queue.stats())["waiting"] == 1

        outcome = await queue.process_next(_ok, timeout=0)

        assert outcome.status == "completed"
        assert outcome.job.job_id == job.job_id
        assert outcome.job.attempt == 1
        completed = await queue.history("completed")
        assert [j.job_id for j in completed] == [job.job_id]
        assert completed[0].result == {"handled": 42}
        stats = await queue.stats()
        assert stats["waiting"] == 0
        assert stats["active"] == 0

    @pytest.mark.asyncio
    async def test_fifo_order(self, queue: RedisJobQueue) -> None:
        for evidence_id in (1, 2, 3):
            await queue.enqueue({"evidenceId": evidence_id})
        seen = []

        async def record(job: VerificationJob) -> None:
            seen.append(job.evidence_id)

        await queue.drain(record)
        assert seen == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_retry_then_dead_letter(self, queue: RedisJobQueue) -> None:
        await queue.enqueue({"evidenceId": 1})

        outcomes = await queue.drain(_boom)

        assert [o.status for o in outcomes] == ["retrying", "failed"]
        failed = await queue.history("failed")
        assert len(failed) == 1
        assert failed[0].attempt == 2
        assert "RuntimeError: boom" in failed[0].last_error

    @pytest.mark.asyncio
    async def test_history_is_trimmed(self, queue: RedisJobQueue) -> None:
        for i in range(8):
            await queue.enqueue({"evidenceId": i})
        await queue.drain(_ok)
        completed = await queue.history("completed")
        assert len(completed) == 5
        assert completed[0].evidence_id == 7

    @pytest.mark.asyncio
    async def test_expired_lease_is_redelivered(self, queue: RedisJobQueue) -> None:
        job = await queue.enqueue({"evidenceId": 1})
        # Simulate a worker that took the job and crashed
        reserved = await queue._reserve(timeout=0)
        assert reserved.job_id == job.job_id

        await asyncio.sleep(0.3)
        recovered = await queue.recover_stalled()
        assert recovered == [job.job_id]

        outcome = await queue.process_next(_ok, timeout=0)
        assert outcome.status == "completed"
        assert outcome.job.attempt == 2

    @pytest.mark.asyncio
    async def test_unleased_active_job_is_redelivered(self, queue: RedisJobQueue) -> None:
        job = await queue.enqueue({"evidenceId": 1})
        # Worker took the job and died before writing its lease
        client = queue._client
        await client.lmove(queue._key("wait"), queue._key("active"), "RIGHT", "LEFT")
        assert await client.zscore(queue._key("leases"), job.job_id) is None

        # First pass only leases the orphan
        assert await queue.recover_stalled() == []
        assert await client.zscore(queue._key("leases"), job.job_id) is not None

        await asyncio.sleep(0.3)
        await queue.maintenance()

        outcome = await queue.process_next(_ok, timeout=0)
        assert outcome is not None
        assert outcome.status == "completed"
        assert outcome.job.job_id == job.job_id
        assert (await queue.stats())["active"] == 0

    @pytest.mark.asyncio
    async def test_leased_active_job_is_left_alone(self, queue: RedisJobQueue) -> None:
        await queue.enqueue({"evidenceId": 1})
        reserved = await queue._reserve(timeout=0)

        assert await queue.recover_stalled() == []
        stats = await queue.stats()
        assert stats["active"] == 1
        assert stats["waiting"] == 0
        await queue._complete(reserved)

    @pytest.mark.asyncio
    async def test_empty_poll(self, queue: RedisJobQueue) -> None:
        assert await queue.process_next(_ok, timeout=0) is None
        assert await queue.ping() is True


@pytest.mark.asyncio
async def test_operations_require_connection() -> None:
    queue = RedisJobQueue(url=REDIS_URL)
    with pytest.raises(QueueError):
        await queue.enqueue({"evidenceId": 1})
    assert await queue.ping() is False
