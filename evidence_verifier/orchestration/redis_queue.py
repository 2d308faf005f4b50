"""Redis-backed verification job queue.

Reliable-queue layout, all keys prefixed with the queue name:
- {name}:jobs       hash    job_id -> serialized VerificationJob
- {name}:wait       list    ids ready for delivery (LPUSH in, BLMOVE out)
- {name}:active     list    ids currently held by a worker
- {name}:leases     zset    job_id -> lease deadline (epoch seconds)
- {name}:delayed    zset    job_id -> redelivery time (epoch seconds)
- {name}:completed  list    serialized finished jobs, trimmed to history_limit
- {name}:failed     list    serialized dead-lettered jobs, trimmed to history_limit
- {name}:id         counter job id sequence

A worker that crashes leaves its job in active with an expiring lease;
recover_stalled() moves expired jobs back to wait so another worker gets it.
Taking a job (BLMOVE) and leasing it are separate round trips, so
recover_stalled() also leases active ids that have none.
Jobs that keep stalling are dead-lettered once they exceed max_attempts.
"""

import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from evidence_verifier.errors import QueueError
from evidence_verifier.orchestration.job_queue import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_QUEUE_NAME,
    JobQueue,
    RetryPolicy,
    VerificationJob,
)

# Move every member of a zset whose score is due onto the wait list.
_PROMOTE_DELAYED = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, id in ipairs(ids) do
    redis.call('ZREM', KEYS[1], id)
    redis.call('LPUSH', KEYS[2], id)
end
return #ids
"""

# Give active ids without a lease (taken by a worker that died before leasing)
# a lease of their own, then release expired leases back onto wait.
_RECOVER_STALLED = """
for _, id in ipairs(redis.call('LRANGE', KEYS[2], 0, -1)) do
    if not redis.call('ZSCORE', KEYS[1], id) then
        redis.call('ZADD', KEYS[1], ARGV[2], id)
    end
end
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, id in ipairs(ids) do
    redis.call('ZREM', KEYS[1], id)
    redis.call('LREM', KEYS[2], 1, id)
    redis.call('LPUSH', KEYS[3], id)
end
return ids
"""


class RedisJobQueue(JobQueue):
    """
    Durable queue shared by any number of worker processes.

    Attributes:
        url: Redis connection URL
        lease_seconds: How long a delivered job may stay unacknowledged
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        name: str = DEFAULT_QUEUE_NAME,
        retry_policy: Optional[RetryPolicy] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        job_timeout: Optional[float] = None,
        lease_seconds: float = 30.0,
        client: Optional[redis.Redis] = None,
    ):
        super().__init__(name, retry_policy, history_limit, job_timeout)
        self.url = url
        self.lease_seconds = lease_seconds
        self._client = client
        self._owns_client = client is None
        self._promote_script = None
        self._recover_script = None

    def _key(self, suffix: str) -> str:
        return f"{self.name}:{suffix}"

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(RedisConnectionError),
        reraise=True,
    )
    async def _connect_with_retry(self) -> None:
        await self._client.ping()

    async def connect(self) -> None:
        """Create the client and wait for Redis to answer."""
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        try:
            await self._connect_with_retry()
        except RedisError as e:
            raise QueueError(f"Cannot connect to Redis at {self.url}: {e}") from e
        self._promote_script = self._client.register_script(_PROMOTE_DELAYED)
        self._recover_script = self._client.register_script(_RECOVER_STALLED)
        self.logger.info("Redis queue connected", queue=self.name)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self.logger.info("Redis queue closed", queue=self.name)

    def _require_client(self) -> redis.Redis:
        if self._client is None or self._promote_script is None:
            raise QueueError("Redis queue is not connected")
        return self._client

    async def ping(self) -> bool:
        try:
            return bool(await self._require_client().ping())
        except (QueueError, RedisError):
            return False

    async def enqueue(self, payload: Dict[str, Any]) -> VerificationJob:
        if not isinstance(payload, dict):
            raise QueueError(f"Job payload must be a mapping, got {type(payload).__name__}")
        client = self._require_client()
        try:
            job_id = str(await client.incr(self._key("id")))
            job = VerificationJob(job_id=job_id, payload=dict(payload))
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(self._key("jobs"), job_id, json.dumps(job.to_dict(), default=str))
                pipe.lpush(self._key("wait"), job_id)
                await pipe.execute()
        except RedisError as e:
            raise QueueError(f"Enqueue not acknowledged: {e}") from e

        self.logger.info(f"Job enqueued: {job.job_id}", evidence_id=job.evidence_id)
        return job

    async def maintenance(self) -> None:
        await self.promote_delayed()
        await self.recover_stalled()

    async def promote_delayed(self) -> int:
        """Move delayed jobs whose backoff has elapsed back to wait."""
        self._require_client()
        try:
            return await self._promote_script(
                keys=[self._key("delayed"), self._key("wait")],
                args=[time.time()],
            )
        except RedisError as e:
            raise QueueError(f"Failed to promote delayed jobs: {e}") from e

    async def recover_stalled(self) -> List[str]:
        """Redeliver jobs whose lease expired (worker crashed or hung).

        An id found in active without a lease belongs to a worker that died
        between taking the job and leasing it. It is leased here and returned
        to wait once that lease expires, so a live worker that is just slow to
        write its own lease keeps the job.
        """
        self._require_client()
        now = time.time()
        try:
            ids = await self._recover_script(
                keys=[self._key("leases"), self._key("active"), self._key("wait")],
                args=[now, now + self.lease_seconds],
            )
        except RedisError as e:
            raise QueueError(f"Failed to recover stalled jobs: {e}") from e
        if ids:
            self.logger.warning("Stalled jobs returned to queue", job_ids=list(ids))
        return list(ids)

    async def _reserve(self, timeout: Optional[float]) -> Optional[VerificationJob]:
        client = self._require_client()
        try:
            while True:
                if timeout == 0:
                    job_id = await client.lmove(
                        self._key("wait"), self._key("active"), "RIGHT", "LEFT"
                    )
                else:
                    job_id = await client.blmove(
                        self._key("wait"),
                        self._key("active"),
                        timeout or 0,
                        src="RIGHT",
                        dest="LEFT",
                    )
                if job_id is None:
                    return None

                raw = await client.hget(self._key("jobs"), job_id)
                if raw is None:
                    # Orphan id without a body; drop it and keep looking
                    await client.lrem(self._key("active"), 1, job_id)
                    continue

                job = VerificationJob.from_dict(json.loads(raw))
                job.attempt += 1
                job.status = "active"

                if job.attempt > self.retry_policy.max_attempts:
                    # Only reachable through repeated stalls
                    job.last_error = job.last_error or "Job stalled more than allowed attempts"
                    await self._dead_letter(job)
                    self.logger.error(f"Stalled job dead-lettered: {job.job_id}")
                    continue

                async with client.pipeline(transaction=True) as pipe:
                    pipe.hset(self._key("jobs"), job.job_id, json.dumps(job.to_dict(), default=str))
                    pipe.zadd(self._key("leases"), {job.job_id: time.time() + self.lease_seconds})
                    await pipe.execute()
                return job
        except RedisError as e:
            raise QueueError(f"Failed to reserve job: {e}") from e

    async def _archive(self, job: VerificationJob, kind: Literal["completed", "failed"]) -> None:
        client = self._require_client()
        job.status = kind
        job.finished_at = job.finished_at or datetime.now(timezone.utc)
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.lrem(self._key("active"), 1, job.job_id)
                pipe.zrem(self._key("leases"), job.job_id)
                pipe.hdel(self._key("jobs"), job.job_id)
                if self.history_limit:
                    pipe.lpush(self._key(kind), json.dumps(job.to_dict(), default=str))
                    pipe.ltrim(self._key(kind), 0, self.history_limit - 1)
                await pipe.execute()
        except RedisError as e:
            raise QueueError(f"Failed to acknowledge job {job.job_id}: {e}") from e

    async def _complete(self, job: VerificationJob) -> None:
        await self._archive(job, "completed")

    async def _dead_letter(self, job: VerificationJob) -> None:
        await self._archive(job, "failed")

    async def _retry(self, job: VerificationJob, delay: float) -> None:
        client = self._require_client()
        job.status = "delayed" if delay > 0 else "waiting"
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.lrem(self._key("active"), 1, job.job_id)
                pipe.zrem(self._key("leases"), job.job_id)
                pipe.hset(self._key("jobs"), job.job_id, json.dumps(job.to_dict(), default=str))
                if delay > 0:
                    pipe.zadd(self._key("delayed"), {job.job_id: time.time() + delay})
                else:
                    pipe.lpush(self._key("wait"), job.job_id)
                await pipe.execute()
        except RedisError as e:
            raise QueueError(f"Failed to reschedule job {job.job_id}: {e}") from e

    async def history(
        self,
        kind: Literal["completed", "failed"],
        limit: Optional[int] = None,
    ) -> List[VerificationJob]:
        if kind not in ("completed", "failed"):
            raise ValueError(f"Unknown history kind: {kind}")
        client = self._require_client()
        end = (limit - 1) if limit else -1
        try:
            raw_jobs = await client.lrange(self._key(kind), 0, end)
        except RedisError as e:
            raise QueueError(f"Failed to read {kind} history: {e}") from e
        return [VerificationJob.from_dict(json.loads(raw)) for raw in raw_jobs]

    async def stats(self) -> Dict[str, int]:
        client = self._require_client()
        try:
            async with client.pipeline(transaction=False) as pipe:
                pipe.llen(self._key("wait"))
                pipe.zcard(self._key("delayed"))
                pipe.llen(self._key("active"))
                pipe.llen(self._key("completed"))
                pipe.llen(self._key("failed"))
                waiting, delayed, active, completed, failed = await pipe.execute()
        except RedisError as e:
            raise QueueError(f"Failed to read queue stats: {e}") from e
        return {
            "waiting": waiting,
            "delayed": delayed,
            "active": active,
            "completed": completed,
            "failed": failed,
        }

    async def clear(self) -> None:
        """Delete every key owned by this queue."""
        client = self._require_client()
        suffixes = ("jobs", "wait", "active", "leases", "delayed", "completed", "failed", "id")
        await client.delete(*(self._key(s) for s in suffixes))
