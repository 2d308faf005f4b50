"""Verification job queue with at-least-once delivery and queue-owned retries.

The queue is the only serialization point between the producer and the
workers. It owns:
- Delivery: every job reaches at least one handler at least once
- Retry policy: failed handlers are redelivered with fixed or exponential backoff
- Dead-lettering: jobs that exhaust their attempts land in the failed history
- Bounded completed/failed history kept purely for inspection

Ordering is best-effort FIFO; nothing is guaranteed across evidence ids.

Usage:
    queue = InMemoryJobQueue(retry_policy=RetryPolicy(max_attempts=3))
    await queue.enqueue({"evidenceId": 42})
    outcome = await queue.process_next(handler, timeout=0)
"""

import asyncio
import heapq
import itertools
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Literal, Optional

from evidence_verifier.config.logging import get_logger
from evidence_verifier.errors import JobTimeoutError, QueueError

DEFAULT_QUEUE_NAME = "verify-evidence"
DEFAULT_HISTORY_LIMIT = 50

JobState = Literal["waiting", "delayed", "active", "completed", "failed"]


@dataclass
class VerificationJob:
    """
    A queued request to (re-)evaluate one evidence record.

    Fields:
        job_id: Queue-assigned identifier
        payload: Message body as enqueued, e.g. {"evidenceId": 42}
        attempt: Number of deliveries so far
        enqueued_at: When the producer enqueued the job
        status: Queue-side state of the job
        last_error: Error message of the most recent failed delivery
        result: Handler return value of the successful delivery
        finished_at: When the job completed or was dead-lettered
    """

    job_id: str
    payload: Dict[str, Any]
    attempt: int = 0
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: JobState = "waiting"
    last_error: Optional[str] = None
    result: Optional[Any] = None
    finished_at: Optional[datetime] = None

    @property
    def evidence_id(self) -> Any:
        """Raw evidence id from the payload (may be missing or malformed)."""
        return self.payload.get("evidenceId") if isinstance(self.payload, dict) else None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["enqueued_at"] = self.enqueued_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationJob":
        data = dict(data)
        data["enqueued_at"] = datetime.fromisoformat(data["enqueued_at"])
        if data.get("finished_at"):
            data["finished_at"] = datetime.fromisoformat(data["finished_at"])
        return cls(**data)


@dataclass
class RetryPolicy:
    """
    Redelivery policy applied by the queue when a handler fails.

    Fields:
        max_attempts: Deliveries before the job is dead-lettered
        strategy: "exponential" (base * 2^(attempt-1)) or "fixed" (base)
        base_delay: Base delay in seconds
        max_delay: Cap for exponential delays in seconds
    """

    max_attempts: int = 3
    strategy: Literal["exponential", "fixed"] = "exponential"
    base_delay: float = 1.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.strategy not in ("exponential", "fixed"):
            raise ValueError(f"Unknown backoff strategy: {self.strategy}")

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay before redelivering a job whose delivery number `attempt` failed."""
        if self.strategy == "fixed":
            return self.base_delay
        return min(self.base_delay * (2 ** max(attempt - 1, 0)), self.max_delay)


@dataclass
class JobOutcome:
    """Result of one delivery attempt."""

    job: VerificationJob
    status: Literal["completed", "retrying", "failed"]
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    retry_delay: Optional[float] = None


JobHandler = Callable[[VerificationJob], Awaitable[Any]]


class JobQueue(ABC):
    """
    Minimal queue interface shared by all backends.

    Backends implement storage primitives (_reserve, _complete, _retry,
    _dead_letter); delivery, timeouts and retry decisions live here so every
    backend applies the same policy.
    """

    def __init__(
        self,
        name: str = DEFAULT_QUEUE_NAME,
        retry_policy: Optional[RetryPolicy] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        job_timeout: Optional[float] = None,
    ):
        if history_limit < 0:
            raise ValueError("history_limit must be non-negative")
        self.name = name
        self.retry_policy = retry_policy or RetryPolicy()
        self.history_limit = history_limit
        self.job_timeout = job_timeout
        self.logger = get_logger(f"queue.{name}")

    async def connect(self) -> None:
        """Open backend resources."""

    async def close(self) -> None:
        """Release backend resources."""

    async def __aenter__(self) -> "JobQueue":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @abstractmethod
    async def enqueue(self, payload: Dict[str, Any]) -> VerificationJob:
        """Durably append a job; returns once the backend acknowledged it."""

    @abstractmethod
    async def _reserve(self, timeout: Optional[float]) -> Optional[VerificationJob]:
        """Take the next ready job and mark it active (attempt incremented)."""

    @abstractmethod
    async def _complete(self, job: VerificationJob) -> None:
        """Acknowledge a successful delivery and record it in history."""

    @abstractmethod
    async def _retry(self, job: VerificationJob, delay: float) -> None:
        """Schedule redelivery of a failed job after `delay` seconds."""

    @abstractmethod
    async def _dead_letter(self, job: VerificationJob) -> None:
        """Drop a job that exhausted its attempts into the failed history."""

    @abstractmethod
    async def history(
        self,
        kind: Literal["completed", "failed"],
        limit: Optional[int] = None,
    ) -> List[VerificationJob]:
        """Recently finished jobs, most recent first."""

    @abstractmethod
    async def stats(self) -> Dict[str, int]:
        """Job counts per queue-side state."""

    async def maintenance(self) -> None:
        """Periodic housekeeping (promote delayed jobs, recover stalled ones)."""

    async def ping(self) -> bool:
        return True

    async def _run_handler(self, handler: JobHandler, job: VerificationJob) -> Any:
        if self.job_timeout is None:
            return await handler(job)
        try:
            return await asyncio.wait_for(handler(job), timeout=self.job_timeout)
        except asyncio.TimeoutError as e:
            raise JobTimeoutError(job.job_id, self.job_timeout) from e

    async def process_next(
        self,
        handler: JobHandler,
        timeout: Optional[float] = None,
    ) -> Optional[JobOutcome]:
        """
        Deliver one ready job to handler and apply the retry policy.

        Args:
            handler: Async callable receiving the job
            timeout: Seconds to wait for a job (None blocks, 0 polls)

        Returns:
            JobOutcome, or None if no job became ready in time
        """
        job = await self._reserve(timeout)
        if job is None:
            return None

        self.logger.debug(
            f"Job delivered: {job.job_id}",
            attempt=job.attempt,
            evidence_id=job.evidence_id,
        )

        try:
            result = await self._run_handler(handler, job)
        except Exception as e:
            job.last_error = f"{type(e).__name__}: {e}"
            if self.retry_policy.should_retry(job.attempt):
                delay = self.retry_policy.delay_for(job.attempt)
                await self._retry(job, delay)
                self.logger.warning(
                    f"Job failed, retrying: {job.job_id}",
                    attempt=job.attempt,
                    max_attempts=self.retry_policy.max_attempts,
                    delay=f"{delay:.2f}",
                    error=job.last_error,
                )
                return JobOutcome(job=job, status="retrying", error=e, retry_delay=delay)

            await self._dead_letter(job)
            self.logger.error(
                f"Job dead-lettered: {job.job_id}",
                attempts=job.attempt,
                error=job.last_error,
            )
            return JobOutcome(job=job, status="failed", error=e)

        job.result = result
        await self._complete(job)
        self.logger.debug(f"Job completed: {job.job_id}", attempt=job.attempt)
        return JobOutcome(job=job, status="completed", result=result)

    async def consume(
        self,
        handler: JobHandler,
        stop_event: Optional[asyncio.Event] = None,
        poll_interval: float = 1.0,
    ) -> None:
        """
        Drain the queue until stop_event is set.

        Handler failures are handled by process_next; backend failures are
        logged and retried after poll_interval so the consumer never dies.
        """
        stop_event = stop_event or asyncio.Event()
        self.logger.info("Consumer started", queue=self.name)

        while not stop_event.is_set():
            try:
                await self.maintenance()
                await self.process_next(handler, timeout=poll_interval)
            except QueueError as e:
                self.logger.error(f"Queue backend error: {e}")
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass

        self.logger.info("Consumer stopped", queue=self.name)

    async def drain(self, handler: JobHandler) -> List[JobOutcome]:
        """Process every job that is ready right now (no waiting)."""
        outcomes = []
        while True:
            await self.maintenance()
            outcome = await self.process_next(handler, timeout=0)
            if outcome is None:
                return outcomes
            outcomes.append(outcome)


class InMemoryJobQueue(JobQueue):
    """
    Process-local queue backed by asyncio primitives.

    Suitable for tests and single-process runs. Jobs survive handler failures
    but not a crash of the hosting process.
    """

    def __init__(
        self,
        name: str = DEFAULT_QUEUE_NAME,
        retry_policy: Optional[RetryPolicy] = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        job_timeout: Optional[float] = None,
    ):
        super().__init__(name, retry_policy, history_limit, job_timeout)
        self._jobs: Dict[str, VerificationJob] = {}
        self._waiting: Deque[str] = deque()
        self._delayed: List[tuple] = []  # (ready_at, seq, job_id) heap
        self._active: set = set()
        self._completed: Deque[VerificationJob] = deque(maxlen=history_limit)
        self._failed: Deque[VerificationJob] = deque(maxlen=history_limit)
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()

    async def enqueue(self, payload: Dict[str, Any]) -> VerificationJob:
        if not isinstance(payload, dict):
            raise QueueError(f"Job payload must be a mapping, got {type(payload).__name__}")

        job = VerificationJob(job_id=uuid.uuid4().hex, payload=dict(payload))
        self._jobs[job.job_id] = job
        self._waiting.append(job.job_id)
        self._wakeup.set()

        self.logger.info(f"Job enqueued: {job.job_id}", evidence_id=job.evidence_id)
        return job

    def _promote_due(self) -> None:
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, job_id = heapq.heappop(self._delayed)
            self._jobs[job_id].status = "waiting"
            self._waiting.append(job_id)

    async def _reserve(self, timeout: Optional[float]) -> Optional[VerificationJob]:
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            self._promote_due()
            if self._waiting:
                job = self._jobs[self._waiting.popleft()]
                job.attempt += 1
                job.status = "active"
                self._active.add(job.job_id)
                return job

            now = time.monotonic()
            if deadline is not None and now >= deadline:
                return None

            waits = []
            if deadline is not None:
                waits.append(deadline - now)
            if self._delayed:
                waits.append(self._delayed[0][0] - now)
            wait = min(waits) if waits else None
            if wait is not None and wait <= 0:
                continue

            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=wait)
            except asyncio.TimeoutError:
                pass

    def _finish(self, job: VerificationJob, status: JobState) -> None:
        self._active.discard(job.job_id)
        self._jobs.pop(job.job_id, None)
        job.status = status
        job.finished_at = datetime.now(timezone.utc)

    async def _complete(self, job: VerificationJob) -> None:
        self._finish(job, "completed")
        if self.history_limit:
            self._completed.appendleft(job)

    async def _retry(self, job: VerificationJob, delay: float) -> None:
        self._active.discard(job.job_id)
        if delay > 0:
            job.status = "delayed"
            heapq.heappush(self._delayed, (time.monotonic() + delay, next(self._seq), job.job_id))
        else:
            job.status = "waiting"
            self._waiting.append(job.job_id)
        self._wakeup.set()

    async def _dead_letter(self, job: VerificationJob) -> None:
        self._finish(job, "failed")
        if self.history_limit:
            self._failed.appendleft(job)

    async def history(
        self,
        kind: Literal["completed", "failed"],
        limit: Optional[int] = None,
    ) -> List[VerificationJob]:
        if kind not in ("completed", "failed"):
            raise ValueError(f"Unknown history kind: {kind}")
        jobs = list(self._completed if kind == "completed" else self._failed)
        return jobs[:limit] if limit else jobs

    async def stats(self) -> Dict[str, int]:
        return {
            "waiting": len(self._waiting),
            "delayed": len(self._delayed),
            "active": len(self._active),
            "completed": len(self._completed),
            "failed": len(self._failed),
        }

    def __len__(self) -> int:
        return len(self._waiting) + len(self._delayed)
