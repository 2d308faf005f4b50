"""Verification worker driving the evidence state machine.

Per job:
1. Look up evidence; a vanished record is a successful no-op
2. Move it to RUNNING and clear the reason (visible before scoring starts)
3. Wait the simulated verification latency
4. Score source + excerpt and compare against the threshold
5. Move it to VERIFIED or REJECTED with score and reason
6. Count the outcome

Store failures propagate so the queue's retry policy applies. REJECTED is a
successful outcome and is never retried.

No lock protects two jobs for the same evidence: their writes interleave and
the last write wins.

Usage:
    worker = VerificationWorker(store=store, metrics=MetricsSink())
    await worker.run(queue, stop_event)
"""

import asyncio
import math
from typing import Any, Awaitable, Callable, Optional

from evidence_verifier.agents.base_agent import BaseAgent
from evidence_verifier.agents.verification.evidence_scorer import is_verified, score_evidence
from evidence_verifier.config.logging import worker_context
from evidence_verifier.data_management.evidence_store import EvidenceStore
from evidence_verifier.data_management.schemas.evidence_schema import EvidenceStatus
from evidence_verifier.errors import MalformedJobError
from evidence_verifier.observability.metrics import MetricsSink
from evidence_verifier.orchestration.job_queue import JobQueue, VerificationJob

VERIFIED_REASON = "consistency ok"
REJECTED_REASON = "weak or ambiguous"


def parse_evidence_id(raw: Any) -> int:
    """
    Coerce a job's evidenceId into an integer.

    Accepts ints, integral finite floats and decimal strings.

    Raises:
        MalformedJobError: If the value is missing or not an integer
    """
    if raw is None or isinstance(raw, bool):
        raise MalformedJobError(f"bad evidenceId: {raw!r}", payload=raw)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if math.isfinite(raw) and raw.is_integer():
            return int(raw)
        raise MalformedJobError(f"bad evidenceId: {raw!r}", payload=raw)
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            raise MalformedJobError(f"bad evidenceId: {raw!r}", payload=raw) from None
    raise MalformedJobError(f"bad evidenceId: {raw!r}", payload=raw)


class VerificationWorker(BaseAgent):
    """
    Consumes verification jobs and applies the evidence state machine.

    Attributes:
        store: Evidence repository (connected by the caller)
        metrics: Outcome counter sink
        simulated_delay: Seconds awaited between RUNNING and the terminal write
    """

    def __init__(
        self,
        store: EvidenceStore,
        metrics: MetricsSink,
        simulated_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "VerificationWorker",
    ):
        """
        Initialize the worker.

        Args:
            store: Evidence repository
            metrics: Metrics sink for outcome counters
            simulated_delay: Placeholder verification latency in seconds
            sleep: Awaitable used for the delay (injectable for tests)
            name: Agent name used in logs
        """
        super().__init__(name=name, description="Scores evidence and records its verification status")
        if simulated_delay < 0:
            raise ValueError("simulated_delay must be non-negative")
        self.store = store
        self.metrics = metrics
        self.simulated_delay = simulated_delay
        self._sleep = sleep

    def get_capabilities(self) -> list[str]:
        return ["evidence_verification", "evidence_scoring"]

    async def handle_job(self, job: VerificationJob) -> dict:
        """Queue handler: process one job's payload."""
        if not isinstance(job.payload, dict):
            raise MalformedJobError("job payload is not a mapping", payload=job.payload)
        log = self.logger.bind(job_id=job.job_id, attempt=job.attempt)
        return await self.process(job.payload, log=log)

    async def process(self, input_data: dict, log: Optional[Any] = None) -> dict:
        """
        Verify one evidence record.

        Args:
            input_data: Job payload, e.g. {"evidenceId": 42}
            log: Optional logger with job context bound

        Returns:
            Dict with evidence_id, status and (when scored) score
        """
        log = log or self.logger
        evidence_id = parse_evidence_id(input_data.get("evidenceId"))

        evidence = await self.store.get_by_id(evidence_id)
        if evidence is None:
            log.info(f"Evidence {evidence_id} not found, skipping")
            return {"evidence_id": evidence_id, "status": "skipped"}

        running = await self.store.update(
            evidence_id, status=EvidenceStatus.RUNNING, reason=""
        )
        if running is None:
            log.info(f"Evidence {evidence_id} deleted before scoring, skipping")
            return {"evidence_id": evidence_id, "status": "skipped"}

        if self.simulated_delay > 0:
            await self._sleep(self.simulated_delay)

        score = score_evidence(evidence.source, evidence.excerpt)
        verified = is_verified(score)
        status = EvidenceStatus.VERIFIED if verified else EvidenceStatus.REJECTED

        final = await self.store.update(
            evidence_id,
            status=status,
            score=score,
            reason=VERIFIED_REASON if verified else REJECTED_REASON,
        )
        if final is None:
            log.info(f"Evidence {evidence_id} deleted during scoring, skipping")
            return {"evidence_id": evidence_id, "status": "skipped"}

        self.metrics.increment_outcome("verified" if verified else "rejected")
        log.info(
            f"Evidence {evidence_id} {status.value}",
            score=score,
        )
        return {"evidence_id": evidence_id, "status": status.value, "score": score}

    async def run(self, queue: JobQueue, stop_event: Optional[asyncio.Event] = None) -> None:
        """Consume jobs from queue until stop_event is set."""
        with worker_context(queue.name, self.short_id):
            self.logger.info(f"Worker consuming {queue.name}")
            await queue.consume(self.handle_job, stop_event=stop_event)
