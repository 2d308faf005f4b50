"""Process-level wiring for workers and producers.

Stores, queues and metrics are built explicitly from settings and their
lifecycle (connect/close) is scoped to the run loop.

Usage:
    runtime = WorkerRuntime(settings)
    await runtime.run()
"""

import asyncio
import signal
from typing import Optional

from evidence_verifier.agents.verification.verification_worker import VerificationWorker
from evidence_verifier.config.logging import get_logger
from evidence_verifier.config.settings import Settings
from evidence_verifier.data_management.evidence_store import (
    EvidenceStore,
    InMemoryEvidenceStore,
)
from evidence_verifier.data_management.sqlite_store import SqliteEvidenceStore
from evidence_verifier.observability.metrics import MetricsSink
from evidence_verifier.orchestration.job_queue import InMemoryJobQueue, JobQueue, RetryPolicy
from evidence_verifier.orchestration.redis_queue import RedisJobQueue

logger = get_logger("runtime")


def build_store(settings: Settings) -> EvidenceStore:
    """Create (but do not connect) the configured evidence store."""
    if settings.store_backend == "memory":
        return InMemoryEvidenceStore(persistence_path=settings.store_persistence_path)
    return SqliteEvidenceStore(settings.database_path)


def build_retry_policy(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.max_attempts,
        strategy=settings.backoff_strategy,
        base_delay=settings.backoff_base_seconds,
        max_delay=settings.backoff_max_seconds,
    )


def build_queue(settings: Settings) -> JobQueue:
    """Create (but do not connect) the configured job queue."""
    if settings.queue_backend == "memory":
        return InMemoryJobQueue(
            name=settings.queue_name,
            retry_policy=build_retry_policy(settings),
            history_limit=settings.history_limit,
            job_timeout=settings.job_timeout_seconds,
        )
    return RedisJobQueue(
        url=settings.redis_url,
        name=settings.queue_name,
        retry_policy=build_retry_policy(settings),
        history_limit=settings.history_limit,
        job_timeout=settings.job_timeout_seconds,
        lease_seconds=settings.lease_seconds,
    )


class WorkerRuntime:
    """
    Runs one worker process: connect, serve metrics, consume, close.

    Attributes:
        settings: Runtime configuration
        store: Evidence store owned by this process
        queue: Job queue owned by this process
        metrics: Metrics sink exported on settings.metrics_port
        stop_event: Set on SIGINT/SIGTERM to stop consuming
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[EvidenceStore] = None,
        queue: Optional[JobQueue] = None,
        metrics: Optional[MetricsSink] = None,
        serve_metrics: bool = True,
    ):
        self.settings = settings
        self.store = store or build_store(settings)
        self.queue = queue or build_queue(settings)
        self.metrics = metrics or MetricsSink()
        self.serve_metrics = serve_metrics
        self.stop_event = asyncio.Event()
        self.worker = VerificationWorker(
            store=self.store,
            metrics=self.metrics,
            simulated_delay=settings.simulated_delay_seconds,
        )

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform/loop; KeyboardInterrupt still stops us
                logger.debug(f"Signal handler unavailable for {sig.name}")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    def request_stop(self) -> None:
        logger.info("Stop requested, finishing current job")
        self.stop_event.set()

    async def run(self) -> None:
        """Run until stopped. Resources are always released on exit."""
        await self.store.connect()
        try:
            await self.queue.connect()
            try:
                if self.serve_metrics:
                    self.metrics.serve(self.settings.metrics_port, self.settings.metrics_host)
                self._install_signal_handlers()
                await self.worker.run(self.queue, self.stop_event)
            finally:
                self._remove_signal_handlers()
                await self.queue.close()
        finally:
            await self.store.close()
            logger.info("Worker runtime shut down")
