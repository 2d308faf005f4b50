"""Prometheus metrics for verification outcomes.

Exposes `worker_jobs_total{result="verified"|"rejected"}` plus the process
and platform default collectors through a pull-based text endpoint.
Handler failures are not counted here; the queue keeps those in its
failed history.
"""

from typing import Literal, Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
    start_http_server,
)

from evidence_verifier.config.logging import get_logger

OutcomeKind = Literal["verified", "rejected"]
OUTCOME_KINDS: tuple[str, ...] = ("verified", "rejected")

logger = get_logger("metrics")


class MetricsSink:
    """
    Outcome counters for verification jobs.

    Each sink owns its registry so several sinks (e.g. one per test) never
    collide on metric names. prometheus_client counters are thread-safe, and
    each worker process exports its own series for the scraper to sum.

    Attributes:
        registry: CollectorRegistry holding the counters
        jobs: Counter labelled by result
    """

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        include_default_metrics: bool = True,
    ):
        self.registry = registry or CollectorRegistry()
        if include_default_metrics:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)

        self.jobs = Counter(
            "worker_jobs_total",
            "jobs processed",
            ["result"],
            registry=self.registry,
        )
        # Pre-create both series so they are scraped as 0 before the first job
        for kind in OUTCOME_KINDS:
            self.jobs.labels(result=kind)

    def increment_outcome(self, kind: OutcomeKind) -> None:
        """Count one processed job by outcome."""
        if kind not in OUTCOME_KINDS:
            raise ValueError(f"Unknown outcome kind: {kind!r}")
        self.jobs.labels(result=kind).inc()

    def outcome_count(self, kind: OutcomeKind) -> float:
        """Current counter value for an outcome."""
        if kind not in OUTCOME_KINDS:
            raise ValueError(f"Unknown outcome kind: {kind!r}")
        value = self.registry.get_sample_value("worker_jobs_total", {"result": kind})
        return value or 0.0

    def render(self) -> bytes:
        """Current metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def serve(self, port: int, addr: str = "0.0.0.0"):
        """Start the /metrics HTTP endpoint in a background thread."""
        result = start_http_server(port, addr=addr, registry=self.registry)
        logger.info(f"Metrics endpoint listening on {addr}:{port}")
        return result
