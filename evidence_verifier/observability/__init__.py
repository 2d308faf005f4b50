"""Metrics exposure for verification workers."""

from evidence_verifier.observability.metrics import OUTCOME_KINDS, MetricsSink

__all__ = ["MetricsSink", "OUTCOME_KINDS"]
