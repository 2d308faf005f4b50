"""Exception hierarchy for the evidence verification pipeline."""

from typing import Any, Optional


class EvidenceVerifierError(Exception):
    """Base class for all pipeline errors."""


class MalformedJobError(EvidenceVerifierError):
    """Job payload is missing a usable evidence identifier.

    Raised inside the job handler so the queue's retry policy applies and the
    job eventually lands in the failed history.
    """

    def __init__(self, message: str, payload: Optional[Any] = None):
        super().__init__(message)
        self.payload = payload


class EvidenceNotFoundError(EvidenceVerifierError):
    """Evidence record does not exist (producer side only)."""

    def __init__(self, evidence_id: int):
        super().__init__(f"Evidence {evidence_id} not found")
        self.evidence_id = evidence_id


class EvidenceStoreError(EvidenceVerifierError):
    """Evidence store is unavailable or a read/write failed."""


class InvalidTransitionError(EvidenceVerifierError):
    """Requested status change is not allowed by the state machine."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid status transition {current} -> {target}")
        self.current = current
        self.target = target


class QueueError(EvidenceVerifierError):
    """Job queue backend failure (enqueue not acknowledged, bad state)."""


class JobTimeoutError(EvidenceVerifierError):
    """Job handler exceeded the queue's processing timeout."""

    def __init__(self, job_id: str, timeout: float):
        super().__init__(f"Job {job_id} exceeded timeout of {timeout:.2f}s")
        self.job_id = job_id
        self.timeout = timeout
