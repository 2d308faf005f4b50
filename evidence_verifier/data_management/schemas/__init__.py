"""Pydantic schemas for evidence records."""

from evidence_verifier.data_management.schemas.evidence_schema import (
    SCORE_MAX,
    SCORE_MIN,
    Evidence,
    EvidenceStatus,
    EvidenceUpdate,
)

__all__ = [
    "SCORE_MAX",
    "SCORE_MIN",
    "Evidence",
    "EvidenceStatus",
    "EvidenceUpdate",
]
