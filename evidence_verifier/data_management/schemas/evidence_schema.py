"""Evidence record schema and verification status state machine.

Evidence content (source, excerpt, file_path) is immutable once created.
Only status, score and reason change, and only through job processing:

    PENDING -> RUNNING -> {VERIFIED, REJECTED}

A terminal status re-enters RUNNING when a new verification job runs for the
same evidence. Overlapping jobs for one evidence interleave their writes
without mutual exclusion, so RUNNING -> RUNNING and terminal -> terminal are
allowed too: the last write wins.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

SCORE_MIN = -5
SCORE_MAX = 10


class EvidenceStatus(str, Enum):
    """Verification status of an evidence record."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in (EvidenceStatus.VERIFIED, EvidenceStatus.REJECTED)

    def can_transition_to(self, target: "EvidenceStatus") -> bool:
        """Check whether a job may move evidence from this status to target."""
        return target in _TRANSITIONS[self]


_ACTIVE_OR_TERMINAL = frozenset(
    {EvidenceStatus.RUNNING, EvidenceStatus.VERIFIED, EvidenceStatus.REJECTED}
)

_TRANSITIONS: dict[EvidenceStatus, frozenset[EvidenceStatus]] = {
    EvidenceStatus.PENDING: frozenset({EvidenceStatus.RUNNING}),
    EvidenceStatus.RUNNING: _ACTIVE_OR_TERMINAL,
    EvidenceStatus.VERIFIED: _ACTIVE_OR_TERMINAL,
    EvidenceStatus.REJECTED: _ACTIVE_OR_TERMINAL,
}


class Evidence(BaseModel):
    """One piece of support for a claim, subject to asynchronous verification."""

    id: int = Field(..., description="Unique evidence identifier")
    claim_id: int = Field(..., description="Owning claim identifier")
    source: str = Field(..., description="Where the evidence comes from")
    excerpt: str = Field(..., description="Text content that is scored")
    file_path: Optional[str] = Field(
        None, description="Opaque reference to an externally stored document"
    )
    status: EvidenceStatus = Field(
        EvidenceStatus.PENDING, description="Verification status"
    )
    score: Optional[int] = Field(
        None,
        ge=SCORE_MIN,
        le=SCORE_MAX,
        description="Confidence score, None until the first terminal write",
    )
    reason: str = Field("", description="Explanation of the last terminal status")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Last update timestamp",
    )


class EvidenceUpdate(BaseModel):
    """Partial update applied by the worker.

    Only the mutable fields are accepted; unset fields are left untouched.
    """

    status: Optional[EvidenceStatus] = None
    score: Optional[int] = Field(None, ge=SCORE_MIN, le=SCORE_MAX)
    reason: Optional[str] = None

    model_config = {"extra": "forbid"}

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)
