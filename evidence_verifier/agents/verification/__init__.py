"""Verification submodule: evidence scoring and the background worker.

Core workflow:
1. Producer enqueues {"evidenceId": id} on the verify-evidence queue
2. VerificationWorker moves the evidence to RUNNING
3. score_evidence computes the keyword/length heuristic
4. The worker records VERIFIED or REJECTED and counts the outcome
"""

from evidence_verifier.agents.verification.evidence_scorer import (
    VERIFICATION_THRESHOLD,
    is_verified,
    score_evidence,
)
from evidence_verifier.agents.verification.verification_worker import (
    REJECTED_REASON,
    VERIFIED_REASON,
    VerificationWorker,
    parse_evidence_id,
)

__all__ = [
    "REJECTED_REASON",
    "VERIFICATION_THRESHOLD",
    "VERIFIED_REASON",
    "VerificationWorker",
    "is_verified",
    "parse_evidence_id",
    "score_evidence",
]
