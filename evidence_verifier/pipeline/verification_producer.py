"""Producer side of the verification pipeline.

Runs inside the API layer after authentication and workspace membership
checks. Every evidence creation and every manual re-verification request
enqueues one independent job; callers never wait for the verification itself.

Usage:
    from evidence_verifier.pipeline import VerificationProducer

    producer = VerificationProducer(store=store, queue=queue)
    evidence, job = await producer.submit_text_evidence(1, "Journal of X", "...")
    await producer.request_reverification(evidence.id)
"""

import re
from typing import Any, Optional

from evidence_verifier.agents.verification.verification_worker import parse_evidence_id
from evidence_verifier.data_management.evidence_store import EvidenceStore
from evidence_verifier.data_management.schemas.evidence_schema import Evidence
from evidence_verifier.errors import EvidenceNotFoundError
from evidence_verifier.orchestration.job_queue import JobQueue, VerificationJob
from evidence_verifier.utils.logging import get_structured_logger

DOCUMENT_EXCERPT_CHARS = 700
EMPTY_DOCUMENT_EXCERPT = "(no extractable text in document)"

_WHITESPACE = re.compile(r"\s+")


def normalize_document_text(text: Optional[str]) -> str:
    """Collapse whitespace in pre-extracted document text and truncate it."""
    collapsed = _WHITESPACE.sub(" ", text or "").strip()
    return collapsed[:DOCUMENT_EXCERPT_CHARS] or EMPTY_DOCUMENT_EXCERPT


class VerificationProducer:
    """Creates evidence and enqueues verification jobs.

    The store and queue are constructed and connected by the caller and
    shared with the rest of the process.
    """

    def __init__(self, store: EvidenceStore, queue: JobQueue) -> None:
        self._store = store
        self._queue = queue
        self._logger = get_structured_logger("VerificationProducer", queue=queue.name)

    async def request_verification(self, evidence_id: Any) -> VerificationJob:
        """Enqueue a job for evidence_id without checking that it exists.

        Raises:
            MalformedJobError: If evidence_id is not an integer.
        """
        evidence_id = parse_evidence_id(evidence_id)
        job = await self._queue.enqueue({"evidenceId": evidence_id})
        self._logger.info("verification_enqueued", evidence_id=evidence_id, job_id=job.job_id)
        return job

    async def request_reverification(self, evidence_id: Any) -> VerificationJob:
        """Enqueue a manual re-verification for existing evidence.

        Raises:
            MalformedJobError: If evidence_id is not an integer.
            EvidenceNotFoundError: If the evidence does not exist.
        """
        evidence_id = parse_evidence_id(evidence_id)
        if await self._store.get_by_id(evidence_id) is None:
            raise EvidenceNotFoundError(evidence_id)
        return await self.request_verification(evidence_id)

    async def submit_text_evidence(
        self,
        claim_id: int,
        source: str,
        excerpt: str,
    ) -> tuple[Evidence, VerificationJob]:
        """Create PENDING free-text evidence and enqueue its verification.

        Raises:
            ValueError: If source or excerpt is blank.
        """
        source = (source or "").strip()
        excerpt = (excerpt or "").strip()
        if not source or not excerpt:
            raise ValueError("source and excerpt are required")

        evidence = await self._store.create(claim_id=claim_id, source=source, excerpt=excerpt)
        job = await self.request_verification(evidence.id)
        return evidence, job

    async def submit_document_evidence(
        self,
        claim_id: int,
        file_name: str,
        extracted_text: Optional[str],
        file_path: Optional[str] = None,
    ) -> tuple[Evidence, VerificationJob]:
        """Create PENDING evidence from an uploaded document's extracted text.

        The excerpt is the whitespace-collapsed text truncated to 700
        characters, or a placeholder when the document had no text.

        Raises:
            ValueError: If file_name is blank.
        """
        file_name = (file_name or "").strip()
        if not file_name:
            raise ValueError("file name is required")

        evidence = await self._store.create(
            claim_id=claim_id,
            source=file_name,
            excerpt=normalize_document_text(extracted_text),
            file_path=file_path,
        )
        job = await self.request_verification(evidence.id)
        return evidence, job
