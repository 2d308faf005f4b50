"""Evidence storage with keyed access for the verification pipeline.

The pipeline only needs key-based get/update semantics. Creation and deletion
belong to the API layer but are exposed here so producers, the CLI and tests
can drive the full lifecycle.

Follows the same patterns as the other stores:
- O(1) lookup by evidence id
- Thread-safe operations with asyncio locks
- Optional JSON persistence

Usage:
    from evidence_verifier.data_management.evidence_store import InMemoryEvidenceStore

    store = InMemoryEvidenceStore()
    await store.connect()
    evidence = await store.create(claim_id=1, source="Journal of X", excerpt="...")
    await store.update(evidence.id, status=EvidenceStatus.RUNNING, reason="")
"""

import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from evidence_verifier.data_management.schemas.evidence_schema import (
    Evidence,
    EvidenceStatus,
    EvidenceUpdate,
)
from evidence_verifier.errors import EvidenceStoreError, InvalidTransitionError
from evidence_verifier.utils.logging import get_structured_logger


class EvidenceStore(ABC):
    """Repository interface used by the worker and the producer.

    Each operation is individually atomic. No multi-record transactions and
    no optimistic concurrency checks are performed.
    """

    async def connect(self) -> None:
        """Open underlying resources."""

    async def close(self) -> None:
        """Release underlying resources."""

    async def __aenter__(self) -> "EvidenceStore":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @abstractmethod
    async def create(
        self,
        claim_id: int,
        source: str,
        excerpt: str,
        file_path: Optional[str] = None,
    ) -> Evidence:
        """Create evidence in PENDING status with an empty reason."""

    @abstractmethod
    async def get_by_id(self, evidence_id: int) -> Optional[Evidence]:
        """Return the evidence, or None if it does not exist."""

    @abstractmethod
    async def update(self, evidence_id: int, **fields: Any) -> Optional[Evidence]:
        """Apply a partial update to status, score and reason.

        Returns:
            The updated evidence, or None if it no longer exists.

        Raises:
            InvalidTransitionError: If the status change is not allowed.
        """

    @abstractmethod
    async def delete(self, evidence_id: int) -> bool:
        """Delete evidence. Returns False if it did not exist."""

    @abstractmethod
    async def list_by_claim(self, claim_id: int) -> list[Evidence]:
        """List evidence for a claim, newest first."""

    async def ping(self) -> bool:
        return True


def validate_update(current: Evidence, update: EvidenceUpdate) -> dict[str, Any]:
    """Check a partial update against the state machine and return the changes."""
    changes = update.changes()
    target = changes.get("status")
    if target is not None and not current.status.can_transition_to(target):
        raise InvalidTransitionError(current.status.value, target.value)
    return changes


class InMemoryEvidenceStore(EvidenceStore):
    """Memory-backed evidence store with optional JSON persistence.

    Data structure:
    {
        evidence_id: Evidence,
        ...
    }
    """

    def __init__(self, persistence_path: Optional[str] = None) -> None:
        """Initialize InMemoryEvidenceStore.

        Args:
            persistence_path: Optional path to JSON file for persistence.
                            If None, storage is memory-only.
        """
        self._evidence: dict[int, Evidence] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()
        self._persistence_path = Path(persistence_path) if persistence_path else None
        self._logger = get_structured_logger("EvidenceStore", backend="memory")

    async def connect(self) -> None:
        if self._persistence_path and self._persistence_path.exists():
            async with self._lock:
                self._load_from_file()

    async def create(
        self,
        claim_id: int,
        source: str,
        excerpt: str,
        file_path: Optional[str] = None,
    ) -> Evidence:
        async with self._lock:
            evidence = Evidence(
                id=self._next_id,
                claim_id=claim_id,
                source=source,
                excerpt=excerpt,
                file_path=file_path,
                status=EvidenceStatus.PENDING,
                reason="",
            )
            self._evidence[evidence.id] = evidence
            self._next_id += 1

            self._logger.debug(
                "evidence_created",
                evidence_id=evidence.id,
                claim_id=claim_id,
            )

            if self._persistence_path:
                self._save_to_file()
            return evidence.model_copy()

    async def get_by_id(self, evidence_id: int) -> Optional[Evidence]:
        async with self._lock:
            evidence = self._evidence.get(evidence_id)
            return evidence.model_copy() if evidence else None

    async def update(self, evidence_id: int, **fields: Any) -> Optional[Evidence]:
        update = EvidenceUpdate(**fields)
        async with self._lock:
            current = self._evidence.get(evidence_id)
            if current is None:
                return None

            changes = validate_update(current, update)
            changes["updated_at"] = datetime.now(timezone.utc)
            updated = current.model_copy(update=changes)
            self._evidence[evidence_id] = updated

            self._logger.debug(
                "evidence_updated",
                evidence_id=evidence_id,
                status=updated.status.value,
                score=updated.score,
            )

            if self._persistence_path:
                self._save_to_file()
            return updated.model_copy()

    async def delete(self, evidence_id: int) -> bool:
        async with self._lock:
            if self._evidence.pop(evidence_id, None) is None:
                return False
            self._logger.debug("evidence_deleted", evidence_id=evidence_id)
            if self._persistence_path:
                self._save_to_file()
            return True

    async def list_by_claim(self, claim_id: int) -> list[Evidence]:
        async with self._lock:
            matches = [e for e in self._evidence.values() if e.claim_id == claim_id]
            return [e.model_copy() for e in sorted(matches, key=lambda e: e.id, reverse=True)]

    async def get_stats(self) -> dict[str, Any]:
        """Get evidence counts by status."""
        async with self._lock:
            status_counts: dict[str, int] = {}
            for evidence in self._evidence.values():
                status_counts[evidence.status.value] = status_counts.get(evidence.status.value, 0) + 1
            return {"total": len(self._evidence), "status_counts": status_counts}

    def _save_to_file(self) -> None:
        """Save to JSON file (synchronous)."""
        if not self._persistence_path:
            return
        try:
            self._persistence_path.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "next_id": self._next_id,
                "evidence": [e.model_dump(mode="json") for e in self._evidence.values()],
            }
            with open(self._persistence_path, "w") as f:
                json.dump(data, f, indent=2, default=str)
        except OSError as e:
            self._logger.error("persistence_failed", error=str(e))
            raise EvidenceStoreError(f"Failed to persist evidence: {e}") from e

    def _load_from_file(self) -> None:
        """Load from JSON file (synchronous)."""
        try:
            with open(self._persistence_path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self._logger.error("load_failed", error=str(e))
            raise EvidenceStoreError(f"Failed to load evidence: {e}") from e

        self._evidence = {
            item["id"]: Evidence.model_validate(item) for item in data.get("evidence", [])
        }
        self._next_id = data.get("next_id", max(self._evidence, default=0) + 1)
        self._logger.info("evidence_loaded", count=len(self._evidence))
