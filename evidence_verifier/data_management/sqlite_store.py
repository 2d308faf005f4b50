"""SQLite-backed evidence store for multi-process deployments."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import aiosqlite
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from evidence_verifier.data_management.evidence_store import (
    EvidenceStore,
    validate_update,
)
from evidence_verifier.data_management.schemas.evidence_schema import (
    Evidence,
    EvidenceStatus,
    EvidenceUpdate,
)
from evidence_verifier.errors import EvidenceStoreError
from evidence_verifier.utils.logging import get_structured_logger

_SCHEMA = """
CREATE TABLE IF NOT EXISTS evidence (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    claim_id INTEGER NOT NULL,
    source TEXT NOT NULL,
    excerpt TEXT NOT NULL,
    file_path TEXT,
    status TEXT NOT NULL DEFAULT 'PENDING',
    score INTEGER,
    reason TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_evidence_claim ON evidence(claim_id);
"""


class SqliteEvidenceStore(EvidenceStore):
    """Evidence store on a single SQLite file in WAL mode.

    Several worker processes can share the file. Each update is a single
    UPDATE statement, so individual writes are atomic but nothing orders
    writes coming from different workers.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._logger = get_structured_logger("EvidenceStore", backend="sqlite")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        retry=retry_if_exception_type(aiosqlite.OperationalError),
        reraise=True,
    )
    async def _open(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self._db_path)
        try:
            conn.row_factory = aiosqlite.Row
            # busy_timeout before WAL so the journal mode switch can wait for locks
            await conn.execute("PRAGMA busy_timeout=5000")
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.executescript(_SCHEMA)
            await conn.commit()
        except aiosqlite.Error:
            await conn.close()
            raise
        return conn

    async def connect(self) -> None:
        if self._conn is not None:
            return
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = await self._open()
        except (OSError, aiosqlite.Error) as e:
            raise EvidenceStoreError(f"Cannot open evidence database {self._db_path}: {e}") from e
        self._conn = conn
        self._logger.info("store_connected", path=str(self._db_path))

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            self._logger.info("store_closed")

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise EvidenceStoreError("Evidence store is not connected")
        return self._conn

    @staticmethod
    def _row_to_evidence(row: aiosqlite.Row) -> Evidence:
        return Evidence(
            id=row["id"],
            claim_id=row["claim_id"],
            source=row["source"],
            excerpt=row["excerpt"],
            file_path=row["file_path"],
            status=EvidenceStatus(row["status"]),
            score=row["score"],
            reason=row["reason"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    async def _fetch(self, evidence_id: int) -> Optional[Evidence]:
        conn = self._require_conn()
        async with conn.execute("SELECT * FROM evidence WHERE id = ?", (evidence_id,)) as cursor:
            row = await cursor.fetchone()
        return self._row_to_evidence(row) if row else None

    async def create(
        self,
        claim_id: int,
        source: str,
        excerpt: str,
        file_path: Optional[str] = None,
    ) -> Evidence:
        conn = self._require_conn()
        now = datetime.now(timezone.utc).isoformat()
        async with self._lock:
            try:
                cursor = await conn.execute(
                    """
                    INSERT INTO evidence (claim_id, source, excerpt, file_path, status, reason, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, '', ?, ?)
                    """,
                    (claim_id, source, excerpt, file_path, EvidenceStatus.PENDING.value, now, now),
                )
                await conn.commit()
            except aiosqlite.Error as e:
                raise EvidenceStoreError(f"Failed to create evidence: {e}") from e
            evidence_id = cursor.lastrowid

        self._logger.debug("evidence_created", evidence_id=evidence_id, claim_id=claim_id)
        return await self.get_by_id(evidence_id)

    async def get_by_id(self, evidence_id: int) -> Optional[Evidence]:
        try:
            return await self._fetch(evidence_id)
        except aiosqlite.Error as e:
            raise EvidenceStoreError(f"Failed to read evidence {evidence_id}: {e}") from e

    async def update(self, evidence_id: int, **fields: Any) -> Optional[Evidence]:
        update = EvidenceUpdate(**fields)
        conn = self._require_conn()
        async with self._lock:
            try:
                current = await self._fetch(evidence_id)
                if current is None:
                    return None

                changes = validate_update(current, update)
                if "status" in changes:
                    changes["status"] = changes["status"].value
                changes["updated_at"] = datetime.now(timezone.utc).isoformat()

                assignments = ", ".join(f"{column} = ?" for column in changes)
                cursor = await conn.execute(
                    f"UPDATE evidence SET {assignments} WHERE id = ?",
                    (*changes.values(), evidence_id),
                )
                await conn.commit()
                if cursor.rowcount == 0:
                    return None
                updated = await self._fetch(evidence_id)
            except aiosqlite.Error as e:
                raise EvidenceStoreError(f"Failed to update evidence {evidence_id}: {e}") from e

        self._logger.debug(
            "evidence_updated",
            evidence_id=evidence_id,
            status=updated.status.value if updated else None,
        )
        return updated

    async def delete(self, evidence_id: int) -> bool:
        conn = self._require_conn()
        async with self._lock:
            try:
                cursor = await conn.execute("DELETE FROM evidence WHERE id = ?", (evidence_id,))
                await conn.commit()
            except aiosqlite.Error as e:
                raise EvidenceStoreError(f"Failed to delete evidence {evidence_id}: {e}") from e
        return cursor.rowcount > 0

    async def list_by_claim(self, claim_id: int) -> list[Evidence]:
        conn = self._require_conn()
        try:
            async with conn.execute(
                "SELECT * FROM evidence WHERE claim_id = ? ORDER BY id DESC", (claim_id,)
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise EvidenceStoreError(f"Failed to list evidence for claim {claim_id}: {e}") from e
        return [self._row_to_evidence(row) for row in rows]

    async def ping(self) -> bool:
        try:
            conn = self._require_conn()
            async with conn.execute("SELECT 1") as cursor:
                await cursor.fetchone()
            return True
        except (EvidenceStoreError, aiosqlite.Error):
            return False
