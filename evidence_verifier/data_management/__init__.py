"""Data management package for the evidence verification pipeline.

Storage adapters:
- InMemoryEvidenceStore: memory-backed store with optional JSON persistence
- SqliteEvidenceStore: SQLite store shared by several worker processes
"""

from evidence_verifier.data_management.evidence_store import (
    EvidenceStore,
    InMemoryEvidenceStore,
)
from evidence_verifier.data_management.sqlite_store import SqliteEvidenceStore

__all__ = [
    "EvidenceStore",
    "InMemoryEvidenceStore",
    "SqliteEvidenceStore",
]
