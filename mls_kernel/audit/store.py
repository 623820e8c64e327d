"""
Audit Log Store — append-only, hash-chained record of query attempts.

Behavioral Contract:
- Append-only. No entry is ever modified or deleted.
- Each entry is hashed and chained to the previous entry (tamper-evident).
- Inserts are serialised, so concurrent appends never interleave a chain link.
- Queryable by user, by denial reason and by recency.
"""

import hashlib
import json
import sqlite3
import threading
from typing import List, Optional

from mls_kernel.models.audit import AuditLogEntry, DenialReason


def _compute_signature(entry: AuditLogEntry) -> str:
    entry_dict = entry.model_dump(mode="json")
    # Signature covers everything but itself
    entry_dict["signature"] = ""
    entry_bytes = json.dumps(entry_dict, sort_keys=True, default=str).encode()
    return hashlib.sha256(entry_bytes).hexdigest()


class AuditLogStore:
    """
    Append-only audit store.
    Prototype: SQLite. Production: PostgreSQL with insert-only grants.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the audit table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                query_type TEXT NOT NULL,
                result_count INTEGER NOT NULL,
                access_granted INTEGER NOT NULL,
                denial_reason TEXT,
                created_at TEXT NOT NULL,
                signature TEXT NOT NULL,
                prior_record_hash TEXT,
                entry_json TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_user_id ON audit_log(user_id)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_audit_denial ON audit_log(denial_reason)
        """)
        self._conn.commit()

    def append(self, entry: AuditLogEntry) -> AuditLogEntry:
        """
        Append an entry. Computes its hash and chains it to the previous entry.
        """
        with self._lock:
            entry.prior_record_hash = self._get_latest_hash()
            entry.signature = _compute_signature(entry)

            self._conn.execute(
                """
                INSERT INTO audit_log (
                    id, user_id, query_type, result_count, access_granted,
                    denial_reason, created_at, signature, prior_record_hash,
                    entry_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.user_id,
                    entry.query_type,
                    entry.result_count,
                    int(entry.access_granted),
                    entry.denial_reason.value if entry.denial_reason else None,
                    entry.created_at.isoformat(),
                    entry.signature,
                    entry.prior_record_hash,
                    entry.model_dump_json(),
                ),
            )
            self._conn.commit()
        return entry

    def _get_latest_hash(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT signature FROM audit_log ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def _deserialize(self, row: sqlite3.Row) -> AuditLogEntry:
        return AuditLogEntry.model_validate_json(row["entry_json"])

    def get_by_id(self, entry_id: str) -> Optional[AuditLogEntry]:
        row = self._conn.execute(
            "SELECT entry_json FROM audit_log WHERE id = ?", (entry_id,)
        ).fetchone()
        return self._deserialize(row) if row else None

    def query_for_user(self, user_id: str, limit: int = 20) -> List[AuditLogEntry]:
        """A user's most recent attempts, newest first."""
        rows = self._conn.execute(
            "SELECT entry_json FROM audit_log WHERE user_id = ? ORDER BY rowid DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_denials(self, reason: Optional[DenialReason] = None) -> List[AuditLogEntry]:
        """Entries carrying a denial reason, oldest first."""
        if reason:
            rows = self._conn.execute(
                "SELECT entry_json FROM audit_log WHERE denial_reason = ? ORDER BY rowid",
                (reason.value,),
            ).fetchall()
        else:
            rows = self._conn.execute(
                "SELECT entry_json FROM audit_log WHERE denial_reason IS NOT NULL ORDER BY rowid"
            ).fetchall()
        return [self._deserialize(r) for r in rows]

    def query_recent(self, limit: int = 50) -> List[AuditLogEntry]:
        """The most recent entries, oldest first."""
        rows = self._conn.execute(
            "SELECT entry_json FROM audit_log ORDER BY rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._deserialize(r) for r in reversed(rows)]

    def verify_chain_integrity(self) -> bool:
        """Verify no entry has been altered and no link is broken."""
        rows = self._conn.execute(
            "SELECT entry_json, signature FROM audit_log ORDER BY rowid"
        ).fetchall()

        previous_signature = None
        for row in rows:
            entry = self._deserialize(row)
            if entry.signature != row["signature"]:
                return False
            if _compute_signature(entry) != entry.signature:
                return False
            if entry.prior_record_hash != previous_signature:
                return False
            previous_signature = entry.signature

        return True

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) as cnt FROM audit_log").fetchone()
        return row["cnt"]

    def close(self) -> None:
        self._conn.close()
