"""
Database module for the EBK registration ledger.

Provides SQLite-based storage for birth certificates, transfers, and the
audit trail. Uses thread-local connections and proper indexing.

All cross-request coordination is left to SQLite: the UNIQUE constraint on
births.cert_id decides which of several concurrent inserts wins. Driver
errors never leave this module; they are re-raised as StorageError.
"""

import json
import sqlite3
import threading
from typing import Optional, List, Dict, Any
from contextlib import contextmanager

from . import config

# Thread-local storage for connection pooling
_local = threading.local()

TABLES = ("births", "transfers", "audit")


class StorageError(Exception):
    """Raised when the underlying store fails for any reason."""


def _get_connection() -> sqlite3.Connection:
    """
    Get a thread-local database connection.
    Connections are reused within the same thread for performance.
    """
    if not hasattr(_local, 'conn') or _local.conn is None:
        db_path = config.DB_PATH
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), timeout=config.DB_BUSY_TIMEOUT, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.row_factory = sqlite3.Row
        _local.conn = conn
    return _local.conn


@contextmanager
def _transaction():
    """
    Context manager for database transactions.
    Commits on success, rolls back on failure, and maps driver
    errors to StorageError.
    """
    try:
        conn = _get_connection()
    except sqlite3.Error as e:
        raise StorageError(str(e)) from e
    try:
        yield conn
        conn.commit()
    except (sqlite3.Error, OverflowError) as e:
        # OverflowError: an int parameter outside SQLite's 64-bit range
        conn.rollback()
        raise StorageError(str(e)) from e
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """
    Initialize database schema.
    Safe to call multiple times (uses IF NOT EXISTS).
    """
    with _transaction() as conn:
        conn.execute("""
        CREATE TABLE IF NOT EXISTS births (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            kit_sid TEXT,
            p1_sid TEXT,
            p2_sid TEXT,
            gen INTEGER NOT NULL DEFAULT 0,
            tier INTEGER NOT NULL DEFAULT 0,
            dna_hash TEXT,
            cert_id TEXT NOT NULL UNIQUE,
            cert_ts INTEGER NOT NULL DEFAULT 0,
            owner_uuid TEXT,
            created_at INTEGER NOT NULL
        );""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS transfers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            sid TEXT NOT NULL,
            from_owner TEXT,
            to_owner TEXT,
            ts INTEGER NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_transfers_sid
        ON transfers(sid);""")

        conn.execute("""
        CREATE TABLE IF NOT EXISTS audit (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            event TEXT NOT NULL,
            payload TEXT NOT NULL,
            ts INTEGER NOT NULL
        );""")
        conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_audit_event
        ON audit(event);""")


def record_birth(
    cert_id: str,
    created_at: int,
    kit_sid: Optional[str] = None,
    p1: Optional[str] = None,
    p2: Optional[str] = None,
    gen: Optional[int] = None,
    tier: Optional[int] = None,
    dna_hash: Optional[str] = None,
    cert_ts: Optional[int] = None,
    owner: Optional[str] = None
) -> bool:
    """
    Insert a birth certificate unless one with the same cert_id exists.

    Returns True if a row was inserted, False if the certificate was
    already recorded (the existing row is left untouched).
    """
    with _transaction() as conn:
        cur = conn.execute(
            "INSERT INTO births(kit_sid, p1_sid, p2_sid, gen, tier, dna_hash, "
            "cert_id, cert_ts, owner_uuid, created_at) VALUES(?,?,?,?,?,?,?,?,?,?) "
            "ON CONFLICT(cert_id) DO NOTHING",
            (kit_sid or None, p1 or None, p2 or None, gen or 0, tier or 0,
             dna_hash or None, cert_id, cert_ts or 0, owner or None, created_at)
        )
        return cur.rowcount == 1


def record_transfer(sid: str, from_owner: Optional[str], to_owner: Optional[str], ts: int) -> None:
    """Append a transfer event. No dedup and no ownership lookup."""
    with _transaction() as conn:
        conn.execute(
            "INSERT INTO transfers(sid, from_owner, to_owner, ts) VALUES(?,?,?,?)",
            (sid, from_owner or None, to_owner or None, ts)
        )


def append_audit(event: str, payload: Dict[str, Any], ts: int) -> None:
    """Append a raw accepted request to the audit table."""
    with _transaction() as conn:
        conn.execute(
            "INSERT INTO audit(event, payload, ts) VALUES(?,?,?)",
            (event, json.dumps(payload, sort_keys=True), ts)
        )


def get_certificate(cert_id: str) -> Optional[Dict[str, Any]]:
    """Retrieve a birth certificate by cert_id."""
    with _transaction() as conn:
        cur = conn.execute("SELECT * FROM births WHERE cert_id=? LIMIT 1", (cert_id,))
        row = cur.fetchone()
    return dict(row) if row else None


def export_audit_log() -> List[Dict[str, Any]]:
    """Export the complete audit trail, oldest first, payloads decoded."""
    with _transaction() as conn:
        cur = conn.execute("SELECT id, event, payload, ts FROM audit ORDER BY id ASC")
        rows = cur.fetchall()
    entries = []
    for row in rows:
        entry = dict(row)
        entry["payload"] = json.loads(entry["payload"])
        entries.append(entry)
    return entries


def list_transfers(sid: str) -> List[Dict[str, Any]]:
    """Transfer history for one subject, oldest first."""
    with _transaction() as conn:
        cur = conn.execute(
            "SELECT id, sid, from_owner, to_owner, ts FROM transfers WHERE sid=? ORDER BY id ASC",
            (sid,)
        )
        return [dict(row) for row in cur.fetchall()]


# ============================================================
# Metrics
# ============================================================

def get_db_stats() -> Dict[str, int]:
    """Get row counts per table for monitoring."""
    stats = {}
    with _transaction() as conn:
        for table in TABLES:
            cur = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}")
            stats[f"{table}_count"] = cur.fetchone()['cnt']
    return stats


# ============================================================
# Test Support: Database Reset
# ============================================================

def reset_db() -> None:
    """
    Reset the database for test isolation.
    Clears all tables but preserves schema.
    """
    with _transaction() as conn:
        for table in TABLES:
            conn.execute(f"DELETE FROM {table}")


def close_connection() -> None:
    """Close the thread-local connection (for cleanup)."""
    if hasattr(_local, 'conn') and _local.conn is not None:
        _local.conn.close()
        _local.conn = None
