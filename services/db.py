import logging
import sqlite3
from contextlib import contextmanager
from threading import Lock
from typing import Any

import config

logger = logging.getLogger(__name__)
WAREHOUSE_DB_PATH = config.WAREHOUSE_DB_PATH

# ====================================================================
# SQLITE HARDENING WITH WAL MODE + TIMEOUT + WRITE LOCK
# - WAL mode allows concurrent reads while serializing writes
# - 10s timeout prevents infinite hangs on database locks
# - _db_write_lock serializes all INSERT/UPDATE/DELETE to prevent SQLITE_BUSY
# ====================================================================

_db_write_lock = Lock()
_db_timeout = 10  # seconds


@contextmanager
def get_db_connection():
    """
    Context manager for safe SQLite connection.
    - Enforces timeout to prevent infinite waits
    - Enables WAL mode for better concurrency
    - Ensures cleanup even on exception
    """
    conn = None
    try:
        conn = sqlite3.connect(WAREHOUSE_DB_PATH, timeout=_db_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        yield conn
    except sqlite3.DatabaseError as e:
        logger.error(f"[DB] Database error: {e}", exc_info=True)
        raise
    finally:
        if conn:
            try:
                conn.close()
            except Exception as e:
                logger.warning(f"[DB] Error closing connection: {e}")


@contextmanager
def write_transaction():
    """
    Hold the write lock for a multi-statement transaction.

    Commits when the block exits cleanly, rolls back otherwise, so readers
    never observe a half-applied change.
    """
    with _db_write_lock:
        with get_db_connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise


def execute_write(sql: str, params: tuple = (), commit: bool = True):
    """
    Serialize all write operations to prevent SQLITE_BUSY errors.

    Returns the number of rows affected.
    """
    with _db_write_lock:
        with get_db_connection() as conn:
            try:
                cur = conn.execute(sql, params)
                if commit:
                    conn.commit()
                return cur.rowcount
            except sqlite3.OperationalError as e:
                if "database is locked" in str(e):
                    logger.error(f"[DB] Database locked after {_db_timeout}s timeout: {e}")
                raise
            except Exception as exc:
                logger.error(f"[DB] Write failed for SQL: {sql} params={params}: {exc}", exc_info=True)
                raise


def ensure_column(conn: sqlite3.Connection, table: str, column: str, ddl: str) -> None:
    """Add a column to an existing table when an older database lacks it."""
    columns = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
    if column in columns:
        return
    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
    logger.info(f"[DB] Added column {column} to {table}")


# ====================================================================
# APP KEY/VALUE STORE
# ====================================================================

def ensure_app_kv_table() -> None:
    execute_write(
        """
        CREATE TABLE IF NOT EXISTS app_kv (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


def set_app_kv(conn: sqlite3.Connection, key: str, value: Any) -> None:
    """Write on the caller's transaction; the caller commits."""
    conn.execute(
        """
        INSERT INTO app_kv (key, value, updated_at)
        VALUES (?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(key) DO UPDATE SET
            value = excluded.value,
            updated_at = CURRENT_TIMESTAMP
        """,
        (key, None if value is None else str(value)),
    )
