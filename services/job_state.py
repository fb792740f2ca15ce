"""
Persisted run guards for the batch jobs.

Each job has one row in ``job_state``. A run acquires the row (running flag,
owner, lock token, lock expiry) before touching upstreams and releases it on
exit with a status. Only the run holding the current token can extend or
release the lock. A lock whose expiry has passed belongs to a crashed run and
is reclaimed. An optional cooldown rejects runs that start too soon after the
last one.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import config
from services import db as db_service
from services.errors import PreconditionError
from services.po_model import iso, parse_timestamp, utc_now

LOGGER = logging.getLogger(__name__)
STATE_TABLE = "job_state"
SCHEMA_ENSURED = False

STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"
STATUS_THROTTLED = "THROTTLED"


@dataclass
class JobState:
    name: str
    running: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    last_ok_at: Optional[datetime] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    lock_owner: Optional[str] = None
    lock_token: Optional[str] = None
    lock_expires_at: Optional[datetime] = None

    @property
    def last_run_at(self) -> Optional[datetime]:
        return self.last_ok_at

    def is_locked(self, now: datetime) -> bool:
        return self.running and self.lock_expires_at is not None and self.lock_expires_at > now

    def as_dict(self) -> dict:
        return {
            "name": self.name,
            "running": self.running,
            "started_at": iso(self.started_at),
            "finished_at": iso(self.finished_at),
            "last_ok_at": iso(self.last_ok_at),
            "last_status": self.last_status,
            "last_error": self.last_error,
            "lock_owner": self.lock_owner,
            "lock_expires_at": iso(self.lock_expires_at),
        }


def ensure_job_state_schema() -> None:
    global SCHEMA_ENSURED
    if SCHEMA_ENSURED:
        return
    with db_service.write_transaction() as conn:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {STATE_TABLE} (
                name TEXT PRIMARY KEY,
                running INTEGER DEFAULT 0,
                started_at TEXT,
                finished_at TEXT,
                last_ok_at TEXT,
                last_status TEXT,
                last_error TEXT,
                lock_owner TEXT,
                lock_token TEXT,
                lock_expires_at TEXT
            )
            """
        )
        db_service.ensure_column(conn, STATE_TABLE, "lock_token", "TEXT")
    SCHEMA_ENSURED = True


def _ttl(ttl_seconds: Optional[float]) -> timedelta:
    return timedelta(seconds=ttl_seconds if ttl_seconds is not None else config.JOB_LOCK_TTL_MINUTES * 60)


def _row_to_state(name: str, row) -> JobState:
    if not row:
        return JobState(name=name)
    return JobState(
        name=name,
        running=bool(row["running"]),
        started_at=parse_timestamp(row["started_at"]),
        finished_at=parse_timestamp(row["finished_at"]),
        last_ok_at=parse_timestamp(row["last_ok_at"]),
        last_status=row["last_status"],
        last_error=row["last_error"],
        lock_owner=row["lock_owner"],
        lock_token=row["lock_token"],
        lock_expires_at=parse_timestamp(row["lock_expires_at"]),
    )


def load_job_state(name: str) -> JobState:
    ensure_job_state_schema()
    with db_service.get_db_connection() as conn:
        row = conn.execute(f"SELECT * FROM {STATE_TABLE} WHERE name = ?", (name,)).fetchone()
    return _row_to_state(name, row)


def is_job_running(name: str, now: Optional[datetime] = None) -> bool:
    return load_job_state(name).is_locked(now or utc_now())


def acquire_job(
    name: str,
    owner: str,
    *,
    now: Optional[datetime] = None,
    ttl_seconds: Optional[float] = None,
    cooldown: Optional[timedelta] = None,
    last_run_at: Optional[datetime] = None,
) -> JobState:
    """
    Mark ``name`` as running for ``owner`` under a fresh lock token.

    The returned state carries ``lock_token``; pass it to extend_job_lock and
    release_job. Raises PreconditionError(reason="running") while another live
    run holds the lock, and PreconditionError(reason="cooldown") when
    ``cooldown`` has not elapsed since ``last_run_at`` (defaults to the last
    successful run).
    """
    ensure_job_state_schema()
    owner = owner or "unknown"
    now = now or utc_now()
    token = uuid.uuid4().hex

    with db_service.write_transaction() as conn:
        row = conn.execute(f"SELECT * FROM {STATE_TABLE} WHERE name = ?", (name,)).fetchone()
        state = _row_to_state(name, row)

        if state.is_locked(now):
            LOGGER.info("[JobState] %s already held by %s until %s", name, state.lock_owner, iso(state.lock_expires_at))
            remaining = int((state.lock_expires_at - now).total_seconds())
            raise PreconditionError(f"{name} is already running", reason="running", retry_after_seconds=remaining)
        if state.running:
            LOGGER.warning("[JobState] Detected stale %s lock held by %s; reclaiming", name, state.lock_owner or "unknown")

        reference = last_run_at if last_run_at is not None else state.last_ok_at
        if cooldown and reference is not None and now - reference < cooldown:
            wait = int((reference + cooldown - now).total_seconds()) + 1
            minutes, seconds = divmod(wait, 60)
            raise PreconditionError(
                f"Please wait {minutes} minute{'s' if minutes != 1 else ''} "
                f"{seconds} second{'s' if seconds != 1 else ''} before running {name} again.",
                reason="cooldown",
                retry_after_seconds=wait,
            )

        conn.execute(
            f"""
            INSERT INTO {STATE_TABLE} (
                name, running, started_at, finished_at, lock_owner, lock_token, lock_expires_at, last_error
            )
            VALUES (?, 1, ?, NULL, ?, ?, ?, NULL)
            ON CONFLICT(name) DO UPDATE SET
                running = 1,
                started_at = excluded.started_at,
                finished_at = NULL,
                lock_owner = excluded.lock_owner,
                lock_token = excluded.lock_token,
                lock_expires_at = excluded.lock_expires_at,
                last_error = NULL
            """,
            (name, iso(now), owner, token, iso(now + _ttl(ttl_seconds))),
        )
    LOGGER.info("[JobState] %s acquired by %s", name, owner)
    return load_job_state(name)


def extend_job_lock(
    name: str,
    token: str,
    *,
    now: Optional[datetime] = None,
    ttl_seconds: Optional[float] = None,
) -> bool:
    """Push the lock expiry to ``now + ttl``; False when ``token`` no longer holds the lock."""
    ensure_job_state_schema()
    now = now or utc_now()
    with db_service.write_transaction() as conn:
        cur = conn.execute(
            f"UPDATE {STATE_TABLE} SET lock_expires_at = ? WHERE name = ? AND running = 1 AND lock_token = ?",
            (iso(now + _ttl(ttl_seconds)), name, token),
        )
        extended = cur.rowcount > 0
    if not extended:
        LOGGER.warning("[JobState] %s lock is no longer held by this run; not extended", name)
    return extended


def release_job(
    name: str,
    token: str,
    *,
    status: str,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> JobState:
    """
    Clear the running flag and persist the outcome of the run.

    Nothing is written when another run has since taken over the lock.
    """
    ensure_job_state_schema()
    now_iso = iso(now or utc_now())
    success = status == STATUS_SUCCESS
    with db_service.write_transaction() as conn:
        cur = conn.execute(
            f"""
            UPDATE {STATE_TABLE}
            SET running = 0,
                finished_at = ?,
                last_ok_at = CASE WHEN ? THEN ? ELSE last_ok_at END,
                last_status = ?,
                last_error = ?,
                lock_owner = NULL,
                lock_token = NULL,
                lock_expires_at = NULL
            WHERE name = ? AND (lock_token = ? OR lock_token IS NULL)
            """,
            (
                now_iso,
                1 if success else 0,
                now_iso,
                status,
                None if success else (error or "").strip() or None,
                name,
                token,
            ),
        )
        released = cur.rowcount > 0
    if released:
        LOGGER.info("[JobState] %s released with status %s", name, status)
    else:
        LOGGER.warning("[JobState] %s lock was taken over by another run; %s outcome not recorded", name, status)
    return load_job_state(name)
