"""Append-only run log for the batch jobs."""

import json
import logging
from typing import Any, Dict, List, Optional

from services.db import execute_write, get_db_connection
from services.po_model import iso, utc_now

TABLE_NAME = "function_logs"
logger = logging.getLogger(__name__)
SCHEMA_ENSURED = False


def ensure_function_log_table() -> None:
    global SCHEMA_ENSURED
    if SCHEMA_ENSURED:
        return
    sql = f"""
    CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        message TEXT NOT NULL,
        level TEXT NOT NULL,
        meta_json TEXT,
        timestamp TEXT NOT NULL
    )
    """
    execute_write(sql)
    SCHEMA_ENSURED = True


def log_function_run(message: str, level: str = "info", meta: Optional[Dict[str, Any]] = None) -> None:
    """Record one job outcome. Failing to record never fails the job."""
    try:
        ensure_function_log_table()
        execute_write(
            f"INSERT INTO {TABLE_NAME} (message, level, meta_json, timestamp) VALUES (?, ?, ?, ?)",
            (message, level, json.dumps(meta or {}, ensure_ascii=False, default=str), iso(utc_now())),
        )
    except Exception as exc:
        logger.warning("[function_log] Failed to log function run: %s", exc)


def list_function_logs(limit: int = 50) -> List[Dict[str, object]]:
    ensure_function_log_table()
    limit = max(1, min(limit, 500))
    with get_db_connection() as conn:
        rows = conn.execute(
            f"SELECT id, message, level, meta_json, timestamp FROM {TABLE_NAME} ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
    result: List[Dict[str, object]] = []
    for row in rows:
        entry = dict(row)
        entry["meta"] = json.loads(entry.pop("meta_json") or "{}")
        result.append(entry)
    return result
