import json
import logging
from datetime import datetime
from typing import Optional

from services import db as db_service
from services.po_model import LateOrderReport, iso, parse_timestamp

logger = logging.getLogger(__name__)
REPORT_TABLE = "late_order_reports"
SCHEMA_ENSURED = False


def ensure_report_schema() -> None:
    global SCHEMA_ENSURED
    if SCHEMA_ENSURED:
        return
    db_service.execute_write(
        f"""
        CREATE TABLE IF NOT EXISTS {REPORT_TABLE} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            report_date TEXT NOT NULL,
            cutoff_date TEXT NOT NULL,
            summary_json TEXT NOT NULL,
            items_json TEXT NOT NULL
        )
        """
    )
    SCHEMA_ENSURED = True


def replace_current_report(report: LateOrderReport) -> int:
    """
    Swap the stored report for ``report``.

    Delete and insert share one transaction, so readers see either the old
    report or the new one, never an empty table or a partial document.
    """
    ensure_report_schema()
    payload = report.model_dump(mode="json")
    with db_service.write_transaction() as conn:
        conn.execute(f"DELETE FROM {REPORT_TABLE}")
        cur = conn.execute(
            f"""
            INSERT INTO {REPORT_TABLE} (report_date, cutoff_date, summary_json, items_json)
            VALUES (?, ?, ?, ?)
            """,
            (
                iso(report.report_date),
                iso(report.cutoff_date),
                json.dumps(payload["summary"], ensure_ascii=False),
                json.dumps(payload["items"], ensure_ascii=False),
            ),
        )
        report_id = cur.lastrowid
    logger.info("[ReportStore] Stored late-order report id=%s date=%s", report_id, iso(report.report_date))
    return report_id


def get_current_report() -> Optional[LateOrderReport]:
    ensure_report_schema()
    with db_service.get_db_connection() as conn:
        row = conn.execute(
            f"SELECT * FROM {REPORT_TABLE} ORDER BY report_date DESC, id DESC LIMIT 1"
        ).fetchone()
    if not row:
        return None
    return LateOrderReport(
        report_date=parse_timestamp(row["report_date"]),
        cutoff_date=parse_timestamp(row["cutoff_date"]),
        summary=json.loads(row["summary_json"]),
        items=json.loads(row["items_json"]),
    )


def get_latest_report_date() -> Optional[datetime]:
    ensure_report_schema()
    with db_service.get_db_connection() as conn:
        row = conn.execute(f"SELECT MAX(report_date) AS latest FROM {REPORT_TABLE}").fetchone()
    return parse_timestamp(row["latest"]) if row else None
