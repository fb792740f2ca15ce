"""
GoFlow inventory-counts snapshot.

Requests the inventory counts report, polls its location until GoFlow
finishes generating it, downloads the JSON file and replaces the local
``inventory_counts`` table in one transaction.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from services import db as db_service
from services.errors import ParseError, UpstreamError
from services.http_client import UpstreamClient, goflow_client, goflow_url
from services.po_model import iso, to_int, utc_now

logger = logging.getLogger(__name__)

INVENTORY_TABLE = "inventory_counts"
LAST_SYNC_KV_KEY = "inventory_counts_last_sync_utc"
REPORT_COLUMNS = [
    "product_id",
    "product_item_number",
    "warehouse_name",
    "product_name",
    "on_hand",
    "available",
    "on_purchase_order",
]
POLL_MAX_ATTEMPTS = 20
POLL_DELAY_SECONDS = 2.0
SCHEMA_ENSURED = False


def ensure_inventory_schema() -> None:
    global SCHEMA_ENSURED
    if SCHEMA_ENSURED:
        return
    db_service.execute_write(
        f"""
        CREATE TABLE IF NOT EXISTS {INVENTORY_TABLE} (
            product_id TEXT,
            product_item_number TEXT,
            warehouse_name TEXT,
            product_name TEXT,
            on_hand INTEGER DEFAULT 0,
            available INTEGER DEFAULT 0,
            on_purchase_order INTEGER DEFAULT 0,
            updated_at TEXT
        )
        """
    )
    db_service.execute_write(
        f"CREATE INDEX IF NOT EXISTS idx_{INVENTORY_TABLE}_item ON {INVENTORY_TABLE}(product_item_number)"
    )
    db_service.ensure_app_kv_table()
    SCHEMA_ENSURED = True


def _report_status(report: Dict[str, Any]) -> Optional[str]:
    return report.get("status") or report.get("state") or (report.get("report") or {}).get("status")


def poll_report(
    client: UpstreamClient,
    location_url: str,
    *,
    max_attempts: int = POLL_MAX_ATTEMPTS,
    delay_seconds: float = POLL_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    for attempt in range(1, max_attempts + 1):
        report = client.get_json(location_url) or {}
        status = _report_status(report)
        if status == "completed":
            return report
        if status == "error":
            message = (report.get("error") or {}).get("message") or "Report generation failed"
            raise UpstreamError(message, url=location_url)
        logger.debug("[InventorySync] Report not ready (attempt %d/%d, status=%s)", attempt, max_attempts, status)
        sleep(delay_seconds)
    raise UpstreamError("Report not ready after polling", url=location_url)


def fetch_report_rows(client: UpstreamClient, report: Dict[str, Any]) -> List[Dict[str, Any]]:
    file_url = (report.get("completed") or {}).get("file_url")
    if not file_url:
        return []
    rows = client.download_json(file_url)
    if not isinstance(rows, list):
        raise ParseError("Report file did not return a JSON array. Check report format.")
    return rows


def replace_inventory_counts(rows: List[Dict[str, Any]]) -> int:
    ensure_inventory_schema()
    if not rows:
        return 0
    updated_at = iso(utc_now())
    params = [
        (
            str(row.get("product_id") or ""),
            row.get("product_item_number") or "",
            row.get("warehouse_name") or "",
            row.get("product_name") or "",
            to_int(row.get("on_hand")),
            to_int(row.get("available")),
            to_int(row.get("on_purchase_order")),
            updated_at,
        )
        for row in rows
        if isinstance(row, dict)
    ]
    with db_service.write_transaction() as conn:
        conn.execute(f"DELETE FROM {INVENTORY_TABLE}")
        conn.executemany(
            f"""
            INSERT INTO {INVENTORY_TABLE} (
                product_id, product_item_number, warehouse_name, product_name,
                on_hand, available, on_purchase_order, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            params,
        )
        db_service.set_app_kv(conn, LAST_SYNC_KV_KEY, updated_at)
    return len(params)


def sync_inventory_counts(
    client: Optional[UpstreamClient] = None,
    *,
    base_url: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    client = client or goflow_client()
    data = client.post_json(
        goflow_url("reports/inventory/counts", base_url),
        {"columns": REPORT_COLUMNS, "format": "json"},
    )
    location = (data or {}).get("location")
    if not location:
        raise UpstreamError("GoFlow report did not return a location URL")

    report = poll_report(client, location, sleep=sleep)
    rows = fetch_report_rows(client, report)
    stored = replace_inventory_counts(rows)
    logger.info("[InventorySync] Inventory sync complete. Rows received: %d. Rows stored: %d.", len(rows), stored)
    return {"received": len(rows), "stored": stored}


def find_by_item(item_number: str) -> Optional[Dict[str, Any]]:
    """Totals across warehouses for one item from the last snapshot, or None."""
    ensure_inventory_schema()
    with db_service.get_db_connection() as conn:
        row = conn.execute(
            f"""
            SELECT product_item_number,
                   COUNT(*) AS rows_count,
                   SUM(on_hand) AS on_hand,
                   SUM(available) AS available,
                   SUM(on_purchase_order) AS on_purchase_order
            FROM {INVENTORY_TABLE}
            WHERE product_item_number = ?
            GROUP BY product_item_number
            """,
            (item_number,),
        ).fetchone()
    if not row:
        return None
    return {
        "item_number": row["product_item_number"],
        "on_hand": row["on_hand"] or 0,
        "available": row["available"] or 0,
        "on_purchase_order": row["on_purchase_order"] or 0,
        "warehouse_rows": row["rows_count"],
    }
