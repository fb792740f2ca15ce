import logging
import sqlite3
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from services import db as db_service
from services.errors import NotFoundError
from services.po_model import (
    POLine,
    POStatus,
    PurchaseOrder,
    SchemaVariant,
    iso,
    parse_calendar_date,
    parse_timestamp,
    utc_now,
)

LOGGER = logging.getLogger(__name__)
HEADER_TABLE = "purchase_orders"
LINE_TABLE = "purchase_order_lines"
SCHEMA_ENSURED = False

# Operator-entered; a sync never overwrites these
LOCAL_FIELDS = ("delivery_method", "supplier_po_number", "expected_arrival")

_LINE_COLUMNS = (
    "line_id",
    "item_number",
    "product_id",
    "sku",
    "product_name",
    "upc",
    "ordered_qty",
    "received_qty",
    "goflow_qty",
    "goflow_delivered_qty",
    "fba_qty",
    "fba_delivered_qty",
)


def ensure_po_schema() -> None:
    """
    Ensure PO header/line tables exist with required columns/indexes.
    Safe to call repeatedly.
    """
    global SCHEMA_ENSURED
    if SCHEMA_ENSURED:
        return

    with db_service.get_db_connection() as conn:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {HEADER_TABLE} (
                po_number TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                vendor_name TEXT,
                po_date TEXT,
                expected_arrival TEXT,
                delivery_method TEXT,
                supplier_po_number TEXT,
                schema_variant TEXT,
                source TEXT,
                status_updated_at TEXT,
                last_synced_at TEXT
            )
            """
        )
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {LINE_TABLE} (
                po_number TEXT NOT NULL,
                line_index INTEGER NOT NULL,
                line_id TEXT,
                item_number TEXT,
                product_id TEXT,
                sku TEXT,
                product_name TEXT,
                upc TEXT,
                ordered_qty INTEGER DEFAULT 0,
                received_qty INTEGER DEFAULT 0,
                goflow_qty INTEGER DEFAULT 0,
                goflow_delivered_qty INTEGER DEFAULT 0,
                fba_qty INTEGER DEFAULT 0,
                fba_delivered_qty INTEGER DEFAULT 0,
                PRIMARY KEY (po_number, line_index)
            )
            """
        )
        # Backwards-compatible migrations (if columns were added later)
        db_service.ensure_column(conn, HEADER_TABLE, "supplier_po_number", "TEXT")
        db_service.ensure_column(conn, HEADER_TABLE, "status_updated_at", "TEXT")
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{HEADER_TABLE}_status ON {HEADER_TABLE}(status)")
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{LINE_TABLE}_item ON {LINE_TABLE}(item_number)")
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{LINE_TABLE}_sku ON {LINE_TABLE}(sku)")
        conn.commit()
    SCHEMA_ENSURED = True


def _date_str(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


def _header_params(po: PurchaseOrder, synced_at: str) -> Tuple[Any, ...]:
    return (
        po.po_number,
        po.status.value,
        po.vendor_name,
        _date_str(po.po_date),
        _date_str(po.expected_arrival),
        po.delivery_method,
        po.supplier_po_number,
        po.schema_variant.value if po.schema_variant else None,
        po.source,
        iso(po.status_updated_at),
        synced_at,
    )


def _line_params(po_number: str, index: int, line: POLine) -> Tuple[Any, ...]:
    return (po_number, index) + tuple(getattr(line, col) for col in _LINE_COLUMNS)


def write_purchase_order(conn: sqlite3.Connection, po: PurchaseOrder, *, synced_at: Optional[str] = None) -> None:
    """
    Insert or replace one PO (header + lines) on an open transaction.

    On conflict every feed-owned column is replaced; LOCAL_FIELDS keep their
    stored value, and status_updated_at keeps its stored value unless the feed
    carries one.
    stored value.
    """
    synced_at = synced_at or iso(utc_now())
    conn.execute(
        f"""
        INSERT INTO {HEADER_TABLE} (
            po_number, status, vendor_name, po_date, expected_arrival,
            delivery_method, supplier_po_number, schema_variant, source,
            status_updated_at, last_synced_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(po_number) DO UPDATE SET
            status=excluded.status,
            vendor_name=excluded.vendor_name,
            po_date=excluded.po_date,
            schema_variant=excluded.schema_variant,
            source=excluded.source,
            status_updated_at=COALESCE(excluded.status_updated_at, status_updated_at),
            last_synced_at=excluded.last_synced_at
        """,
        _header_params(po, synced_at),
    )
    conn.execute(f"DELETE FROM {LINE_TABLE} WHERE po_number = ?", (po.po_number,))
    if po.lines:
        placeholders = ", ".join(["?"] * (len(_LINE_COLUMNS) + 2))
        conn.executemany(
            f"""
            INSERT INTO {LINE_TABLE} (po_number, line_index, {", ".join(_LINE_COLUMNS)})
            VALUES ({placeholders})
            """,
            [_line_params(po.po_number, idx, line) for idx, line in enumerate(po.lines)],
        )


def upsert_purchase_order(po: PurchaseOrder, *, synced_at: Optional[str] = None) -> None:
    ensure_po_schema()
    with db_service.write_transaction() as conn:
        write_purchase_order(conn, po, synced_at=synced_at)


def _row_to_line(row: sqlite3.Row) -> POLine:
    return POLine(**{col: row[col] for col in _LINE_COLUMNS})


def _row_to_po(row: sqlite3.Row, lines: Sequence[POLine] = ()) -> PurchaseOrder:
    variant = row["schema_variant"]
    return PurchaseOrder(
        po_number=row["po_number"],
        status=POStatus(row["status"]),
        vendor_name=row["vendor_name"],
        po_date=parse_calendar_date(row["po_date"]),
        expected_arrival=parse_calendar_date(row["expected_arrival"]),
        delivery_method=row["delivery_method"],
        supplier_po_number=row["supplier_po_number"],
        lines=list(lines),
        schema_variant=SchemaVariant(variant) if variant else None,
        source=row["source"] or "",
        status_updated_at=parse_timestamp(row["status_updated_at"]),
    )


def _load_lines(conn: sqlite3.Connection, po_numbers: Iterable[str]) -> Dict[str, List[POLine]]:
    numbers = list(po_numbers)
    lines: Dict[str, List[POLine]] = {n: [] for n in numbers}
    if not numbers:
        return lines
    # SQLite caps bound parameters; chunk large IN lists
    for start in range(0, len(numbers), 500):
        chunk = numbers[start : start + 500]
        placeholders = ",".join(["?"] * len(chunk))
        rows = conn.execute(
            f"""
            SELECT * FROM {LINE_TABLE}
            WHERE po_number IN ({placeholders})
            ORDER BY po_number, line_index
            """,
            tuple(chunk),
        ).fetchall()
        for row in rows:
            lines[row["po_number"]].append(_row_to_line(row))
    return lines


def get_purchase_order(po_number: str) -> Optional[PurchaseOrder]:
    ensure_po_schema()
    with db_service.get_db_connection() as conn:
        row = conn.execute(f"SELECT * FROM {HEADER_TABLE} WHERE po_number = ?", (po_number,)).fetchone()
        if not row:
            return None
        lines = _load_lines(conn, [po_number])
    return _row_to_po(row, lines[po_number])


def require_purchase_order(po_number: str) -> PurchaseOrder:
    po = get_purchase_order(po_number)
    if po is None:
        raise NotFoundError(f"Purchase order {po_number} not found")
    return po


def get_purchase_orders(po_numbers: Iterable[str]) -> Dict[str, PurchaseOrder]:
    """Return stored POs keyed by number; unknown numbers are simply absent."""
    ensure_po_schema()
    numbers = sorted({n for n in po_numbers if n})
    if not numbers:
        return {}
    result: Dict[str, PurchaseOrder] = {}
    with db_service.get_db_connection() as conn:
        lines = _load_lines(conn, numbers)
        for start in range(0, len(numbers), 500):
            chunk = numbers[start : start + 500]
            placeholders = ",".join(["?"] * len(chunk))
            rows = conn.execute(
                f"SELECT * FROM {HEADER_TABLE} WHERE po_number IN ({placeholders})",
                tuple(chunk),
            ).fetchall()
            for row in rows:
                result[row["po_number"]] = _row_to_po(row, lines.get(row["po_number"], []))
    return result


def list_stored_po_numbers() -> List[str]:
    ensure_po_schema()
    with db_service.get_db_connection() as conn:
        rows = conn.execute(f"SELECT po_number FROM {HEADER_TABLE}").fetchall()
    return [row["po_number"] for row in rows]


def load_all_purchase_orders() -> List[PurchaseOrder]:
    """Every stored PO with its lines, as consumed by the late-order report."""
    ensure_po_schema()
    with db_service.get_db_connection() as conn:
        rows = conn.execute(f"SELECT * FROM {HEADER_TABLE} ORDER BY po_number").fetchall()
        lines = _load_lines(conn, [row["po_number"] for row in rows])
    return [_row_to_po(row, lines.get(row["po_number"], [])) for row in rows]


def list_purchase_orders(
    *,
    status: Optional[str] = None,
    vendor: Optional[str] = None,
    include_lines: bool = False,
    page: Optional[int] = None,
    limit: int = 50,
) -> Dict[str, Any]:
    """
    Return non-complete POs (or exactly ``status`` when given), newest first.

    ``page=None`` returns every match; otherwise ``limit`` is clamped to 1..200.
    """
    ensure_po_schema()
    clauses: List[str] = []
    params: List[Any] = []
    if status:
        clauses.append("status = ?")
        params.append(POStatus.from_source(status).value)
    else:
        clauses.append("status != ?")
        params.append(POStatus.COMPLETE.value)
    if vendor:
        clauses.append("vendor_name = ?")
        params.append(vendor)
    where_clause = f"WHERE {' AND '.join(clauses)}"

    limit_clause = ""
    query_params = list(params)
    if page is not None:
        page = max(1, int(page))
        limit = min(200, max(1, int(limit)))
        limit_clause = " LIMIT ? OFFSET ?"
        query_params.extend([limit, (page - 1) * limit])

    with db_service.get_db_connection() as conn:
        total = conn.execute(f"SELECT COUNT(*) AS c FROM {HEADER_TABLE} {where_clause}", tuple(params)).fetchone()["c"]
        rows = conn.execute(
            f"""
            SELECT * FROM {HEADER_TABLE}
            {where_clause}
            ORDER BY po_date DESC, po_number DESC
            {limit_clause}
            """,
            tuple(query_params),
        ).fetchall()
        lines = _load_lines(conn, [row["po_number"] for row in rows]) if include_lines else {}

    orders = [_row_to_po(row, lines.get(row["po_number"], [])) for row in rows]
    result: Dict[str, Any] = {"orders": orders, "total": total}
    if page is None:
        result["all"] = True
    else:
        result.update({"page": page, "limit": limit})
    return result


def delete_purchase_orders(conn: sqlite3.Connection, po_numbers: Iterable[str]) -> int:
    """Delete POs (and their lines) on an open transaction; returns headers removed."""
    removed = 0
    for po_number in po_numbers:
        conn.execute(f"DELETE FROM {LINE_TABLE} WHERE po_number = ?", (po_number,))
        cur = conn.execute(f"DELETE FROM {HEADER_TABLE} WHERE po_number = ?", (po_number,))
        removed += cur.rowcount
    return removed


def delete_purchase_order(po_number: str) -> None:
    ensure_po_schema()
    with db_service.write_transaction() as conn:
        if delete_purchase_orders(conn, [po_number]) == 0:
            raise NotFoundError(f"Purchase order {po_number} not found")
    LOGGER.info("[POStore] Deleted PO %s", po_number)


def set_expected_arrival_value(conn: sqlite3.Connection, po_number: str, eta: Optional[date]) -> None:
    conn.execute(
        f"UPDATE {HEADER_TABLE} SET expected_arrival = ? WHERE po_number = ?",
        (_date_str(eta), po_number),
    )


def update_local_fields(
    po_number: str,
    *,
    delivery_method: Optional[str] = None,
    supplier_po_number: Optional[str] = None,
) -> PurchaseOrder:
    """Set operator-owned fields; ``None`` leaves a field unchanged."""
    ensure_po_schema()
    updates: Dict[str, str] = {}
    if delivery_method is not None:
        updates["delivery_method"] = delivery_method
    if supplier_po_number is not None:
        updates["supplier_po_number"] = supplier_po_number
    if updates:
        assignments = ", ".join(f"{col} = ?" for col in updates)
        with db_service.write_transaction() as conn:
            cur = conn.execute(
                f"UPDATE {HEADER_TABLE} SET {assignments} WHERE po_number = ?",
                tuple(updates.values()) + (po_number,),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"Purchase order {po_number} not found")
    return require_purchase_order(po_number)


def set_status(conn: sqlite3.Connection, po_numbers: Sequence[str], status: POStatus, when: datetime) -> int:
    updated = 0
    for po_number in po_numbers:
        cur = conn.execute(
            f"UPDATE {HEADER_TABLE} SET status = ?, status_updated_at = ? WHERE po_number = ?",
            (status.value, iso(when), po_number),
        )
        updated += cur.rowcount
    return updated


def update_status(
    po_number: str,
    status: Optional[str] = None,
    *,
    refresh_only: bool = False,
    now: Optional[datetime] = None,
) -> PurchaseOrder:
    """
    Set an operator-chosen status and stamp ``status_updated_at``.

    With ``refresh_only`` only the timestamp is stamped and ``status`` is
    ignored.
    """
    when = now or utc_now()
    new_status: Optional[POStatus] = None
    if not refresh_only:
        if not status:
            raise ValueError("status is required")
        try:
            new_status = POStatus(str(status).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown purchase order status: {status!r}") from None

    ensure_po_schema()
    with db_service.write_transaction() as conn:
        if new_status is None:
            cur = conn.execute(
                f"UPDATE {HEADER_TABLE} SET status_updated_at = ? WHERE po_number = ?",
                (iso(when), po_number),
            )
            updated = cur.rowcount
        else:
            updated = set_status(conn, [po_number], new_status, when)
        if updated == 0:
            raise NotFoundError(f"Purchase order {po_number} not found")
    LOGGER.info("[POStore] PO %s status %s at %s", po_number, new_status.value if new_status else "refreshed", iso(when))
    return require_purchase_order(po_number)
