"""
Delivery grouping.

POs from the same vendor expected on the same date arrive together, so the
receiving dock plans them as one delivery. A delivery is keyed by
(vendor_name, expected_arrival) among non-complete deliveries; completed
deliveries are kept for audit and printing.
"""

import logging
import sqlite3
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from services import db as db_service
from services import po_store
from services.errors import NotFoundError
from services.po_model import Delivery, POStatus, PurchaseOrder, iso, parse_calendar_date, parse_timestamp, utc_now

LOGGER = logging.getLogger(__name__)
DELIVERY_TABLE = "deliveries"
MEMBER_TABLE = "delivery_purchase_orders"
STATUS_OPEN = "open"
STATUS_COMPLETE = "complete"
SCHEMA_ENSURED = False


def ensure_delivery_schema() -> None:
    global SCHEMA_ENSURED
    if SCHEMA_ENSURED:
        return
    with db_service.get_db_connection() as conn:
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {DELIVERY_TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                vendor_name TEXT NOT NULL,
                expected_arrival TEXT NOT NULL,
                pallet_amount TEXT DEFAULT '',
                box_amount TEXT DEFAULT '',
                status TEXT NOT NULL DEFAULT 'open',
                created_at TEXT,
                completed_at TEXT
            )
            """
        )
        conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {MEMBER_TABLE} (
                delivery_id INTEGER NOT NULL,
                po_number TEXT NOT NULL,
                PRIMARY KEY (delivery_id, po_number)
            )
            """
        )
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{DELIVERY_TABLE}_key ON {DELIVERY_TABLE}(vendor_name, expected_arrival, status)"
        )
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{MEMBER_TABLE}_po ON {MEMBER_TABLE}(po_number)")
        conn.commit()
    SCHEMA_ENSURED = True


def _open_delivery_id(conn: sqlite3.Connection, vendor_name: str, eta: date) -> Optional[int]:
    row = conn.execute(
        f"""
        SELECT id FROM {DELIVERY_TABLE}
        WHERE vendor_name = ? AND expected_arrival = ? AND status != ?
        ORDER BY id
        LIMIT 1
        """,
        (vendor_name, eta.isoformat(), STATUS_COMPLETE),
    ).fetchone()
    return row["id"] if row else None


def _add_to_delivery(conn: sqlite3.Connection, vendor_name: str, eta: date, po_number: str) -> int:
    delivery_id = _open_delivery_id(conn, vendor_name, eta)
    if delivery_id is None:
        cur = conn.execute(
            f"""
            INSERT INTO {DELIVERY_TABLE} (vendor_name, expected_arrival, pallet_amount, box_amount, status, created_at)
            VALUES (?, ?, '', '', ?, ?)
            """,
            (vendor_name, eta.isoformat(), STATUS_OPEN, iso(utc_now())),
        )
        delivery_id = cur.lastrowid
        LOGGER.info("[Deliveries] Created delivery %s for %s on %s", delivery_id, vendor_name, eta)
    conn.execute(
        f"INSERT OR IGNORE INTO {MEMBER_TABLE} (delivery_id, po_number) VALUES (?, ?)",
        (delivery_id, po_number),
    )
    return delivery_id


def _remove_from_delivery(conn: sqlite3.Connection, vendor_name: str, eta: date, po_number: str) -> None:
    rows = conn.execute(
        f"SELECT id FROM {DELIVERY_TABLE} WHERE vendor_name = ? AND expected_arrival = ?",
        (vendor_name, eta.isoformat()),
    ).fetchall()
    for row in rows:
        delivery_id = row["id"]
        conn.execute(
            f"DELETE FROM {MEMBER_TABLE} WHERE delivery_id = ? AND po_number = ?",
            (delivery_id, po_number),
        )
        remaining = conn.execute(
            f"SELECT COUNT(*) AS c FROM {MEMBER_TABLE} WHERE delivery_id = ?", (delivery_id,)
        ).fetchone()["c"]
        if remaining == 0:
            conn.execute(f"DELETE FROM {DELIVERY_TABLE} WHERE id = ?", (delivery_id,))
            LOGGER.info("[Deliveries] Removed empty delivery %s (%s on %s)", delivery_id, vendor_name, eta)


def on_eta_set(po: PurchaseOrder, conn: Optional[sqlite3.Connection] = None) -> Optional[int]:
    """
    Add ``po`` to the open delivery for its vendor and expected arrival.

    Runs on ``conn`` when the caller already holds a write transaction.
    """
    if not po.expected_arrival or not po.vendor_name:
        return None
    if conn is not None:
        return _add_to_delivery(conn, po.vendor_name, po.expected_arrival, po.po_number)
    ensure_delivery_schema()
    with db_service.write_transaction() as conn:
        return _add_to_delivery(conn, po.vendor_name, po.expected_arrival, po.po_number)


def on_eta_cleared(po: PurchaseOrder, conn: Optional[sqlite3.Connection] = None) -> None:
    """Pull ``po`` out of the delivery for its previous expected arrival."""
    if not po.expected_arrival or not po.vendor_name:
        return
    if conn is not None:
        _remove_from_delivery(conn, po.vendor_name, po.expected_arrival, po.po_number)
        return
    ensure_delivery_schema()
    with db_service.write_transaction() as conn:
        _remove_from_delivery(conn, po.vendor_name, po.expected_arrival, po.po_number)


def set_expected_arrival(po_number: str, eta: Any) -> PurchaseOrder:
    eta_date = parse_calendar_date(eta)
    if eta_date is None:
        raise ValueError(f"Invalid expected arrival date: {eta!r}")
    ensure_delivery_schema()
    po = po_store.require_purchase_order(po_number)
    updated = po.model_copy(update={"expected_arrival": eta_date})
    with db_service.write_transaction() as conn:
        if po.expected_arrival and po.expected_arrival != eta_date:
            on_eta_cleared(po, conn)
        po_store.set_expected_arrival_value(conn, po_number, eta_date)
        on_eta_set(updated, conn)
    return updated


def clear_expected_arrival(po_number: str) -> PurchaseOrder:
    ensure_delivery_schema()
    po = po_store.require_purchase_order(po_number)
    with db_service.write_transaction() as conn:
        po_store.set_expected_arrival_value(conn, po_number, None)
        on_eta_cleared(po, conn)
    return po.model_copy(update={"expected_arrival": None})


def mark_complete(po_numbers: Sequence[str]) -> Dict[str, int]:
    """
    Mark POs complete and close every delivery that contains any of them.

    Closed deliveries are kept, stamped with ``completed_at``.
    """
    numbers = sorted({n for n in po_numbers if n})
    if not numbers:
        raise ValueError("po_numbers is required")
    ensure_delivery_schema()
    po_store.ensure_po_schema()
    now = utc_now()
    placeholders = ",".join(["?"] * len(numbers))
    with db_service.write_transaction() as conn:
        updated = po_store.set_status(conn, numbers, POStatus.COMPLETE, now)
        cur = conn.execute(
            f"""
            UPDATE {DELIVERY_TABLE}
            SET status = ?, completed_at = ?
            WHERE id IN (
                SELECT delivery_id FROM {MEMBER_TABLE} WHERE po_number IN ({placeholders})
            )
            """,
            (STATUS_COMPLETE, iso(now), *numbers),
        )
        deliveries_closed = cur.rowcount
    LOGGER.info("[Deliveries] Marked %d POs and %d deliveries complete", updated, deliveries_closed)
    return {"matched": updated, "deliveries_completed": deliveries_closed}


def update_delivery_amounts(
    *,
    delivery_id: Optional[int] = None,
    vendor_name: Optional[str] = None,
    expected_arrival: Any = None,
    pallet_amount: Optional[str] = None,
    box_amount: Optional[str] = None,
) -> Delivery:
    if delivery_id is None and (not vendor_name or not expected_arrival):
        raise ValueError("delivery_id or vendor_name and expected_arrival are required")
    if pallet_amount is None and box_amount is None:
        raise ValueError("pallet_amount or box_amount is required")
    ensure_delivery_schema()

    updates: Dict[str, str] = {}
    if pallet_amount is not None:
        updates["pallet_amount"] = str(pallet_amount)
    if box_amount is not None:
        updates["box_amount"] = str(box_amount)
    assignments = ", ".join(f"{col} = ?" for col in updates)

    with db_service.write_transaction() as conn:
        if delivery_id is None:
            eta = parse_calendar_date(expected_arrival)
            delivery_id = _open_delivery_id(conn, vendor_name, eta) if eta else None
            if delivery_id is None:
                raise NotFoundError("Delivery group not found")
        cur = conn.execute(
            f"UPDATE {DELIVERY_TABLE} SET {assignments} WHERE id = ?",
            (*updates.values(), delivery_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError("Delivery group not found")
    return get_delivery(delivery_id)


def _row_to_delivery(row: sqlite3.Row, po_numbers: List[str]) -> Delivery:
    return Delivery(
        id=row["id"],
        vendor_name=row["vendor_name"],
        expected_arrival=parse_calendar_date(row["expected_arrival"]),
        po_numbers=po_numbers,
        pallet_amount=row["pallet_amount"] or "",
        box_amount=row["box_amount"] or "",
        status=row["status"],
        completed_at=parse_timestamp(row["completed_at"]),
    )


def _members(conn: sqlite3.Connection, delivery_id: int) -> List[str]:
    rows = conn.execute(
        f"SELECT po_number FROM {MEMBER_TABLE} WHERE delivery_id = ? ORDER BY po_number",
        (delivery_id,),
    ).fetchall()
    return [row["po_number"] for row in rows]


def get_delivery(delivery_id: int) -> Delivery:
    ensure_delivery_schema()
    with db_service.get_db_connection() as conn:
        row = conn.execute(f"SELECT * FROM {DELIVERY_TABLE} WHERE id = ?", (delivery_id,)).fetchone()
        if not row:
            raise NotFoundError(f"Delivery {delivery_id} not found")
        return _row_to_delivery(row, _members(conn, delivery_id))


def find_open_delivery(vendor_name: str, eta: Any) -> Optional[Delivery]:
    ensure_delivery_schema()
    eta_date = parse_calendar_date(eta)
    if eta_date is None:
        return None
    with db_service.get_db_connection() as conn:
        delivery_id = _open_delivery_id(conn, vendor_name, eta_date)
    return get_delivery(delivery_id) if delivery_id is not None else None


def list_open_deliveries() -> List[Delivery]:
    ensure_delivery_schema()
    with db_service.get_db_connection() as conn:
        rows = conn.execute(
            f"SELECT * FROM {DELIVERY_TABLE} WHERE status != ? ORDER BY expected_arrival, vendor_name",
            (STATUS_COMPLETE,),
        ).fetchall()
        return [_row_to_delivery(row, _members(conn, row["id"])) for row in rows]
