"""
PO merge engine.

Order of operations per run:

1. Delete stored POs that the Magento export now reports as complete.
2. Dedup ``a_pos ++ b_pos`` by PO number, first occurrence wins (GoFlow
   before Magento). POs in the completion set are dropped here too.
3. Carry operator-owned fields forward from the stored record.
4. Upsert each PO by number.

Each PO is written in its own transaction; a failure on one PO is logged and
counted, and never rolls back or blocks the others.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Set

from services import db as db_service
from services import po_store
from services.po_model import PurchaseOrder, iso, utc_now

LOGGER = logging.getLogger(__name__)


@dataclass
class MergeStats:
    fetched_a: int = 0
    fetched_b: int = 0
    duplicates: int = 0
    removed_complete: int = 0
    skipped_complete: int = 0
    upserted: int = 0
    inserted: int = 0
    preserved: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def dedup_first_seen(*sources: Iterable[PurchaseOrder]) -> List[PurchaseOrder]:
    seen: Dict[str, PurchaseOrder] = {}
    for source in sources:
        for po in source:
            if po.po_number and po.po_number not in seen:
                seen[po.po_number] = po
    return list(seen.values())


def carry_forward_local_fields(incoming: PurchaseOrder, existing: Optional[PurchaseOrder]) -> bool:
    """Copy operator-owned fields from ``existing``; returns True if any were carried."""
    if existing is None:
        return False
    carried = False
    for field in po_store.LOCAL_FIELDS:
        stored = getattr(existing, field)
        if stored is not None and getattr(incoming, field) is None:
            setattr(incoming, field, stored)
            carried = True
    return carried


def prune_completed(b_complete: Set[str]) -> int:
    if not b_complete:
        return 0
    stored = [n for n in po_store.list_stored_po_numbers() if n in b_complete]
    if not stored:
        return 0
    with db_service.write_transaction() as conn:
        removed = po_store.delete_purchase_orders(conn, stored)
    for po_number in stored:
        LOGGER.info("[POMerge] Removed PO %s (complete in Magento)", po_number)
    return removed


def merge_and_store(
    a_pos: List[PurchaseOrder],
    b_pos: List[PurchaseOrder],
    b_complete: Set[str],
) -> MergeStats:
    po_store.ensure_po_schema()
    stats = MergeStats(fetched_a=len(a_pos), fetched_b=len(b_pos))

    stats.removed_complete = prune_completed(b_complete)

    merged = dedup_first_seen(a_pos, b_pos)
    stats.duplicates = len(a_pos) + len(b_pos) - len(merged)
    # Magento is authoritative for completion, even over a GoFlow copy
    stats.skipped_complete = sum(1 for po in merged if po.po_number in b_complete)
    merged = [po for po in merged if po.po_number not in b_complete]
    LOGGER.info("[POMerge] Found %d unique purchase orders to upsert", len(merged))

    existing = po_store.get_purchase_orders(po.po_number for po in merged)
    synced_at = iso(utc_now())
    for po in merged:
        try:
            stored = existing.get(po.po_number)
            if carry_forward_local_fields(po, stored):
                stats.preserved += 1
            with db_service.write_transaction() as conn:
                po_store.write_purchase_order(conn, po, synced_at=synced_at)
            stats.upserted += 1
            if stored is None:
                stats.inserted += 1
        except Exception as exc:
            stats.failed += 1
            LOGGER.error("[POMerge] Failed to upsert PO %s: %s", po.po_number, exc, exc_info=True)

    LOGGER.info("[POMerge] Merge complete: %s", stats.as_dict())
    return stats
