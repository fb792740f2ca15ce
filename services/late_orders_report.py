"""
Late-order report.

For every item on an open sales order due by the end of today's business
day, compare units due against on-hand stock plus units still owed on
stored purchase orders, and flag the items that cannot be covered.

On-hand lookups hit GoFlow once per item, so they run through a rate-limited
work queue (one call at a time with a pause after each, by default).
"""

import logging
from datetime import datetime, time, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

import config
from services.async_utils import run_rate_limited_sync
from services.inventory_availability import fetch_on_hand
from services.po_classifier import awaiting
from services.po_model import (
    CHANNELS,
    ItemAvailability,
    LateOrderReport,
    PurchaseOrder,
    ReportSummary,
    utc_now,
)
from services.po_store import load_all_purchase_orders
from services.report_store import replace_current_report
from services.sales_orders import aggregate_item_totals, fetch_open_orders, filter_due_orders

logger = logging.getLogger(__name__)


def compute_cutoff(now: datetime, tz_name: Optional[str] = None) -> datetime:
    """End of ``now``'s calendar day (23:59:59.999) in the operations timezone, as a UTC instant."""
    tz = ZoneInfo(tz_name or config.OPERATIONS_TIMEZONE)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_day = now.astimezone(tz).date()
    end_of_day = datetime.combine(local_day, time(23, 59, 59, 999000), tzinfo=tz)
    return end_of_day.astimezone(timezone.utc)


def awaiting_for_item(item_number: Optional[str], purchase_orders: Sequence[PurchaseOrder]) -> ItemAvailability:
    """Sum awaiting quantities across every matching line of every PO."""
    result = ItemAvailability(item_number=item_number or "unknown")
    if not item_number:
        return result
    for po in purchase_orders:
        for line in po.lines:
            if not line.matches_item(item_number):
                continue
            owed = awaiting(po, line)
            for channel, qty in owed.as_dict().items():
                if qty <= 0:
                    continue
                result.awaiting_by_channel[channel] += qty
                detail = result.awaiting_detail_by_po.setdefault(po.po_number, {c: 0 for c in CHANNELS})
                detail[channel] += qty
    return result


def is_short(units_due: int, on_hand: int, awaiting_total: int) -> bool:
    return max(0, on_hand) + awaiting_total < units_due


def build_summary(due_order_count: int, items: Sequence[ItemAvailability]) -> ReportSummary:
    return ReportSummary(
        total_due_orders=due_order_count,
        total_items_due=len(items),
        total_units_due=sum(item.units_due for item in items),
        items_with_on_hand=sum(1 for item in items if item.on_hand > 0),
        total_awaiting=sum(item.awaiting_total for item in items),
        total_items_short=sum(1 for item in items if item.short),
    )


def generate_report(
    now: Optional[datetime] = None,
    *,
    fetch_orders: Optional[Callable[[], List[Dict[str, Any]]]] = None,
    on_hand: Optional[Callable[[str], int]] = None,
    purchase_orders: Optional[Sequence[PurchaseOrder]] = None,
    delay_seconds: Optional[float] = None,
    max_concurrency: Optional[int] = None,
    store: bool = True,
) -> LateOrderReport:
    now = now or utc_now()
    fetch_orders = fetch_orders or fetch_open_orders
    on_hand = on_hand or fetch_on_hand
    delay_seconds = config.INVENTORY_LOOKUP_DELAY_SECONDS if delay_seconds is None else delay_seconds
    max_concurrency = max_concurrency or config.INVENTORY_LOOKUP_CONCURRENCY

    orders = fetch_orders()
    cutoff = compute_cutoff(now)
    due_orders = filter_due_orders(orders, cutoff)
    item_totals = aggregate_item_totals(due_orders)
    logger.info(
        "[LateOrders] %d of %d open orders due by %s; %d distinct items",
        len(due_orders),
        len(orders),
        cutoff.isoformat(),
        len(item_totals),
    )

    if purchase_orders is None:
        purchase_orders = load_all_purchase_orders()

    def _lookup(item: Dict[str, Any]) -> int:
        return on_hand(item["product_id"] or item["item_number"])

    on_hand_counts = run_rate_limited_sync(
        _lookup,
        item_totals,
        max_concurrency=max_concurrency,
        delay_seconds=delay_seconds,
    )

    items: List[ItemAvailability] = []
    for item, stock in zip(item_totals, on_hand_counts):
        availability = awaiting_for_item(item["item_number"], purchase_orders)
        availability.product_id = item["product_id"]
        availability.units_due = item["quantity"]
        availability.on_hand = stock
        availability.short = is_short(item["quantity"], stock, availability.awaiting_total)
        items.append(availability)
        logger.debug(
            "[LateOrders] Item %s due=%d on_hand=%d awaiting=%s",
            availability.item_number,
            availability.units_due,
            stock,
            availability.awaiting_by_channel,
        )

    report = LateOrderReport(
        report_date=now,
        cutoff_date=cutoff,
        summary=build_summary(len(due_orders), items),
        items=items,
    )
    logger.info("[LateOrders] Summary: %s", report.summary.model_dump())
    if store:
        replace_current_report(report)
    return report
