"""
GoFlow sales-order helpers for the late-order report.

Open orders are everything not shipped or canceled for the configured
storefronts; an order is due when its latest ship date is at or before the
business-day cutoff.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlencode

import config
from services.http_client import UpstreamClient, goflow_client, goflow_url
from services.po_model import parse_timestamp, to_int

logger = logging.getLogger(__name__)


def _orders_url(params: Sequence[tuple], base_url: Optional[str] = None) -> str:
    return goflow_url(f"orders?{urlencode(list(params))}", base_url)


def fetch_open_orders(
    client: Optional[UpstreamClient] = None,
    *,
    store_ids: Optional[Sequence[str]] = None,
    base_url: Optional[str] = None,
) -> List[Dict[str, Any]]:
    client = client or goflow_client()
    store_ids = store_ids if store_ids is not None else config.GOFLOW_STORE_IDS
    params = [("filters[status:not]", "shipped"), ("filters[status:not]", "canceled")]
    params.extend(("filters[store.id]", str(store_id)) for store_id in store_ids)
    orders = client.fetch_all(_orders_url(params, base_url))
    logger.info("[SalesOrders] Fetched %d open orders for stores %s", len(orders), ",".join(map(str, store_ids)))
    return orders


def latest_ship(order: Dict[str, Any]) -> Optional[datetime]:
    ship_dates = order.get("ship_dates") or {}
    return parse_timestamp(ship_dates.get("latest_ship"))


def filter_due_orders(orders: Iterable[Dict[str, Any]], cutoff: datetime) -> List[Dict[str, Any]]:
    due = []
    for order in orders:
        ship_by = latest_ship(order)
        if ship_by is not None and ship_by <= cutoff:
            due.append(order)
    return due


def _line_item_number(line: Dict[str, Any]) -> Optional[str]:
    product = line.get("product") or {}
    return product.get("item_number") or line.get("item_number")


def aggregate_item_totals(orders: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Sum line quantities per product across orders.

    Returns ``[{"product_id", "item_number", "quantity"}]`` in first-seen order.
    """
    totals: Dict[str, Dict[str, Any]] = {}
    for order in orders:
        lines = order.get("lines") if isinstance(order.get("lines"), list) else []
        for line in lines:
            product = (line or {}).get("product") or {}
            product_id = product.get("id")
            item_number = _line_item_number(line or {})
            key = str(product_id) if product_id is not None else f"item:{item_number}"
            if key not in totals:
                totals[key] = {
                    "product_id": str(product_id) if product_id is not None else None,
                    "item_number": item_number,
                    "quantity": 0,
                }
            totals[key]["quantity"] += to_int((line or {}).get("quantity"))
    return list(totals.values())


def fetch_orders_due_by_tag(
    tag_id: Optional[str] = None,
    client: Optional[UpstreamClient] = None,
    *,
    find_by_item=None,
    base_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Orders carrying the "due by" tag, with per-item totals joined against the
    stored inventory-counts snapshot.
    """
    if find_by_item is None:
        from services.inventory_sync import find_by_item

    tag_id = tag_id or config.GOFLOW_DUE_BY_TAG_ID
    if not tag_id:
        raise ValueError("tag_id is required when GOFLOW_DUE_BY_TAG_ID is not configured")
    client = client or goflow_client()
    orders = client.fetch_all(_orders_url([("filters[tags.id]", tag_id)], base_url))

    rows = []
    item_totals: Dict[str, int] = {}
    for order in orders:
        lines = order.get("lines") if isinstance(order.get("lines"), list) else []
        item_numbers = [n for n in (_line_item_number(line or {}) for line in lines) if n]
        rows.append(
            {
                "order_number": order.get("order_number") or "",
                "status": order.get("status") or "",
                "latest_ship": (order.get("ship_dates") or {}).get("latest_ship") or "",
                "total_items": sum(to_int((line or {}).get("quantity")) for line in lines),
                "item_numbers": ", ".join(item_numbers),
            }
        )
        for line in lines:
            item_number = _line_item_number(line or {})
            qty = to_int((line or {}).get("quantity"))
            if not item_number or qty == 0:
                continue
            item_totals[item_number] = item_totals.get(item_number, 0) + qty

    enriched = []
    for item_number, total_quantity in item_totals.items():
        counts = find_by_item(item_number) or {}
        enriched.append(
            {
                "item_number": item_number,
                "total_quantity": total_quantity,
                "on_purchase_order": counts.get("on_purchase_order", 0),
                "on_hand": counts.get("on_hand", 0),
            }
        )
    return {"data": rows, "item_totals": enriched}
