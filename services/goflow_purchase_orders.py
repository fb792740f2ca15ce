import logging
from typing import Any, Dict, List, Optional

import config
from services.http_client import UpstreamClient, goflow_client, goflow_url
from services.po_classifier import classify
from services.po_model import POLine, POStatus, PurchaseOrder, parse_calendar_date, to_int

LOGGER = logging.getLogger(__name__)
AWAITING_RECEIPT_PATH = "purchasing/purchase-orders?filters[status]=awaiting_receipt"


def _created_by(record: Dict[str, Any]) -> Optional[str]:
    meta = record.get("meta") or {}
    created = meta.get("created") or {}
    by = created.get("by") or {}
    user = by.get("user") or {}
    return user.get("username")


def _normalize_line(line: Dict[str, Any]) -> POLine:
    product = line.get("product") or {}
    line_id = line.get("id")
    product_id = product.get("id")
    return POLine(
        line_id=str(line_id) if line_id not in (None, "") else None,
        item_number=product.get("item_number") or line.get("item_number"),
        product_id=str(product_id) if product_id not in (None, "") else None,
        product_name=product.get("name") or line.get("description") or "",
        upc=product.get("upc") or "",
        ordered_qty=to_int(line.get("quantity")),
        received_qty=to_int(line.get("units_received")),
    )


def normalize_goflow_po(record: Dict[str, Any]) -> Optional[PurchaseOrder]:
    po_number = str(record.get("purchase_order_number") or "").strip()
    if not po_number:
        return None
    vendor = record.get("vendor") or {}
    lines = record.get("lines") if isinstance(record.get("lines"), list) else []
    po = PurchaseOrder(
        po_number=po_number,
        status=POStatus.from_source(record.get("status")),
        vendor_name=vendor.get("name"),
        po_date=parse_calendar_date(record.get("date")),
        lines=[_normalize_line(line) for line in lines if isinstance(line, dict)],
        source="goflow",
    )
    po.schema_variant = classify(po)
    return po


def fetch_open_pos(
    client: Optional[UpstreamClient] = None,
    *,
    base_url: Optional[str] = None,
    internal_username: Optional[str] = None,
) -> List[PurchaseOrder]:
    """
    Pull every GoFlow PO awaiting receipt.

    All pages are accumulated before returning; an UpstreamError on any page
    fails the whole fetch so a partial list never reaches the merge.
    """
    client = client or goflow_client()
    internal_username = internal_username if internal_username is not None else config.GOFLOW_INTERNAL_USERNAME
    url = goflow_url(AWAITING_RECEIPT_PATH, base_url)

    pos: List[PurchaseOrder] = []
    seen = set()
    skipped_internal = 0
    for page in client.iter_pages(url):
        for record in page:
            if not isinstance(record, dict):
                continue
            if internal_username and _created_by(record) == internal_username:
                skipped_internal += 1
                LOGGER.info("[GoFlowPO] Skipped PO %s (created by %s)", record.get("purchase_order_number"), internal_username)
                continue
            po = normalize_goflow_po(record)
            if po is None or po.po_number in seen:
                continue
            seen.add(po.po_number)
            pos.append(po)

    LOGGER.info("[GoFlowPO] Fetched %d open POs (%d internal skipped)", len(pos), skipped_internal)
    return pos
