"""
Magento purchase-order bulk export.

The export is one CSV row per PO line. Rows of POs still waiting for the
supplier are folded into one PurchaseOrder each (first row wins for the PO
level fields); POs reported as ``complete`` only contribute their number to
the completion set, which the merge uses to prune the store.
"""

import csv
import io
import logging
from typing import Dict, List, Optional, Set, Tuple

import config
from services.errors import ParseError
from services.http_client import UpstreamClient, magento_client
from services.po_classifier import classify
from services.po_model import POLine, POStatus, PurchaseOrder, parse_calendar_date, to_int

LOGGER = logging.getLogger(__name__)

STATUS_WAITING = "waiting_for_supplier"
STATUS_COMPLETE = "complete"
REQUIRED_COLUMNS = ("purchase_order_number", "purchase_order_status")


def _line_from_row(row: Dict[str, str]) -> POLine:
    return POLine(
        sku=(row.get("product_sku") or row.get("purchase_order_product_sku") or "").strip() or None,
        product_name=row.get("product_name") or "",
        upc=row.get("upc") or row.get("product_upc") or "",
        goflow_qty=to_int(row.get("purchase_order_product_goflow_qty")),
        goflow_delivered_qty=to_int(row.get("purchase_order_product_delivered_goflow_qty")),
        fba_qty=to_int(row.get("purchase_order_product_fba_qty")),
        fba_delivered_qty=to_int(row.get("purchase_order_product_delivered_fba_qty")),
    )


def parse_po_export(text: str) -> Tuple[List[PurchaseOrder], Set[str]]:
    """Fold export rows into open POs plus the set of completed PO numbers."""
    if not text or not text.strip():
        return [], set()

    reader = csv.DictReader(io.StringIO(text), strict=True)
    try:
        header = reader.fieldnames or []
        missing = [col for col in REQUIRED_COLUMNS if col not in header]
        if missing:
            raise ParseError(f"PO export is missing columns: {', '.join(missing)}")

        po_map: Dict[str, PurchaseOrder] = {}
        complete: Set[str] = set()
        row_count = 0
        for row in reader:
            row_count += 1
            po_number = (row.get("purchase_order_number") or "").strip()
            if not po_number:
                continue
            status = (row.get("purchase_order_status") or "").strip()
            if status == STATUS_WAITING:
                po = po_map.get(po_number)
                if po is None:
                    po = PurchaseOrder(
                        po_number=po_number,
                        status=POStatus.from_source(status),
                        vendor_name=row.get("supplier_name") or "",
                        po_date=parse_calendar_date(row.get("purchase_order_date")),
                        source="magento",
                    )
                    po_map[po_number] = po
                po.lines.append(_line_from_row(row))
            elif status == STATUS_COMPLETE:
                complete.add(po_number)
    except csv.Error as exc:
        raise ParseError(f"Malformed PO export CSV near line {reader.line_num}: {exc}") from exc

    pos = list(po_map.values())
    for po in pos:
        po.schema_variant = classify(po)
    LOGGER.info(
        "[MagentoPO] Parsed %d rows: %d open POs, %d complete",
        row_count,
        len(pos),
        len(complete),
    )
    return pos, complete


def fetch_open_pos(
    client: Optional[UpstreamClient] = None,
    *,
    export_url: Optional[str] = None,
) -> Tuple[List[PurchaseOrder], Set[str]]:
    client = client or magento_client()
    export_url = export_url or config.MAGENTO_PO_EXPORT_URL
    resp = client.get(export_url)
    text = resp.content.decode("utf-8-sig", errors="replace")
    return parse_po_export(text)
