import logging
from typing import Optional

import config
from services.errors import UpstreamError
from services.http_client import UpstreamClient, goflow_client, goflow_url
from services.po_model import to_int

LOGGER = logging.getLogger(__name__)


def fetch_on_hand(
    product_id: str,
    client: Optional[UpstreamClient] = None,
    *,
    warehouse_id: Optional[str] = None,
    base_url: Optional[str] = None,
) -> int:
    """
    On-hand units for one product at the fulfillment warehouse.

    A product with no inventory record (404, or no row for the warehouse)
    has zero on hand; that is not an error.
    """
    if not product_id:
        return 0
    client = client or goflow_client()
    warehouse_id = warehouse_id or config.GOFLOW_WAREHOUSE_ID
    url = goflow_url(f"products/{product_id}/inventory", base_url)
    try:
        data = client.get_json(url) or {}
    except UpstreamError as exc:
        if exc.status_code == 404:
            LOGGER.info("[Inventory] No inventory record for product %s", product_id)
            return 0
        raise

    for entry in data.get("warehouses") or []:
        warehouse = (entry or {}).get("warehouse") or {}
        if warehouse.get("id") == warehouse_id:
            return to_int(entry.get("on_hand"))
    return 0
