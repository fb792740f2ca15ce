"""
Canonical purchase-order, delivery and late-order report shapes.

Both upstream feeds (GoFlow purchase orders and the Magento bulk CSV export)
are normalized into PurchaseOrder/POLine before anything is stored, so the
merge engine, classifier and report generator never see source payloads.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CHANNEL_GOFLOW = "goflow"
CHANNEL_FBA = "fba"
CHANNELS = (CHANNEL_GOFLOW, CHANNEL_FBA)

_DATE_FORMATS = ("%Y-%m-%d", "%m-%d-%Y", "%m/%d/%Y", "%Y/%m/%d", "%Y-%m-%d %H:%M:%S", "%m/%d/%Y %H:%M")


class POStatus(str, Enum):
    OPEN = "open"
    AWAITING_SUPPLIER = "awaiting_supplier"
    PAID = "paid"
    COMPLETE = "complete"

    @classmethod
    def from_source(cls, value: Any) -> "POStatus":
        """Fold GoFlow/Magento status vocabularies into the canonical set."""
        raw = str(value or "").strip().lower().replace("-", "_").replace(" ", "_")
        if raw in ("waiting_for_supplier", "awaiting_supplier"):
            return cls.AWAITING_SUPPLIER
        if raw == "paid":
            return cls.PAID
        if raw in ("complete", "completed", "received", "closed"):
            return cls.COMPLETE
        return cls.OPEN


class SchemaVariant(str, Enum):
    NATIVE_OUTSTANDING = "native_outstanding"
    LEGACY_COMBINED = "legacy_combined"
    LEGACY_SPLIT = "legacy_split"


class POLine(BaseModel):
    # GoFlow-native lines carry their own id; Magento rows never do
    line_id: Optional[str] = None
    item_number: Optional[str] = None
    product_id: Optional[str] = None
    sku: Optional[str] = None
    product_name: str = ""
    upc: str = ""
    ordered_qty: int = 0
    received_qty: int = 0
    goflow_qty: int = 0
    goflow_delivered_qty: int = 0
    fba_qty: int = 0
    fba_delivered_qty: int = 0

    @property
    def sku_or_item_number(self) -> str:
        return (self.item_number or self.sku or "").strip()

    def matches_item(self, item_number: Optional[str]) -> bool:
        if not item_number:
            return False
        return (self.sku is not None and self.sku == item_number) or self.item_number == item_number


class PurchaseOrder(BaseModel):
    po_number: str
    status: POStatus = POStatus.OPEN
    vendor_name: Optional[str] = None
    po_date: Optional[date] = None
    expected_arrival: Optional[date] = None
    delivery_method: Optional[str] = None
    supplier_po_number: Optional[str] = None
    lines: List[POLine] = Field(default_factory=list)
    schema_variant: Optional[SchemaVariant] = None
    source: str = ""
    status_updated_at: Optional[datetime] = None


class Delivery(BaseModel):
    id: Optional[int] = None
    vendor_name: str
    expected_arrival: date
    po_numbers: List[str] = Field(default_factory=list)
    pallet_amount: str = ""
    box_amount: str = ""
    status: str = "open"
    completed_at: Optional[datetime] = None


class ItemAvailability(BaseModel):
    item_number: str
    product_id: Optional[str] = None
    units_due: int = 0
    on_hand: int = 0
    awaiting_by_channel: Dict[str, int] = Field(default_factory=lambda: {c: 0 for c in CHANNELS})
    # po_number -> {channel: qty}, only POs with a positive shortfall
    awaiting_detail_by_po: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    short: bool = False

    @property
    def awaiting_total(self) -> int:
        return sum(self.awaiting_by_channel.values())


class ReportSummary(BaseModel):
    total_due_orders: int = 0
    total_items_due: int = 0
    total_units_due: int = 0
    items_with_on_hand: int = 0
    total_awaiting: int = 0
    total_items_short: int = 0


class LateOrderReport(BaseModel):
    report_date: datetime
    cutoff_date: datetime
    summary: ReportSummary = Field(default_factory=ReportSummary)
    items: List[ItemAvailability] = Field(default_factory=list)

    model_config = {"frozen": True}


def to_int(value: Any) -> int:
    """Coerce upstream quantities ("3", "3.0", None, "") to int; junk counts as 0."""
    if value is None or value == "":
        return 0
    if isinstance(value, dict):
        value = value.get("amount")
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def parse_calendar_date(value: Any) -> Optional[date]:
    """Normalize an upstream date/timestamp to a calendar date (time dropped)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    candidate = str(value).strip()
    if not candidate:
        return None
    iso = candidate[:-1] + "+00:00" if candidate.endswith("Z") else candidate
    try:
        return datetime.fromisoformat(iso).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date()
        except ValueError:
            continue
    logger.debug("[POModel] Unparseable date %r", value)
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        candidate = str(value).strip()
        if not candidate:
            return None
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(candidate)
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
