"""
Awaiting-quantity classifier.

Three PO shapes have accumulated over time for the same physical fact (units
still owed by a vendor):

- NATIVE_OUTSTANDING: GoFlow purchase orders. Lines carry a line id and an
  ordered/received pair; everything outstanding lands on the GoFlow channel.
- LEGACY_COMBINED: Magento POs whose number carries the combined marker
  (``-GF``). Both GoFlow and FBA sub-quantities are physically GoFlow stock,
  so their shortfalls are summed onto the GoFlow channel.
- LEGACY_SPLIT: every other Magento PO. GoFlow and FBA shortfalls are tracked
  independently.

``classify`` runs once when a PO is normalized; the tag travels with the PO
so downstream aggregation never inspects shapes again.
"""

from typing import NamedTuple, Optional

import config
from services.po_model import CHANNEL_FBA, CHANNEL_GOFLOW, POLine, PurchaseOrder, SchemaVariant


class ChannelAwaiting(NamedTuple):
    goflow: int = 0
    fba: int = 0

    @property
    def total(self) -> int:
        return self.goflow + self.fba

    def as_dict(self) -> dict:
        return {CHANNEL_GOFLOW: self.goflow, CHANNEL_FBA: self.fba}


def is_combined_po_number(po_number: Optional[str], marker: Optional[str] = None) -> bool:
    marker = marker if marker is not None else config.PO_COMBINED_MARKER
    if not po_number or not marker:
        return False
    return po_number.endswith(marker) or ("PO-" in po_number and marker in po_number)


def classify(po: PurchaseOrder, *, marker: Optional[str] = None) -> SchemaVariant:
    if po.lines and po.lines[0].line_id:
        return SchemaVariant.NATIVE_OUTSTANDING
    if is_combined_po_number(po.po_number, marker):
        return SchemaVariant.LEGACY_COMBINED
    return SchemaVariant.LEGACY_SPLIT


def _shortfall(ordered: int, delivered: int) -> int:
    return max(0, ordered - delivered)


def awaiting(po: PurchaseOrder, line: POLine, variant: Optional[SchemaVariant] = None) -> ChannelAwaiting:
    """Units still owed on ``line``, split by fulfillment channel."""
    variant = variant or po.schema_variant or classify(po)

    if variant == SchemaVariant.NATIVE_OUTSTANDING:
        return ChannelAwaiting(goflow=_shortfall(line.ordered_qty, line.received_qty), fba=0)

    goflow = _shortfall(line.goflow_qty, line.goflow_delivered_qty)
    fba = _shortfall(line.fba_qty, line.fba_delivered_qty)
    if variant == SchemaVariant.LEGACY_COMBINED:
        return ChannelAwaiting(goflow=goflow + fba, fba=0)
    return ChannelAwaiting(goflow=goflow, fba=fba)
