from datetime import date, datetime, timedelta, timezone

import pytest

from services import deliveries, po_store
from services.errors import NotFoundError
from services.po_merge import dedup_first_seen, merge_and_store
from services.po_model import POLine, POStatus, PurchaseOrder, SchemaVariant


def _goflow_po(number, vendor="GoFlow Vendor", ordered=10, received=4):
    return PurchaseOrder(
        po_number=number,
        vendor_name=vendor,
        po_date=date(2024, 5, 1),
        lines=[POLine(line_id="1", item_number="SKU-A", ordered_qty=ordered, received_qty=received)],
        schema_variant=SchemaVariant.NATIVE_OUTSTANDING,
        source="goflow",
    )


def _magento_po(number, vendor="Magento Vendor"):
    return PurchaseOrder(
        po_number=number,
        vendor_name=vendor,
        po_date=date(2024, 4, 1),
        lines=[POLine(sku="SKU-A", goflow_qty=5, fba_qty=3)],
        schema_variant=SchemaVariant.LEGACY_SPLIT,
        source="magento",
    )


def test_merge_is_idempotent(tmp_db):
    a_pos = [_goflow_po("GF-1")]
    b_pos = [_magento_po("PO-1")]

    first = merge_and_store(a_pos, b_pos, set())
    po_store.update_local_fields("GF-1", delivery_method="Freight")
    second = merge_and_store([_goflow_po("GF-1")], [_magento_po("PO-1")], set())

    assert first.inserted == 2
    assert second.inserted == 0
    assert second.upserted == 2
    assert sorted(po_store.list_stored_po_numbers()) == ["GF-1", "PO-1"]
    stored = po_store.get_purchase_order("GF-1")
    assert stored.delivery_method == "Freight"
    assert len(stored.lines) == 1


def test_system_a_wins_on_duplicate_number(tmp_db):
    stats = merge_and_store([_goflow_po("X")], [_magento_po("X")], set())

    stored = po_store.get_purchase_order("X")
    assert stats.duplicates == 1
    assert stored.vendor_name == "GoFlow Vendor"
    assert stored.source == "goflow"
    assert stored.schema_variant == SchemaVariant.NATIVE_OUTSTANDING
    assert stored.lines[0].ordered_qty == 10


def test_local_fields_survive_sync(tmp_db):
    merge_and_store([_goflow_po("GF-1")], [], set())
    po_store.update_local_fields("GF-1", delivery_method="Freight", supplier_po_number="SUP-9")

    stats = merge_and_store([_goflow_po("GF-1", vendor="Renamed", received=9)], [], set())

    stored = po_store.get_purchase_order("GF-1")
    assert stats.preserved == 1
    assert stored.delivery_method == "Freight"
    assert stored.supplier_po_number == "SUP-9"
    assert stored.vendor_name == "Renamed"
    assert stored.lines[0].received_qty == 9


def test_status_timestamp_survives_sync(tmp_db):
    merge_and_store([_goflow_po("GF-1")], [], set())
    stamped = datetime(2024, 5, 12, 9, 30, tzinfo=timezone.utc)
    po_store.update_status("GF-1", refresh_only=True, now=stamped)

    merge_and_store([_goflow_po("GF-1", received=6)], [], set())

    stored = po_store.get_purchase_order("GF-1")
    assert stored.status_updated_at == stamped
    assert stored.lines[0].received_qty == 6


def test_completion_timestamp_survives_sync(tmp_db):
    merge_and_store([_goflow_po("GF-1")], [], set())
    deliveries.mark_complete(["GF-1"])
    completed_at = po_store.get_purchase_order("GF-1").status_updated_at
    assert completed_at is not None

    merge_and_store([_goflow_po("GF-1")], [], set())

    assert po_store.get_purchase_order("GF-1").status_updated_at == completed_at


def test_update_status_sets_or_refreshes_timestamp(tmp_db):
    po_store.upsert_purchase_order(_goflow_po("GF-1"))
    first = datetime(2024, 5, 12, 9, 0, tzinfo=timezone.utc)
    later = first + timedelta(hours=2)

    po = po_store.update_status("GF-1", "Paid", now=first)
    assert po.status == POStatus.PAID
    assert po.status_updated_at == first

    po = po_store.update_status("GF-1", "complete", refresh_only=True, now=later)
    assert po.status == POStatus.PAID
    assert po.status_updated_at == later


def test_update_status_errors(tmp_db):
    po_store.upsert_purchase_order(_goflow_po("GF-1"))

    with pytest.raises(NotFoundError):
        po_store.update_status("NOPE", "paid")
    with pytest.raises(NotFoundError):
        po_store.update_status("NOPE", refresh_only=True)
    with pytest.raises(ValueError):
        po_store.update_status("GF-1")
    with pytest.raises(ValueError):
        po_store.update_status("GF-1", "shipped")
    assert po_store.get_purchase_order("GF-1").status_updated_at is None


def test_completed_po_is_pruned_even_when_system_a_reports_it(tmp_db):
    merge_and_store([_goflow_po("C-1"), _goflow_po("KEEP")], [], set())

    stats = merge_and_store([_goflow_po("C-1"), _goflow_po("KEEP")], [], {"C-1"})

    assert po_store.get_purchase_order("C-1") is None
    assert po_store.get_purchase_order("KEEP") is not None
    assert stats.removed_complete == 1
    assert stats.skipped_complete == 1


def test_one_failing_po_does_not_block_others(tmp_db, monkeypatch):
    original = po_store.write_purchase_order

    def flaky_write(conn, po, **kwargs):
        if po.po_number == "BAD":
            raise RuntimeError("disk full")
        return original(conn, po, **kwargs)

    monkeypatch.setattr(po_store, "write_purchase_order", flaky_write)

    stats = merge_and_store([_goflow_po("GOOD-1"), _goflow_po("BAD")], [_magento_po("GOOD-2")], set())

    assert stats.failed == 1
    assert stats.upserted == 2
    assert sorted(po_store.list_stored_po_numbers()) == ["GOOD-1", "GOOD-2"]


def test_dedup_keeps_first_occurrence():
    merged = dedup_first_seen([_goflow_po("A"), _goflow_po("B")], [_magento_po("A"), _magento_po("C")])
    assert [(po.po_number, po.source) for po in merged] == [("A", "goflow"), ("B", "goflow"), ("C", "magento")]


def test_list_purchase_orders_filters_and_paginates(tmp_db):
    merge_and_store([_goflow_po(f"GF-{i}") for i in range(5)], [_magento_po("PO-1")], set())

    everything = po_store.list_purchase_orders()
    assert everything["total"] == 6
    assert everything["all"] is True

    page = po_store.list_purchase_orders(vendor="GoFlow Vendor", page=2, limit=2, include_lines=True)
    assert page["total"] == 5
    assert page["page"] == 2
    assert page["limit"] == 2
    assert len(page["orders"]) == 2
    assert all(po.lines for po in page["orders"])

    clamped = po_store.list_purchase_orders(page=1, limit=1000)
    assert clamped["limit"] == 200
