from datetime import date

import pytest

from services import deliveries, po_store
from services.errors import NotFoundError
from services.po_model import POStatus, PurchaseOrder


def _seed(*numbers, vendor="Acme"):
    for number in numbers:
        po_store.upsert_purchase_order(PurchaseOrder(po_number=number, vendor_name=vendor))


def _open_groups():
    return [(d.vendor_name, d.expected_arrival, d.po_numbers) for d in deliveries.list_open_deliveries()]


def test_same_vendor_and_date_share_one_delivery(tmp_db):
    _seed("A", "B")

    deliveries.set_expected_arrival("A", "2024-06-01")
    deliveries.set_expected_arrival("B", "06/01/2024")

    assert _open_groups() == [("Acme", date(2024, 6, 1), ["A", "B"])]

    deliveries.clear_expected_arrival("A")
    assert _open_groups() == [("Acme", date(2024, 6, 1), ["B"])]
    assert po_store.get_purchase_order("A").expected_arrival is None

    deliveries.clear_expected_arrival("B")
    assert _open_groups() == []


def test_setting_same_eta_twice_is_a_no_op(tmp_db):
    _seed("A")
    deliveries.set_expected_arrival("A", "2024-06-01")
    deliveries.set_expected_arrival("A", "2024-06-01")

    assert _open_groups() == [("Acme", date(2024, 6, 1), ["A"])]


def test_changing_eta_moves_po_between_deliveries(tmp_db):
    _seed("A", "B")
    deliveries.set_expected_arrival("A", "2024-06-01")
    deliveries.set_expected_arrival("B", "2024-06-01")

    deliveries.set_expected_arrival("A", "2024-06-03")

    assert _open_groups() == [
        ("Acme", date(2024, 6, 1), ["B"]),
        ("Acme", date(2024, 6, 3), ["A"]),
    ]


def test_different_vendors_get_separate_deliveries(tmp_db):
    _seed("A")
    _seed("Z", vendor="Zeta")
    deliveries.set_expected_arrival("A", "2024-06-01")
    deliveries.set_expected_arrival("Z", "2024-06-01")

    assert len(deliveries.list_open_deliveries()) == 2


def test_mark_complete_closes_delivery_and_keeps_it(tmp_db):
    _seed("A", "B", "C")
    deliveries.set_expected_arrival("A", "2024-06-01")
    deliveries.set_expected_arrival("B", "2024-06-01")
    delivery_id = deliveries.find_open_delivery("Acme", "2024-06-01").id

    result = deliveries.mark_complete(["A"])

    assert result == {"matched": 1, "deliveries_completed": 1}
    assert po_store.get_purchase_order("A").status == POStatus.COMPLETE
    assert deliveries.list_open_deliveries() == []
    closed = deliveries.get_delivery(delivery_id)
    assert closed.status == "complete"
    assert closed.completed_at is not None
    assert closed.po_numbers == ["A", "B"]

    # a completed delivery is never reopened; a new one is started instead
    deliveries.set_expected_arrival("C", "2024-06-01")
    reopened = deliveries.find_open_delivery("Acme", "2024-06-01")
    assert reopened.id != delivery_id
    assert reopened.po_numbers == ["C"]


def test_mark_complete_requires_numbers(tmp_db):
    with pytest.raises(ValueError):
        deliveries.mark_complete([])


def test_eta_errors(tmp_db):
    _seed("A")
    with pytest.raises(NotFoundError):
        deliveries.set_expected_arrival("MISSING", "2024-06-01")
    with pytest.raises(NotFoundError):
        deliveries.clear_expected_arrival("MISSING")
    with pytest.raises(ValueError):
        deliveries.set_expected_arrival("A", "not-a-date")


def test_eta_hooks_group_and_prune(tmp_db):
    a = PurchaseOrder(po_number="A", vendor_name="Acme", expected_arrival=date(2024, 6, 1))
    b = a.model_copy(update={"po_number": "B"})

    first = deliveries.on_eta_set(a)
    second = deliveries.on_eta_set(b)

    assert first == second
    assert _open_groups() == [("Acme", date(2024, 6, 1), ["A", "B"])]

    deliveries.on_eta_cleared(a)
    assert _open_groups() == [("Acme", date(2024, 6, 1), ["B"])]

    deliveries.on_eta_cleared(b)
    assert _open_groups() == []

    # clearing again once the delivery is gone changes nothing
    deliveries.on_eta_cleared(b)
    assert _open_groups() == []


def test_eta_operations_go_through_hooks(tmp_db, monkeypatch):
    _seed("A")
    calls = []
    real_set, real_cleared = deliveries.on_eta_set, deliveries.on_eta_cleared

    def recording_set(po, conn=None):
        calls.append(("set", po.expected_arrival))
        return real_set(po, conn)

    def recording_cleared(po, conn=None):
        calls.append(("cleared", po.expected_arrival))
        return real_cleared(po, conn)

    monkeypatch.setattr(deliveries, "on_eta_set", recording_set)
    monkeypatch.setattr(deliveries, "on_eta_cleared", recording_cleared)

    deliveries.set_expected_arrival("A", "2024-06-01")
    deliveries.set_expected_arrival("A", "2024-06-03")
    deliveries.clear_expected_arrival("A")

    assert calls == [
        ("set", date(2024, 6, 1)),
        ("cleared", date(2024, 6, 1)),
        ("set", date(2024, 6, 3)),
        ("cleared", date(2024, 6, 3)),
    ]
    assert _open_groups() == []


def test_po_without_vendor_is_not_grouped(tmp_db):
    assert deliveries.on_eta_set(PurchaseOrder(po_number="N", expected_arrival=date(2024, 6, 1))) is None


def test_update_delivery_amounts(tmp_db):
    _seed("A")
    deliveries.set_expected_arrival("A", "2024-06-01")

    updated = deliveries.update_delivery_amounts(
        vendor_name="Acme",
        expected_arrival="2024-06-01",
        pallet_amount="2",
    )
    assert updated.pallet_amount == "2"
    assert updated.box_amount == ""

    updated = deliveries.update_delivery_amounts(delivery_id=updated.id, box_amount="14")
    assert (updated.pallet_amount, updated.box_amount) == ("2", "14")

    with pytest.raises(NotFoundError):
        deliveries.update_delivery_amounts(vendor_name="Nobody", expected_arrival="2024-06-01", box_amount="1")
    with pytest.raises(ValueError):
        deliveries.update_delivery_amounts(delivery_id=updated.id)
    with pytest.raises(ValueError):
        deliveries.update_delivery_amounts(pallet_amount="1")
