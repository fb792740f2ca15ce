from datetime import date

import pytest

from services import magento_purchase_orders as magento
from services.errors import ParseError
from services.po_model import POStatus, SchemaVariant

HEADER = (
    "purchase_order_number,purchase_order_status,supplier_name,purchase_order_date,product_sku,product_name,upc,"
    "purchase_order_product_goflow_qty,purchase_order_product_delivered_goflow_qty,"
    "purchase_order_product_fba_qty,purchase_order_product_delivered_fba_qty"
)

EXPORT = "\n".join(
    [
        HEADER,
        "PO-1,waiting_for_supplier,Acme,2024-05-01,SKU-A,Widget,111,5,2,3,0",
        "PO-1,waiting_for_supplier,Other Vendor,2024-06-01,SKU-B,Gadget,222,4,0,0,0",
        "PO-2-GF,waiting_for_supplier,Beta,05/03/2024,SKU-C,Thing,333,4,0,2,1",
        "PO-3,complete,Acme,2024-04-01,SKU-A,Widget,111,1,1,0,0",
        "PO-4,canceled,Acme,2024-04-01,SKU-A,Widget,111,1,0,0,0",
        ",waiting_for_supplier,Acme,2024-04-01,SKU-A,Widget,111,1,0,0,0",
    ]
)


def test_rows_fold_into_purchase_orders():
    pos, complete = magento.parse_po_export(EXPORT)

    by_number = {po.po_number: po for po in pos}
    assert set(by_number) == {"PO-1", "PO-2-GF"}
    assert complete == {"PO-3"}

    po1 = by_number["PO-1"]
    assert po1.vendor_name == "Acme"
    assert po1.po_date == date(2024, 5, 1)
    assert po1.status == POStatus.AWAITING_SUPPLIER
    assert po1.schema_variant == SchemaVariant.LEGACY_SPLIT
    assert [line.sku for line in po1.lines] == ["SKU-A", "SKU-B"]
    assert po1.lines[0].goflow_qty == 5
    assert po1.lines[0].goflow_delivered_qty == 2
    assert po1.lines[0].fba_qty == 3

    po2 = by_number["PO-2-GF"]
    assert po2.po_date == date(2024, 5, 3)
    assert po2.schema_variant == SchemaVariant.LEGACY_COMBINED


def test_empty_export_is_empty():
    assert magento.parse_po_export("") == ([], set())


def test_missing_required_column_is_parse_error():
    with pytest.raises(ParseError):
        magento.parse_po_export("po,status\nPO-1,waiting_for_supplier\n")


def test_malformed_csv_is_parse_error():
    text = HEADER + '\nPO-9,"waiting_for_supplier"x,Acme,2024-05-01,SKU-A,Widget,111,1,0,0,0\n'
    with pytest.raises(ParseError):
        magento.parse_po_export(text)


def test_fetch_decodes_bom_and_uses_export_url():
    class _Resp:
        content = ("\ufeff" + EXPORT).encode("utf-8")

    class _Client:
        def __init__(self):
            self.urls = []

        def get(self, url):
            self.urls.append(url)
            return _Resp()

    client = _Client()
    pos, complete = magento.fetch_open_pos(client, export_url="https://magento.test/export")

    assert client.urls == ["https://magento.test/export"]
    assert len(pos) == 2
    assert complete == {"PO-3"}
