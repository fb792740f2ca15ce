import pytest

from services import db as db_service
from services import deliveries, function_log, inventory_sync, job_state, po_store, report_store

_SCHEMA_MODULES = (po_store, deliveries, report_store, job_state, function_log, inventory_sync)


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    db_path = tmp_path / "warehouse.db"
    monkeypatch.setattr(db_service, "WAREHOUSE_DB_PATH", db_path)
    for module in _SCHEMA_MODULES:
        monkeypatch.setattr(module, "SCHEMA_ENSURED", False, raising=False)
    return db_path
