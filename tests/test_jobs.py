import time
from datetime import date, datetime, timedelta, timezone

import pytest

from services import jobs, po_store
from services.errors import ParseError, PreconditionError, UpstreamError, UpstreamRateLimitError
from services.function_log import list_function_logs
from services.job_state import acquire_job, load_job_state
from services.po_model import LateOrderReport, POLine, PurchaseOrder
from services.report_store import replace_current_report

T0 = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def _po(number, source="goflow"):
    return PurchaseOrder(
        po_number=number,
        vendor_name="Acme",
        po_date=date(2024, 5, 1),
        lines=[POLine(line_id="1", item_number="SKU-A", ordered_qty=3)],
        source=source,
    )


def test_po_sync_merges_both_sources_and_logs(tmp_db):
    stats = jobs.run_po_sync(
        now=T0,
        fetch_a=lambda: [_po("GF-1")],
        fetch_b=lambda: ([_po("PO-1", source="magento")], set()),
    )

    assert stats.upserted == 2
    assert sorted(po_store.list_stored_po_numbers()) == ["GF-1", "PO-1"]
    logs = list_function_logs()
    assert logs[0]["level"] == "info"
    assert logs[0]["meta"]["upserted"] == 2
    assert jobs.get_job_status(jobs.PO_SYNC_JOB)["last_status"] == "SUCCESS"


def test_magento_parse_error_is_isolated(tmp_db):
    def broken_export():
        raise ParseError("bad csv")

    stats = jobs.run_po_sync(now=T0, fetch_a=lambda: [_po("GF-1")], fetch_b=broken_export)

    assert stats.fetched_b == 0
    assert po_store.list_stored_po_numbers() == ["GF-1"]
    levels = [entry["level"] for entry in list_function_logs()]
    assert "warning" in levels
    assert "info" in levels


def test_upstream_failure_fails_run_without_touching_store(tmp_db):
    jobs.run_po_sync(now=T0, fetch_a=lambda: [_po("KEEP")], fetch_b=lambda: ([], set()))

    def down():
        raise UpstreamError("GoFlow unavailable", status_code=503)

    with pytest.raises(UpstreamError):
        jobs.run_po_sync(now=T0 + timedelta(minutes=5), fetch_a=down, fetch_b=lambda: ([], {"KEEP"}))

    assert po_store.list_stored_po_numbers() == ["KEEP"]
    assert list_function_logs()[0]["level"] == "error"
    status = jobs.get_job_status(jobs.PO_SYNC_JOB)
    assert status["last_status"] == "FAILED"
    assert status["running"] is False


def test_rate_limit_ends_run_quietly(tmp_db):
    def throttled():
        raise UpstreamRateLimitError("slow down", status_code=429)

    result = jobs.run_po_sync(now=T0, fetch_a=throttled, fetch_b=lambda: ([], set()))

    assert result is None
    assert list_function_logs() == []
    assert jobs.get_job_status(jobs.PO_SYNC_JOB)["last_status"] == "THROTTLED"


def test_po_sync_rejected_while_running(tmp_db):
    acquire_job(jobs.PO_SYNC_JOB, "other", now=datetime.now(timezone.utc))

    with pytest.raises(PreconditionError) as excinfo:
        jobs.run_po_sync(fetch_a=lambda: [], fetch_b=lambda: ([], set()))
    assert excinfo.value.reason == "running"


def _storing_generator(now):
    report = LateOrderReport(report_date=now, cutoff_date=now)
    replace_current_report(report)
    return report


def test_late_order_report_cooldown(tmp_db):
    assert jobs.run_late_order_report(now=T0, generate=_storing_generator).report_date == T0

    with pytest.raises(PreconditionError) as excinfo:
        jobs.run_late_order_report(now=T0 + timedelta(minutes=10), generate=_storing_generator)
    assert excinfo.value.reason == "cooldown"
    assert excinfo.value.retry_after_seconds > 0

    later = T0 + timedelta(minutes=61)
    assert jobs.run_late_order_report(now=later, generate=_storing_generator).report_date == later


def test_is_report_running(tmp_db):
    assert jobs.is_report_running() is False
    acquire_job(jobs.LATE_ORDERS_JOB, "api", now=datetime.now(timezone.utc))
    assert jobs.is_report_running() is True


def test_background_run_acquires_guard_before_returning(tmp_db):
    thread = jobs.run_po_sync(
        fetch_a=lambda: [_po("GF-9")],
        fetch_b=lambda: ([], set()),
        background=True,
    )
    thread.join(timeout=10)

    assert po_store.list_stored_po_numbers() == ["GF-9"]
    assert jobs.get_job_status(jobs.PO_SYNC_JOB)["last_status"] == "SUCCESS"


def test_lock_is_kept_alive_while_sync_runs(tmp_db, monkeypatch):
    monkeypatch.setattr(jobs.config, "JOB_LOCK_HEARTBEAT_SECONDS", 0.01)
    initial_expiry = T0 + timedelta(minutes=jobs.config.JOB_LOCK_TTL_MINUTES)
    extended = []

    def slow_goflow():
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            expiry = load_job_state(jobs.PO_SYNC_JOB).lock_expires_at
            if expiry and expiry > initial_expiry:
                extended.append(expiry)
                break
            time.sleep(0.02)
        return [_po("GF-1")]

    jobs.run_po_sync(now=T0, fetch_a=slow_goflow, fetch_b=lambda: ([], set()))

    assert extended
    status = jobs.get_job_status(jobs.PO_SYNC_JOB)
    assert status["running"] is False
    assert status["last_status"] == "SUCCESS"
