"""
Job entry points used by the scheduler, the CLI and the HTTP routes.

Every run:
- acquires its persisted run guard (rejected with PreconditionError while
  another run is live or the cooldown has not elapsed),
- keeps the guard's lock alive with a heartbeat while it works,
- ends quietly when an upstream throttles with 429,
- otherwise records its outcome in the function log and, on failure,
  re-raises so the caller can alert.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

import config
from services import goflow_purchase_orders, magento_purchase_orders
from services.errors import ParseError, UpstreamRateLimitError
from services.function_log import log_function_run
from services.inventory_sync import sync_inventory_counts
from services.job_state import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    STATUS_THROTTLED,
    JobState,
    acquire_job,
    extend_job_lock,
    is_job_running,
    load_job_state,
    release_job,
)
from services.late_orders_report import generate_report
from services.po_merge import MergeStats, merge_and_store
from services.po_model import LateOrderReport, PurchaseOrder, utc_now
from services.report_store import get_latest_report_date

logger = logging.getLogger(__name__)

PO_SYNC_JOB = "po_sync"
LATE_ORDERS_JOB = "late_orders_report"
INVENTORY_SYNC_JOB = "inventory_sync"


@contextmanager
def _lock_heartbeat(name: str, token: str, interval: Optional[float] = None) -> Iterator[None]:
    """Extend the job lock every ``interval`` seconds until the block exits."""
    interval = config.JOB_LOCK_HEARTBEAT_SECONDS if interval is None else interval
    stop = threading.Event()

    def _beat() -> None:
        while not stop.wait(interval):
            try:
                if not extend_job_lock(name, token):
                    return
            except Exception as exc:
                logger.warning("[Jobs] %s heartbeat failed: %s", name, exc)

    thread = threading.Thread(target=_beat, name=f"Heartbeat-{name}", daemon=True)
    thread.start()
    try:
        yield
    finally:
        stop.set()
        thread.join(timeout=5)


def _complete(
    name: str,
    state: JobState,
    work: Callable[[], Any],
    meta: Optional[Callable[[Any], Dict[str, Any]]] = None,
) -> Any:
    """Run ``work`` under an already-acquired guard and record the outcome."""
    owner = state.lock_owner
    token = state.lock_token
    try:
        with _lock_heartbeat(name, token):
            result = work()
    except UpstreamRateLimitError as exc:
        logger.info("[Jobs] %s throttled by upstream (%s); ending run", name, exc)
        release_job(name, token, status=STATUS_THROTTLED, error=str(exc))
        return None
    except Exception as exc:
        logger.error("[Jobs] %s failed: %s", name, exc, exc_info=True)
        release_job(name, token, status=STATUS_FAILED, error=str(exc))
        log_function_run(f"{name} failed: {exc}", level="error", meta={"owner": owner, "error": type(exc).__name__})
        raise
    release_job(name, token, status=STATUS_SUCCESS)
    log_function_run(
        f"{name} completed successfully",
        level="info",
        meta={"owner": owner, **(meta(result) if meta else {})},
    )
    return result


def _run_guarded(
    name: str,
    owner: str,
    work: Callable[[], Any],
    *,
    now: datetime,
    cooldown: Optional[timedelta] = None,
    last_run_at: Optional[datetime] = None,
    meta: Optional[Callable[[Any], Dict[str, Any]]] = None,
    background: bool = False,
) -> Any:
    state = acquire_job(name, owner, now=now, cooldown=cooldown, last_run_at=last_run_at)
    if not background:
        return _complete(name, state, work, meta)

    def _target() -> None:
        try:
            _complete(name, state, work, meta)
        except Exception:
            # already logged and recorded by _complete
            pass

    thread = threading.Thread(target=_target, name=f"Job-{name}", daemon=True)
    thread.start()
    return thread


def fetch_sources(
    fetch_a: Callable[[], List[PurchaseOrder]],
    fetch_b: Callable[[], Tuple[List[PurchaseOrder], Set[str]]],
) -> Tuple[List[PurchaseOrder], List[PurchaseOrder], Set[str]]:
    """
    Fetch both upstreams concurrently.

    A malformed Magento export only empties that source for this run; any
    other failure from either source propagates before anything is merged.
    """
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="po-source") as pool:
        future_a = pool.submit(fetch_a)
        future_b = pool.submit(fetch_b)
        a_pos = future_a.result()
        try:
            b_pos, b_complete = future_b.result()
        except ParseError as exc:
            logger.error("[Jobs] Magento export unreadable, continuing with GoFlow only: %s", exc)
            log_function_run(
                f"Magento PO export skipped: {exc}",
                level="warning",
                meta={"source": "magento"},
            )
            b_pos, b_complete = [], set()
    return a_pos, b_pos, b_complete


def run_po_sync(
    *,
    owner: str = "scheduler",
    now: Optional[datetime] = None,
    fetch_a: Optional[Callable[[], List[PurchaseOrder]]] = None,
    fetch_b: Optional[Callable[[], Tuple[List[PurchaseOrder], Set[str]]]] = None,
    cooldown: Optional[timedelta] = None,
    background: bool = False,
) -> Any:
    """
    Fetch both PO sources and merge them into the store.

    Returns the MergeStats, None when throttled, or the worker thread when
    ``background`` is set (the guard is still acquired before returning).
    """
    fetch_a = fetch_a or goflow_purchase_orders.fetch_open_pos
    fetch_b = fetch_b or magento_purchase_orders.fetch_open_pos

    def _work() -> MergeStats:
        a_pos, b_pos, b_complete = fetch_sources(fetch_a, fetch_b)
        return merge_and_store(a_pos, b_pos, b_complete)

    return _run_guarded(
        PO_SYNC_JOB,
        owner,
        _work,
        now=now or utc_now(),
        cooldown=cooldown,
        meta=lambda stats: stats.as_dict(),
        background=background,
    )


def run_late_order_report(
    *,
    owner: str = "scheduler",
    now: Optional[datetime] = None,
    cooldown: Optional[timedelta] = None,
    generate: Optional[Callable[[datetime], LateOrderReport]] = None,
    background: bool = False,
) -> Any:
    now = now or utc_now()
    if cooldown is None:
        cooldown = timedelta(minutes=config.LATE_ORDERS_REPORT_COOLDOWN_MINUTES)
    generate = generate or generate_report

    return _run_guarded(
        LATE_ORDERS_JOB,
        owner,
        lambda: generate(now),
        now=now,
        cooldown=cooldown,
        last_run_at=get_latest_report_date(),
        meta=lambda report: report.summary.model_dump(),
        background=background,
    )


def run_inventory_sync(*, owner: str = "scheduler", now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    return _run_guarded(
        INVENTORY_SYNC_JOB,
        owner,
        sync_inventory_counts,
        now=now or utc_now(),
        meta=lambda stats: stats,
    )


def is_report_running() -> bool:
    return is_job_running(LATE_ORDERS_JOB)


def get_job_status(name: str) -> Dict[str, Any]:
    state = load_job_state(name)
    status = state.as_dict()
    status["running"] = state.is_locked(utc_now())
    return status
