"""Late-order report API and the "due by" tag view."""

import logging
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel

from routes._responses import precondition_response, upstream_error
from services.errors import PreconditionError, UpstreamError
from services.jobs import LATE_ORDERS_JOB, get_job_status, is_report_running, run_late_order_report
from services.report_store import get_current_report
from services.sales_orders import fetch_orders_due_by_tag

router = APIRouter(prefix="/api")
logger = logging.getLogger(__name__)


class OrdersDueByPayload(BaseModel):
    tag_id: Optional[str] = None


@router.get("/late-orders-report")
def get_late_orders_report():
    report = get_current_report()
    return {
        "running": is_report_running(),
        "report": report.model_dump(mode="json") if report else None,
    }


@router.get("/late-orders-report/status")
def late_orders_report_status():
    return get_job_status(LATE_ORDERS_JOB)


@router.post("/late-orders-report/refresh")
def refresh_late_orders_report():
    try:
        run_late_order_report(owner="api", background=True)
    except PreconditionError as exc:
        return precondition_response(exc)
    logger.info("[LateOrdersRoutes] Report generation started in background")
    return {"status": "started"}


@router.post("/orders-due-by")
def orders_due_by(payload: Optional[OrdersDueByPayload] = None):
    tag_id = payload.tag_id if payload else None
    try:
        return fetch_orders_due_by_tag(tag_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except UpstreamError as exc:
        logger.error("[LateOrdersRoutes] Orders due by tag %s failed: %s", tag_id, exc)
        raise upstream_error(exc)


def register_late_orders_routes(app: FastAPI) -> None:
    app.include_router(router)
