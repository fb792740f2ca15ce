"""Job log and job status endpoints."""

from fastapi import APIRouter, FastAPI, Query

from services.function_log import list_function_logs
from services.jobs import INVENTORY_SYNC_JOB, LATE_ORDERS_JOB, PO_SYNC_JOB, get_job_status

router = APIRouter(prefix="/api")


@router.get("/logs")
def get_logs(limit: int = Query(50, ge=1, le=500)):
    return {"logs": list_function_logs(limit)}


@router.get("/jobs")
def get_jobs():
    return {"jobs": [get_job_status(name) for name in (PO_SYNC_JOB, LATE_ORDERS_JOB, INVENTORY_SYNC_JOB)]}


def register_log_routes(app: FastAPI) -> None:
    app.include_router(router)
