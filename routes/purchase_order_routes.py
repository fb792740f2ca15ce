"""Purchase order API: list, edit operator fields, trigger a sync."""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

import config
from routes._responses import not_found, precondition_response
from services import deliveries, po_store
from services.errors import NotFoundError, PreconditionError
from services.jobs import PO_SYNC_JOB, get_job_status, run_po_sync

router = APIRouter(prefix="/api/purchase-orders")
logger = logging.getLogger(__name__)


class EtaPayload(BaseModel):
    expected_arrival: str = Field(..., description="Calendar date, e.g. 2024-05-10")


class StatusPayload(BaseModel):
    status: Optional[str] = None
    refresh_only: bool = False


class LocalFieldsPayload(BaseModel):
    delivery_method: Optional[str] = None
    supplier_po_number: Optional[str] = None


@router.get("")
def list_purchase_orders_route(
    status: Optional[str] = None,
    vendor: Optional[str] = None,
    include_lines: bool = False,
    page: Optional[int] = Query(None, ge=1),
    limit: int = 50,
):
    result = po_store.list_purchase_orders(
        status=status,
        vendor=vendor,
        include_lines=include_lines,
        page=page,
        limit=limit,
    )
    result["orders"] = [po.model_dump(mode="json") for po in result["orders"]]
    return result


@router.post("/refresh")
def refresh_purchase_orders():
    cooldown = timedelta(minutes=config.PO_SYNC_COOLDOWN_MINUTES)
    try:
        run_po_sync(owner="api", cooldown=cooldown, background=True)
    except PreconditionError as exc:
        return precondition_response(exc)
    logger.info("[PORoutes] PO sync started in background")
    return {"status": "started", "job": get_job_status(PO_SYNC_JOB)}


@router.get("/status")
def purchase_order_sync_status():
    return get_job_status(PO_SYNC_JOB)


@router.get("/{po_number}")
def get_purchase_order_route(po_number: str):
    try:
        return po_store.require_purchase_order(po_number).model_dump(mode="json")
    except NotFoundError as exc:
        raise not_found(exc)


@router.patch("/{po_number}")
def update_purchase_order_route(po_number: str, payload: LocalFieldsPayload):
    try:
        po = po_store.update_local_fields(
            po_number,
            delivery_method=payload.delivery_method,
            supplier_po_number=payload.supplier_po_number,
        )
    except NotFoundError as exc:
        raise not_found(exc)
    return po.model_dump(mode="json")


@router.delete("/{po_number}")
def delete_purchase_order_route(po_number: str):
    try:
        po_store.delete_purchase_order(po_number)
    except NotFoundError as exc:
        raise not_found(exc)
    return {"deleted": po_number}


@router.post("/{po_number}/status")
def update_status_route(po_number: str, payload: StatusPayload):
    try:
        po = po_store.update_status(po_number, payload.status, refresh_only=payload.refresh_only)
    except NotFoundError as exc:
        raise not_found(exc)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return po.model_dump(mode="json")


@router.post("/{po_number}/eta")
def set_eta_route(po_number: str, payload: EtaPayload):
    try:
        po = deliveries.set_expected_arrival(po_number, payload.expected_arrival)
    except NotFoundError as exc:
        raise not_found(exc)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "purchase_order": po.model_dump(mode="json"),
        "delivery": _delivery_json(po),
    }


@router.delete("/{po_number}/eta")
def clear_eta_route(po_number: str):
    try:
        po = deliveries.clear_expected_arrival(po_number)
    except NotFoundError as exc:
        raise not_found(exc)
    return {"purchase_order": po.model_dump(mode="json")}


def _delivery_json(po):
    delivery = deliveries.find_open_delivery(po.vendor_name, po.expected_arrival) if po.vendor_name else None
    return delivery.model_dump(mode="json") if delivery else None


def register_purchase_order_routes(app: FastAPI) -> None:
    app.include_router(router)
