"""Delivery grouping API used by the receiving dock."""

from typing import List, Optional

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel, Field

from routes._responses import not_found
from services import deliveries
from services.errors import NotFoundError

router = APIRouter(prefix="/api")


class DeliveryAmountsPayload(BaseModel):
    delivery_id: Optional[int] = None
    vendor_name: Optional[str] = None
    expected_arrival: Optional[str] = None
    pallet_amount: Optional[str] = None
    box_amount: Optional[str] = None


class CompletePayload(BaseModel):
    po_numbers: List[str] = Field(default_factory=list)


@router.get("/deliveries")
def list_deliveries():
    return {"deliveries": [d.model_dump(mode="json") for d in deliveries.list_open_deliveries()]}


@router.get("/deliveries/{delivery_id}")
def get_delivery(delivery_id: int):
    try:
        return deliveries.get_delivery(delivery_id).model_dump(mode="json")
    except NotFoundError as exc:
        raise not_found(exc)


@router.post("/delivery-amounts")
def update_delivery_amounts(payload: DeliveryAmountsPayload):
    try:
        delivery = deliveries.update_delivery_amounts(**payload.model_dump())
    except NotFoundError as exc:
        raise not_found(exc)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return delivery.model_dump(mode="json")


@router.post("/deliveries/complete")
def complete_deliveries(payload: CompletePayload):
    try:
        return deliveries.mark_complete(payload.po_numbers)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def register_delivery_routes(app: FastAPI) -> None:
    app.include_router(router)
