from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db, get_notifier
from stockledger.app.db.models.models_v1 import Delivery, User
from stockledger.app.schemas.transactions import (
    DeliveryCreate,
    DeliveryRead,
    DeliveryUpdate,
    OverDeliveryDecision,
)
from stockledger.services import approvals, deliveries
from stockledger.services.common import get_or_404
from stockledger.services.notifications import Notifier

router = APIRouter()


def _result(result: deliveries.DeliveryResult) -> dict:
    return {
        "delivery": DeliveryRead.model_validate(result.delivery).model_dump(mode="json"),
        "state": deliveries.delivery_state(result.delivery).value,
        "approval_required": result.approval_required,
        "ncrs_created": [n.ncr_no for n in result.ncrs_created],
        "order_auto_closed": result.order_auto_closed,
        "requisition_auto_closed": result.requisition_auto_closed,
    }


@router.get("/locations/{location_id}/deliveries", response_model=list[DeliveryRead])
def list_deliveries(location_id: int, db: Session = Depends(get_db)):
    return db.execute(
        select(Delivery).where(Delivery.location_id == location_id).order_by(Delivery.id.desc())
    ).scalars().all()


@router.post("/locations/{location_id}/deliveries", status_code=status.HTTP_201_CREATED)
def create_delivery(
    location_id: int,
    payload: DeliveryCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return _result(deliveries.create_delivery(db, location_id, payload, user.id, notifier))


@router.get("/deliveries/{delivery_id}")
def get_delivery(delivery_id: int, db: Session = Depends(get_db)):
    delivery = get_or_404(db, Delivery, delivery_id, "Delivery")
    return {
        **DeliveryRead.model_validate(delivery).model_dump(mode="json"),
        "state": deliveries.delivery_state(delivery).value,
    }


@router.patch("/deliveries/{delivery_id}", response_model=DeliveryRead)
def update_delivery(
    delivery_id: int,
    payload: DeliveryUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return deliveries.update_delivery(db, delivery_id, payload, user.id)


@router.delete("/deliveries/{delivery_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_delivery(delivery_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    deliveries.delete_delivery(db, delivery_id, user.id)


@router.post("/deliveries/{delivery_id}/post")
def post_delivery(
    delivery_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return _result(deliveries.post_existing_delivery(db, delivery_id, user.id, notifier))


@router.post("/over-deliveries/approve", response_model=DeliveryRead)
def approve_over_delivery(
    body: OverDeliveryDecision,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return approvals.approve_over_delivery(db, body.line_ids, user.id, notifier)


@router.post("/over-deliveries/reject", response_model=DeliveryRead)
def reject_over_delivery(
    body: OverDeliveryDecision,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return approvals.reject_over_delivery(db, body.line_ids, user.id, body.reason or "", notifier)
