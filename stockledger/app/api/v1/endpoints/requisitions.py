from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db, get_notifier
from stockledger.app.db.models.models_v1 import Requisition, User
from stockledger.app.schemas.procurement import (
    OrderCreate,
    OrderRead,
    RequisitionCreate,
    RequisitionRead,
    RequisitionUpdate,
)
from stockledger.app.schemas.transactions import RejectBody
from stockledger.services import approvals, procurement
from stockledger.services.common import get_or_404
from stockledger.services.notifications import Notifier

router = APIRouter(prefix="/requisitions")


@router.get("", response_model=list[RequisitionRead])
def list_requisitions(db: Session = Depends(get_db)):
    return db.execute(select(Requisition).order_by(Requisition.id.desc())).scalars().all()


@router.post("", response_model=RequisitionRead, status_code=status.HTTP_201_CREATED)
def create_requisition(payload: RequisitionCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return approvals.create_requisition(db, payload, user.id)


@router.get("/{prf_id}", response_model=RequisitionRead)
def get_requisition(prf_id: int, db: Session = Depends(get_db)):
    return get_or_404(db, Requisition, prf_id, "Requisition")


@router.patch("/{prf_id}", response_model=RequisitionRead)
def update_requisition(
    prf_id: int,
    payload: RequisitionUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return approvals.update_requisition(db, prf_id, payload, user.id)


@router.delete("/{prf_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_requisition(prf_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    approvals.delete_requisition(db, prf_id, user.id)


@router.post("/{prf_id}/submit", response_model=RequisitionRead)
def submit_requisition(
    prf_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return approvals.submit_requisition(db, prf_id, user.id, notifier)


@router.post("/{prf_id}/approve", response_model=RequisitionRead)
def approve_requisition(
    prf_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return approvals.approve_requisition(db, prf_id, user.id, notifier)


@router.post("/{prf_id}/reject", response_model=RequisitionRead)
def reject_requisition(
    prf_id: int,
    body: RejectBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return approvals.reject_requisition(db, prf_id, user.id, body.reason or "", notifier)


@router.post("/{prf_id}/clone", response_model=RequisitionRead, status_code=status.HTTP_201_CREATED)
def clone_requisition(prf_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return approvals.clone_requisition(db, prf_id, user.id)


@router.post("/{prf_id}/order", response_model=OrderRead, status_code=status.HTTP_201_CREATED)
def create_order(
    prf_id: int,
    payload: OrderCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return procurement.create_order_from_requisition(db, prf_id, user.id, payload, notifier)
