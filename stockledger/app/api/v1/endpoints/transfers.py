from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db, get_notifier
from stockledger.app.db.models.models_v1 import Transfer, User
from stockledger.app.schemas.transactions import RejectBody, TransferCreate, TransferRead
from stockledger.services import transfers
from stockledger.services.common import get_or_404
from stockledger.services.notifications import Notifier

router = APIRouter(prefix="/transfers")


@router.post("", response_model=TransferRead, status_code=status.HTTP_201_CREATED)
def request_transfer(
    payload: TransferCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return transfers.request_transfer(
        db, payload.from_location_id, payload.to_location_id, payload, user.id, notifier
    )


@router.get("/{transfer_id}", response_model=TransferRead)
def get_transfer(transfer_id: int, db: Session = Depends(get_db)):
    return get_or_404(db, Transfer, transfer_id, "Transfer")


@router.post("/{transfer_id}/approve", response_model=TransferRead)
def approve_transfer(
    transfer_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return transfers.approve_transfer(db, transfer_id, user.id, notifier)


@router.post("/{transfer_id}/reject", response_model=TransferRead)
def reject_transfer(
    transfer_id: int,
    body: RejectBody,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return transfers.reject_transfer(db, transfer_id, user.id, body.reason or "", notifier)
