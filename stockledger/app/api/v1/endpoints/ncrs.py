from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db, get_notifier
from stockledger.app.db.models.models_v1 import NCR, User
from stockledger.app.schemas.transactions import NCRCreate, NCRRead, NCRStatusUpdate
from stockledger.services import ncrs
from stockledger.services.common import get_or_404
from stockledger.services.notifications import Notifier

router = APIRouter(prefix="/ncrs")


@router.get("", response_model=list[NCRRead])
def list_ncrs(location_id: int | None = None, db: Session = Depends(get_db)):
    stmt = select(NCR).order_by(NCR.id.desc())
    if location_id is not None:
        stmt = stmt.where(NCR.location_id == location_id)
    return db.execute(stmt).scalars().all()


@router.post("", response_model=NCRRead, status_code=status.HTTP_201_CREATED)
def create_ncr(
    payload: NCRCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return ncrs.create_manual_ncr(db, payload, user.id, notifier)


@router.get("/{ncr_id}", response_model=NCRRead)
def get_ncr(ncr_id: int, db: Session = Depends(get_db)):
    return get_or_404(db, NCR, ncr_id, "NCR")


@router.patch("/{ncr_id}", response_model=NCRRead)
def update_ncr(
    ncr_id: int,
    body: NCRStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return ncrs.update_ncr_status(db, ncr_id, body.status, user.id, body.resolution_notes, notifier)
