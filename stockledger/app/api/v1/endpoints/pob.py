from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db
from stockledger.app.db.models.models_v1 import User
from stockledger.app.schemas.transactions import POBEntryRead, POBSave
from stockledger.services import pob
from stockledger.services.common import current_open_period

router = APIRouter(prefix="/locations/{location_id}/pob")


@router.get("", response_model=list[POBEntryRead])
def list_pob(location_id: int, period_id: int | None = None, db: Session = Depends(get_db)):
    period_id = period_id or current_open_period(db).id
    return pob.list_pob_entries(db, period_id, location_id)


@router.post("", response_model=list[POBEntryRead])
def save_pob(
    location_id: int,
    payload: POBSave,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return pob.save_pob_entries(db, location_id, payload, user.id)
