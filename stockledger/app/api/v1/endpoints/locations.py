from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db
from stockledger.app.core.errors import ValidationError
from stockledger.app.db.models.models_v1 import Location, User
from stockledger.app.schemas.master_data import LocationCreate, LocationRead
from stockledger.services.common import require_role
from stockledger.services.periods import ADMIN_ONLY

router = APIRouter(prefix="/locations")


@router.get("", response_model=list[LocationRead])
def list_locations(
    active: bool | None = None,
    db: Session = Depends(get_db),
):
    stmt = select(Location).order_by(Location.code)
    if active is not None:
        stmt = stmt.where(Location.is_active.is_(active))
    return db.execute(stmt).scalars().all()


@router.post("", response_model=LocationRead, status_code=status.HTTP_201_CREATED)
def create_location(
    payload: LocationCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_role(user, ADMIN_ONLY, "create locations")
    exists = db.execute(select(Location).where(Location.code == payload.code)).scalar_one_or_none()
    if exists:
        raise ValidationError(f"Location code {payload.code} already exists", code="DUPLICATE_CODE")

    loc = Location(code=payload.code, name=payload.name, type=payload.type, is_active=True)
    db.add(loc)
    db.commit()
    db.refresh(loc)
    return loc
