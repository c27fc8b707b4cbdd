from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db
from stockledger.app.core.errors import ValidationError
from stockledger.app.db.models.models_v1 import Item, User
from stockledger.app.schemas.master_data import ItemCreate, ItemRead
from stockledger.services.common import require_role
from stockledger.services.periods import ADMIN_ONLY

router = APIRouter(prefix="/items")


@router.get("", response_model=list[ItemRead])
def list_items(db: Session = Depends(get_db)):
    return db.execute(select(Item).order_by(Item.code)).scalars().all()


@router.post("", response_model=ItemRead, status_code=status.HTTP_201_CREATED)
def create_item(
    payload: ItemCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_role(user, ADMIN_ONLY, "create items")
    exists = db.execute(select(Item).where(Item.code == payload.code)).scalar_one_or_none()
    if exists:
        raise ValidationError(f"Item code {payload.code} already exists", code="DUPLICATE_CODE")

    item = Item(code=payload.code, name=payload.name, unit=payload.unit, is_active=payload.is_active)
    db.add(item)
    db.commit()
    db.refresh(item)
    return item
