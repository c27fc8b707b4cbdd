from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db
from stockledger.app.core.errors import ValidationError
from stockledger.app.db.models.core_types import Role
from stockledger.app.db.models.models_v1 import Supplier, User
from stockledger.app.schemas.master_data import SupplierCreate, SupplierRead
from stockledger.services.common import REVIEWER_ROLES, require_role

router = APIRouter(prefix="/suppliers")


@router.get("", response_model=list[SupplierRead])
def list_suppliers(db: Session = Depends(get_db)):
    return db.execute(select(Supplier).order_by(Supplier.name)).scalars().all()


@router.post("", response_model=SupplierRead, status_code=status.HTTP_201_CREATED)
def create_supplier(
    payload: SupplierCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_role(user, REVIEWER_ROLES | {Role.procurement}, "create suppliers")
    exists = db.execute(select(Supplier).where(Supplier.code == payload.code)).scalar_one_or_none()
    if exists:
        raise ValidationError(f"Supplier {payload.code} already exists", code="DUPLICATE_CODE")

    s = Supplier(code=payload.code, name=payload.name, email=payload.email, is_active=True)
    db.add(s)
    db.commit()
    db.refresh(s)
    return s
