from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db, get_notifier
from stockledger.app.db.models.models_v1 import Period, User
from stockledger.app.schemas.periods import ItemPriceIn, PeriodCreate, PeriodLocationRead, PeriodRead
from stockledger.app.schemas.transactions import ReconciliationIn
from stockledger.services import periods, reconciliation
from stockledger.services.common import get_or_404
from stockledger.services.notifications import Notifier

router = APIRouter(prefix="/periods")


@router.get("", response_model=list[PeriodRead])
def list_periods(db: Session = Depends(get_db)):
    return db.execute(select(Period).order_by(Period.start_date.desc())).scalars().all()


@router.post("", response_model=PeriodRead, status_code=status.HTTP_201_CREATED)
def create_period(payload: PeriodCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return periods.create_period(db, payload, user.id)


@router.get("/{period_id}", response_model=PeriodRead)
def get_period(period_id: int, db: Session = Depends(get_db)):
    return get_or_404(db, Period, period_id, "Period")


@router.post("/{period_id}/open", response_model=PeriodRead)
def open_period(
    period_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    return periods.open_period(db, period_id, user.id, notifier)


@router.post("/{period_id}/prices")
def set_prices(
    period_id: int,
    prices: list[ItemPriceIn],
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = [periods.set_item_price(db, period_id, p.item_id, p.price, user.id) for p in prices]
    return [{"item_id": r.item_id, "price": r.price} for r in rows]


@router.post("/{period_id}/locations/{location_id}/ready", response_model=PeriodLocationRead)
def mark_ready(period_id: int, location_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return periods.mark_location_ready(db, period_id, location_id, user.id)


@router.post("/{period_id}/locations/{location_id}/unready", response_model=PeriodLocationRead)
def mark_unready(
    period_id: int, location_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)
):
    return periods.mark_location_unready(db, period_id, location_id, user.id)


@router.post("/{period_id}/close")
def close_period(
    period_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    result = periods.close_period(db, period_id, user.id, notifier)
    return {
        "period": PeriodRead.model_validate(result.period).model_dump(mode="json"),
        "next_period": PeriodRead.model_validate(result.next_period).model_dump(mode="json"),
    }


@router.put("/{period_id}/locations/{location_id}/reconciliation")
def save_reconciliation(
    period_id: int,
    location_id: int,
    payload: ReconciliationIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    reconciliation.save_reconciliation(db, period_id, location_id, payload, user.id)
    return asdict(reconciliation.reconciliation_summary(db, period_id, location_id))


@router.get("/{period_id}/locations/{location_id}/reconciliation")
def get_reconciliation(period_id: int, location_id: int, db: Session = Depends(get_db)):
    return asdict(reconciliation.reconciliation_summary(db, period_id, location_id))
