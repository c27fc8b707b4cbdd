"""
Reconciliation adjustments and period consumption.

Les ajustements (back-charges, avoirs, condamnations, autres) sont des
montants signés par (période, site). Ils ne touchent jamais aux lots.
Les NCR crédités s'ajoutent aux avoirs saisis ; le coût par manday
divise la consommation par les mandays du POB.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockledger.app.core.errors import PeriodNotOpen
from stockledger.app.db.models.core_types import (
    DeliveryStatus,
    PeriodLocationStatus,
    PeriodStatus,
    SnapshotKind,
    TransferStatus,
)
from stockledger.app.db.models.models_v1 import (
    Delivery,
    Issue,
    Period,
    PeriodLocation,
    Reconciliation,
    StockLot,
    StockSnapshot,
    Transfer,
)
from stockledger.app.schemas.transactions import ReconciliationIn
from stockledger.services.common import REVIEWER_ROLES, get_actor, get_location, get_or_404, require_role
from stockledger.services.ncrs import credited_ncr_value
from stockledger.services.pob import total_mandays
from stockledger.services.valuation import ZERO, round_money, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationSummary:
    period_id: int
    location_id: int
    opening: Decimal
    receipts: Decimal
    transfers_in: Decimal
    transfers_out: Decimal
    issues: Decimal
    closing: Decimal
    back_charges: Decimal
    credits: Decimal
    condemnations: Decimal
    adjustments: Decimal
    ncr_credits: Decimal
    consumption: Decimal
    total_mandays: int
    manday_cost: Decimal | None
    saved: bool


def calculate_consumption(
    opening,
    receipts,
    transfers_in,
    transfers_out,
    closing,
    back_charges=ZERO,
    credits=ZERO,
    condemnations=ZERO,
    adjustments=ZERO,
) -> Decimal:
    base = to_decimal(opening) + to_decimal(receipts) + to_decimal(transfers_in) - to_decimal(transfers_out)
    base -= to_decimal(closing)
    adj = to_decimal(back_charges) - to_decimal(credits) - to_decimal(condemnations) + to_decimal(adjustments)
    return round_money(base + adj)


def calculate_manday_cost(consumption, mandays: int) -> Decimal | None:
    """Cost per person per day; None when no POB was recorded."""
    if mandays <= 0:
        return None
    return round_money(to_decimal(consumption) / mandays)


def save_reconciliation(
    db: Session,
    period_id: int,
    location_id: int,
    payload: ReconciliationIn,
    actor_id: int,
) -> Reconciliation:
    try:
        actor = get_actor(db, actor_id)
        require_role(actor, REVIEWER_ROLES, "save reconciliations")
        period = get_or_404(db, Period, period_id, "Period")
        get_location(db, location_id)
        pl = db.get(PeriodLocation, (period_id, location_id))
        if period.status != PeriodStatus.open or pl is None or pl.status != PeriodLocationStatus.open:
            raise PeriodNotOpen(f"Period {period.name} is not open for location {location_id}")

        rec = db.execute(
            select(Reconciliation)
            .where(Reconciliation.period_id == period_id)
            .where(Reconciliation.location_id == location_id)
            .with_for_update()
        ).scalar_one_or_none()
        if rec is None:
            rec = Reconciliation(period_id=period_id, location_id=location_id, saved_by=actor.id)
            db.add(rec)

        rec.back_charges = round_money(payload.back_charges)
        rec.credits = round_money(payload.credits)
        rec.condemnations = round_money(payload.condemnations)
        rec.adjustments = round_money(payload.adjustments)
        rec.notes = payload.notes
        rec.saved_by = actor.id
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(rec)
    logger.info("reconciliation saved period=%s location=%s by %s", period_id, location_id, actor.username)
    return rec


def _sum(db: Session, column, *where) -> Decimal:
    return to_decimal(db.execute(select(func.coalesce(func.sum(column), 0)).where(*where)).scalar_one())


def _snapshot_value(db: Session, period_id: int, location_id: int, kind: SnapshotKind) -> Decimal | None:
    count, total = db.execute(
        select(func.count(StockSnapshot.id), func.coalesce(func.sum(StockSnapshot.value), 0))
        .where(StockSnapshot.period_id == period_id)
        .where(StockSnapshot.location_id == location_id)
        .where(StockSnapshot.kind == kind)
    ).one()
    return to_decimal(total) if count else None


def current_stock_value(db: Session, location_id: int) -> Decimal:
    lots = db.execute(select(StockLot.on_hand, StockLot.wac).where(StockLot.location_id == location_id)).all()
    return round_money(sum((to_decimal(q) * to_decimal(w) for q, w in lots), ZERO))


def reconciliation_summary(db: Session, period_id: int, location_id: int) -> ReconciliationSummary:
    get_or_404(db, Period, period_id, "Period")
    pl = db.get(PeriodLocation, (period_id, location_id))

    opening = _snapshot_value(db, period_id, location_id, SnapshotKind.opening)
    if opening is None:
        opening = to_decimal(pl.opening_value) if pl and pl.opening_value is not None else ZERO

    if pl is not None and pl.status == PeriodLocationStatus.closed:
        closing = _snapshot_value(db, period_id, location_id, SnapshotKind.closing)
        if closing is None:
            closing = to_decimal(pl.closing_value or ZERO)
    else:
        closing = current_stock_value(db, location_id)

    receipts = _sum(
        db,
        Delivery.total_amount,
        Delivery.period_id == period_id,
        Delivery.location_id == location_id,
        Delivery.status == DeliveryStatus.posted,
    )
    transfers_in = _sum(
        db,
        Transfer.total_value,
        Transfer.period_id == period_id,
        Transfer.to_location_id == location_id,
        Transfer.status == TransferStatus.completed,
    )
    transfers_out = _sum(
        db,
        Transfer.total_value,
        Transfer.period_id == period_id,
        Transfer.from_location_id == location_id,
        Transfer.status == TransferStatus.completed,
    )
    issues = _sum(db, Issue.total_value, Issue.period_id == period_id, Issue.location_id == location_id)

    rec = db.execute(
        select(Reconciliation)
        .where(Reconciliation.period_id == period_id)
        .where(Reconciliation.location_id == location_id)
    ).scalar_one_or_none()
    back_charges = to_decimal(rec.back_charges) if rec else ZERO
    credits = to_decimal(rec.credits) if rec else ZERO
    condemnations = to_decimal(rec.condemnations) if rec else ZERO
    adjustments = to_decimal(rec.adjustments) if rec else ZERO
    ncr_credits = credited_ncr_value(db, period_id, location_id)
    mandays = total_mandays(db, period_id, location_id)
    consumption = calculate_consumption(
        opening,
        receipts,
        transfers_in,
        transfers_out,
        closing,
        back_charges,
        credits + ncr_credits,
        condemnations,
        adjustments,
    )

    return ReconciliationSummary(
        period_id=period_id,
        location_id=location_id,
        opening=round_money(opening),
        receipts=round_money(receipts),
        transfers_in=round_money(transfers_in),
        transfers_out=round_money(transfers_out),
        issues=round_money(issues),
        closing=round_money(closing),
        back_charges=back_charges,
        credits=credits,
        condemnations=condemnations,
        adjustments=adjustments,
        ncr_credits=ncr_credits,
        consumption=consumption,
        total_mandays=mandays,
        manday_cost=calculate_manday_cost(consumption, mandays),
        saved=rec is not None,
    )
