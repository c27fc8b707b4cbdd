"""
Period close coordinator.

Cycle d'une période : DRAFT -> OPEN -> CLOSED.
Chaque site passe OPEN -> READY -> CLOSED ; la clôture exige que tous
les sites soient READY.

Closing snapshots every lot, freezes closing values, then rolls forward:
the next period is created (DRAFT, contiguous dates, same length), prices
are copied and its OPENING snapshot mirrors the CLOSING one row for row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from stockledger.app.core.errors import InvalidStateTransition, PeriodNotOpen, ValidationError
from stockledger.app.db.models.core_types import (
    DeliveryStatus,
    PeriodLocationStatus,
    PeriodStatus,
    Role,
    SnapshotKind,
    TransferStatus,
)
from stockledger.app.db.models.models_v1 import (
    Delivery,
    Item,
    ItemPrice,
    Location,
    Period,
    PeriodLocation,
    Reconciliation,
    StockLot,
    StockSnapshot,
    Transfer,
)
from stockledger.app.schemas.periods import PeriodCreate
from stockledger.services.common import REVIEWER_ROLES, get_actor, get_or_404, require_role
from stockledger.services.notifications import Notifier, dispatch
from stockledger.services.valuation import ZERO, round_cost, round_money, round_qty, to_decimal

logger = logging.getLogger(__name__)

ADMIN_ONLY = frozenset({Role.admin})


@dataclass(frozen=True)
class ClosePeriodResult:
    period: Period
    next_period: Period


def _check_overlap(db: Session, start: date, end: date, exclude_id: int | None = None) -> None:
    stmt = select(Period).where(and_(Period.start_date <= end, Period.end_date >= start))
    if exclude_id is not None:
        stmt = stmt.where(Period.id != exclude_id)
    other = db.execute(stmt).scalars().first()
    if other:
        raise ValidationError(
            f"Period would overlap with existing period '{other.name}'",
            code="PERIOD_OVERLAP",
            details={"period_id": other.id, "start_date": str(other.start_date), "end_date": str(other.end_date)},
        )


def _attach_locations(db: Session, period: Period) -> None:
    known = {pl.location_id for pl in period.period_locations}
    for loc_id in db.execute(select(Location.id).where(Location.is_active.is_(True)).order_by(Location.id)).scalars():
        if loc_id not in known:
            period.period_locations.append(PeriodLocation(location_id=loc_id, status=PeriodLocationStatus.open))


def create_period(db: Session, payload: PeriodCreate, actor_id: int) -> Period:
    try:
        actor = get_actor(db, actor_id)
        require_role(actor, ADMIN_ONLY, "create periods")
        if payload.end_date < payload.start_date:
            raise ValidationError("End date must be on or after start date", code="INVALID_PERIOD_DATES")
        _check_overlap(db, payload.start_date, payload.end_date)

        period = Period(
            name=payload.name,
            start_date=payload.start_date,
            end_date=payload.end_date,
            status=PeriodStatus.draft,
        )
        _attach_locations(db, period)
        db.add(period)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(period)
    logger.info("period %s created (%s .. %s)", period.name, period.start_date, period.end_date)
    return period


def _seed_opening_from_lots(db: Session, period: Period, location_id: int) -> None:
    lots = db.execute(
        select(StockLot).where(StockLot.location_id == location_id).order_by(StockLot.item_id)
    ).scalars()
    for lot in lots:
        db.add(
            StockSnapshot(
                period_id=period.id,
                location_id=location_id,
                item_id=lot.item_id,
                kind=SnapshotKind.opening,
                quantity=round_qty(lot.on_hand),
                wac=round_cost(lot.wac),
                value=round_money(to_decimal(lot.on_hand) * to_decimal(lot.wac)),
            )
        )


def _snapshot_total(db: Session, period_id: int, location_id: int, kind: SnapshotKind) -> Decimal:
    values = db.execute(
        select(StockSnapshot.value)
        .where(StockSnapshot.period_id == period_id)
        .where(StockSnapshot.location_id == location_id)
        .where(StockSnapshot.kind == kind)
    ).scalars()
    return round_money(sum((to_decimal(v) for v in values), ZERO))


def open_period(db: Session, period_id: int, actor_id: int, notifier: Notifier | None = None) -> Period:
    try:
        actor = get_actor(db, actor_id)
        require_role(actor, ADMIN_ONLY, "open periods")
        period = get_or_404(db, Period, period_id, "Period", lock=True)
        if period.status != PeriodStatus.draft:
            raise InvalidStateTransition(f"Period {period.name} is {period.status.value}, not DRAFT")
        current = db.execute(
            select(Period.name).where(Period.status == PeriodStatus.open).where(Period.id != period.id)
        ).scalars().first()
        if current:
            raise InvalidStateTransition(f"Period {current} is still open", code="PERIOD_ALREADY_OPEN")

        _attach_locations(db, period)
        db.flush()
        for pl in period.period_locations:
            has_opening = db.execute(
                select(StockSnapshot.id)
                .where(StockSnapshot.period_id == period.id)
                .where(StockSnapshot.location_id == pl.location_id)
                .where(StockSnapshot.kind == SnapshotKind.opening)
                .limit(1)
            ).first()
            if not has_opening:
                # première période : l'ouverture reprend les lots courants
                _seed_opening_from_lots(db, period, pl.location_id)
                db.flush()
            pl.opening_value = _snapshot_total(db, period.id, pl.location_id, SnapshotKind.opening)
            pl.status = PeriodLocationStatus.open

        period.status = PeriodStatus.open
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(period)
    logger.info("period %s opened by %s", period.name, actor.username)
    dispatch(notifier, "period.opened", period_id=period.id, name=period.name)
    return period


def set_item_price(db: Session, period_id: int, item_id: int, price, actor_id: int) -> ItemPrice:
    try:
        actor = get_actor(db, actor_id)
        require_role(actor, ADMIN_ONLY, "set period prices")
        period = get_or_404(db, Period, period_id, "Period")
        if period.status == PeriodStatus.closed:
            raise InvalidStateTransition(f"Period {period.name} is closed; prices are frozen")
        get_or_404(db, Item, item_id, "Item")
        price = round_cost(price)
        if price < 0:
            raise ValidationError("Price cannot be negative", code="INVALID_PRICE")

        row = db.get(ItemPrice, (period_id, item_id))
        if row is None:
            row = ItemPrice(period_id=period_id, item_id=item_id, price=price, set_by=actor.id)
            db.add(row)
        else:
            row.price = price
            row.set_by = actor.id
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    return row


def _locked_period_location(db: Session, period: Period, location_id: int) -> PeriodLocation:
    pl = db.execute(
        select(PeriodLocation)
        .where(PeriodLocation.period_id == period.id)
        .where(PeriodLocation.location_id == location_id)
        .with_for_update()
    ).scalar_one_or_none()
    if pl is None:
        raise PeriodNotOpen(f"Location {location_id} is not part of period {period.name}")
    return pl


def readiness_blockers(db: Session, period_id: int, location_id: int) -> list[dict]:
    blockers = []
    open_deliveries = db.execute(
        select(Delivery.delivery_no, Delivery.status)
        .where(Delivery.period_id == period_id)
        .where(Delivery.location_id == location_id)
        .where(Delivery.status.in_([DeliveryStatus.draft, DeliveryStatus.pending_approval]))
        .order_by(Delivery.delivery_no)
    ).all()
    for no, status in open_deliveries:
        blockers.append({"type": "delivery", "ref": no, "message": f"Delivery {no} is {status.value}"})

    pending_transfers = db.execute(
        select(Transfer.transfer_no)
        .where(Transfer.status == TransferStatus.pending_approval)
        .where(or_(Transfer.from_location_id == location_id, Transfer.to_location_id == location_id))
        .order_by(Transfer.transfer_no)
    ).scalars()
    for no in pending_transfers:
        blockers.append({"type": "transfer", "ref": no, "message": f"Transfer {no} is awaiting approval"})

    saved = db.execute(
        select(Reconciliation.id)
        .where(Reconciliation.period_id == period_id)
        .where(Reconciliation.location_id == location_id)
    ).first()
    if not saved:
        blockers.append({"type": "reconciliation", "ref": None, "message": "Reconciliation has not been saved"})
    return blockers


def mark_location_ready(db: Session, period_id: int, location_id: int, actor_id: int) -> PeriodLocation:
    try:
        actor = get_actor(db, actor_id)
        require_role(actor, REVIEWER_ROLES, "mark locations ready")
        period = get_or_404(db, Period, period_id, "Period")
        if period.status != PeriodStatus.open:
            raise PeriodNotOpen(f"Period {period.name} is {period.status.value}")
        pl = _locked_period_location(db, period, location_id)
        if pl.status != PeriodLocationStatus.open:
            raise InvalidStateTransition(f"Location {location_id} is {pl.status.value}, not OPEN")

        blockers = readiness_blockers(db, period_id, location_id)
        if blockers:
            raise InvalidStateTransition(
                f"Location {location_id} cannot be marked ready: "
                + "; ".join(b["message"] for b in blockers),
                code="LOCATION_NOT_READY",
                details={"blockers": blockers},
            )
        pl.status = PeriodLocationStatus.ready
        pl.ready_at = datetime.now(timezone.utc)
        pl.ready_by = actor.id
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(pl)
    logger.info("location %s ready for period %s", location_id, period.name)
    return pl


def mark_location_unready(db: Session, period_id: int, location_id: int, actor_id: int) -> PeriodLocation:
    try:
        actor = get_actor(db, actor_id)
        require_role(actor, REVIEWER_ROLES, "reopen locations")
        period = get_or_404(db, Period, period_id, "Period")
        if period.status != PeriodStatus.open:
            raise PeriodNotOpen(f"Period {period.name} is {period.status.value}")
        pl = _locked_period_location(db, period, location_id)
        if pl.status != PeriodLocationStatus.ready:
            raise InvalidStateTransition(f"Location {location_id} is {pl.status.value}, not READY")
        pl.status = PeriodLocationStatus.open
        pl.ready_at = None
        pl.ready_by = None
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(pl)
    return pl


def _next_period_name(db: Session, start: date) -> str:
    name = start.strftime("%B %Y")
    if db.execute(select(Period.id).where(Period.name == name)).first():
        name = f"{name} ({start.isoformat()})"
    return name


def _roll_forward(db: Session, period: Period) -> Period:
    length = period.end_date - period.start_date
    start = period.end_date + timedelta(days=1)
    end = start + length
    _check_overlap(db, start, end, exclude_id=period.id)

    nxt = Period(name=_next_period_name(db, start), start_date=start, end_date=end, status=PeriodStatus.draft)
    _attach_locations(db, nxt)
    db.add(nxt)
    db.flush()

    for price in db.execute(select(ItemPrice).where(ItemPrice.period_id == period.id)).scalars():
        db.add(ItemPrice(period_id=nxt.id, item_id=price.item_id, price=price.price, set_by=price.set_by))

    closing = db.execute(
        select(StockSnapshot)
        .where(StockSnapshot.period_id == period.id)
        .where(StockSnapshot.kind == SnapshotKind.closing)
        .order_by(StockSnapshot.location_id, StockSnapshot.item_id)
    ).scalars()
    for snap in closing:
        db.add(
            StockSnapshot(
                period_id=nxt.id,
                location_id=snap.location_id,
                item_id=snap.item_id,
                kind=SnapshotKind.opening,
                quantity=snap.quantity,
                wac=snap.wac,
                value=snap.value,
            )
        )

    closing_values = {pl.location_id: pl.closing_value for pl in period.period_locations}
    for pl in nxt.period_locations:
        pl.opening_value = closing_values.get(pl.location_id, ZERO)
    db.flush()
    return nxt


def close_period(db: Session, period_id: int, actor_id: int, notifier: Notifier | None = None) -> ClosePeriodResult:
    try:
        actor = get_actor(db, actor_id)
        require_role(actor, ADMIN_ONLY, "close periods")
        period = get_or_404(db, Period, period_id, "Period", lock=True)
        if period.status != PeriodStatus.open:
            raise InvalidStateTransition(f"Period {period.name} is {period.status.value}, not OPEN")

        pls = list(
            db.execute(
                select(PeriodLocation)
                .where(PeriodLocation.period_id == period.id)
                .order_by(PeriodLocation.location_id)
                .with_for_update()
            ).scalars()
        )
        not_ready = [pl.location_id for pl in pls if pl.status != PeriodLocationStatus.ready]
        if not_ready:
            raise InvalidStateTransition(
                f"Locations not ready: {not_ready}",
                code="LOCATIONS_NOT_READY",
                details={"location_ids": not_ready},
            )

        now = datetime.now(timezone.utc)
        for pl in pls:
            total = ZERO
            lots = db.execute(
                select(StockLot).where(StockLot.location_id == pl.location_id).order_by(StockLot.item_id).with_for_update()
            ).scalars()
            for lot in lots:
                value = round_money(to_decimal(lot.on_hand) * to_decimal(lot.wac))
                db.add(
                    StockSnapshot(
                        period_id=period.id,
                        location_id=pl.location_id,
                        item_id=lot.item_id,
                        kind=SnapshotKind.closing,
                        quantity=round_qty(lot.on_hand),
                        wac=round_cost(lot.wac),
                        value=value,
                    )
                )
                total += value
            pl.closing_value = round_money(total)
            pl.status = PeriodLocationStatus.closed
            pl.closed_at = now

        period.status = PeriodStatus.closed
        period.closed_at = now
        period.closed_by = actor.id
        db.flush()

        nxt = _roll_forward(db, period)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(period)
    db.refresh(nxt)
    logger.info("period %s closed by %s; next period %s created", period.name, actor.username, nxt.name)
    dispatch(notifier, "period.closed", period_id=period.id, name=period.name, next_period_id=nxt.id)
    return ClosePeriodResult(period=period, next_period=nxt)
