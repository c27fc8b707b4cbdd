"""
Non-conformance reports.

Cycle : OPEN -> SENT -> CREDITED | REJECTED | RESOLVED. Les états finaux
ne bougent plus. Un NCR CREDITED est de l'argent récupéré chez le
fournisseur : il vient en crédit de la consommation du site.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from stockledger.app.core.errors import InvalidStateTransition, ValidationError
from stockledger.app.db.models.core_types import NCRStatus, NCRType, Role
from stockledger.app.db.models.models_v1 import NCR, Delivery, DeliveryLine, Period
from stockledger.app.schemas.transactions import NCRCreate
from stockledger.services.common import (
    REVIEWER_ROLES,
    get_actor,
    get_location,
    get_or_404,
    next_document_number,
    require_role,
)
from stockledger.services.notifications import Notifier, dispatch
from stockledger.services.valuation import round_money, round_qty, to_decimal

logger = logging.getLogger(__name__)

NCR_ROLES = REVIEWER_ROLES | {Role.procurement}

FINAL_STATUSES = frozenset({NCRStatus.credited, NCRStatus.rejected, NCRStatus.resolved})

NCR_TRANSITIONS = {
    NCRStatus.open: frozenset({NCRStatus.sent}) | FINAL_STATUSES,
    NCRStatus.sent: FINAL_STATUSES,
}


def create_manual_ncr(db: Session, payload: NCRCreate, actor_id: int, notifier: Notifier | None = None) -> NCR:
    try:
        actor = get_actor(db, actor_id)
        get_location(db, payload.location_id)

        problems = []
        if not payload.reason.strip():
            problems.append({"line": None, "message": "A reason is required"})
        if to_decimal(payload.value) <= 0:
            problems.append({"line": None, "message": "Value must be greater than zero"})
        if payload.quantity is not None and to_decimal(payload.quantity) <= 0:
            problems.append({"line": None, "message": "Quantity must be greater than zero"})
        if payload.delivery_line_id is not None and payload.delivery_id is None:
            problems.append({"line": None, "message": "A delivery line needs its delivery"})
        if problems:
            raise ValidationError.from_problems(problems)

        if payload.delivery_id is not None:
            delivery = get_or_404(db, Delivery, payload.delivery_id, "Delivery")
            if delivery.location_id != payload.location_id:
                raise ValidationError(
                    f"Delivery {delivery.delivery_no} belongs to another location", code="DELIVERY_LOCATION_MISMATCH"
                )
            if payload.delivery_line_id is not None:
                line = get_or_404(db, DeliveryLine, payload.delivery_line_id, "DeliveryLine")
                if line.delivery_id != delivery.id:
                    raise ValidationError(
                        f"Line {line.id} is not on {delivery.delivery_no}", code="DELIVERY_LINE_MISMATCH"
                    )

        ncr = NCR(
            ncr_no=next_document_number(db, NCR.ncr_no, "NCR"),
            location_id=payload.location_id,
            delivery_id=payload.delivery_id,
            delivery_line_id=payload.delivery_line_id,
            type=NCRType.manual,
            status=NCRStatus.open,
            reason=payload.reason.strip(),
            quantity=round_qty(payload.quantity) if payload.quantity is not None else None,
            value=round_money(payload.value),
            auto_generated=False,
            created_by=actor.id,
        )
        db.add(ncr)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(ncr)
    logger.info("manual NCR %s raised by %s value=%s", ncr.ncr_no, actor.username, ncr.value)
    dispatch(notifier, "ncr.created", ncr_id=ncr.id, ncr_no=ncr.ncr_no, value=str(ncr.value))
    return ncr


def update_ncr_status(
    db: Session,
    ncr_id: int,
    status: NCRStatus,
    actor_id: int,
    resolution_notes: str | None = None,
    notifier: Notifier | None = None,
) -> NCR:
    try:
        actor = get_actor(db, actor_id)
        require_role(actor, NCR_ROLES, "update NCRs")
        ncr = get_or_404(db, NCR, ncr_id, "NCR", lock=True)
        previous = ncr.status
        if status not in NCR_TRANSITIONS.get(previous, ()):
            raise InvalidStateTransition(
                f"NCR {ncr.ncr_no} cannot go from {previous.value} to {status.value}",
                code="INVALID_NCR_TRANSITION",
                details={"from": previous.value, "to": status.value},
            )
        ncr.status = status
        if resolution_notes is not None:
            ncr.resolution_notes = resolution_notes
        if status in FINAL_STATUSES:
            ncr.resolved_by = actor.id
            ncr.resolved_at = datetime.now(timezone.utc)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(ncr)
    logger.info("NCR %s %s -> %s by %s", ncr.ncr_no, previous.value, status.value, actor.username)
    dispatch(notifier, "ncr.status_changed", ncr_id=ncr.id, ncr_no=ncr.ncr_no, status=status.value)
    return ncr


def credited_ncr_value(db: Session, period_id: int, location_id: int) -> Decimal:
    """
    Somme des NCR CREDITED du site pour la période.

    Rattachement par la livraison quand il y en a une, sinon par la date
    de création.
    """
    period = get_or_404(db, Period, period_id, "Period")
    start = datetime.combine(period.start_date, time.min, tzinfo=timezone.utc)
    end = datetime.combine(period.end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    total = db.execute(
        select(func.coalesce(func.sum(NCR.value), 0))
        .select_from(NCR)
        .outerjoin(Delivery, NCR.delivery_id == Delivery.id)
        .where(NCR.location_id == location_id)
        .where(NCR.status == NCRStatus.credited)
        .where(
            or_(
                Delivery.period_id == period_id,
                and_(NCR.delivery_id.is_(None), NCR.created_at >= start, NCR.created_at < end),
            )
        )
    ).scalar_one()
    return round_money(total)
