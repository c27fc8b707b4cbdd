"""
Approval state machine.

Toutes les entités soumises à validation suivent le même cycle :

    DRAFT -> PENDING -> APPROVED | REJECTED

Each decision is kept as an ApprovalRecord (entity type + id). A record
is decided once; a rejection always carries a reason.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.core.errors import InvalidStateTransition, PermissionDenied, ValidationError
from stockledger.app.db.models.core_types import (
    ApprovalEntityType,
    ApprovalStatus,
    DeliveryStatus,
    OverDeliveryState,
    PRFStatus,
    Role,
)
from stockledger.app.db.models.models_v1 import ApprovalRecord, Delivery, DeliveryLine, Requisition, RequisitionLine, User
from stockledger.app.schemas.procurement import RequisitionCreate, RequisitionLineIn, RequisitionUpdate
from stockledger.services.common import (
    REVIEWER_ROLES,
    current_open_period,
    get_actor,
    get_location,
    get_or_404,
    next_document_number,
    require_role,
)
from stockledger.services.notifications import Notifier, dispatch
from stockledger.services.valuation import ZERO, line_value, round_money, to_decimal

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    "DRAFT": {"PENDING"},
    "PENDING": {"APPROVED", "REJECTED"},
}

REVIEWERS: dict[ApprovalEntityType, frozenset[Role]] = {
    ApprovalEntityType.prf: REVIEWER_ROLES,
    ApprovalEntityType.po: REVIEWER_ROLES | {Role.procurement},
    ApprovalEntityType.transfer: REVIEWER_ROLES,
    ApprovalEntityType.over_delivery: REVIEWER_ROLES,
}


def _normalize(state) -> str:
    value = getattr(state, "value", state)
    return "PENDING" if value == "PENDING_APPROVAL" else str(value)


def ensure_transition(current, target) -> None:
    if _normalize(target) not in _TRANSITIONS.get(_normalize(current), set()):
        raise InvalidStateTransition(
            f"Cannot move from {_normalize(current)} to {_normalize(target)}",
            details={"current": _normalize(current), "target": _normalize(target)},
        )


def can_review(user: User, entity_type: ApprovalEntityType) -> bool:
    return user.role in REVIEWERS[entity_type]


def open_approval(db: Session, entity_type: ApprovalEntityType, entity_id: int, requested_by: int) -> ApprovalRecord:
    record = ApprovalRecord(
        entity_type=entity_type,
        entity_id=entity_id,
        status=ApprovalStatus.pending,
        requested_by=requested_by,
    )
    db.add(record)
    db.flush()
    return record


def pending_approval(db: Session, entity_type: ApprovalEntityType, entity_id: int) -> ApprovalRecord | None:
    return db.execute(
        select(ApprovalRecord)
        .where(ApprovalRecord.entity_type == entity_type)
        .where(ApprovalRecord.entity_id == entity_id)
        .where(ApprovalRecord.status == ApprovalStatus.pending)
        .order_by(ApprovalRecord.id.desc())
        .with_for_update()
    ).scalars().first()


def decide(
    db: Session,
    record: ApprovalRecord,
    reviewer: User,
    approve: bool,
    reason: str | None = None,
) -> ApprovalRecord:
    if record.status != ApprovalStatus.pending:
        raise InvalidStateTransition(
            f"Approval {record.id} was already {record.status.value.lower()}",
            code="ALREADY_DECIDED",
        )
    if not approve and not (reason or "").strip():
        raise ValidationError("A rejection reason is required", code="REASON_REQUIRED")
    require_role(reviewer, REVIEWERS[record.entity_type], f"review {record.entity_type.value}")

    record.status = ApprovalStatus.approved if approve else ApprovalStatus.rejected
    record.reviewed_by = reviewer.id
    record.reviewed_at = datetime.now(timezone.utc)
    record.reason = reason.strip() if reason else None
    db.flush()
    return record


# ---------- Requisitions (PRF) ----------
def _requisition_lines(lines: Iterable[RequisitionLineIn]) -> list[RequisitionLine]:
    lines = list(lines)
    problems = []
    if not lines:
        problems.append({"line": None, "message": "A requisition needs at least one line"})
    for i, ln in enumerate(lines, start=1):
        if to_decimal(ln.quantity) <= 0:
            problems.append({"line": i, "message": f"Line {i}: quantity must be greater than zero"})
        if ln.item_id is None and not (ln.description or "").strip():
            problems.append({"line": i, "message": f"Line {i}: item or description is required"})
        if to_decimal(ln.estimated_price) < 0:
            problems.append({"line": i, "message": f"Line {i}: estimated price cannot be negative"})
    if problems:
        raise ValidationError.from_problems(problems)

    return [
        RequisitionLine(
            line_no=i,
            item_id=ln.item_id,
            description=ln.description,
            quantity=to_decimal(ln.quantity),
            unit=ln.unit,
            estimated_price=to_decimal(ln.estimated_price),
            line_value=line_value(ln.quantity, ln.estimated_price),
        )
        for i, ln in enumerate(lines, start=1)
    ]


def _set_lines(prf: Requisition, lines: list[RequisitionLine]) -> None:
    prf.lines = lines
    prf.total_value = round_money(sum((ln.line_value for ln in lines), ZERO))


def _owned_draft(db: Session, prf_id: int, actor_id: int, action: str) -> Requisition:
    prf = get_or_404(db, Requisition, prf_id, "Requisition", lock=True)
    if prf.requested_by != actor_id:
        raise PermissionDenied(f"Only the requester can {action} {prf.prf_no}", code="NOT_REQUESTER")
    if prf.status != PRFStatus.draft:
        raise InvalidStateTransition(f"Requisition {prf.prf_no} is {prf.status.value}, not DRAFT")
    return prf


def create_requisition(db: Session, payload: RequisitionCreate, actor_id: int) -> Requisition:
    try:
        actor = get_actor(db, actor_id)
        get_location(db, payload.location_id)
        period = current_open_period(db)
        prf = Requisition(
            prf_no=next_document_number(db, Requisition.prf_no, "PRF"),
            location_id=payload.location_id,
            period_id=period.id,
            status=PRFStatus.draft,
            requested_by=actor.id,
            required_date=payload.required_date,
            notes=payload.notes,
        )
        _set_lines(prf, _requisition_lines(payload.lines))
        db.add(prf)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(prf)
    logger.info("requisition %s created by %s", prf.prf_no, actor.username)
    return prf


def update_requisition(db: Session, prf_id: int, payload: RequisitionUpdate, actor_id: int) -> Requisition:
    try:
        prf = _owned_draft(db, prf_id, actor_id, "edit")
        if payload.required_date is not None:
            prf.required_date = payload.required_date
        if payload.notes is not None:
            prf.notes = payload.notes
        if payload.lines is not None:
            _set_lines(prf, _requisition_lines(payload.lines))
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(prf)
    return prf


def delete_requisition(db: Session, prf_id: int, actor_id: int) -> None:
    try:
        prf = _owned_draft(db, prf_id, actor_id, "delete")
        db.delete(prf)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("requisition %s deleted", prf.prf_no)


def submit_requisition(db: Session, prf_id: int, actor_id: int, notifier: Notifier | None = None) -> Requisition:
    try:
        prf = _owned_draft(db, prf_id, actor_id, "submit")
        ensure_transition(prf.status, PRFStatus.pending)
        prf.status = PRFStatus.pending
        prf.submitted_at = datetime.now(timezone.utc)
        open_approval(db, ApprovalEntityType.prf, prf.id, actor_id)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(prf)
    logger.info("requisition %s submitted", prf.prf_no)
    dispatch(notifier, "requisition.submitted", prf_id=prf.id, prf_no=prf.prf_no, total_value=str(prf.total_value))
    return prf


def _decide_requisition(
    db: Session, prf_id: int, reviewer_id: int, approve: bool, reason: str | None
) -> Requisition:
    try:
        reviewer = get_actor(db, reviewer_id)
        prf = get_or_404(db, Requisition, prf_id, "Requisition", lock=True)
        target = PRFStatus.approved if approve else PRFStatus.rejected
        ensure_transition(prf.status, target)

        record = pending_approval(db, ApprovalEntityType.prf, prf.id)
        if record is None:
            record = open_approval(db, ApprovalEntityType.prf, prf.id, prf.requested_by)
        decide(db, record, reviewer, approve, reason)
        prf.status = target
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(prf)
    return prf


def approve_requisition(db: Session, prf_id: int, reviewer_id: int, notifier: Notifier | None = None) -> Requisition:
    prf = _decide_requisition(db, prf_id, reviewer_id, True, None)
    logger.info("requisition %s approved by user %s", prf.prf_no, reviewer_id)
    dispatch(notifier, "requisition.approved", prf_id=prf.id, prf_no=prf.prf_no)
    return prf


def reject_requisition(
    db: Session, prf_id: int, reviewer_id: int, reason: str, notifier: Notifier | None = None
) -> Requisition:
    prf = _decide_requisition(db, prf_id, reviewer_id, False, reason)
    logger.info("requisition %s rejected by user %s", prf.prf_no, reviewer_id)
    dispatch(notifier, "requisition.rejected", prf_id=prf.id, prf_no=prf.prf_no, reason=reason)
    return prf


def clone_requisition(db: Session, prf_id: int, actor_id: int) -> Requisition:
    """Copie d'une PRF rejetée en nouveau brouillon ; l'original reste intact."""
    try:
        actor = get_actor(db, actor_id)
        source = get_or_404(db, Requisition, prf_id, "Requisition")
        if source.status != PRFStatus.rejected:
            raise InvalidStateTransition(
                f"Only rejected requisitions can be cloned ({source.prf_no} is {source.status.value})"
            )
        period = current_open_period(db)
        clone = Requisition(
            prf_no=next_document_number(db, Requisition.prf_no, "PRF"),
            location_id=source.location_id,
            period_id=period.id,
            status=PRFStatus.draft,
            requested_by=actor.id,
            required_date=source.required_date,
            notes=source.notes,
            cloned_from_id=source.id,
        )
        _set_lines(
            clone,
            [
                RequisitionLine(
                    line_no=ln.line_no,
                    item_id=ln.item_id,
                    description=ln.description,
                    quantity=ln.quantity,
                    unit=ln.unit,
                    estimated_price=ln.estimated_price,
                    line_value=ln.line_value,
                )
                for ln in source.lines
            ],
        )
        db.add(clone)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(clone)
    logger.info("requisition %s cloned into %s", source.prf_no, clone.prf_no)
    return clone


# ---------- Over-delivery ----------
def _pending_lines(db: Session, line_ids: Iterable[int]) -> tuple[Delivery, list[DeliveryLine]]:
    ids = sorted(set(line_ids))
    if not ids:
        raise ValidationError("No delivery lines given", code="NO_LINES")
    lines = list(
        db.execute(select(DeliveryLine).where(DeliveryLine.id.in_(ids)).with_for_update()).scalars()
    )
    missing = sorted(set(ids) - {ln.id for ln in lines})
    if missing:
        raise ValidationError(f"Unknown delivery lines: {missing}", code="DELIVERY_LINE_NOT_FOUND")

    deliveries = {ln.delivery_id for ln in lines}
    if len(deliveries) != 1:
        raise ValidationError("Lines must belong to a single delivery", code="MIXED_DELIVERIES")
    delivery = get_or_404(db, Delivery, deliveries.pop(), "Delivery", lock=True)
    if delivery.status != DeliveryStatus.pending_approval:
        raise InvalidStateTransition(f"Delivery {delivery.delivery_no} is {delivery.status.value}")

    not_pending = [ln.id for ln in lines if ln.over_delivery != OverDeliveryState.pending]
    if not_pending:
        raise InvalidStateTransition(
            f"Lines {not_pending} have no pending over-delivery", details={"line_ids": not_pending}
        )
    return delivery, lines


def approve_over_delivery(
    db: Session, line_ids: Iterable[int], reviewer_id: int, notifier: Notifier | None = None
) -> Delivery:
    try:
        reviewer = get_actor(db, reviewer_id)
        delivery, lines = _pending_lines(db, line_ids)
        for ln in lines:
            record = pending_approval(db, ApprovalEntityType.over_delivery, ln.id)
            if record is None:
                record = open_approval(db, ApprovalEntityType.over_delivery, ln.id, delivery.created_by)
            decide(db, record, reviewer, True)
            ln.over_delivery = OverDeliveryState.approved
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(delivery)
    logger.info("over-delivery approved on %s lines=%s", delivery.delivery_no, [ln.id for ln in lines])
    dispatch(notifier, "over_delivery.approved", delivery_id=delivery.id, delivery_no=delivery.delivery_no)
    return delivery


def reject_over_delivery(
    db: Session, line_ids: Iterable[int], reviewer_id: int, reason: str, notifier: Notifier | None = None
) -> Delivery:
    """Rejecting any over-delivery line rejects the whole delivery; REJECTED is terminal."""
    try:
        reviewer = get_actor(db, reviewer_id)
        delivery, _ = _pending_lines(db, line_ids)
        now = datetime.now(timezone.utc)
        for ln in delivery.lines:
            if ln.over_delivery != OverDeliveryState.pending:
                continue
            record = pending_approval(db, ApprovalEntityType.over_delivery, ln.id)
            if record is None:
                record = open_approval(db, ApprovalEntityType.over_delivery, ln.id, delivery.created_by)
            decide(db, record, reviewer, False, reason)
            ln.over_delivery = OverDeliveryState.rejected
        delivery.status = DeliveryStatus.rejected
        delivery.rejected_by = reviewer.id
        delivery.rejected_at = now
        delivery.rejection_reason = reason.strip()
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(delivery)
    logger.warning("delivery %s rejected: %s", delivery.delivery_no, delivery.rejection_reason)
    dispatch(
        notifier,
        "over_delivery.rejected",
        delivery_id=delivery.id,
        delivery_no=delivery.delivery_no,
        reason=delivery.rejection_reason,
    )
    return delivery
