"""
Transfer processor.

Cycle : demande (PENDING_APPROVAL) -> approbation -> COMPLETED, ou rejet.
The stock only moves at approval: both legs are applied in one unit, at
the source's WAC at that moment.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.core.errors import InvalidStateTransition, ValidationError
from stockledger.app.db.models.core_types import ApprovalEntityType, TransferStatus
from stockledger.app.db.models.models_v1 import Item, StockLot, Transfer, TransferLine
from stockledger.app.schemas.transactions import TransferCreate
from stockledger.services.approvals import decide, ensure_transition, open_approval, pending_approval
from stockledger.services.common import get_actor, get_location, get_or_404, next_document_number, open_period_location
from stockledger.services.ledger import apply_transfer, lock_lots
from stockledger.services.notifications import Notifier, dispatch
from stockledger.services.stock_validation import check_availability, ensure_sufficient
from stockledger.services.valuation import ZERO, line_value, round_money, round_qty, to_decimal

logger = logging.getLogger(__name__)


def _validate(db: Session, payload: TransferCreate) -> dict[int, Item]:
    problems = []
    if payload.from_location_id == payload.to_location_id:
        problems.append({"line": None, "message": "Source and destination locations must differ"})
    if not payload.lines:
        problems.append({"line": None, "message": "A transfer needs at least one line"})
    item_ids = {ln.item_id for ln in payload.lines}
    items = {i.id: i for i in db.execute(select(Item).where(Item.id.in_(sorted(item_ids)))).scalars()} if item_ids else {}
    for i, ln in enumerate(payload.lines, start=1):
        item = items.get(ln.item_id)
        if item is None or not item.is_active:
            problems.append({"line": i, "message": f"Line {i}: item {ln.item_id} not found or inactive"})
        if to_decimal(ln.quantity) <= 0:
            problems.append({"line": i, "message": f"Line {i}: quantity must be greater than zero"})
    if problems:
        raise ValidationError.from_problems(problems)
    return items


def request_transfer(
    db: Session,
    from_location_id: int,
    to_location_id: int,
    payload: TransferCreate,
    actor_id: int,
    notifier: Notifier | None = None,
) -> Transfer:
    payload = payload.model_copy(update={"from_location_id": from_location_id, "to_location_id": to_location_id})
    try:
        actor = get_actor(db, actor_id)
        _validate(db, payload)
        get_location(db, from_location_id)
        get_location(db, to_location_id)
        pl = open_period_location(db, from_location_id)
        open_period_location(db, to_location_id, pl.period)

        requests = [(ln.item_id, to_decimal(ln.quantity)) for ln in payload.lines]
        check_availability(db, from_location_id, requests).raise_if_insufficient()

        transfer = Transfer(
            transfer_no=next_document_number(db, Transfer.transfer_no, "TRF"),
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            period_id=pl.period_id,
            status=TransferStatus.pending_approval,
            requested_by=actor.id,
            notes=payload.notes,
        )
        wacs = dict(
            db.execute(
                select(StockLot.item_id, StockLot.wac)
                .where(StockLot.location_id == from_location_id)
                .where(StockLot.item_id.in_(sorted({ln.item_id for ln in payload.lines})))
            ).all()
        )
        total = ZERO
        for i, ln in enumerate(payload.lines, start=1):
            # estimation au WAC courant ; recalculé à l'approbation
            wac = wacs.get(ln.item_id, ZERO)
            value = line_value(ln.quantity, wac)
            transfer.lines.append(
                TransferLine(
                    line_no=i,
                    item_id=ln.item_id,
                    quantity=round_qty(ln.quantity),
                    wac_at_transfer=wac,
                    line_value=value,
                )
            )
            total += value
        transfer.total_value = round_money(total)
        db.add(transfer)
        db.flush()
        open_approval(db, ApprovalEntityType.transfer, transfer.id, actor.id)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("transfer request %s->%s rejected: %s", from_location_id, to_location_id, exc)
        raise
    db.refresh(transfer)
    logger.info("transfer %s requested by %s", transfer.transfer_no, actor.username)
    dispatch(notifier, "transfer.requested", transfer_id=transfer.id, transfer_no=transfer.transfer_no)
    return transfer


def _pending_record(db: Session, transfer: Transfer):
    record = pending_approval(db, ApprovalEntityType.transfer, transfer.id)
    if record is None:
        record = open_approval(db, ApprovalEntityType.transfer, transfer.id, transfer.requested_by)
    return record


def approve_transfer(db: Session, transfer_id: int, reviewer_id: int, notifier: Notifier | None = None) -> Transfer:
    try:
        reviewer = get_actor(db, reviewer_id)
        transfer = get_or_404(db, Transfer, transfer_id, "Transfer", lock=True)
        ensure_transition(transfer.status, TransferStatus.approved)
        decide(db, _pending_record(db, transfer), reviewer, True)

        pl = open_period_location(db, transfer.from_location_id)
        open_period_location(db, transfer.to_location_id, pl.period)

        src, dst = transfer.from_location_id, transfer.to_location_id
        lots = lock_lots(db, [(loc, ln.item_id) for ln in transfer.lines for loc in (src, dst)])
        items = {ln.item_id: lots[(src, ln.item_id)].item for ln in transfer.lines}
        ensure_sufficient(
            src,
            {item_id: lots[(src, item_id)].on_hand for item_id in items},
            [(ln.item_id, ln.quantity) for ln in transfer.lines],
            items,
        )

        total = ZERO
        for ln in transfer.lines:
            legs = apply_transfer(db, src, dst, ln.item_id, ln.quantity, lots=lots)
            ln.wac_at_transfer = legs.unit_cost
            ln.line_value = line_value(ln.quantity, legs.unit_cost)
            total += ln.line_value

        now = datetime.now(timezone.utc)
        transfer.total_value = round_money(total)
        transfer.period_id = pl.period_id
        transfer.status = TransferStatus.completed
        transfer.approved_by = reviewer.id
        transfer.approval_date = now
        transfer.transfer_date = now
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("transfer %s approval failed: %s", transfer_id, exc)
        raise
    db.refresh(transfer)
    logger.info("transfer %s completed total=%s", transfer.transfer_no, transfer.total_value)
    dispatch(notifier, "transfer.approved", transfer_id=transfer.id, transfer_no=transfer.transfer_no)
    return transfer


def reject_transfer(
    db: Session, transfer_id: int, reviewer_id: int, reason: str, notifier: Notifier | None = None
) -> Transfer:
    try:
        reviewer = get_actor(db, reviewer_id)
        transfer = get_or_404(db, Transfer, transfer_id, "Transfer", lock=True)
        ensure_transition(transfer.status, TransferStatus.rejected)
        decide(db, _pending_record(db, transfer), reviewer, False, reason)
        transfer.status = TransferStatus.rejected
        transfer.approved_by = reviewer.id
        transfer.approval_date = datetime.now(timezone.utc)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(transfer)
    logger.info("transfer %s rejected: %s", transfer.transfer_no, reason)
    dispatch(notifier, "transfer.rejected", transfer_id=transfer.id, transfer_no=transfer.transfer_no, reason=reason)
    return transfer
