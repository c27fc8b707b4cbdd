"""
Delivery processor.

A delivery is saved as a DRAFT or posted straight away. Posting runs as a
single unit of work:

1. period-location must be OPEN (read FOR SHARE)
2. order lines locked, over-delivery detected per order line
3. unapproved over-delivery by a non-reviewer parks the delivery
   (PENDING_APPROVAL) without touching the ledger
4. otherwise every line is received (WAC recomputed), the order's
   delivered quantities move, price variance raises NCRs and the order
   auto-closes when fully delivered

Any failure rolls the whole unit back.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.core.errors import ApprovalRequired, InvalidStateTransition, PermissionDenied, ValidationError
from stockledger.app.db.models.core_types import (
    ApprovalEntityType,
    DeliveryStatus,
    DocumentState,
    OverDeliveryState,
    POStatus,
)
from stockledger.app.db.models.models_v1 import (
    NCR,
    Delivery,
    DeliveryLine,
    Item,
    PurchaseOrder,
    PurchaseOrderLine,
    Supplier,
    User,
)
from stockledger.app.schemas.transactions import DeliveryCreate, DeliveryLineIn, DeliveryUpdate
from stockledger.services.approvals import can_review, decide, open_approval
from stockledger.services.common import (
    REVIEWER_ROLES,
    get_actor,
    get_location,
    get_or_404,
    next_document_number,
    open_period_location,
)
from stockledger.services.fulfillment import auto_close_if_fulfilled, record_delivered, remaining_qty
from stockledger.services.ledger import apply_receipt, lock_lots
from stockledger.services.notifications import Notifier, dispatch
from stockledger.services.price_variance import check_price_variance, create_price_variance_ncr, period_price
from stockledger.services.valuation import ZERO, line_value, round_money, round_qty, to_decimal

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    delivery: Delivery
    ncrs_created: list[NCR] = field(default_factory=list)
    order_auto_closed: bool = False
    requisition_auto_closed: bool = False
    approval_required: bool = False


def delivery_state(delivery: Delivery) -> DocumentState:
    if delivery.status == DeliveryStatus.posted:
        return DocumentState.posted
    if delivery.status == DeliveryStatus.rejected:
        return DocumentState.rejected
    states = {ln.over_delivery for ln in delivery.lines}
    if OverDeliveryState.pending in states:
        return DocumentState.pending_approval
    if OverDeliveryState.approved in states:
        return DocumentState.approved
    return DocumentState.draft


# ---------- building ----------
def _load_order(db: Session, po_id: int, location_id: int, supplier_id: int) -> PurchaseOrder:
    order = get_or_404(db, PurchaseOrder, po_id, "PurchaseOrder")
    if order.status != POStatus.open:
        raise InvalidStateTransition(f"Order {order.po_no} is closed", code="ORDER_CLOSED")
    if order.location_id != location_id:
        raise ValidationError(f"Order {order.po_no} belongs to another location", code="ORDER_LOCATION_MISMATCH")
    if order.supplier_id != supplier_id:
        raise ValidationError(f"Order {order.po_no} is for another supplier", code="ORDER_SUPPLIER_MISMATCH")
    return order


def _build_lines(db: Session, lines: list[DeliveryLineIn], order: PurchaseOrder | None) -> list[DeliveryLine]:
    problems = []
    if not lines:
        problems.append({"line": None, "message": "A delivery needs at least one line"})

    item_ids = {ln.item_id for ln in lines}
    items = {i.id: i for i in db.execute(select(Item).where(Item.id.in_(sorted(item_ids)))).scalars()} if item_ids else {}
    order_lines = {ol.id: ol for ol in order.lines} if order else {}

    resolved: list[int | None] = []
    for i, ln in enumerate(lines, start=1):
        item = items.get(ln.item_id)
        if item is None or not item.is_active:
            problems.append({"line": i, "message": f"Line {i}: item {ln.item_id} not found or inactive"})
        if to_decimal(ln.quantity) <= 0:
            problems.append({"line": i, "message": f"Line {i}: quantity must be greater than zero"})
        if to_decimal(ln.unit_price) < 0:
            problems.append({"line": i, "message": f"Line {i}: unit price cannot be negative"})

        po_line_id = ln.po_line_id
        if po_line_id is not None:
            if order is None:
                problems.append({"line": i, "message": f"Line {i}: order line given without an order"})
            elif po_line_id not in order_lines:
                problems.append({"line": i, "message": f"Line {i}: order line {po_line_id} is not on {order.po_no}"})
            elif order_lines[po_line_id].item_id != ln.item_id:
                problems.append({"line": i, "message": f"Line {i}: item differs from order line {po_line_id}"})
        elif order is not None:
            # pas de ligne explicite : rattachement par article
            match = next((ol for ol in order.lines if ol.item_id == ln.item_id), None)
            po_line_id = match.id if match else None
        resolved.append(po_line_id)

    if problems:
        raise ValidationError.from_problems(problems)

    return [
        DeliveryLine(
            line_no=i,
            item_id=ln.item_id,
            po_line_id=po_line_id,
            quantity=round_qty(ln.quantity),
            unit_price=to_decimal(ln.unit_price),
            line_value=line_value(ln.quantity, ln.unit_price),
            over_delivery=OverDeliveryState.none,
            over_delivery_excess=ZERO,
        )
        for i, (ln, po_line_id) in enumerate(zip(lines, resolved), start=1)
    ]


def _set_lines(delivery: Delivery, lines: list[DeliveryLine]) -> None:
    delivery.lines = lines
    delivery.total_amount = round_money(sum((ln.line_value for ln in lines), ZERO))


def _clean_invoice(invoice_no: str | None) -> str | None:
    return (invoice_no or "").strip() or None


def _check_duplicate_invoice(
    db: Session, supplier_id: int, invoice_no: str | None, delivery_id: int | None = None
) -> None:
    """Une facture fournisseur n'est saisie qu'une fois, brouillons compris."""
    if invoice_no is None:
        return
    stmt = select(Delivery.delivery_no).where(Delivery.supplier_id == supplier_id).where(Delivery.invoice_no == invoice_no)
    if delivery_id is not None:
        stmt = stmt.where(Delivery.id != delivery_id)
    existing = db.execute(stmt).scalars().first()
    if existing:
        raise ValidationError(
            f"Invoice {invoice_no} already recorded on {existing}", code="DUPLICATE_INVOICE"
        )


def _check_invoice(db: Session, supplier_id: int, invoice_no: str | None, delivery_id: int | None = None) -> None:
    if invoice_no is None:
        raise ValidationError("Invoice number is required to post a delivery", code="INVOICE_REQUIRED")
    _check_duplicate_invoice(db, supplier_id, invoice_no, delivery_id)


# ---------- posting ----------
def _detect_over_delivery(db: Session, delivery: Delivery) -> dict[int, Decimal]:
    """Excess quantity per delivery line id, cumulated per order line."""
    po_line_ids = sorted({ln.po_line_id for ln in delivery.lines if ln.po_line_id is not None})
    if not po_line_ids:
        return {}
    order_lines = {
        ol.id: ol
        for ol in db.execute(
            select(PurchaseOrderLine).where(PurchaseOrderLine.id.in_(po_line_ids)).order_by(PurchaseOrderLine.id).with_for_update()
        ).scalars()
    }

    running: dict[int, Decimal] = defaultdict(lambda: ZERO)
    excess: dict[int, Decimal] = {}
    for ln in delivery.lines:
        ol = order_lines.get(ln.po_line_id)
        if ol is None:
            continue
        remaining = remaining_qty(ol.quantity, ol.delivered_qty)
        before = running[ol.id]
        running[ol.id] = before + to_decimal(ln.quantity)
        if running[ol.id] > remaining:
            excess[ln.id] = round_qty(running[ol.id] - max(before, remaining))
    return excess


def _park_or_approve(db: Session, delivery: Delivery, actor: User) -> bool:
    """
    Flags over-delivered lines. Returns True when the delivery must wait
    for a reviewer.
    """
    excess = _detect_over_delivery(db, delivery)
    reviewer = can_review(actor, ApprovalEntityType.over_delivery)
    parked = False
    for ln in delivery.lines:
        if ln.id not in excess:
            continue
        ln.over_delivery_excess = excess[ln.id]
        if ln.over_delivery == OverDeliveryState.approved:
            continue
        record = open_approval(db, ApprovalEntityType.over_delivery, ln.id, delivery.created_by)
        if reviewer:
            decide(db, record, actor, True)
            ln.over_delivery = OverDeliveryState.approved
        else:
            ln.over_delivery = OverDeliveryState.pending
            parked = True
    db.flush()
    return parked


def _post(db: Session, delivery: Delivery, actor: User) -> DeliveryResult:
    result = DeliveryResult(delivery=delivery)
    pl = open_period_location(db, delivery.location_id)
    delivery.period_id = pl.period_id

    if _park_or_approve(db, delivery, actor):
        delivery.status = DeliveryStatus.pending_approval
        result.approval_required = True
        return result

    lots = lock_lots(db, [(delivery.location_id, ln.item_id) for ln in delivery.lines])
    order_lines = {}
    if delivery.po_id is not None:
        order_lines = {ol.id: ol for ol in db.get(PurchaseOrder, delivery.po_id).lines}

    has_variance = False
    for ln in delivery.lines:
        change = apply_receipt(
            db, delivery.location_id, ln.item_id, ln.quantity, ln.unit_price, lot=lots[(delivery.location_id, ln.item_id)]
        )
        ln.wac_before = change.wac_before
        ln.wac_after = change.wac_after

        if ln.po_line_id in order_lines:
            record_delivered(order_lines[ln.po_line_id], ln.quantity)

        expected = period_price(db, pl.period_id, ln.item_id)
        ln.period_price = expected
        if expected is None:
            ln.price_variance = ZERO
            continue
        pv = check_price_variance(ln.unit_price, expected, ln.quantity)
        ln.price_variance = pv.variance
        if pv.has_variance:
            has_variance = True
        if pv.exceeds_threshold:
            result.ncrs_created.append(create_price_variance_ncr(db, delivery, ln, pv, actor.id))

    delivery.has_variance = has_variance
    delivery.status = DeliveryStatus.posted
    delivery.posted_by = actor.id
    delivery.posted_at = datetime.now(timezone.utc)

    if delivery.po_id is not None:
        order = db.get(PurchaseOrder, delivery.po_id)
        result.order_auto_closed, result.requisition_auto_closed = auto_close_if_fulfilled(db, order, actor.id)
    db.flush()
    return result


def _notify(notifier: Notifier | None, result: DeliveryResult) -> None:
    delivery = result.delivery
    if result.approval_required:
        pending = [ln.id for ln in delivery.lines if ln.over_delivery == OverDeliveryState.pending]
        dispatch(notifier, "over_delivery.pending", delivery_id=delivery.id, delivery_no=delivery.delivery_no, line_ids=pending)
        return
    if delivery.status == DeliveryStatus.posted:
        dispatch(notifier, "delivery.posted", delivery_id=delivery.id, delivery_no=delivery.delivery_no)
    for ncr in result.ncrs_created:
        dispatch(notifier, "ncr.created", ncr_id=ncr.id, ncr_no=ncr.ncr_no, value=str(ncr.value))
    if result.order_auto_closed:
        dispatch(notifier, "order.closed", po_id=delivery.po_id, reason=None, short=False)


def _log(result: DeliveryResult, actor: User) -> None:
    delivery = result.delivery
    if result.approval_required:
        logger.info("delivery %s parked for over-delivery approval", delivery.delivery_no)
    elif delivery.status == DeliveryStatus.posted:
        logger.info(
            "delivery %s posted by %s lines=%d total=%s ncrs=%d",
            delivery.delivery_no,
            actor.username,
            len(delivery.lines),
            delivery.total_amount,
            len(result.ncrs_created),
        )
    else:
        logger.info("delivery %s saved as draft", delivery.delivery_no)


# ---------- operations ----------
def create_delivery(
    db: Session,
    location_id: int,
    payload: DeliveryCreate,
    actor_id: int,
    notifier: Notifier | None = None,
) -> DeliveryResult:
    try:
        actor = get_actor(db, actor_id)
        get_location(db, location_id)
        pl = open_period_location(db, location_id)
        supplier = get_or_404(db, Supplier, payload.supplier_id, "Supplier")
        if not supplier.is_active:
            raise ValidationError(f"Supplier {supplier.code} is inactive", code="SUPPLIER_INACTIVE")
        invoice_no = _clean_invoice(payload.invoice_no)
        if payload.post:
            _check_invoice(db, supplier.id, invoice_no)
        else:
            _check_duplicate_invoice(db, supplier.id, invoice_no)

        order = _load_order(db, payload.po_id, location_id, supplier.id) if payload.po_id else None
        delivery = Delivery(
            delivery_no=next_document_number(db, Delivery.delivery_no, "DEL"),
            location_id=location_id,
            supplier_id=supplier.id,
            po_id=order.id if order else None,
            period_id=pl.period_id,
            invoice_no=invoice_no,
            delivery_note=payload.delivery_note,
            delivery_date=payload.delivery_date,
            status=DeliveryStatus.draft,
            created_by=actor.id,
        )
        _set_lines(delivery, _build_lines(db, payload.lines, order))
        db.add(delivery)
        db.flush()

        result = _post(db, delivery, actor) if payload.post else DeliveryResult(delivery=delivery)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning("delivery rejected at location %s: %s", location_id, exc)
        raise
    db.refresh(delivery)
    _log(result, actor)
    _notify(notifier, result)
    return result


def post_delivery(
    db: Session,
    location_id: int,
    payload: DeliveryCreate,
    actor_id: int,
    notifier: Notifier | None = None,
) -> DeliveryResult:
    return create_delivery(db, location_id, payload.model_copy(update={"post": True}), actor_id, notifier)


def post_existing_delivery(
    db: Session,
    delivery_id: int,
    actor_id: int,
    notifier: Notifier | None = None,
) -> DeliveryResult:
    try:
        actor = get_actor(db, actor_id)
        delivery = get_or_404(db, Delivery, delivery_id, "Delivery", lock=True)
        state = delivery_state(delivery)
        if state in (DocumentState.posted, DocumentState.rejected):
            raise InvalidStateTransition(f"Delivery {delivery.delivery_no} is {state.value}")
        if state == DocumentState.pending_approval:
            pending = [ln.id for ln in delivery.lines if ln.over_delivery == OverDeliveryState.pending]
            raise ApprovalRequired(
                f"Delivery {delivery.delivery_no} has over-delivery lines awaiting approval",
                details={"delivery_id": delivery.id, "line_ids": pending},
            )
        _check_invoice(db, delivery.supplier_id, _clean_invoice(delivery.invoice_no), delivery.id)
        if delivery.po_id is not None:
            _load_order(db, delivery.po_id, delivery.location_id, delivery.supplier_id)

        result = _post(db, delivery, actor)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(delivery)
    _log(result, actor)
    _notify(notifier, result)
    return result


def _editable(db: Session, delivery_id: int, action: str) -> Delivery:
    delivery = get_or_404(db, Delivery, delivery_id, "Delivery", lock=True)
    if delivery.status != DeliveryStatus.draft:
        raise InvalidStateTransition(
            f"Only draft deliveries can be {action} ({delivery.delivery_no} is {delivery.status.value})"
        )
    return delivery


def update_delivery(db: Session, delivery_id: int, payload: DeliveryUpdate, actor_id: int) -> Delivery:
    try:
        actor = get_actor(db, actor_id)
        delivery = _editable(db, delivery_id, "edited")
        if delivery.created_by != actor.id:
            raise PermissionDenied(f"Only the creator can edit {delivery.delivery_no}", code="NOT_CREATOR")

        if payload.invoice_no is not None:
            invoice_no = _clean_invoice(payload.invoice_no)
            _check_duplicate_invoice(db, delivery.supplier_id, invoice_no, delivery.id)
            delivery.invoice_no = invoice_no
        if payload.delivery_note is not None:
            delivery.delivery_note = payload.delivery_note
        if payload.delivery_date is not None:
            delivery.delivery_date = payload.delivery_date
        if payload.lines is not None:
            order = (
                _load_order(db, delivery.po_id, delivery.location_id, delivery.supplier_id)
                if delivery.po_id
                else None
            )
            _set_lines(delivery, _build_lines(db, payload.lines, order))
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(delivery)
    return delivery


def delete_delivery(db: Session, delivery_id: int, actor_id: int) -> None:
    try:
        actor = get_actor(db, actor_id)
        delivery = _editable(db, delivery_id, "deleted")
        if delivery.created_by != actor.id and actor.role not in REVIEWER_ROLES:
            raise PermissionDenied(f"Only the creator can delete {delivery.delivery_no}", code="NOT_CREATOR")
        db.delete(delivery)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("delivery %s deleted", delivery.delivery_no)
