"""
Fulfillment tracker.

Suivi des quantités livrées par ligne de commande :
- remaining = max(0, ordered - delivered)
- une commande entièrement livrée se ferme automatiquement, avec sa PRF
- une fermeture anticipée (commande incomplète) exige un motif
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from stockledger.app.core.errors import InvalidStateTransition, ValidationError
from stockledger.app.db.models.core_types import ApprovalEntityType, ApprovalStatus, POStatus, PRFStatus, Role
from stockledger.app.db.models.models_v1 import ApprovalRecord, PurchaseOrder, PurchaseOrderLine
from stockledger.services.common import get_actor, get_or_404, require_role
from stockledger.services.notifications import Notifier, dispatch
from stockledger.services.valuation import ZERO, round_qty, to_decimal

logger = logging.getLogger(__name__)

ORDER_CLOSERS = frozenset({Role.supervisor, Role.admin, Role.procurement})


@dataclass(frozen=True)
class LineFulfillment:
    line_id: int
    item_id: int | None
    ordered: Decimal
    delivered: Decimal
    remaining: Decimal

    @property
    def fully_delivered(self) -> bool:
        return self.remaining == 0


@dataclass(frozen=True)
class CloseOrderResult:
    order: PurchaseOrder
    requisition_auto_closed: bool


def remaining_qty(ordered, delivered) -> Decimal:
    return max(ZERO, round_qty(to_decimal(ordered) - to_decimal(delivered)))


def record_delivered(order_line: PurchaseOrderLine, qty) -> Decimal:
    """Adds to the line's delivered quantity; returns the new remaining."""
    qty = to_decimal(qty)
    if qty <= 0:
        raise ValidationError("Delivered quantity must be greater than zero", code="INVALID_QUANTITY")
    order_line.delivered_qty = round_qty(to_decimal(order_line.delivered_qty) + qty)
    return remaining_qty(order_line.quantity, order_line.delivered_qty)


def order_fulfillment(order: PurchaseOrder) -> list[LineFulfillment]:
    return [
        LineFulfillment(
            line_id=ln.id,
            item_id=ln.item_id,
            ordered=to_decimal(ln.quantity),
            delivered=to_decimal(ln.delivered_qty),
            remaining=remaining_qty(ln.quantity, ln.delivered_qty),
        )
        for ln in order.lines
    ]


def is_fully_delivered(order: PurchaseOrder) -> bool:
    return bool(order.lines) and all(f.fully_delivered for f in order_fulfillment(order))


def _close(order: PurchaseOrder, actor_id: int | None, reason: str | None) -> bool:
    """Ferme la commande et la PRF approuvée liée. Returns True if the PRF was closed."""
    order.status = POStatus.closed
    order.closed_at = datetime.now(timezone.utc)
    order.closed_by = actor_id
    order.closure_reason = reason

    prf = order.requisition
    if prf is not None and prf.status == PRFStatus.approved:
        prf.status = PRFStatus.closed
        return True
    return False


def auto_close_if_fulfilled(db: Session, order: PurchaseOrder, actor_id: int | None = None) -> tuple[bool, bool]:
    """Runs inside the delivery unit. Returns (order_closed, requisition_closed)."""
    if order.status != POStatus.open or not is_fully_delivered(order):
        return False, False
    prf_closed = _close(order, actor_id, None)
    db.flush()
    logger.info("order %s fully delivered, closed", order.po_no)
    return True, prf_closed


def close_order(
    db: Session,
    order_id: int,
    actor_id: int,
    reason: str | None = None,
    notifier: Notifier | None = None,
) -> CloseOrderResult:
    try:
        actor = get_actor(db, actor_id)
        require_role(actor, ORDER_CLOSERS, "close purchase orders")
        order = get_or_404(db, PurchaseOrder, order_id, "PurchaseOrder", lock=True)
        if order.status != POStatus.open:
            raise InvalidStateTransition(f"Order {order.po_no} is already closed")

        reason = (reason or "").strip() or None
        short = not is_fully_delivered(order)
        if short and reason is None:
            raise ValidationError(
                f"Order {order.po_no} is not fully delivered; a closure reason is required",
                code="REASON_REQUIRED",
            )

        prf_closed = _close(order, actor.id, reason)
        if short:
            now = datetime.now(timezone.utc)
            db.add(
                ApprovalRecord(
                    entity_type=ApprovalEntityType.po,
                    entity_id=order.id,
                    status=ApprovalStatus.approved,
                    requested_by=actor.id,
                    requested_at=now,
                    reviewed_by=actor.id,
                    reviewed_at=now,
                    reason=reason,
                )
            )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info("order %s closed by %s (short=%s)", order.po_no, actor.username, short)
    dispatch(notifier, "order.closed", po_id=order.id, po_no=order.po_no, reason=reason, short=short)
    return CloseOrderResult(order=order, requisition_auto_closed=prf_closed)
