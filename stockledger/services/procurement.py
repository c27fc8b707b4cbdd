"""
Procurement service.

Ce module transforme une PRF approuvée en bon de commande (PO).
Il ne contient AUCUNE logique de stock : les quantités livrées sont
suivies par stockledger.services.fulfillment.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.core.config import get_settings
from stockledger.app.core.errors import InvalidStateTransition, ValidationError
from stockledger.app.db.models.core_types import POStatus, PRFStatus, Role
from stockledger.app.db.models.models_v1 import PurchaseOrder, PurchaseOrderLine, Requisition, Supplier
from stockledger.app.schemas.procurement import OrderCreate, OrderLineIn
from stockledger.services.common import REVIEWER_ROLES, get_actor, get_or_404, next_document_number, require_role
from stockledger.services.notifications import Notifier, dispatch
from stockledger.services.valuation import HUNDRED, ZERO, order_line_totals, round_money, to_decimal

logger = logging.getLogger(__name__)

ORDER_CREATORS = REVIEWER_ROLES | {Role.procurement}


def _order_lines(prf: Requisition, lines: list[OrderLineIn] | None) -> list[OrderLineIn]:
    if lines is not None:
        return lines
    # Règle métier : sans lignes explicites, on reprend la PRF au prix estimé
    return [
        OrderLineIn(
            item_id=ln.item_id,
            description=ln.description,
            quantity=ln.quantity,
            unit_price=ln.estimated_price,
        )
        for ln in prf.lines
    ]


def _validate_lines(lines: list[OrderLineIn]) -> None:
    problems = []
    if not lines:
        problems.append({"line": None, "message": "An order needs at least one line"})
    for i, ln in enumerate(lines, start=1):
        if to_decimal(ln.quantity) <= 0:
            problems.append({"line": i, "message": f"Line {i}: quantity must be greater than zero"})
        if to_decimal(ln.unit_price) < 0:
            problems.append({"line": i, "message": f"Line {i}: unit price cannot be negative"})
        if not ZERO <= to_decimal(ln.discount_percent) <= HUNDRED:
            problems.append({"line": i, "message": f"Line {i}: discount must be between 0 and 100"})
        if ln.vat_percent is not None and to_decimal(ln.vat_percent) < 0:
            problems.append({"line": i, "message": f"Line {i}: VAT cannot be negative"})
        if ln.item_id is None and not (ln.description or "").strip():
            problems.append({"line": i, "message": f"Line {i}: item or description is required"})
    if problems:
        raise ValidationError.from_problems(problems)


def create_order_from_requisition(
    db: Session,
    prf_id: int,
    actor_id: int,
    payload: OrderCreate,
    notifier: Notifier | None = None,
) -> PurchaseOrder:
    settings = get_settings()
    try:
        actor = get_actor(db, actor_id)
        require_role(actor, ORDER_CREATORS, "create purchase orders")
        prf = get_or_404(db, Requisition, prf_id, "Requisition", lock=True)
        if prf.status != PRFStatus.approved:
            raise InvalidStateTransition(f"Requisition {prf.prf_no} is {prf.status.value}, not APPROVED")
        existing = db.execute(select(PurchaseOrder.po_no).where(PurchaseOrder.prf_id == prf.id)).scalar_one_or_none()
        if existing:
            raise InvalidStateTransition(
                f"Requisition {prf.prf_no} already has order {existing}", code="ORDER_EXISTS"
            )
        supplier = get_or_404(db, Supplier, payload.supplier_id, "Supplier")
        if not supplier.is_active:
            raise ValidationError(f"Supplier {supplier.code} is inactive", code="SUPPLIER_INACTIVE")

        lines = _order_lines(prf, payload.lines)
        _validate_lines(lines)

        order = PurchaseOrder(
            po_no=next_document_number(db, PurchaseOrder.po_no, "PO"),
            prf_id=prf.id,
            supplier_id=supplier.id,
            location_id=prf.location_id,
            status=POStatus.open,
            expected_date=payload.expected_date or prf.required_date,
            created_by=actor.id,
        )
        gross = discount = vat = total = Decimal("0")
        for i, ln in enumerate(lines, start=1):
            vat_pct = settings.DEFAULT_VAT_PERCENT if ln.vat_percent is None else ln.vat_percent
            t = order_line_totals(ln.quantity, ln.unit_price, ln.discount_percent, vat_pct)
            order.lines.append(
                PurchaseOrderLine(
                    line_no=i,
                    item_id=ln.item_id,
                    description=ln.description,
                    quantity=to_decimal(ln.quantity),
                    delivered_qty=ZERO,
                    unit_price=to_decimal(ln.unit_price),
                    discount_percent=to_decimal(ln.discount_percent),
                    vat_percent=to_decimal(vat_pct),
                    total_before_vat=t.total_before_vat,
                    vat_amount=t.vat_amount,
                    total_after_vat=t.total_after_vat,
                )
            )
            gross += t.gross
            discount += t.discount
            vat += t.vat_amount
            total += t.total_after_vat

        order.total_before_discount = round_money(gross)
        order.total_discount = round_money(discount)
        order.total_vat = round_money(vat)
        order.total_amount = round_money(total)
        db.add(order)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info("order %s created from %s total=%s", order.po_no, prf.prf_no, order.total_amount)
    dispatch(notifier, "order.created", po_id=order.id, po_no=order.po_no, supplier=supplier.code)
    return order
