from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_current_user, get_db, get_notifier
from stockledger.app.db.models.models_v1 import PurchaseOrder, User
from stockledger.app.schemas.procurement import OrderClose, OrderRead
from stockledger.services import fulfillment
from stockledger.services.common import get_or_404
from stockledger.services.notifications import Notifier

router = APIRouter(prefix="/purchase-orders")


@router.get("", response_model=list[OrderRead])
def list_pos(db: Session = Depends(get_db)):
    return db.execute(select(PurchaseOrder).order_by(PurchaseOrder.id.desc())).scalars().all()


@router.get("/{po_id}", response_model=OrderRead)
def get_po(po_id: int, db: Session = Depends(get_db)):
    return get_or_404(db, PurchaseOrder, po_id, "PurchaseOrder")


@router.get("/{po_id}/fulfillment")
def get_fulfillment(po_id: int, db: Session = Depends(get_db)):
    po = get_or_404(db, PurchaseOrder, po_id, "PurchaseOrder")
    lines = fulfillment.order_fulfillment(po)
    return {
        "po_id": po.id,
        "po_no": po.po_no,
        "status": po.status,
        "fully_delivered": fulfillment.is_fully_delivered(po),
        "lines": [
            {
                "line_id": f.line_id,
                "item_id": f.item_id,
                "ordered": f.ordered,
                "delivered": f.delivered,
                "remaining": f.remaining,
            }
            for f in lines
        ],
    }


@router.post("/{po_id}/close")
def close_po(
    po_id: int,
    body: OrderClose,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    notifier: Notifier = Depends(get_notifier),
):
    result = fulfillment.close_order(db, po_id, user.id, body.reason, notifier)
    return {
        "order": OrderRead.model_validate(result.order).model_dump(mode="json"),
        "requisition_auto_closed": result.requisition_auto_closed,
    }
