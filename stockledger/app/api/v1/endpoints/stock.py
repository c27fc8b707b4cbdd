from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.api.deps import get_db
from stockledger.app.db.models.models_v1 import StockLot
from stockledger.app.schemas.stock_level import StockLotRead
from stockledger.app.schemas.transactions import IssueLineIn
from stockledger.services.common import get_location
from stockledger.services.issues import check_issue_availability
from stockledger.services.reconciliation import current_stock_value
from stockledger.services.valuation import display_cost

router = APIRouter(prefix="/locations/{location_id}/stock")


@router.get("", response_model=list[StockLotRead])
def list_stock(location_id: int, db: Session = Depends(get_db)):
    get_location(db, location_id)
    return db.execute(
        select(StockLot).where(StockLot.location_id == location_id).order_by(StockLot.item_id)
    ).scalars().all()


@router.get("/value")
def stock_value(location_id: int, db: Session = Depends(get_db)):
    get_location(db, location_id)
    lots = db.execute(select(StockLot).where(StockLot.location_id == location_id)).scalars().all()
    return {
        "location_id": location_id,
        "items": [
            {"item_id": lot.item_id, "on_hand": lot.on_hand, "wac": display_cost(lot.wac)}
            for lot in lots
        ],
        "total_value": current_stock_value(db, location_id),
    }


@router.post("/check")
def check_stock(location_id: int, lines: list[IssueLineIn], db: Session = Depends(get_db)):
    """Advisory only; the posting re-checks on locked lots."""
    result = check_issue_availability(db, location_id, lines)
    return {"ok": result.ok, "insufficient": [s.as_dict() for s in result.insufficient]}
