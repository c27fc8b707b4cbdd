"""
Ledger store: the per-(location, item) quantity + cost record.

Règles :
- un lot est créé à zéro au premier usage et n'est jamais supprimé
- on_hand >= 0 en permanence
- seule une réception recalcule le WAC

None of these helpers commit. They run inside the caller's unit of work,
under ``SELECT ... FOR UPDATE`` on every lot they touch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.app.db.models.models_v1 import StockLot
from stockledger.services.stock_validation import Insufficient, check_sufficiency
from stockledger.app.core.errors import InsufficientStock, ValidationError
from stockledger.services.valuation import ZERO, new_wac, round_qty, to_decimal

logger = logging.getLogger(__name__)

LotKey = tuple[int, int]  # (location_id, item_id)


@dataclass(frozen=True)
class LotChange:
    location_id: int
    item_id: int
    qty_before: Decimal
    qty_after: Decimal
    wac_before: Decimal
    wac_after: Decimal


@dataclass(frozen=True)
class TransferLegs:
    source: LotChange
    destination: LotChange

    @property
    def unit_cost(self) -> Decimal:
        return self.source.wac_before


def _lot_query(location_id: int, item_id: int, lock: bool):
    stmt = select(StockLot).where(StockLot.location_id == location_id).where(StockLot.item_id == item_id)
    if lock:
        stmt = stmt.with_for_update()
    return stmt


def get_lot(db: Session, location_id: int, item_id: int, *, lock: bool = True) -> StockLot:
    stmt = _lot_query(location_id, item_id, lock)
    lot = db.execute(stmt).scalar_one_or_none()
    if lot:
        return lot

    lot = StockLot(location_id=location_id, item_id=item_id, on_hand=ZERO, wac=ZERO)
    try:
        with db.begin_nested():
            db.add(lot)
    except IntegrityError:
        # another worker created it first
        lot = db.execute(stmt).scalar_one()
    return lot


def lock_lots(db: Session, keys: Iterable[LotKey]) -> dict[LotKey, StockLot]:
    """Lock lots in a stable order so concurrent units cannot deadlock."""
    return {key: get_lot(db, key[0], key[1]) for key in sorted(set(keys))}


def _positive(qty) -> Decimal:
    qty = to_decimal(qty)
    if qty <= 0:
        raise ValidationError("Quantity must be greater than zero", code="INVALID_QUANTITY")
    return qty


def apply_receipt(
    db: Session,
    location_id: int,
    item_id: int,
    qty,
    unit_cost,
    *,
    lot: StockLot | None = None,
) -> LotChange:
    qty = _positive(qty)
    lot = lot or get_lot(db, location_id, item_id)

    before_qty, before_wac = to_decimal(lot.on_hand), to_decimal(lot.wac)
    valuation = new_wac(before_qty, before_wac, qty, unit_cost)
    lot.on_hand = valuation.new_qty
    lot.wac = valuation.new_wac

    return LotChange(location_id, item_id, before_qty, valuation.new_qty, before_wac, valuation.new_wac)


def apply_consumption(
    db: Session,
    location_id: int,
    item_id: int,
    qty,
    *,
    lot: StockLot | None = None,
) -> LotChange:
    qty = _positive(qty)
    lot = lot or get_lot(db, location_id, item_id)

    before_qty, wac = to_decimal(lot.on_hand), to_decimal(lot.wac)
    result = check_sufficiency(before_qty, qty)
    if isinstance(result, Insufficient):
        raise InsufficientStock(
            location_id,
            [
                {
                    "item_id": item_id,
                    "item_code": lot.item.code if lot.item else None,
                    "requested": str(result.requested),
                    "available": str(result.available),
                    "shortfall": str(result.shortfall),
                }
            ],
        )

    after_qty = round_qty(before_qty - qty)
    lot.on_hand = after_qty
    return LotChange(location_id, item_id, before_qty, after_qty, wac, wac)


def apply_transfer(
    db: Session,
    from_location_id: int,
    to_location_id: int,
    item_id: int,
    qty,
    *,
    lots: dict[LotKey, StockLot] | None = None,
) -> TransferLegs:
    """Cost travels with the goods: the destination receives at the source WAC."""
    if from_location_id == to_location_id:
        raise ValidationError("Source and destination locations must differ", code="SAME_LOCATION")

    if lots is None:
        lots = lock_lots(db, [(from_location_id, item_id), (to_location_id, item_id)])

    source = apply_consumption(db, from_location_id, item_id, qty, lot=lots[(from_location_id, item_id)])
    destination = apply_receipt(
        db,
        to_location_id,
        item_id,
        qty,
        source.wac_before,
        lot=lots[(to_location_id, item_id)],
    )
    logger.debug(
        "transfer item=%s qty=%s %s->%s at wac=%s",
        item_id,
        qty,
        from_location_id,
        to_location_id,
        source.wac_before,
    )
    return TransferLegs(source=source, destination=destination)
