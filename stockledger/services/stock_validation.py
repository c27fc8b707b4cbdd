"""
Stock validator.

There is exactly one authoritative check: the one a processor runs on
locked lots inside the unit that mutates them. ``check_availability`` is
the advisory variant callers may use before submitting; it takes no locks
and its answer can be stale by the time the write happens.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Mapping, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockledger.app.core.errors import InsufficientStock
from stockledger.app.db.models.models_v1 import Item, StockLot
from stockledger.services.valuation import ZERO, round_qty, to_decimal


@dataclass(frozen=True)
class Sufficient:
    available: Decimal
    requested: Decimal

    ok = True


@dataclass(frozen=True)
class Insufficient:
    available: Decimal
    requested: Decimal
    shortfall: Decimal

    ok = False


Sufficiency = Union[Sufficient, Insufficient]


def check_sufficiency(available, requested) -> Sufficiency:
    available = to_decimal(available)
    requested = to_decimal(requested)
    if available >= requested:
        return Sufficient(available=available, requested=requested)
    return Insufficient(available=available, requested=requested, shortfall=round_qty(requested - available))


@dataclass(frozen=True)
class ShortItem:
    item_id: int
    requested: Decimal
    available: Decimal
    shortfall: Decimal
    item_code: str | None = None
    item_name: str | None = None

    def as_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_code": self.item_code,
            "item_name": self.item_name,
            "requested": str(self.requested),
            "available": str(self.available),
            "shortfall": str(self.shortfall),
        }


@dataclass(frozen=True)
class StockCheck:
    location_id: int
    insufficient: list[ShortItem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.insufficient

    def raise_if_insufficient(self) -> None:
        if self.insufficient:
            raise InsufficientStock(self.location_id, [s.as_dict() for s in self.insufficient])


def aggregate_requests(requests: Iterable[tuple[int, Decimal]]) -> dict[int, Decimal]:
    """Sum requested quantities per item (several lines may draw on one lot)."""
    totals: dict[int, Decimal] = {}
    for item_id, qty in requests:
        totals[item_id] = totals.get(item_id, ZERO) + to_decimal(qty)
    return totals


def validate_bulk(
    location_id: int,
    available_by_item: Mapping[int, Decimal],
    requests: Iterable[tuple[int, Decimal]],
    items: Mapping[int, Item] | None = None,
) -> StockCheck:
    """Evaluate every (item, requested) pair; never stops at the first failure."""
    short: list[ShortItem] = []
    for item_id, requested in sorted(aggregate_requests(requests).items()):
        result = check_sufficiency(available_by_item.get(item_id, ZERO), requested)
        if isinstance(result, Insufficient):
            item = (items or {}).get(item_id)
            short.append(
                ShortItem(
                    item_id=item_id,
                    requested=result.requested,
                    available=result.available,
                    shortfall=result.shortfall,
                    item_code=item.code if item else None,
                    item_name=item.name if item else None,
                )
            )
    return StockCheck(location_id=location_id, insufficient=short)


def check_availability(db: Session, location_id: int, requests: Iterable[tuple[int, Decimal]]) -> StockCheck:
    """Advisory pre-submission check (no locks)."""
    requests = list(requests)
    item_ids = sorted({item_id for item_id, _ in requests})
    if not item_ids:
        return StockCheck(location_id=location_id)

    rows = db.execute(
        select(StockLot.item_id, StockLot.on_hand)
        .where(StockLot.location_id == location_id)
        .where(StockLot.item_id.in_(item_ids))
    ).all()
    items = {i.id: i for i in db.execute(select(Item).where(Item.id.in_(item_ids))).scalars()}
    return validate_bulk(location_id, {int(i): q for i, q in rows}, requests, items)


def ensure_sufficient(
    location_id: int,
    available_by_item: Mapping[int, Decimal],
    requests: Iterable[tuple[int, Decimal]],
    items: Mapping[int, Item] | None = None,
) -> StockCheck:
    check = validate_bulk(location_id, available_by_item, requests, items)
    check.raise_if_insufficient()
    return check
