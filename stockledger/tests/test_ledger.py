from decimal import Decimal

import pytest
from sqlalchemy import select

from stockledger.app.core.errors import InsufficientStock, ValidationError
from stockledger.app.db.models.models_v1 import StockLot
from stockledger.services.ledger import apply_consumption, apply_receipt, apply_transfer, get_lot, lock_lots


def test_lot_created_lazily_at_zero(world):
    db = world.db
    assert db.execute(select(StockLot)).first() is None

    lot = get_lot(db, world.kitchen.id, world.rice.id)

    assert lot.on_hand == 0
    assert lot.wac == 0
    # second call returns the same row
    assert get_lot(db, world.kitchen.id, world.rice.id) is lot


def test_receipts_then_consumption(world):
    """
    GIVEN 100 @ 10.00 puis 50 @ 12.00
    THEN 150 @ 10.6667 ; sortie de 30 -> 120, WAC inchangé ; sortie de 200 refusée
    """
    db = world.db
    loc, item = world.kitchen.id, world.rice.id

    apply_receipt(db, loc, item, 100, Decimal("10.00"))
    change = apply_receipt(db, loc, item, 50, Decimal("12.00"))
    assert change.qty_after == Decimal("150")
    assert change.wac_after == Decimal("10.6667")

    change = apply_consumption(db, loc, item, 30)
    assert change.qty_after == Decimal("120")
    assert change.wac_after == change.wac_before == Decimal("10.6667")

    with pytest.raises(InsufficientStock) as exc:
        apply_consumption(db, loc, item, 200)
    short = exc.value.items[0]
    assert Decimal(short["available"]) == Decimal("120")
    assert Decimal(short["requested"]) == Decimal("200")
    assert get_lot(db, loc, item).on_hand == Decimal("120")


def test_transfer_carries_source_cost(world):
    db = world.db
    apply_receipt(db, world.kitchen.id, world.rice.id, 10, Decimal("8"))
    apply_receipt(db, world.store.id, world.rice.id, 10, Decimal("12"))

    legs = apply_transfer(db, world.kitchen.id, world.store.id, world.rice.id, 5)

    assert legs.unit_cost == Decimal("8.0000")
    assert legs.source.qty_after == Decimal("5")
    assert legs.destination.qty_after == Decimal("15")
    # (10*12 + 5*8) / 15
    assert legs.destination.wac_after == Decimal("10.6667")


def test_transfer_to_same_location_rejected(world):
    with pytest.raises(ValidationError):
        apply_transfer(world.db, world.kitchen.id, world.kitchen.id, world.rice.id, 1)


def test_non_positive_quantity_rejected(world):
    with pytest.raises(ValidationError):
        apply_receipt(world.db, world.kitchen.id, world.rice.id, 0, 5)
    with pytest.raises(ValidationError):
        apply_consumption(world.db, world.kitchen.id, world.rice.id, -1)


def test_lock_lots_sorted(world):
    keys = [(world.store.id, world.oil.id), (world.kitchen.id, world.rice.id), (world.store.id, world.oil.id)]

    lots = lock_lots(world.db, keys)

    assert list(lots) == sorted(set(keys))
