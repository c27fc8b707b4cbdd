from decimal import Decimal

import pytest

from stockledger.app.core.errors import InsufficientStock
from stockledger.services.ledger import apply_receipt
from stockledger.services.stock_validation import (
    Insufficient,
    Sufficient,
    check_availability,
    check_sufficiency,
    ensure_sufficient,
    validate_bulk,
)


def test_sufficiency_shortfall():
    result = check_sufficiency(Decimal("120"), Decimal("200"))

    assert isinstance(result, Insufficient)
    assert not result.ok
    assert result.shortfall == Decimal("80")


def test_exact_quantity_is_sufficient():
    result = check_sufficiency(10, 10)

    assert isinstance(result, Sufficient)
    assert result.ok


def test_bulk_reports_every_short_item():
    """Deux lignes du même article sont cumulées ; tous les manques sont listés."""
    check = validate_bulk(
        1,
        {1: Decimal("5"), 2: Decimal("0")},
        [(1, Decimal("3")), (2, Decimal("4")), (1, Decimal("3"))],
    )

    assert not check.ok
    assert [s.item_id for s in check.insufficient] == [1, 2]
    assert check.insufficient[0].requested == Decimal("6")
    assert check.insufficient[0].shortfall == Decimal("1")
    assert check.insufficient[1].available == Decimal("0")


def test_ensure_sufficient_raises_with_all_items():
    with pytest.raises(InsufficientStock) as exc:
        ensure_sufficient(7, {1: Decimal("1")}, [(1, Decimal("2")), (2, Decimal("1"))])

    err = exc.value
    assert err.location_id == 7
    assert len(err.items) == 2
    assert err.to_dict()["code"] == "INSUFFICIENT_STOCK"


def test_ensure_sufficient_passes():
    check = ensure_sufficient(7, {1: Decimal("5")}, [(1, Decimal("5"))])
    assert check.ok


def test_advisory_check_reads_lots(world):
    db = world.db
    apply_receipt(db, world.kitchen.id, world.rice.id, 10, 4)
    db.commit()

    check = check_availability(db, world.kitchen.id, [(world.rice.id, Decimal("12")), (world.oil.id, Decimal("1"))])

    assert {s.item_code for s in check.insufficient} == {"RICE-5KG", "OIL-1L"}
    rice = next(s for s in check.insufficient if s.item_id == world.rice.id)
    assert rice.available == Decimal("10")
