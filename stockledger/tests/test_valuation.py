from decimal import Decimal

import pytest

from stockledger.app.core.errors import ValidationError
from stockledger.services.valuation import (
    display_cost,
    line_value,
    new_wac,
    order_line_totals,
    round_money,
)


def test_receipt_blends_wac():
    """100 @ 10.00 puis 50 @ 12.00 -> 150 @ 10.6667"""
    result = new_wac(Decimal("100"), Decimal("10"), Decimal("50"), Decimal("12"))

    assert result.new_qty == Decimal("150")
    assert result.new_wac == Decimal("10.6667")
    assert result.new_value == Decimal("1600.01")


def test_first_receipt_takes_unit_cost():
    result = new_wac(0, 0, 20, Decimal("7.5"))

    assert result.new_qty == Decimal("20")
    assert result.new_wac == Decimal("7.5000")


def test_free_goods_lower_wac():
    result = new_wac(10, 5, 10, 0)

    assert result.new_wac == Decimal("2.5000")


@pytest.mark.parametrize(
    "args, code",
    [
        ((-1, 10, 5, 10), "INVALID_LOT_QTY"),
        ((10, -1, 5, 10), "INVALID_LOT_WAC"),
        ((10, 10, 0, 10), "INVALID_RECEIVED_QTY"),
        ((10, 10, 5, -1), "INVALID_UNIT_COST"),
    ],
)
def test_invalid_inputs_rejected(args, code):
    with pytest.raises(ValidationError) as exc:
        new_wac(*args)
    assert exc.value.code == code


def test_money_rounds_half_up():
    assert round_money(Decimal("2.345")) == Decimal("2.35")
    assert round_money(Decimal("2.344")) == Decimal("2.34")
    assert line_value(3, Decimal("1.005")) == Decimal("3.02")
    # WAC affiché à 2 dp, stocké à 4 dp
    assert display_cost(Decimal("10.6667")) == Decimal("10.67")


def test_order_line_totals_chain():
    t = order_line_totals(10, Decimal("12.50"), Decimal("10"), Decimal("15"))

    assert t.gross == Decimal("125.00")
    assert t.discount == Decimal("12.50")
    assert t.total_before_vat == Decimal("112.50")
    assert t.vat_amount == Decimal("16.88")
    assert t.total_after_vat == Decimal("129.38")
