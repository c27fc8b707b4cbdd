"""
Valuation calculator.

Weighted-average cost (WAC) is recomputed on every receipt:

    new_wac = (lot_qty * lot_wac + received_qty * unit_cost) / (lot_qty + received_qty)

Consumption (issues, transfer-out) reads the WAC but never recomputes it.
Quantities and unit costs keep 4 decimal places; money rounds to 2 decimal
places, half-up, when it is persisted or displayed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from stockledger.app.core.errors import ValidationError

Number = Union[Decimal, int, str]

QTY_PLACES = Decimal("0.0001")
COST_PLACES = Decimal("0.0001")
MONEY_PLACES = Decimal("0.01")

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # go through str() so 12.1 stays 12.1
        return Decimal(str(value))
    return Decimal(value)


def round_qty(value: Number) -> Decimal:
    return to_decimal(value).quantize(QTY_PLACES, rounding=ROUND_HALF_UP)


def round_cost(value: Number) -> Decimal:
    return to_decimal(value).quantize(COST_PLACES, rounding=ROUND_HALF_UP)


def round_money(value: Number) -> Decimal:
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def display_cost(value: Number) -> Decimal:
    """WAC as shown to users (2 dp); storage keeps 4 dp."""
    return round_money(value)


@dataclass(frozen=True)
class ValuationResult:
    new_qty: Decimal
    new_wac: Decimal

    @property
    def new_value(self) -> Decimal:
        return round_money(self.new_qty * self.new_wac)


def new_wac(lot_qty: Number, lot_wac: Number, received_qty: Number, received_unit_cost: Number) -> ValuationResult:
    qty = to_decimal(lot_qty)
    wac = to_decimal(lot_wac)
    received = to_decimal(received_qty)
    cost = to_decimal(received_unit_cost)

    if qty < 0:
        raise ValidationError("Lot quantity cannot be negative", code="INVALID_LOT_QTY")
    if wac < 0:
        raise ValidationError("Lot WAC cannot be negative", code="INVALID_LOT_WAC")
    if received <= 0:
        raise ValidationError("Received quantity must be greater than zero", code="INVALID_RECEIVED_QTY")
    if cost < 0:
        raise ValidationError("Received unit cost cannot be negative", code="INVALID_UNIT_COST")

    total_qty = qty + received
    if total_qty > 0:
        wac_out = (qty * wac + received * cost) / total_qty
    else:
        wac_out = cost

    return ValuationResult(new_qty=round_qty(total_qty), new_wac=round_cost(wac_out))


def line_value(quantity: Number, unit_price: Number) -> Decimal:
    return round_money(to_decimal(quantity) * to_decimal(unit_price))


@dataclass(frozen=True)
class OrderLineTotals:
    gross: Decimal
    discount: Decimal
    total_before_vat: Decimal
    vat_amount: Decimal
    total_after_vat: Decimal


def order_line_totals(
    quantity: Number,
    unit_price: Number,
    discount_percent: Number = ZERO,
    vat_percent: Number = ZERO,
) -> OrderLineTotals:
    """gross -> discount -> before VAT -> VAT -> after VAT"""
    gross = to_decimal(quantity) * to_decimal(unit_price)
    discount = gross * to_decimal(discount_percent) / HUNDRED
    before_vat = gross - discount
    vat = before_vat * to_decimal(vat_percent) / HUNDRED
    return OrderLineTotals(
        gross=round_money(gross),
        discount=round_money(discount),
        total_before_vat=round_money(before_vat),
        vat_amount=round_money(vat),
        total_after_vat=round_money(before_vat + vat),
    )
