"""
Price variance detection.

Chaque période fige un prix par article (ItemPrice). A la réception, le
prix facturé est comparé au prix de période ; tout écart au-delà du seuil
configuré génère un NCR automatique (type PRICE_VARIANCE).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from stockledger.app.core.config import Settings, get_settings
from stockledger.app.core.errors import ValidationError
from stockledger.app.db.models.core_types import NCRStatus, NCRType
from stockledger.app.db.models.models_v1 import NCR, Delivery, DeliveryLine, ItemPrice
from stockledger.services.common import next_document_number
from stockledger.services.valuation import HUNDRED, ZERO, round_cost, round_money, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceVariance:
    actual_price: Decimal
    expected_price: Decimal
    variance: Decimal
    variance_percent: Decimal
    variance_amount: Decimal
    exceeds_threshold: bool

    @property
    def has_variance(self) -> bool:
        return self.variance != 0


def check_price_variance(unit_price, period_price, quantity, settings: Settings | None = None) -> PriceVariance:
    settings = settings or get_settings()
    actual = to_decimal(unit_price)
    expected = to_decimal(period_price)
    qty = to_decimal(quantity)

    if actual < 0:
        raise ValidationError("Unit price cannot be negative", code="INVALID_UNIT_PRICE")
    if expected < 0:
        raise ValidationError("Period price cannot be negative", code="INVALID_PERIOD_PRICE")
    if qty <= 0:
        raise ValidationError("Quantity must be greater than zero", code="INVALID_QUANTITY")

    variance = actual - expected
    if expected > 0:
        percent = variance / expected * HUNDRED
    else:
        # prix de période à zéro : tout prix non nul vaut 100 %
        percent = HUNDRED if actual > 0 else ZERO
    amount = variance * qty

    pct_threshold = to_decimal(settings.PRICE_VARIANCE_THRESHOLD_PERCENT)
    amt_threshold = to_decimal(settings.PRICE_VARIANCE_THRESHOLD_AMOUNT)
    if pct_threshold <= 0 and amt_threshold <= 0:
        exceeds = variance != 0
    else:
        exceeds = variance != 0 and (
            (pct_threshold > 0 and abs(percent) > pct_threshold)
            or (amt_threshold > 0 and abs(amount) > amt_threshold)
        )

    return PriceVariance(
        actual_price=round_cost(actual),
        expected_price=round_cost(expected),
        variance=round_cost(variance),
        variance_percent=round_money(percent),
        variance_amount=round_money(amount),
        exceeds_threshold=exceeds,
    )


def period_price(db: Session, period_id: int, item_id: int) -> Decimal | None:
    price = db.get(ItemPrice, (period_id, item_id))
    return price.price if price else None


def create_price_variance_ncr(
    db: Session,
    delivery: Delivery,
    line: DeliveryLine,
    result: PriceVariance,
    actor_id: int,
) -> NCR:
    settings = get_settings()
    direction = "increase" if result.variance > 0 else "decrease"
    item = line.item
    reason = (
        "Automatic NCR for price variance detected on delivery.\n\n"
        f"Item: {item.name} ({item.code})\n"
        f"Quantity: {line.quantity}\n"
        f"Expected Price (Period): {settings.CURRENCY} {result.expected_price}\n"
        f"Actual Price (Delivery): {settings.CURRENCY} {result.actual_price}\n"
        f"Variance: {settings.CURRENCY} {result.variance} ({result.variance_percent}% {direction})\n"
        f"Total Variance Amount: {settings.CURRENCY} {result.variance_amount}"
    )
    ncr = NCR(
        ncr_no=next_document_number(db, NCR.ncr_no, "NCR"),
        location_id=delivery.location_id,
        delivery_id=delivery.id,
        delivery_line_id=line.id,
        type=NCRType.price_variance,
        status=NCRStatus.open,
        reason=reason,
        quantity=line.quantity,
        value=abs(result.variance_amount),
        auto_generated=True,
        created_by=actor_id,
    )
    db.add(ncr)
    db.flush()
    logger.info("NCR %s raised for delivery %s item %s", ncr.ncr_no, delivery.delivery_no, item.code)
    return ncr
