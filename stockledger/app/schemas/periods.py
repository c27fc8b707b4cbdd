from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class PeriodCreate(BaseModel):
    name: str
    start_date: date
    end_date: date


class ItemPriceIn(BaseModel):
    item_id: int
    price: Decimal


class PeriodLocationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    location_id: int
    status: str
    opening_value: Decimal | None
    closing_value: Decimal | None


class PeriodRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    start_date: date
    end_date: date
    status: str
    period_locations: list[PeriodLocationRead]
