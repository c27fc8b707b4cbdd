from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class RequisitionLineIn(BaseModel):
    item_id: int | None = None
    description: str | None = None
    quantity: Decimal
    unit: str | None = None
    estimated_price: Decimal = Decimal("0")


class RequisitionCreate(BaseModel):
    location_id: int
    required_date: date | None = None
    notes: str | None = None
    lines: list[RequisitionLineIn] = Field(default_factory=list)


class RequisitionUpdate(BaseModel):
    required_date: date | None = None
    notes: str | None = None
    lines: list[RequisitionLineIn] | None = None


class RequisitionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    prf_no: str
    location_id: int
    period_id: int
    status: str
    requested_by: int
    total_value: Decimal
    cloned_from_id: int | None


class OrderLineIn(BaseModel):
    item_id: int | None = None
    description: str | None = None
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal = Decimal("0")
    vat_percent: Decimal | None = None


class OrderCreate(BaseModel):
    supplier_id: int
    expected_date: date | None = None
    # copied from the requisition when omitted
    lines: list[OrderLineIn] | None = None


class OrderClose(BaseModel):
    reason: str | None = None


class OrderLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int | None
    quantity: Decimal
    delivered_qty: Decimal
    unit_price: Decimal
    total_after_vat: Decimal


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    po_no: str
    prf_id: int | None
    supplier_id: int
    status: str
    total_amount: Decimal
    closure_reason: str | None
    lines: list[OrderLineRead]
