from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from stockledger.app.db.models.core_types import CostCentre, NCRStatus


# ---------- Deliveries ----------
class DeliveryLineIn(BaseModel):
    item_id: int
    quantity: Decimal
    unit_price: Decimal
    po_line_id: int | None = None


class DeliveryCreate(BaseModel):
    supplier_id: int
    po_id: int | None = None
    invoice_no: str | None = None
    delivery_note: str | None = None
    delivery_date: date = Field(default_factory=date.today)
    post: bool = True
    lines: list[DeliveryLineIn] = Field(default_factory=list)


class DeliveryUpdate(BaseModel):
    invoice_no: str | None = None
    delivery_note: str | None = None
    delivery_date: date | None = None
    lines: list[DeliveryLineIn] | None = None


class DeliveryLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    po_line_id: int | None
    quantity: Decimal
    unit_price: Decimal
    period_price: Decimal | None
    price_variance: Decimal
    line_value: Decimal
    wac_before: Decimal | None
    wac_after: Decimal | None
    over_delivery: str
    over_delivery_excess: Decimal


class DeliveryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    delivery_no: str
    location_id: int
    supplier_id: int
    po_id: int | None
    period_id: int
    invoice_no: str | None
    delivery_date: date
    status: str
    total_amount: Decimal
    has_variance: bool
    rejection_reason: str | None
    lines: list[DeliveryLineRead]


class OverDeliveryDecision(BaseModel):
    line_ids: list[int]
    reason: str | None = None


# ---------- Issues ----------
class IssueLineIn(BaseModel):
    item_id: int
    quantity: Decimal


class IssueCreate(BaseModel):
    cost_centre: CostCentre = CostCentre.food
    issue_date: date = Field(default_factory=date.today)
    notes: str | None = None
    lines: list[IssueLineIn] = Field(default_factory=list)


class IssueLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    quantity: Decimal
    wac_at_issue: Decimal
    line_value: Decimal


class IssueRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    issue_no: str
    location_id: int
    period_id: int
    issue_date: date
    cost_centre: str
    status: str
    total_value: Decimal
    lines: list[IssueLineRead]


# ---------- Transfers ----------
class TransferLineIn(BaseModel):
    item_id: int
    quantity: Decimal


class TransferCreate(BaseModel):
    from_location_id: int
    to_location_id: int
    notes: str | None = None
    lines: list[TransferLineIn] = Field(default_factory=list)


class TransferLineRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    quantity: Decimal
    wac_at_transfer: Decimal
    line_value: Decimal


class TransferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transfer_no: str
    from_location_id: int
    to_location_id: int
    status: str
    total_value: Decimal
    lines: list[TransferLineRead]


class RejectBody(BaseModel):
    reason: str | None = None


# ---------- Reconciliation ----------
class ReconciliationIn(BaseModel):
    back_charges: Decimal = Decimal("0")
    credits: Decimal = Decimal("0")
    condemnations: Decimal = Decimal("0")
    adjustments: Decimal = Decimal("0")
    notes: str | None = None


# ---------- POB ----------
class POBEntryIn(BaseModel):
    entry_date: date
    crew_count: int = 0
    extra_count: int = 0


class POBSave(BaseModel):
    period_id: int | None = None
    entries: list[POBEntryIn] = Field(default_factory=list)


class POBEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    period_id: int
    location_id: int
    entry_date: date
    crew_count: int
    extra_count: int
    mandays: int


# ---------- NCR ----------
class NCRCreate(BaseModel):
    location_id: int
    delivery_id: int | None = None
    delivery_line_id: int | None = None
    reason: str
    quantity: Decimal | None = None
    value: Decimal


class NCRStatusUpdate(BaseModel):
    status: NCRStatus
    resolution_notes: str | None = None


class NCRRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ncr_no: str
    location_id: int
    delivery_id: int | None
    delivery_line_id: int | None
    type: str
    status: str
    reason: str
    quantity: Decimal | None
    value: Decimal
    auto_generated: bool
    resolution_notes: str | None
    resolved_at: datetime | None
