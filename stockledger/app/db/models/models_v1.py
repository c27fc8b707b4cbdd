from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    BigInteger,
    Integer,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.app.db.base import Base, BigIntPK
from stockledger.app.db.models.core_types import (
    Role,
    LocationType,
    CostCentre,
    PeriodStatus,
    PeriodLocationStatus,
    SnapshotKind,
    DeliveryStatus,
    OverDeliveryState,
    IssueStatus,
    TransferStatus,
    PRFStatus,
    POStatus,
    NCRType,
    NCRStatus,
    ApprovalEntityType,
    ApprovalStatus,
)

QTY = Numeric(18, 4)
COST = Numeric(18, 4)
MONEY = Numeric(14, 2)
PERCENT = Numeric(5, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- MASTER DATA ----------
class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[Role] = mapped_column(Enum(Role, name="role"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Location(Base):
    __tablename__ = "locations"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[LocationType] = mapped_column(Enum(LocationType, name="location_type"), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Item(Base):
    __tablename__ = "items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(16), default="EA", nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ---------- PERIODS ----------
class Period(Base):
    __tablename__ = "periods"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[PeriodStatus] = mapped_column(
        Enum(PeriodStatus, name="period_status"),
        default=PeriodStatus.draft,
        nullable=False,
    )
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    period_locations: Mapped[list["PeriodLocation"]] = relationship(
        back_populates="period", cascade="all, delete-orphan"
    )

    __table_args__ = (CheckConstraint("end_date >= start_date", name="ck_period_dates"),)


class PeriodLocation(Base):
    __tablename__ = "period_locations"
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id", ondelete="CASCADE"), primary_key=True)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), primary_key=True)
    status: Mapped[PeriodLocationStatus] = mapped_column(
        Enum(PeriodLocationStatus, name="period_location_status"),
        default=PeriodLocationStatus.open,
        nullable=False,
    )
    opening_value: Mapped[Decimal | None] = mapped_column(MONEY)
    closing_value: Mapped[Decimal | None] = mapped_column(MONEY)
    ready_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ready_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    period: Mapped[Period] = relationship(back_populates="period_locations")
    location: Mapped[Location] = relationship()


class ItemPrice(Base):
    __tablename__ = "item_prices"
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id", ondelete="CASCADE"), primary_key=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), primary_key=True)
    price: Mapped[Decimal] = mapped_column(COST, nullable=False)
    set_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (CheckConstraint("price >= 0", name="ck_item_price_nonneg"),)


class StockSnapshot(Base):
    __tablename__ = "stock_snapshots"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id", ondelete="CASCADE"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)
    kind: Mapped[SnapshotKind] = mapped_column(Enum(SnapshotKind, name="snapshot_kind"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    wac: Mapped[Decimal] = mapped_column(COST, nullable=False)
    value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", "item_id", "kind", name="uq_snapshot_period_loc_item_kind"),
    )


# ---------- INVENTORY ----------
class StockLot(Base):
    __tablename__ = "stock_lots"
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), primary_key=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), primary_key=True)

    on_hand: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    wac: Mapped[Decimal] = mapped_column(COST, default=Decimal("0"), nullable=False)
    min_stock: Mapped[Decimal | None] = mapped_column(QTY)
    max_stock: Mapped[Decimal | None] = mapped_column(QTY)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    item: Mapped[Item] = relationship()

    __table_args__ = (
        CheckConstraint("on_hand >= 0", name="ck_stock_lot_on_hand_nonneg"),
        CheckConstraint("wac >= 0", name="ck_stock_lot_wac_nonneg"),
    )


# ---------- PROCUREMENT ----------
class Requisition(Base):
    __tablename__ = "requisitions"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    prf_no: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[PRFStatus] = mapped_column(Enum(PRFStatus, name="prf_status"), default=PRFStatus.draft, nullable=False)
    requested_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    required_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)
    total_value: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    cloned_from_id: Mapped[int | None] = mapped_column(ForeignKey("requisitions.id", ondelete="SET NULL"))
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    lines: Mapped[list["RequisitionLine"]] = relationship(
        back_populates="requisition", cascade="all, delete-orphan", order_by="RequisitionLine.line_no"
    )
    order: Mapped["PurchaseOrder | None"] = relationship(back_populates="requisition", uselist=False)


class RequisitionLine(Base):
    __tablename__ = "requisition_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    prf_id: Mapped[int] = mapped_column(ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int | None] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"))
    description: Mapped[str | None] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit: Mapped[str | None] = mapped_column(String(16))
    estimated_price: Mapped[Decimal] = mapped_column(COST, default=Decimal("0"), nullable=False)
    line_value: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    requisition: Mapped[Requisition] = relationship(back_populates="lines")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_prf_line_qty_pos"),
        CheckConstraint("item_id IS NOT NULL OR description IS NOT NULL", name="ck_prf_line_item_or_text"),
    )


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_no: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    prf_id: Mapped[int | None] = mapped_column(ForeignKey("requisitions.id", ondelete="RESTRICT"), unique=True)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[POStatus] = mapped_column(Enum(POStatus, name="po_status"), default=POStatus.open, nullable=False)

    expected_date: Mapped[date | None] = mapped_column(Date)
    total_before_discount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_discount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_vat: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    closure_reason: Mapped[str | None] = mapped_column(Text)

    supplier: Mapped[Supplier] = relationship()
    requisition: Mapped[Requisition | None] = relationship(back_populates="order")
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        back_populates="po", cascade="all, delete-orphan", order_by="PurchaseOrderLine.line_no"
    )


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    po_id: Mapped[int] = mapped_column(ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int | None] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"))
    description: Mapped[str | None] = mapped_column(String(255))
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    delivered_qty: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(COST, nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(PERCENT, default=Decimal("0"), nullable=False)
    vat_percent: Mapped[Decimal] = mapped_column(PERCENT, default=Decimal("0"), nullable=False)
    total_before_vat: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    total_after_vat: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)

    po: Mapped[PurchaseOrder] = relationship(back_populates="lines")
    item: Mapped[Item | None] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_line_qty_pos"),
        CheckConstraint("delivered_qty >= 0", name="ck_po_line_delivered_nonneg"),
        CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )


# ---------- TRANSACTIONS ----------
class Delivery(Base):
    __tablename__ = "deliveries"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    delivery_no: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    po_id: Mapped[int | None] = mapped_column(ForeignKey("purchase_orders.id", ondelete="RESTRICT"), index=True)
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id", ondelete="RESTRICT"), nullable=False)

    invoice_no: Mapped[str | None] = mapped_column(String(100))
    delivery_note: Mapped[str | None] = mapped_column(Text)
    delivery_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[DeliveryStatus] = mapped_column(
        Enum(DeliveryStatus, name="delivery_status"),
        default=DeliveryStatus.draft,
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    has_variance: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    posted_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejected_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)

    supplier: Mapped[Supplier] = relationship()
    lines: Mapped[list["DeliveryLine"]] = relationship(
        back_populates="delivery", cascade="all, delete-orphan", order_by="DeliveryLine.line_no"
    )

    __table_args__ = (
        UniqueConstraint("supplier_id", "invoice_no", name="uq_delivery_supplier_invoice"),
    )


class DeliveryLine(Base):
    __tablename__ = "delivery_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    delivery_id: Mapped[int] = mapped_column(ForeignKey("deliveries.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)
    # weak reference, resolved by lookup
    po_line_id: Mapped[int | None] = mapped_column(ForeignKey("purchase_order_lines.id", ondelete="SET NULL"))

    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(COST, nullable=False)
    period_price: Mapped[Decimal | None] = mapped_column(COST)
    price_variance: Mapped[Decimal] = mapped_column(COST, default=Decimal("0"), nullable=False)
    line_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    wac_before: Mapped[Decimal | None] = mapped_column(COST)
    wac_after: Mapped[Decimal | None] = mapped_column(COST)

    over_delivery: Mapped[OverDeliveryState] = mapped_column(
        Enum(OverDeliveryState, name="over_delivery_state"),
        default=OverDeliveryState.none,
        nullable=False,
    )
    over_delivery_excess: Mapped[Decimal] = mapped_column(QTY, default=Decimal("0"), nullable=False)

    delivery: Mapped[Delivery] = relationship(back_populates="lines")
    item: Mapped[Item] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_delivery_line_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_delivery_line_price_nonneg"),
    )


class Issue(Base):
    __tablename__ = "issues"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    issue_no: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True)
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id", ondelete="RESTRICT"), nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    cost_centre: Mapped[CostCentre] = mapped_column(Enum(CostCentre, name="cost_centre"), nullable=False)
    status: Mapped[IssueStatus] = mapped_column(
        Enum(IssueStatus, name="issue_status"),
        default=IssueStatus.posted,
        nullable=False,
    )
    total_value: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    lines: Mapped[list["IssueLine"]] = relationship(
        back_populates="issue", cascade="all, delete-orphan", order_by="IssueLine.line_no"
    )


class IssueLine(Base):
    __tablename__ = "issue_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    issue_id: Mapped[int] = mapped_column(ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    wac_at_issue: Mapped[Decimal] = mapped_column(COST, nullable=False)
    line_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    issue: Mapped[Issue] = relationship(back_populates="lines")

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_issue_line_qty_pos"),)


class Transfer(Base):
    __tablename__ = "transfers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    transfer_no: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    from_location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    to_location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[TransferStatus] = mapped_column(
        Enum(TransferStatus, name="transfer_status"),
        default=TransferStatus.draft,
        nullable=False,
    )
    request_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    requested_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    approval_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    transfer_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    total_value: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)

    lines: Mapped[list["TransferLine"]] = relationship(
        back_populates="transfer", cascade="all, delete-orphan", order_by="TransferLine.line_no"
    )

    __table_args__ = (
        CheckConstraint("from_location_id <> to_location_id", name="ck_transfer_distinct_locations"),
    )


class TransferLine(Base):
    __tablename__ = "transfer_lines"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    transfer_id: Mapped[int] = mapped_column(ForeignKey("transfers.id", ondelete="CASCADE"), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    wac_at_transfer: Mapped[Decimal] = mapped_column(COST, nullable=False)
    line_value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    transfer: Mapped[Transfer] = relationship(back_populates="lines")

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_transfer_line_qty_pos"),)


class Reconciliation(Base):
    __tablename__ = "reconciliations"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id", ondelete="CASCADE"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    back_charges: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    credits: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    condemnations: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    adjustments: Mapped[Decimal] = mapped_column(MONEY, default=Decimal("0"), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    saved_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (UniqueConstraint("period_id", "location_id", name="uq_reconciliation_period_location"),)


# Personnel on board : un relevé par (période, site, jour)
class POBEntry(Base):
    __tablename__ = "pob_entries"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    period_id: Mapped[int] = mapped_column(ForeignKey("periods.id", ondelete="CASCADE"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    crew_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    extra_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    entered_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("period_id", "location_id", "entry_date", name="uq_pob_period_location_date"),
        CheckConstraint("crew_count >= 0", name="ck_pob_crew_nonneg"),
        CheckConstraint("extra_count >= 0", name="ck_pob_extra_nonneg"),
    )

    @property
    def mandays(self) -> int:
        return self.crew_count + self.extra_count


class NCR(Base):
    __tablename__ = "ncrs"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    ncr_no: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False)
    delivery_id: Mapped[int | None] = mapped_column(ForeignKey("deliveries.id", ondelete="SET NULL"))
    delivery_line_id: Mapped[int | None] = mapped_column(ForeignKey("delivery_lines.id", ondelete="SET NULL"))
    type: Mapped[NCRType] = mapped_column(Enum(NCRType, name="ncr_type"), nullable=False)
    status: Mapped[NCRStatus] = mapped_column(Enum(NCRStatus, name="ncr_status"), default=NCRStatus.open, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Decimal | None] = mapped_column(QTY)
    value: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    auto_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    resolution_notes: Mapped[str | None] = mapped_column(Text)
    resolved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    delivery: Mapped["Delivery | None"] = relationship()


# ---------- APPROVALS ----------
class ApprovalRecord(Base):
    __tablename__ = "approvals"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    entity_type: Mapped[ApprovalEntityType] = mapped_column(
        Enum(ApprovalEntityType, name="approval_entity_type"), nullable=False
    )
    entity_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        Enum(ApprovalStatus, name="approval_status"),
        default=ApprovalStatus.pending,
        nullable=False,
    )
    requested_by: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    reviewed_by: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"))
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reason: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("ix_approvals_entity", "entity_type", "entity_id"),)
