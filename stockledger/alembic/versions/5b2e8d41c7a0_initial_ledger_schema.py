"""initial ledger schema

Revision ID: 5b2e8d41c7a0
Revises:
Create Date: 2026-03-02
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from stockledger.app.db.models.core_types import (
    ApprovalEntityType,
    ApprovalStatus,
    CostCentre,
    DeliveryStatus,
    IssueStatus,
    LocationType,
    NCRStatus,
    NCRType,
    OverDeliveryState,
    PeriodLocationStatus,
    PeriodStatus,
    POStatus,
    PRFStatus,
    Role,
    SnapshotKind,
    TransferStatus,
)

# revision identifiers, used by Alembic.
revision: str = "5b2e8d41c7a0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
QTY = sa.Numeric(18, 4)
COST = sa.Numeric(18, 4)
MONEY = sa.Numeric(14, 2)
PERCENT = sa.Numeric(5, 2)
TS = sa.DateTime(timezone=True)


def _fk(target: str, ondelete: str = "RESTRICT") -> sa.ForeignKey:
    return sa.ForeignKey(target, ondelete=ondelete)


def upgrade() -> None:
    # --- master data ---
    op.create_table(
        "users",
        sa.Column("id", PK, primary_key=True),
        sa.Column("username", sa.String(100), nullable=False, unique=True),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("role", sa.Enum(Role, name="role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_table(
        "locations",
        sa.Column("id", PK, primary_key=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("type", sa.Enum(LocationType, name="location_type"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    op.create_table(
        "items",
        sa.Column("id", PK, primary_key=True),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )
    op.create_table(
        "suppliers",
        sa.Column("id", PK, primary_key=True),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("is_active", sa.Boolean(), nullable=False),
    )

    # --- periods ---
    op.create_table(
        "periods",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", sa.Enum(PeriodStatus, name="period_status"), nullable=False),
        sa.Column("closed_at", TS),
        sa.Column("closed_by", PK, _fk("users.id", "SET NULL")),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("end_date >= start_date", name="ck_period_dates"),
    )
    op.create_table(
        "period_locations",
        sa.Column("period_id", PK, _fk("periods.id", "CASCADE"), primary_key=True),
        sa.Column("location_id", PK, _fk("locations.id"), primary_key=True),
        sa.Column("status", sa.Enum(PeriodLocationStatus, name="period_location_status"), nullable=False),
        sa.Column("opening_value", MONEY),
        sa.Column("closing_value", MONEY),
        sa.Column("ready_at", TS),
        sa.Column("ready_by", PK, _fk("users.id", "SET NULL")),
        sa.Column("closed_at", TS),
    )
    op.create_table(
        "item_prices",
        sa.Column("period_id", PK, _fk("periods.id", "CASCADE"), primary_key=True),
        sa.Column("item_id", PK, _fk("items.id"), primary_key=True),
        sa.Column("price", COST, nullable=False),
        sa.Column("set_by", PK, _fk("users.id", "SET NULL")),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint("price >= 0", name="ck_item_price_nonneg"),
    )
    op.create_table(
        "stock_snapshots",
        sa.Column("id", PK, primary_key=True),
        sa.Column("period_id", PK, _fk("periods.id", "CASCADE"), nullable=False),
        sa.Column("location_id", PK, _fk("locations.id"), nullable=False),
        sa.Column("item_id", PK, _fk("items.id"), nullable=False),
        sa.Column("kind", sa.Enum(SnapshotKind, name="snapshot_kind"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("wac", COST, nullable=False),
        sa.Column("value", MONEY, nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.UniqueConstraint("period_id", "location_id", "item_id", "kind", name="uq_snapshot_period_loc_item_kind"),
    )

    # --- inventory ---
    op.create_table(
        "stock_lots",
        sa.Column("location_id", PK, _fk("locations.id"), primary_key=True),
        sa.Column("item_id", PK, _fk("items.id"), primary_key=True),
        sa.Column("on_hand", QTY, nullable=False),
        sa.Column("wac", COST, nullable=False),
        sa.Column("min_stock", QTY),
        sa.Column("max_stock", QTY),
        sa.Column("updated_at", TS, nullable=False),
        sa.CheckConstraint("on_hand >= 0", name="ck_stock_lot_on_hand_nonneg"),
        sa.CheckConstraint("wac >= 0", name="ck_stock_lot_wac_nonneg"),
    )

    # --- procurement ---
    op.create_table(
        "requisitions",
        sa.Column("id", PK, primary_key=True),
        sa.Column("prf_no", sa.String(64), nullable=False, unique=True),
        sa.Column("location_id", PK, _fk("locations.id"), nullable=False),
        sa.Column("period_id", PK, _fk("periods.id"), nullable=False),
        sa.Column("status", sa.Enum(PRFStatus, name="prf_status"), nullable=False),
        sa.Column("requested_by", PK, _fk("users.id"), nullable=False),
        sa.Column("required_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        sa.Column("total_value", MONEY, nullable=False),
        sa.Column("cloned_from_id", PK, _fk("requisitions.id", "SET NULL")),
        sa.Column("submitted_at", TS),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_table(
        "requisition_lines",
        sa.Column("id", PK, primary_key=True),
        sa.Column("prf_id", PK, _fk("requisitions.id", "CASCADE"), nullable=False, index=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("item_id", PK, _fk("items.id")),
        sa.Column("description", sa.String(255)),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("unit", sa.String(16)),
        sa.Column("estimated_price", COST, nullable=False),
        sa.Column("line_value", MONEY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_prf_line_qty_pos"),
        sa.CheckConstraint("item_id IS NOT NULL OR description IS NOT NULL", name="ck_prf_line_item_or_text"),
    )
    op.create_table(
        "purchase_orders",
        sa.Column("id", PK, primary_key=True),
        sa.Column("po_no", sa.String(64), nullable=False, unique=True),
        sa.Column("prf_id", PK, _fk("requisitions.id"), unique=True),
        sa.Column("supplier_id", PK, _fk("suppliers.id"), nullable=False),
        sa.Column("location_id", PK, _fk("locations.id"), nullable=False),
        sa.Column("status", sa.Enum(POStatus, name="po_status"), nullable=False),
        sa.Column("expected_date", sa.Date()),
        sa.Column("total_before_discount", MONEY, nullable=False),
        sa.Column("total_discount", MONEY, nullable=False),
        sa.Column("total_vat", MONEY, nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("created_by", PK, _fk("users.id"), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("closed_at", TS),
        sa.Column("closed_by", PK, _fk("users.id", "SET NULL")),
        sa.Column("closure_reason", sa.Text()),
    )
    op.create_table(
        "purchase_order_lines",
        sa.Column("id", PK, primary_key=True),
        sa.Column("po_id", PK, _fk("purchase_orders.id", "CASCADE"), nullable=False, index=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("item_id", PK, _fk("items.id")),
        sa.Column("description", sa.String(255)),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("delivered_qty", QTY, nullable=False),
        sa.Column("unit_price", COST, nullable=False),
        sa.Column("discount_percent", PERCENT, nullable=False),
        sa.Column("vat_percent", PERCENT, nullable=False),
        sa.Column("total_before_vat", MONEY, nullable=False),
        sa.Column("vat_amount", MONEY, nullable=False),
        sa.Column("total_after_vat", MONEY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("delivered_qty >= 0", name="ck_po_line_delivered_nonneg"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_line_unit_price_nonneg"),
    )

    # --- transactions ---
    op.create_table(
        "deliveries",
        sa.Column("id", PK, primary_key=True),
        sa.Column("delivery_no", sa.String(64), nullable=False, unique=True),
        sa.Column("location_id", PK, _fk("locations.id"), nullable=False, index=True),
        sa.Column("supplier_id", PK, _fk("suppliers.id"), nullable=False),
        sa.Column("po_id", PK, _fk("purchase_orders.id"), index=True),
        sa.Column("period_id", PK, _fk("periods.id"), nullable=False),
        sa.Column("invoice_no", sa.String(100)),
        sa.Column("delivery_note", sa.Text()),
        sa.Column("delivery_date", sa.Date(), nullable=False),
        sa.Column("status", sa.Enum(DeliveryStatus, name="delivery_status"), nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("has_variance", sa.Boolean(), nullable=False),
        sa.Column("created_by", PK, _fk("users.id"), nullable=False),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("posted_by", PK, _fk("users.id", "SET NULL")),
        sa.Column("posted_at", TS),
        sa.Column("rejected_by", PK, _fk("users.id", "SET NULL")),
        sa.Column("rejected_at", TS),
        sa.Column("rejection_reason", sa.Text()),
        sa.UniqueConstraint("supplier_id", "invoice_no", name="uq_delivery_supplier_invoice"),
    )
    op.create_table(
        "delivery_lines",
        sa.Column("id", PK, primary_key=True),
        sa.Column("delivery_id", PK, _fk("deliveries.id", "CASCADE"), nullable=False, index=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("item_id", PK, _fk("items.id"), nullable=False),
        sa.Column("po_line_id", PK, _fk("purchase_order_lines.id", "SET NULL")),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("unit_price", COST, nullable=False),
        sa.Column("period_price", COST),
        sa.Column("price_variance", COST, nullable=False),
        sa.Column("line_value", MONEY, nullable=False),
        sa.Column("wac_before", COST),
        sa.Column("wac_after", COST),
        sa.Column("over_delivery", sa.Enum(OverDeliveryState, name="over_delivery_state"), nullable=False),
        sa.Column("over_delivery_excess", QTY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_delivery_line_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_delivery_line_price_nonneg"),
    )
    op.create_table(
        "issues",
        sa.Column("id", PK, primary_key=True),
        sa.Column("issue_no", sa.String(64), nullable=False, unique=True),
        sa.Column("location_id", PK, _fk("locations.id"), nullable=False, index=True),
        sa.Column("period_id", PK, _fk("periods.id"), nullable=False),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("cost_centre", sa.Enum(CostCentre, name="cost_centre"), nullable=False),
        sa.Column("status", sa.Enum(IssueStatus, name="issue_status"), nullable=False),
        sa.Column("total_value", MONEY, nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", PK, _fk("users.id"), nullable=False),
        sa.Column("posted_at", TS, nullable=False),
    )
    op.create_table(
        "issue_lines",
        sa.Column("id", PK, primary_key=True),
        sa.Column("issue_id", PK, _fk("issues.id", "CASCADE"), nullable=False, index=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("item_id", PK, _fk("items.id"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("wac_at_issue", COST, nullable=False),
        sa.Column("line_value", MONEY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_issue_line_qty_pos"),
    )
    op.create_table(
        "transfers",
        sa.Column("id", PK, primary_key=True),
        sa.Column("transfer_no", sa.String(64), nullable=False, unique=True),
        sa.Column("from_location_id", PK, _fk("locations.id"), nullable=False),
        sa.Column("to_location_id", PK, _fk("locations.id"), nullable=False),
        sa.Column("period_id", PK, _fk("periods.id"), nullable=False),
        sa.Column("status", sa.Enum(TransferStatus, name="transfer_status"), nullable=False),
        sa.Column("request_date", TS, nullable=False),
        sa.Column("requested_by", PK, _fk("users.id"), nullable=False),
        sa.Column("approved_by", PK, _fk("users.id", "SET NULL")),
        sa.Column("approval_date", TS),
        sa.Column("transfer_date", TS),
        sa.Column("total_value", MONEY, nullable=False),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("from_location_id <> to_location_id", name="ck_transfer_distinct_locations"),
    )
    op.create_table(
        "transfer_lines",
        sa.Column("id", PK, primary_key=True),
        sa.Column("transfer_id", PK, _fk("transfers.id", "CASCADE"), nullable=False, index=True),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("item_id", PK, _fk("items.id"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("wac_at_transfer", COST, nullable=False),
        sa.Column("line_value", MONEY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_transfer_line_qty_pos"),
    )
    op.create_table(
        "reconciliations",
        sa.Column("id", PK, primary_key=True),
        sa.Column("period_id", PK, _fk("periods.id", "CASCADE"), nullable=False),
        sa.Column("location_id", PK, _fk("locations.id"), nullable=False),
        sa.Column("back_charges", MONEY, nullable=False),
        sa.Column("credits", MONEY, nullable=False),
        sa.Column("condemnations", MONEY, nullable=False),
        sa.Column("adjustments", MONEY, nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("saved_by", PK, _fk("users.id"), nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.UniqueConstraint("period_id", "location_id", name="uq_reconciliation_period_location"),
    )
    op.create_table(
        "ncrs",
        sa.Column("id", PK, primary_key=True),
        sa.Column("ncr_no", sa.String(64), nullable=False, unique=True),
        sa.Column("location_id", PK, _fk("locations.id"), nullable=False),
        sa.Column("delivery_id", PK, _fk("deliveries.id", "SET NULL")),
        sa.Column("delivery_line_id", PK, _fk("delivery_lines.id", "SET NULL")),
        sa.Column("type", sa.Enum(NCRType, name="ncr_type"), nullable=False),
        sa.Column("status", sa.Enum(NCRStatus, name="ncr_status"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("quantity", QTY),
        sa.Column("value", MONEY, nullable=False),
        sa.Column("auto_generated", sa.Boolean(), nullable=False),
        sa.Column("created_by", PK, _fk("users.id"), nullable=False),
        sa.Column("created_at", TS, nullable=False),
    )

    # --- approvals ---
    op.create_table(
        "approvals",
        sa.Column("id", PK, primary_key=True),
        sa.Column("entity_type", sa.Enum(ApprovalEntityType, name="approval_entity_type"), nullable=False),
        sa.Column("entity_id", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.Enum(ApprovalStatus, name="approval_status"), nullable=False),
        sa.Column("requested_by", PK, _fk("users.id"), nullable=False),
        sa.Column("requested_at", TS, nullable=False),
        sa.Column("reviewed_by", PK, _fk("users.id", "SET NULL")),
        sa.Column("reviewed_at", TS),
        sa.Column("reason", sa.Text()),
    )
    op.create_index("ix_approvals_entity", "approvals", ["entity_type", "entity_id"])


TABLES = (
    "approvals",
    "ncrs",
    "reconciliations",
    "transfer_lines",
    "transfers",
    "issue_lines",
    "issues",
    "delivery_lines",
    "deliveries",
    "purchase_order_lines",
    "purchase_orders",
    "requisition_lines",
    "requisitions",
    "stock_lots",
    "stock_snapshots",
    "item_prices",
    "period_locations",
    "periods",
    "suppliers",
    "items",
    "locations",
    "users",
)

ENUMS = (
    "approval_status",
    "approval_entity_type",
    "ncr_status",
    "ncr_type",
    "transfer_status",
    "issue_status",
    "cost_centre",
    "over_delivery_state",
    "delivery_status",
    "po_status",
    "prf_status",
    "snapshot_kind",
    "period_location_status",
    "period_status",
    "location_type",
    "role",
)


def downgrade() -> None:
    op.drop_index("ix_approvals_entity", table_name="approvals")
    for table in TABLES:
        op.drop_table(table)
    # types Postgres orphelins après drop_table
    if op.get_bind().dialect.name != "postgresql":
        return
    for name in ENUMS:
        op.execute(f"DROP TYPE IF EXISTS {name}")
