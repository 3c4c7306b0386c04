"""shipping orders, inventory ledger and audit trail

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SHIPMENT_ONLY = sa.text("kind = 'outbound-shipment'")


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {ix["name"] for ix in inspector.get_indexes(table_name)}


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("code", sa.String(length=64), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("health_insurance_code", sa.String(length=64), nullable=True),
            sa.Column("selling_price", sa.Numeric(12, 2), nullable=True),
            sa.Column("exclude_from_stock", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ux_products_code_lower", "products", [sa.text("lower(code)")], unique=True)
        op.create_index("ix_products_name", "products", ["name"], unique=False)

    if not _table_exists(inspector, "customers"):
        op.create_table(
            "customers",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("phone", sa.String(length=40), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_customers_name", "customers", ["name"], unique=False)
        op.create_index("ix_customers_phone", "customers", ["phone"], unique=False)

    if not _table_exists(inspector, "suppliers"):
        op.create_table(
            "suppliers",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("code", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_suppliers_name", "suppliers", ["name"], unique=False)

    if not _table_exists(inspector, "shipping_orders"):
        op.create_table(
            "shipping_orders",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("human_number", sa.String(length=64), nullable=False),
            sa.Column("order_number", sa.String(length=80), nullable=False),
            sa.Column("workflow", sa.String(length=20), nullable=False, server_default="standard"),
            sa.Column("customer_id", sa.String(length=36), nullable=True),
            sa.Column("supplier_id", sa.String(length=36), nullable=True),
            sa.Column("counterparty_name", sa.String(length=120), nullable=True),
            sa.Column("invoice_number", sa.String(length=64), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("payment_status", sa.String(length=30), nullable=False),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("notes", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["customer_id"], ["customers.id"]),
            sa.ForeignKeyConstraint(["supplier_id"], ["suppliers.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("order_number"),
        )
        op.create_index(
            "ux_shipping_orders_human_number_lower",
            "shipping_orders",
            [sa.text("lower(human_number)")],
            unique=True,
        )
        op.create_index("ix_shipping_orders_status_created_at", "shipping_orders", ["status", "created_at"], unique=False)
        op.create_index("ix_shipping_orders_created_at", "shipping_orders", ["created_at"], unique=False)
        op.create_index("ix_shipping_orders_customer_id", "shipping_orders", ["customer_id"], unique=False)
        op.create_index("ix_shipping_orders_supplier_id", "shipping_orders", ["supplier_id"], unique=False)

    if not _table_exists(inspector, "shipping_order_items"):
        op.create_table(
            "shipping_order_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("order_id", sa.String(length=36), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("product_code", sa.String(length=64), nullable=False),
            sa.Column("product_name", sa.String(length=255), nullable=False),
            sa.Column("health_insurance_code", sa.String(length=64), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_cost", sa.Numeric(14, 4), nullable=False),
            sa.Column("line_total", sa.Numeric(12, 2), nullable=False),
            sa.Column("pack_size", sa.Integer(), nullable=True),
            sa.Column("pack_count", sa.Integer(), nullable=True),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.ForeignKeyConstraint(["order_id"], ["shipping_orders.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_shipping_order_items_order_id", "shipping_order_items", ["order_id"], unique=False)
        op.create_index("ix_shipping_order_items_product_id", "shipping_order_items", ["product_id"], unique=False)

    if not _table_exists(inspector, "inventory_ledger"):
        op.create_table(
            "inventory_ledger",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.String(length=36), nullable=False),
            sa.Column("qty_delta", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=30), nullable=False),
            sa.Column("source_order_id", sa.String(length=36), nullable=True),
            sa.Column("source_order_number", sa.String(length=64), nullable=True),
            sa.Column("note", sa.String(length=255), nullable=True),
            sa.Column("unit_amount", sa.Numeric(14, 4), nullable=True),
            sa.Column("total_amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index(
            "ix_inventory_ledger_product_occurred_at",
            "inventory_ledger",
            ["product_id", "occurred_at", "id"],
            unique=False,
        )
        op.create_index(
            "ix_inventory_ledger_product_kind_occurred_at",
            "inventory_ledger",
            ["product_id", "kind", "occurred_at"],
            unique=False,
        )
        op.create_index("ix_inventory_ledger_source_kind", "inventory_ledger", ["source_order_id", "kind"], unique=False)

    inspector = sa.inspect(bind)
    if not _index_exists(inspector, "inventory_ledger", "ux_inventory_ledger_shipment_order_product"):
        op.create_index(
            "ux_inventory_ledger_shipment_order_product",
            "inventory_ledger",
            ["source_order_id", "product_id"],
            unique=True,
            postgresql_where=SHIPMENT_ONLY,
            sqlite_where=SHIPMENT_ONLY,
        )

    if not _table_exists(inspector, "audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("actor", sa.String(length=100), nullable=False),
            sa.Column("action", sa.String(length=100), nullable=False),
            sa.Column("target_type", sa.String(length=100), nullable=False),
            sa.Column("target_id", sa.String(length=36), nullable=True),
            sa.Column("metadata_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_audit_logs_target_id", "audit_logs", ["target_id"], unique=False)
        op.create_index("ix_audit_logs_action_created_at", "audit_logs", ["action", "created_at"], unique=False)
        op.create_index(
            "ix_audit_logs_target_created_at",
            "audit_logs",
            ["target_type", "target_id", "created_at"],
            unique=False,
        )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_index("ux_inventory_ledger_shipment_order_product", table_name="inventory_ledger")
    op.drop_table("inventory_ledger")
    op.drop_table("shipping_order_items")
    op.drop_table("shipping_orders")
    op.drop_table("suppliers")
    op.drop_table("customers")
    op.drop_table("products")
