"""Initial order store: orders, products, lines, totals, history, versions.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(15, 4)


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("customer_group_id", sa.Integer(), server_default="0", nullable=False),
        sa.Column("first_name", sa.String(64), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(64), nullable=False, server_default=""),
        sa.Column("email", sa.String(128), nullable=False, server_default=""),
        sa.Column("telephone", sa.String(32), nullable=False, server_default=""),
        sa.Column("payment_country", sa.String(128), nullable=False, server_default=""),
        sa.Column("payment_postcode", sa.String(16), nullable=False, server_default=""),
        sa.Column("payment_city", sa.String(128), nullable=False, server_default=""),
        sa.Column("payment_address", sa.String(256), nullable=False, server_default=""),
        sa.Column("custom_field", sa.Text(), nullable=False, server_default=""),
        sa.Column("comment", sa.Text(), nullable=False, server_default=""),
        sa.Column("total", MONEY, nullable=False, server_default="0"),
        sa.Column("status_id", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency_code", sa.String(3), nullable=False, server_default="PLN"),
        sa.Column("currency_value", sa.Numeric(15, 8), nullable=False, server_default="1"),
        sa.Column("source", sa.String(64), nullable=False, server_default=""),
        sa.Column("external_id", sa.String(64), nullable=False, server_default=""),
        sa.Column("tracking", sa.String(128), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_orders_status_id", "orders", ["status_id"])
    op.create_index("ix_orders_external_id", "orders", ["external_id"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uid", sa.String(64), unique=True, nullable=False, server_default=""),
        sa.Column("sku", sa.String(64), nullable=False, server_default=""),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("external_id", sa.String(64), nullable=False, server_default=""),
    )
    op.create_index("ix_products_external_id", "products", ["external_id"])

    op.create_table(
        "order_products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("sku", sa.String(64), nullable=False, server_default=""),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price", MONEY, nullable=False, server_default="0"),
        sa.Column("total", MONEY, nullable=False, server_default="0"),
        sa.Column("tax", MONEY, nullable=False, server_default="0"),
    )
    op.create_index("ix_order_products_order_id", "order_products", ["order_id"])

    op.create_table(
        "order_totals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("code", sa.String(32), nullable=False),
        sa.Column("title", sa.String(255), nullable=False, server_default=""),
        sa.Column("value", MONEY, nullable=False, server_default="0"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("order_id", "code", name="uq_order_total_code"),
    )
    op.create_index("ix_order_totals_order_id", "order_totals", ["order_id"])

    op.create_table(
        "order_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status_id", sa.Integer(), nullable=False),
        sa.Column("notify", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("comment", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_order_history_order_id", "order_history", ["order_id"])

    op.create_table(
        "order_versions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("order_id", "version", name="uq_order_version"),
    )
    op.create_index("ix_order_versions_order_id", "order_versions", ["order_id"])
    op.create_index("ix_order_versions_created_at", "order_versions", ["created_at"])


def downgrade() -> None:
    op.drop_table("order_versions")
    op.drop_table("order_history")
    op.drop_table("order_totals")
    op.drop_table("order_products")
    op.drop_table("products")
    op.drop_table("orders")
