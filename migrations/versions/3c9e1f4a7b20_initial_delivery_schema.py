"""initial delivery schema

Revision ID: 3c9e1f4a7b20
Revises:
Create Date: 2026-10-17 09:12:41.318204

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c9e1f4a7b20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create catalog, server, order, log, queue and presence tables."""
    op.create_table(
        "product",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("mode", sa.String(length=32), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "rcon_server",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("host", sa.Text(), nullable=False),
        sa.Column("port", sa.Integer(), nullable=False),
        sa.Column("mode", sa.String(length=32), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_rcon_server_mode", "rcon_server", ["mode"])
    op.create_table(
        "player_status",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("minecraft_ign", sa.Text(), nullable=False),
        sa.Column("online", sa.Boolean(), nullable=False),
        sa.Column("server_name", sa.Text(), nullable=True),
        sa.Column("last_join_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_leave_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("minecraft_ign"),
    )
    op.create_table(
        "delivery_command",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("command_text", sa.Text(), nullable=False),
        sa.Column("delay_ms", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["product.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "order_index", name="uq_delivery_command_order"),
    )
    op.create_index("ix_delivery_command_product_id", "delivery_command", ["product_id"])
    op.create_table(
        "product_rcon_server",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("rcon_server_id", sa.String(length=36), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["product.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rcon_server_id"], ["rcon_server.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "rcon_server_id", name="uq_product_rcon_server"),
    )
    op.create_index("ix_product_rcon_server_product_id", "product_rcon_server", ["product_id"])
    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=True),
        sa.Column("minecraft_ign", sa.Text(), nullable=False),
        sa.Column("is_gift", sa.Boolean(), nullable=False),
        sa.Column("gift_recipient_ign", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("payment_status", sa.String(length=20), nullable=False),
        sa.Column("delivery_status", sa.String(length=20), nullable=False),
        sa.Column("delivery_log", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["product.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_orders_product_id", "orders", ["product_id"])
    op.create_index("ix_orders_delivery_status", "orders", ["delivery_status"])
    op.create_table(
        "delivery_log",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=36), nullable=False),
        sa.Column("rcon_server_id", sa.String(length=36), nullable=True),
        sa.Column("command_text", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("response", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("execution_time_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rcon_server_id"], ["rcon_server.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_delivery_log_order_id", "delivery_log", ["order_id"])
    op.create_table(
        "delivery_queue",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=36), nullable=False),
        sa.Column("minecraft_ign", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("attempt_count", sa.SmallInteger(), nullable=False),
        sa.Column("max_attempts", sa.SmallInteger(), nullable=False),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id"),
    )
    op.create_index("ix_delivery_queue_minecraft_ign", "delivery_queue", ["minecraft_ign"])
    op.create_index("ix_delivery_queue_status", "delivery_queue", ["status"])


def downgrade() -> None:
    """Drop all delivery tables."""
    op.drop_index("ix_delivery_queue_status", table_name="delivery_queue")
    op.drop_index("ix_delivery_queue_minecraft_ign", table_name="delivery_queue")
    op.drop_table("delivery_queue")
    op.drop_index("ix_delivery_log_order_id", table_name="delivery_log")
    op.drop_table("delivery_log")
    op.drop_index("ix_orders_delivery_status", table_name="orders")
    op.drop_index("ix_orders_product_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_product_rcon_server_product_id", table_name="product_rcon_server")
    op.drop_table("product_rcon_server")
    op.drop_index("ix_delivery_command_product_id", table_name="delivery_command")
    op.drop_table("delivery_command")
    op.drop_table("player_status")
    op.drop_index("ix_rcon_server_mode", table_name="rcon_server")
    op.drop_table("rcon_server")
    op.drop_table("product")
