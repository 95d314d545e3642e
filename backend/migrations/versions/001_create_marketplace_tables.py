"""
Alembic migration: Create marketplace tables.

Creates users, bicycles, messages (with the one-pending-offer-per-buyer
partial unique index), orders, order_payments and payment_proofs.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# Revision identifiers, used by Alembic
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(
        *values,
        name=name,
        native_enum=False,
        create_constraint=True,
        length=32,
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create all marketplace tables, indexes and constraints."""
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("role", _enum("user_role", "user", "admin"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("bank_account_name", sa.String(length=100), nullable=True),
        sa.Column("bank_account_number", sa.String(length=32), nullable=True),
        sa.Column("bank_code", sa.String(length=8), nullable=True),
        sa.Column("bank_branch", sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.CheckConstraint("length(email) >= 3", name="ck_users_email_min_length"),
    )
    op.create_index("ix_users_role_active", "users", ["role", "is_active"])

    op.create_table(
        "bicycles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("seller_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("condition", sa.String(length=50), nullable=True),
        sa.Column("brand", sa.String(length=100), nullable=True),
        sa.Column("model", sa.String(length=100), nullable=True),
        sa.Column("transmission", sa.String(length=100), nullable=True),
        sa.Column(
            "status",
            _enum(
                "bicycle_status",
                "draft",
                "pending",
                "available",
                "reserved",
                "sold",
                "archived",
            ),
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["seller_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("price >= 0", name="ck_bicycles_price_non_negative"),
    )
    op.create_index("ix_bicycles_seller_id", "bicycles", ["seller_id"])
    op.create_index("ix_bicycles_status_seller", "bicycles", ["status", "seller_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sender_id", sa.Uuid(), nullable=False),
        sa.Column("recipient_id", sa.Uuid(), nullable=False),
        sa.Column("bicycle_id", sa.Uuid(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_offer", sa.Boolean(), nullable=False),
        sa.Column("offer_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column(
            "offer_status",
            _enum("offer_status", "none", "pending", "accepted", "rejected", "expired"),
            nullable=False,
        ),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recipient_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["bicycle_id"], ["bicycles.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "offer_amount IS NULL OR offer_amount > 0",
            name="ck_messages_offer_amount_positive",
        ),
    )
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"])
    op.create_index("ix_messages_recipient_id", "messages", ["recipient_id"])
    op.create_index("ix_messages_bicycle_id", "messages", ["bicycle_id"])
    op.create_index(
        "ix_messages_bicycle_offer_status", "messages", ["bicycle_id", "offer_status"]
    )
    op.create_index(
        "uq_messages_pending_offer_sender_bicycle",
        "messages",
        ["sender_id", "bicycle_id"],
        unique=True,
        postgresql_where=sa.text("offer_status = 'pending'"),
        sqlite_where=sa.text("offer_status = 'pending'"),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_number", sa.String(length=20), nullable=False),
        sa.Column("buyer_id", sa.Uuid(), nullable=False),
        sa.Column("bicycle_id", sa.Uuid(), nullable=False),
        sa.Column("source_offer_id", sa.Uuid(), nullable=True),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "shipping_method",
            _enum("shipping_method", "self_pickup", "assisted_delivery"),
            nullable=False,
        ),
        sa.Column("shipping_distance", sa.Numeric(8, 2), nullable=True),
        sa.Column("shipping_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "status",
            _enum(
                "order_status",
                "pending",
                "processing",
                "shipped",
                "delivered",
                "completed",
                "cancelled",
                "refunded",
            ),
            nullable=False,
        ),
        sa.Column(
            "payment_method", _enum("payment_method", "bank_transfer"), nullable=False
        ),
        sa.Column("payment_instructions", sa.Text(), nullable=True),
        sa.Column("company_account_info", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
        sa.ForeignKeyConstraint(["buyer_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["bicycle_id"], ["bicycles.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["source_offer_id"], ["messages.id"], ondelete="SET NULL"),
        sa.CheckConstraint("total_price > 0", name="ck_orders_total_price_positive"),
        sa.CheckConstraint(
            "shipping_cost >= 0", name="ck_orders_shipping_cost_non_negative"
        ),
        sa.CheckConstraint(
            "(shipping_method = 'assisted_delivery' AND shipping_distance > 0) "
            "OR (shipping_method = 'self_pickup' AND shipping_distance IS NULL)",
            name="ck_orders_shipping_distance_matches_method",
        ),
    )
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    op.create_index("ix_orders_bicycle_id", "orders", ["bicycle_id"])
    op.create_index("ix_orders_buyer_status", "orders", ["buyer_id", "status"])
    op.create_index("ix_orders_bicycle_status", "orders", ["bicycle_id", "status"])

    op.create_table(
        "order_payments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "method", _enum("order_payment_method", "bank_transfer"), nullable=False
        ),
        sa.Column(
            "status",
            _enum(
                "payment_status",
                "pending",
                "awaiting_confirmation",
                "paid",
                "failed",
                "refunded",
            ),
            nullable=False,
        ),
        sa.Column("deadline", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("failed_at", sa.DateTime(), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.CheckConstraint("amount > 0", name="ck_order_payments_amount_positive"),
    )
    op.create_index(
        "ix_order_payments_status_expires_at",
        "order_payments",
        ["status", "expires_at"],
    )

    op.create_table(
        "payment_proofs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("payment_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("storage_key", sa.String(length=255), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False),
        sa.Column("byte_size", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            _enum("proof_status", "none", "pending", "approved", "rejected"),
            nullable=False,
        ),
        sa.Column("uploaded_by_id", sa.Uuid(), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("reviewed_by_id", sa.Uuid(), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["payment_id"], ["order_payments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["uploaded_by_id"], ["users.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["reviewed_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("payment_id", "sequence", name="uq_payment_proofs_sequence"),
        sa.CheckConstraint("byte_size > 0", name="ck_payment_proofs_byte_size_positive"),
    )
    op.create_index("ix_payment_proofs_payment_id", "payment_proofs", ["payment_id"])


def downgrade() -> None:
    """Drop all marketplace tables."""
    op.drop_table("payment_proofs")
    op.drop_table("order_payments")
    op.drop_table("orders")
    op.drop_index("uq_messages_pending_offer_sender_bicycle", table_name="messages")
    op.drop_table("messages")
    op.drop_table("bicycles")
    op.drop_table("users")
