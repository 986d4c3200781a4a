"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-16

Initial database schema for SMS Gate.
"""

from collections.abc import Sequence

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create initial database schema."""
    # Balance accounts table
    op.create_table(
        "balance_accounts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("balance", sa.DECIMAL(precision=32, scale=8), nullable=False),
        sa.Column("total_deposited", sa.DECIMAL(precision=32, scale=8), nullable=False),
        sa.Column("total_spent", sa.DECIMAL(precision=32, scale=8), nullable=False),
        sa.Column("deposit_count", sa.Integer(), nullable=False),
        sa.Column("last_transaction_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_balance_accounts_user_id"), "balance_accounts", ["user_id"], unique=True
    )

    # Transactions table (append-only ledger)
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sqlmodel.sql.sqltypes.AutoString(length=20), nullable=False),
        sa.Column("amount", sa.DECIMAL(precision=32, scale=8), nullable=False),
        sa.Column("balance_before", sa.DECIMAL(precision=32, scale=8), nullable=False),
        sa.Column("balance_after", sa.DECIMAL(precision=32, scale=8), nullable=False),
        sa.Column("reference_id", sqlmodel.sql.sqltypes.AutoString(length=128), nullable=True),
        sa.Column("description", sqlmodel.sql.sqltypes.AutoString(length=500), nullable=True),
        sa.Column("status", sqlmodel.sql.sqltypes.AutoString(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_transactions_user_id"), "transactions", ["user_id"], unique=False)
    op.create_index(
        op.f("ix_transactions_transaction_type"), "transactions", ["transaction_type"], unique=False
    )
    op.create_index(
        op.f("ix_transactions_reference_id"), "transactions", ["reference_id"], unique=False
    )
    op.create_index(
        op.f("ix_transactions_created_at"), "transactions", ["created_at"], unique=False
    )

    # Number purchases table
    op.create_table(
        "number_purchases",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("activation_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("phone_number", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("country_code", sqlmodel.sql.sqltypes.AutoString(length=16), nullable=False),
        sa.Column("service_code", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("operator", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=True),
        sa.Column("provider_cost", sa.DECIMAL(precision=32, scale=8), nullable=False),
        sa.Column("price", sa.DECIMAL(precision=32, scale=8), nullable=False),
        sa.Column("status", sqlmodel.sql.sqltypes.AutoString(length=20), nullable=False),
        sa.Column("purchase_date", sa.DateTime(), nullable=False),
        sa.Column("expiry_date", sa.DateTime(), nullable=False),
        sa.Column("sms_code", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True),
        sa.Column("sms_text", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_number_purchases_activation_id"),
        "number_purchases",
        ["activation_id"],
        unique=True,
    )
    op.create_index(
        op.f("ix_number_purchases_user_id"), "number_purchases", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_number_purchases_country_code"), "number_purchases", ["country_code"], unique=False
    )
    op.create_index(
        op.f("ix_number_purchases_service_code"), "number_purchases", ["service_code"], unique=False
    )
    op.create_index(
        op.f("ix_number_purchases_status"), "number_purchases", ["status"], unique=False
    )
    op.create_index(
        op.f("ix_number_purchases_purchase_date"),
        "number_purchases",
        ["purchase_date"],
        unique=False,
    )
    op.create_index(
        op.f("ix_number_purchases_expiry_date"), "number_purchases", ["expiry_date"], unique=False
    )

    # Payment deposits table
    op.create_table(
        "payment_deposits",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("tx_ref", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("provider_tx_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True),
        sa.Column("provider_ref", sqlmodel.sql.sqltypes.AutoString(length=128), nullable=True),
        sa.Column("amount", sa.DECIMAL(precision=32, scale=8), nullable=False),
        sa.Column("currency", sqlmodel.sql.sqltypes.AutoString(length=8), nullable=False),
        sa.Column("settlement_amount", sa.DECIMAL(precision=32, scale=8), nullable=True),
        sa.Column(
            "settlement_currency", sqlmodel.sql.sqltypes.AutoString(length=8), nullable=False
        ),
        sa.Column("fx_rate", sa.DECIMAL(precision=20, scale=8), nullable=True),
        sa.Column("status", sqlmodel.sql.sqltypes.AutoString(length=20), nullable=False),
        sa.Column("payment_link", sqlmodel.sql.sqltypes.AutoString(length=512), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("failure_reason", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_payment_deposits_tx_ref"), "payment_deposits", ["tx_ref"], unique=True
    )
    op.create_index(
        op.f("ix_payment_deposits_user_id"), "payment_deposits", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_payment_deposits_provider_tx_id"),
        "payment_deposits",
        ["provider_tx_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_payment_deposits_status"), "payment_deposits", ["status"], unique=False
    )
    op.create_index(
        op.f("ix_payment_deposits_expires_at"), "payment_deposits", ["expires_at"], unique=False
    )
    op.create_index(
        op.f("ix_payment_deposits_created_at"), "payment_deposits", ["created_at"], unique=False
    )

    # Webhook logs table
    op.create_table(
        "webhook_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=False),
        sa.Column("event_type", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("tx_ref", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True),
        sa.Column("provider_tx_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True),
        sa.Column("raw_payload", sa.Text(), nullable=False),
        sa.Column("signature_valid", sa.Boolean(), nullable=False),
        sa.Column("idempotency_key", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False),
        sa.Column(
            "processing_error", sqlmodel.sql.sqltypes.AutoString(length=1000), nullable=True
        ),
        sa.Column("processing_ms", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_webhook_logs_event_type"), "webhook_logs", ["event_type"], unique=False
    )
    op.create_index(op.f("ix_webhook_logs_tx_ref"), "webhook_logs", ["tx_ref"], unique=False)
    op.create_index(
        op.f("ix_webhook_logs_signature_valid"), "webhook_logs", ["signature_valid"], unique=False
    )
    op.create_index(
        op.f("ix_webhook_logs_idempotency_key"), "webhook_logs", ["idempotency_key"], unique=False
    )
    op.create_index(
        op.f("ix_webhook_logs_processed"), "webhook_logs", ["processed"], unique=False
    )
    op.create_index(
        op.f("ix_webhook_logs_created_at"), "webhook_logs", ["created_at"], unique=False
    )

    # Exchange rates table
    op.create_table(
        "exchange_rates",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("base_currency", sqlmodel.sql.sqltypes.AutoString(length=8), nullable=False),
        sa.Column("quote_currency", sqlmodel.sql.sqltypes.AutoString(length=8), nullable=False),
        sa.Column("rate", sa.DECIMAL(precision=20, scale=8), nullable=False),
        sa.Column("source", sqlmodel.sql.sqltypes.AutoString(length=50), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("base_currency", "quote_currency", name="uq_exchange_rate_pair"),
    )
    op.create_index(
        op.f("ix_exchange_rates_base_currency"), "exchange_rates", ["base_currency"], unique=False
    )
    op.create_index(
        op.f("ix_exchange_rates_quote_currency"),
        "exchange_rates",
        ["quote_currency"],
        unique=False,
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("exchange_rates")
    op.drop_table("webhook_logs")
    op.drop_table("payment_deposits")
    op.drop_table("number_purchases")
    op.drop_table("transactions")
    op.drop_table("balance_accounts")
