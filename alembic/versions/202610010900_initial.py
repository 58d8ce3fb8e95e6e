"""initial schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


TRANSACTION_TYPES = ("income", "expense", "savings", "debt_payment")
FUNDED_FROM = ("income", "savings", "emergency_fund")


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=254), nullable=False),
        sa.Column("password_hash", sa.String(length=128), nullable=False),
        sa.Column(
            "session_version", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column("currency_code", sa.String(length=3)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email", name="uq_accounts_email"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum(*TRANSACTION_TYPES, name="transactiontype"), nullable=False
        ),
        sa.Column("category_id", sa.String(length=40), nullable=False),
        sa.Column("subcategory", sa.String(length=60)),
        sa.Column("note", sa.Text()),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("funded_from", sa.Enum(*FUNDED_FROM, name="fundedfrom")),
        sa.Column("savings_type", sa.Enum("manual", "auto", name="savingstype")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_transactions_amount_positive"
        ),
        sa.CheckConstraint(
            "funded_from IS NULL OR type = 'expense'",
            name="ck_transactions_funded_from_expense",
        ),
        sa.CheckConstraint(
            "savings_type IS NULL OR type = 'savings'",
            name="ck_transactions_savings_type_savings",
        ),
    )
    op.create_index(
        "ix_transactions_user_date", "transactions", ["user_id", "date"]
    )

    op.create_table(
        "presets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=80), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.String(length=40), nullable=False),
        sa.Column("subcategory", sa.String(length=60)),
        sa.Column("note", sa.Text()),
        sa.Column("funded_from", sa.Enum(*FUNDED_FROM, name="fundedfrom")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_presets_amount_positive"),
    )
    op.create_index("ix_presets_user", "presets", ["user_id"])

    op.create_table(
        "month_statuses",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("month", sa.String(length=7), nullable=False),
        sa.Column("processed_at", sa.DateTime()),
        sa.Column(
            "auto_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "debt_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "month", name="uq_month_status_user_month"),
        sa.CheckConstraint(
            "auto_amount_cents >= 0 AND debt_amount_cents >= 0",
            name="ck_month_status_amounts_positive",
        ),
    )


def downgrade():
    op.drop_table("month_statuses")
    op.drop_index("ix_presets_user", table_name="presets")
    op.drop_table("presets")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("accounts")
