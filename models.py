import uuid
import datetime as dt
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    savings = "savings"
    debt_payment = "debt_payment"


class FundedFrom(str, Enum):
    income = "income"
    savings = "savings"
    emergency_fund = "emergency_fund"


class SavingsType(str, Enum):
    manual = "manual"
    auto = "auto"


def _enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [member.value for member in cls],
    )


def new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    session_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    currency_code: Mapped[Optional[str]] = mapped_column(String(3))

    __table_args__ = (UniqueConstraint("email", name="uq_accounts_email"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        _enum(TransactionType, "transactiontype"), nullable=False
    )
    category_id: Mapped[str] = mapped_column(String(40), nullable=False)
    subcategory: Mapped[Optional[str]] = mapped_column(String(60))
    note: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    funded_from: Mapped[Optional[FundedFrom]] = mapped_column(
        _enum(FundedFrom, "fundedfrom")
    )
    savings_type: Mapped[Optional[SavingsType]] = mapped_column(
        _enum(SavingsType, "savingstype")
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "funded_from IS NULL OR type = 'expense'",
            name="ck_transactions_funded_from_expense",
        ),
        CheckConstraint(
            "savings_type IS NULL OR type = 'savings'",
            name="ck_transactions_savings_type_savings",
        ),
    )


class Preset(Base, TimestampMixin):
    __tablename__ = "presets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[str] = mapped_column(String(40), nullable=False)
    subcategory: Mapped[Optional[str]] = mapped_column(String(60))
    note: Mapped[Optional[str]] = mapped_column(Text)
    funded_from: Mapped[Optional[FundedFrom]] = mapped_column(
        _enum(FundedFrom, "fundedfrom")
    )

    __table_args__ = (
        Index("ix_presets_user", "user_id"),
        CheckConstraint("amount_cents >= 0", name="ck_presets_amount_positive"),
    )


class MonthStatus(Base, TimestampMixin):
    __tablename__ = "month_statuses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    month: Mapped[str] = mapped_column(String(7), nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    auto_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    debt_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("user_id", "month", name="uq_month_status_user_month"),
        CheckConstraint(
            "auto_amount_cents >= 0 AND debt_amount_cents >= 0",
            name="ck_month_status_amounts_positive",
        ),
    )
