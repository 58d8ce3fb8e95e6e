"""Balance and reconciliation engine.

Pure functions over already-loaded records; nothing here touches the
database or the cache. All amounts are integer cents.

remaining = income - expenses - debt_payments - auto_saved

Manual savings are an allocation of income that is already counted, so they
do not reduce ``remaining``. Auto-saved rows were swept out by a previous
month close and are subtracted so the sweep is not counted twice.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from catalog import EMERGENCY_FUND_CATEGORY_ID, SAVINGS_CATEGORY_ID
from models import FundedFrom, TransactionType
from records import MonthStatusRecord, TransactionRecord


@dataclass(frozen=True)
class MonthTotals:
    month: Optional[str]
    income: int = 0
    expenses: int = 0
    debt_payments: int = 0
    total_saved: int = 0
    auto_saved: int = 0
    manual_saved: int = 0

    @property
    def remaining(self) -> int:
        return self.income - self.expenses - self.debt_payments - self.auto_saved

    def to_dict(self) -> dict[str, object]:
        return {
            "month": self.month,
            "income": self.income,
            "expenses": self.expenses,
            "debt_payments": self.debt_payments,
            "total_saved": self.total_saved,
            "auto_saved": self.auto_saved,
            "manual_saved": self.manual_saved,
            "remaining": self.remaining,
        }


@dataclass(frozen=True)
class CumulativeTotals:
    total_savings: int = 0
    total_emergency_fund: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_savings": self.total_savings,
            "total_emergency_fund": self.total_emergency_fund,
        }


def _accumulate(
    transactions: Iterable[TransactionRecord], month: Optional[str]
) -> MonthTotals:
    income = expenses = debt_payments = auto_saved = manual_saved = 0
    for txn in transactions:
        if month is not None and txn.month != month:
            continue
        if txn.type == TransactionType.income:
            income += txn.amount_cents
        elif txn.type == TransactionType.expense:
            expenses += txn.amount_cents
        elif txn.type == TransactionType.debt_payment:
            debt_payments += txn.amount_cents
        elif txn.type == TransactionType.savings:
            if txn.is_auto:
                auto_saved += txn.amount_cents
            else:
                manual_saved += txn.amount_cents
    return MonthTotals(
        month=month,
        income=income,
        expenses=expenses,
        debt_payments=debt_payments,
        total_saved=auto_saved + manual_saved,
        auto_saved=auto_saved,
        manual_saved=manual_saved,
    )


def month_totals(transactions: Iterable[TransactionRecord], month: str) -> MonthTotals:
    return _accumulate(transactions, month)


def period_totals(
    transactions: Iterable[TransactionRecord], month: Optional[str] = None
) -> MonthTotals:
    """Totals for one month, or all-time when ``month`` is None."""
    return _accumulate(transactions, month)


def cumulative_totals(transactions: Iterable[TransactionRecord]) -> CumulativeTotals:
    savings = 0
    emergency_fund = 0
    for txn in transactions:
        if txn.type == TransactionType.savings:
            if txn.category_id == SAVINGS_CATEGORY_ID:
                savings += txn.amount_cents
            elif txn.category_id == EMERGENCY_FUND_CATEGORY_ID:
                emergency_fund += txn.amount_cents
        elif txn.type == TransactionType.expense:
            if txn.funded_from == FundedFrom.savings:
                savings -= txn.amount_cents
            elif txn.funded_from == FundedFrom.emergency_fund:
                emergency_fund -= txn.amount_cents
    return CumulativeTotals(total_savings=savings, total_emergency_fund=emergency_fund)


def debt_accrued(statuses: Iterable[MonthStatusRecord]) -> int:
    return sum(status.debt_amount_cents for status in statuses)


def debt_paid(transactions: Iterable[TransactionRecord]) -> int:
    return sum(
        txn.amount_cents
        for txn in transactions
        if txn.type == TransactionType.debt_payment
    )


def total_debt(
    statuses: Iterable[MonthStatusRecord], transactions: Iterable[TransactionRecord]
) -> int:
    return max(0, debt_accrued(statuses) - debt_paid(transactions))
