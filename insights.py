import datetime as dt
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from catalog import Category, get_category
from models import TransactionType
from periods import current_month_key
from records import TransactionRecord


@dataclass
class CategorySummary:
    category: Category
    total: int = 0
    count: int = 0
    transactions: list[TransactionRecord] = field(default_factory=list)

    def to_dict(self, *, include_transactions: bool = False) -> dict[str, object]:
        data: dict[str, object] = {
            "category": self.category.to_dict(),
            "total": self.total,
            "count": self.count,
        }
        if include_transactions:
            data["transactions"] = [t.to_dict() for t in self.transactions]
        return data


def _newest_first(transactions: Iterable[TransactionRecord]) -> list[TransactionRecord]:
    return sorted(
        transactions, key=lambda t: (t.date, t.created_at, t.id), reverse=True
    )


def in_month(
    transactions: Iterable[TransactionRecord], month: Optional[str]
) -> list[TransactionRecord]:
    if month is None:
        return list(transactions)
    return [t for t in transactions if t.month == month]


def available_months(
    transactions: Iterable[TransactionRecord], today: Optional[dt.date] = None
) -> list[str]:
    months = {t.month for t in transactions}
    months.add(current_month_key(today))
    return sorted(months, reverse=True)


def category_breakdown(
    transactions: Iterable[TransactionRecord],
    txn_type: Optional[TransactionType] = None,
) -> list[CategorySummary]:
    summaries: dict[str, CategorySummary] = {}
    for txn in transactions:
        category = get_category(txn.category_id)
        if category is None:
            continue
        if txn_type is not None and category.type != txn_type:
            continue
        summary = summaries.setdefault(category.id, CategorySummary(category))
        summary.total += txn.amount_cents
        summary.count += 1
        summary.transactions.append(txn)
    for summary in summaries.values():
        summary.transactions = _newest_first(summary.transactions)
    return sorted(summaries.values(), key=lambda s: s.total, reverse=True)


def top_spending(
    transactions: Iterable[TransactionRecord], month: str, limit: int = 5
) -> list[CategorySummary]:
    month_txns = in_month(transactions, month)
    return category_breakdown(month_txns, TransactionType.expense)[:limit]


def recent(
    transactions: Iterable[TransactionRecord],
    month: Optional[str] = None,
    limit: int = 5,
) -> list[TransactionRecord]:
    return _newest_first(in_month(transactions, month))[:limit]


def history_groups(
    transactions: Sequence[TransactionRecord], category_id: Optional[str] = None
) -> list[tuple[dt.date, list[TransactionRecord]]]:
    filtered = [
        t for t in transactions if category_id is None or t.category_id == category_id
    ]
    groups: dict[dt.date, list[TransactionRecord]] = {}
    for txn in _newest_first(filtered):
        groups.setdefault(txn.date, []).append(txn)
    return list(groups.items())
