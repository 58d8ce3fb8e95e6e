from datetime import date, datetime

import pytest

from catalog import CATEGORIES, categories_by_type, get_category
from insights import (
    available_months,
    category_breakdown,
    history_groups,
    in_month,
    recent,
    top_spending,
)
from models import TransactionType
from periods import month_end, month_label, month_start, parse_month_key
from records import TransactionRecord


def txn(txn_id: str, cents: int, category_id: str, on: date) -> TransactionRecord:
    return TransactionRecord(
        id=txn_id,
        user_id="u1",
        amount_cents=cents,
        type=get_category(category_id).type,
        category_id=category_id,
        date=on,
        created_at=datetime(on.year, on.month, on.day, 9, 0),
    )


TXNS = [
    txn("a", 300_000, "salary", date(2026, 3, 1)),
    txn("b", 4_000, "food", date(2026, 3, 2)),
    txn("c", 6_000, "food", date(2026, 3, 2)),
    txn("d", 25_000, "travel", date(2026, 3, 14)),
    txn("e", 1_500, "transport", date(2026, 3, 14)),
    txn("f", 9_000, "shopping", date(2026, 1, 20)),
]


def test_catalog_shape() -> None:
    assert len(CATEGORIES) == 14
    assert len({c.id for c in CATEGORIES}) == len(CATEGORIES)
    assert [c.id for c in categories_by_type(TransactionType.income)] == [
        "salary",
        "side-income",
    ]
    assert [c.id for c in categories_by_type(TransactionType.savings)] == [
        "savings",
        "emergency_fund",
    ]
    assert get_category("food").subcategories == (
        "Groceries",
        "Eating Out",
        "Coffee/Snacks",
    )
    assert get_category("emergency_fund").subcategories == ()
    assert get_category("debt_payment").type == TransactionType.debt_payment
    assert get_category("missing") is None


def test_available_months_always_include_current() -> None:
    months = available_months(TXNS, date(2026, 5, 3))
    assert months == ["2026-05", "2026-03", "2026-01"]
    assert available_months([], date(2026, 5, 3)) == ["2026-05"]


def test_category_breakdown_sorted_by_total() -> None:
    breakdown = category_breakdown(in_month(TXNS, "2026-03"), TransactionType.expense)

    assert [(s.category.id, s.total, s.count) for s in breakdown] == [
        ("travel", 25_000, 1),
        ("food", 10_000, 2),
        ("transport", 1_500, 1),
    ]
    assert [t.id for t in breakdown[1].transactions] == ["c", "b"]
    assert breakdown[1].to_dict()["total"] == 10_000
    assert "transactions" not in breakdown[1].to_dict()


def test_top_spending_and_recent() -> None:
    top = top_spending(TXNS, "2026-03", limit=2)
    assert [s.category.id for s in top] == ["travel", "food"]

    assert [t.id for t in recent(TXNS, "2026-03", limit=3)] == ["e", "d", "c"]
    assert [t.id for t in recent(TXNS)][-1] == "f"


def test_history_groups_by_day() -> None:
    groups = history_groups(TXNS)

    assert [day for day, _ in groups] == [
        date(2026, 3, 14),
        date(2026, 3, 2),
        date(2026, 3, 1),
        date(2026, 1, 20),
    ]
    assert [t.id for t in groups[0][1]] == ["e", "d"]

    food_only = history_groups(TXNS, "food")
    assert len(food_only) == 1
    assert [t.id for t in food_only[0][1]] == ["c", "b"]


def test_month_helpers() -> None:
    assert month_label("2026-01") == "January 2026"
    assert month_start("2026-02") == date(2026, 2, 1)
    assert month_end("2024-02") == date(2024, 2, 29)
    assert month_end("2026-12") == date(2026, 12, 31)
    assert parse_month_key("2026-09") == (2026, 9)
    with pytest.raises(ValueError):
        parse_month_key("2026-00")
    for padded in ("2026-03\n", " 2026-03", "2026-031"):
        with pytest.raises(ValueError):
            parse_month_key(padded)
