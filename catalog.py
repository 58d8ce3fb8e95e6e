from dataclasses import dataclass
from typing import Optional

from models import FundedFrom, TransactionType
from records import PresetRecord

SAVINGS_CATEGORY_ID = "savings"
EMERGENCY_FUND_CATEGORY_ID = "emergency_fund"
DEBT_PAYMENT_CATEGORY_ID = "debt_payment"
AUTO_SAVED_SUBCATEGORY = "Auto-Saved"


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    emoji: str
    type: TransactionType
    subcategories: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "emoji": self.emoji,
            "type": self.type.value,
            "subcategories": list(self.subcategories),
        }


CATEGORIES: tuple[Category, ...] = (
    Category(
        "salary",
        "Salary",
        "💰",
        TransactionType.income,
        ("Primary", "Bonus", "Commission"),
    ),
    Category(
        "side-income",
        "Side Income",
        "💼",
        TransactionType.income,
        ("Freelance", "Other"),
    ),
    Category(
        "fixed-bills",
        "Fixed Bills",
        "🏠",
        TransactionType.expense,
        (
            "Rent/Mortgage",
            "Utilities",
            "Internet/Mobile",
            "Insurance",
            "Subscriptions",
        ),
    ),
    Category(
        "food",
        "Food",
        "🍽️",
        TransactionType.expense,
        ("Groceries", "Eating Out", "Coffee/Snacks"),
    ),
    Category(
        "transport",
        "Transport",
        "🚗",
        TransactionType.expense,
        ("Fuel", "Public Transport", "Parking/Tolls", "Maintenance"),
    ),
    Category(
        "living",
        "Living",
        "🧾",
        TransactionType.expense,
        ("Phone", "Clothing", "Grooming", "Personal Care"),
    ),
    Category(
        "lifestyle",
        "Lifestyle",
        "🎉",
        TransactionType.expense,
        ("Entertainment", "Hobbies", "Games", "Events"),
    ),
    Category(
        "travel",
        "Travel",
        "✈️",
        TransactionType.expense,
        ("Flights", "Accommodation", "Activities"),
    ),
    Category(
        "health",
        "Health",
        "🏥",
        TransactionType.expense,
        ("Doctor", "Medication", "Gym/Fitness", "Therapy"),
    ),
    Category(
        "shopping",
        "Shopping",
        "🛒",
        TransactionType.expense,
        ("Home", "Electronics", "Gifts", "Other"),
    ),
    Category(
        "debt",
        "Debt",
        "💳",
        TransactionType.expense,
        ("Credit Card", "Personal Loans", "Student Loans"),
    ),
    Category(
        SAVINGS_CATEGORY_ID,
        "Savings",
        "💾",
        TransactionType.savings,
        ("General", "Investments", "Retirement"),
    ),
    Category(
        EMERGENCY_FUND_CATEGORY_ID, "Emergency Fund", "🛡️", TransactionType.savings
    ),
    Category(
        DEBT_PAYMENT_CATEGORY_ID, "Debt Payment", "💸", TransactionType.debt_payment
    ),
)

_BY_ID = {category.id: category for category in CATEGORIES}


def get_category(category_id: str) -> Optional[Category]:
    return _BY_ID.get(category_id)


def categories_by_type(txn_type: TransactionType) -> list[Category]:
    return [category for category in CATEGORIES if category.type == txn_type]


@dataclass(frozen=True)
class TransactionDraft:
    """Pre-filled add-transaction form state."""

    amount_cents: int
    category_id: str
    type: TransactionType
    subcategory: Optional[str] = None
    note: Optional[str] = None
    funded_from: Optional[FundedFrom] = None


def apply_preset(preset: PresetRecord) -> TransactionDraft:
    category = get_category(preset.category_id)
    if category is None:
        raise ValueError(f"Unknown category: {preset.category_id}")
    funded_from = None
    if category.type == TransactionType.expense:
        funded_from = preset.funded_from or FundedFrom.income
    return TransactionDraft(
        amount_cents=preset.amount_cents,
        category_id=category.id,
        type=category.type,
        subcategory=preset.subcategory or None,
        note=preset.note or None,
        funded_from=funded_from,
    )
