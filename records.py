"""Detached, immutable copies of persisted rows.

The client-side cache and the balance engine only ever see these; ORM
instances stay inside the remote layer.
"""

import datetime as dt
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from models import (
    FundedFrom,
    MonthStatus,
    Preset,
    SavingsType,
    Transaction,
    TransactionType,
)
from periods import month_key


@dataclass(frozen=True)
class TransactionRecord:
    id: str
    user_id: str
    amount_cents: int
    type: TransactionType
    category_id: str
    date: dt.date
    created_at: datetime
    subcategory: Optional[str] = None
    note: Optional[str] = None
    funded_from: Optional[FundedFrom] = None
    savings_type: Optional[SavingsType] = None

    @property
    def is_auto(self) -> bool:
        return self.savings_type == SavingsType.auto

    @property
    def month(self) -> str:
        return month_key(self.date)

    @classmethod
    def from_row(cls, row: Transaction) -> "TransactionRecord":
        return cls(
            id=row.id,
            user_id=row.user_id,
            amount_cents=row.amount_cents,
            type=row.type,
            category_id=row.category_id,
            date=row.date,
            created_at=row.created_at,
            subcategory=row.subcategory,
            note=row.note,
            funded_from=row.funded_from,
            savings_type=row.savings_type,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "type": self.type.value,
            "category_id": self.category_id,
            "subcategory": self.subcategory,
            "note": self.note,
            "date": self.date.isoformat(),
            "created_at": self.created_at.isoformat(),
            "funded_from": self.funded_from.value if self.funded_from else None,
            "savings_type": self.savings_type.value if self.savings_type else None,
            "is_auto": self.is_auto,
        }


@dataclass(frozen=True)
class PresetRecord:
    id: str
    name: str
    amount_cents: int
    category_id: str
    subcategory: Optional[str] = None
    note: Optional[str] = None
    funded_from: Optional[FundedFrom] = None

    def same_content(self, other: "PresetRecord") -> bool:
        return replace(self, id=other.id) == other

    @classmethod
    def from_row(cls, row: Preset) -> "PresetRecord":
        return cls(
            id=row.id,
            name=row.name,
            amount_cents=row.amount_cents,
            category_id=row.category_id,
            subcategory=row.subcategory,
            note=row.note,
            funded_from=row.funded_from,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "amount_cents": self.amount_cents,
            "category_id": self.category_id,
            "subcategory": self.subcategory,
            "note": self.note,
            "funded_from": self.funded_from.value if self.funded_from else None,
        }


@dataclass(frozen=True)
class MonthStatusRecord:
    month: str
    processed_at: Optional[datetime] = None
    auto_amount_cents: int = 0
    debt_amount_cents: int = 0

    @property
    def is_closed(self) -> bool:
        return self.processed_at is not None

    @classmethod
    def from_row(cls, row: MonthStatus) -> "MonthStatusRecord":
        return cls(
            month=row.month,
            processed_at=row.processed_at,
            auto_amount_cents=row.auto_amount_cents,
            debt_amount_cents=row.debt_amount_cents,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "month": self.month,
            "processed_at": (
                self.processed_at.isoformat() if self.processed_at else None
            ),
            "auto_amount_cents": self.auto_amount_cents,
            "debt_amount_cents": self.debt_amount_cents,
        }
