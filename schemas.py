import datetime as dt
from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from currency import normalize_currency_code, parse_amount
from models import FundedFrom


# user-typed decimal amount, stored as cents
Amount = Annotated[int, BeforeValidator(parse_amount)]


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount_cents: int = Field(..., ge=0)
    category_id: str = Field(..., min_length=1, max_length=40)
    subcategory: Optional[str] = Field(default=None, max_length=60)
    note: Optional[str] = Field(default=None, max_length=200)
    date: Optional[dt.date] = None
    funded_from: Optional[FundedFrom] = None


class TransactionForm(BaseModel):
    """Add-transaction payload as typed by a user: ``amount`` is a decimal."""

    model_config = ConfigDict(extra="forbid")

    amount: Amount
    category_id: str = Field(..., min_length=1, max_length=40)
    subcategory: Optional[str] = Field(default=None, max_length=60)
    note: Optional[str] = Field(default=None, max_length=200)
    date: Optional[dt.date] = None
    funded_from: Optional[FundedFrom] = None

    def to_input(self) -> TransactionIn:
        return TransactionIn(
            amount_cents=self.amount,
            category_id=self.category_id,
            subcategory=self.subcategory or None,
            note=(self.note or "").strip() or None,
            date=self.date,
            funded_from=self.funded_from,
        )


class DebtPaymentIn(BaseModel):
    amount: Amount


class PresetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: Optional[str] = Field(default=None, max_length=40)
    name: str = Field(..., min_length=1, max_length=80)
    amount: Amount
    category_id: str = Field(..., min_length=1, max_length=40)
    subcategory: Optional[str] = Field(default=None, max_length=60)
    note: Optional[str] = Field(default=None, max_length=200)
    funded_from: Optional[FundedFrom] = None


class PresetListIn(BaseModel):
    presets: list[PresetIn] = Field(default_factory=list)


class CredentialsIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1, max_length=128)


class PasswordResetRequestIn(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)


class PasswordResetConfirmIn(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, max_length=128)
    password_confirm: str = Field(..., min_length=1, max_length=128)


class CurrencyIn(BaseModel):
    currency: str

    @field_validator("currency")
    @classmethod
    def _known_currency(cls, value: str) -> str:
        return normalize_currency_code(value)
