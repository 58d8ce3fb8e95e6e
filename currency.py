from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from config import get_settings


@dataclass(frozen=True)
class CurrencyConfig:
    code: str
    symbol: str
    name: str


CURRENCIES: dict[str, CurrencyConfig] = {
    c.code: c
    for c in (
        CurrencyConfig("USD", "$", "US Dollar"),
        CurrencyConfig("EUR", "€", "Euro"),
        CurrencyConfig("GBP", "£", "British Pound"),
        CurrencyConfig("INR", "₹", "Indian Rupee"),
        CurrencyConfig("JPY", "¥", "Japanese Yen"),
        CurrencyConfig("CAD", "C$", "Canadian Dollar"),
        CurrencyConfig("AUD", "A$", "Australian Dollar"),
        CurrencyConfig("CHF", "CHF ", "Swiss Franc"),
    )
}


def normalize_currency_code(code: str) -> str:
    clean = (code or "").strip().upper()
    if clean not in CURRENCIES:
        raise ValueError(f"Unsupported currency: {code!r}")
    return clean


def get_currency_config(code: str) -> CurrencyConfig:
    config = CURRENCIES.get((code or "").upper())
    if config is None:
        return CURRENCIES[get_settings().default_currency]
    return config


def currency_symbol(code: str) -> str:
    return get_currency_config(code).symbol


def format_currency(cents: int, code: str) -> str:
    symbol = currency_symbol(code)
    sign = "-" if cents < 0 else ""
    return f"{sign}{symbol}{abs(cents) / 100:,.2f}"


def parse_amount(value: object) -> int:
    """Convert a user-entered amount ("12.50", "1,234.5", 7) to cents."""
    if isinstance(value, bool):
        raise ValueError("Invalid amount")
    clean = str(value).strip().replace(" ", "")
    symbols = sorted((c.symbol.strip() for c in CURRENCIES.values()), key=len)
    for symbol in reversed(symbols):
        clean = clean.replace(symbol, "")
    clean = clean.replace(",", "")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents < 0:
        raise ValueError("Amount must be positive")
    return cents
