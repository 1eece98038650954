from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

from config import get_settings

Number = Union[int, float, str, Decimal]


def parse_amount(value: Number, *, allow_negative: bool = False) -> int:
    """Convert a currency amount (``"1 234,50"``, ``"99.9 kr"``, ``12.5``) to cents."""
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        clean = str(value)
    else:
        clean = str(value).strip().lower().replace("kr", "").replace("sek", "")
        clean = clean.replace(" ", "").replace("\u00a0", "").replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def cents_to_amount(cents: int) -> float:
    return cents / 100


def amount_to_cents(amount: float) -> int:
    return parse_amount(round(amount, 6), allow_negative=True)


def format_currency(amount: float, *, include_cents: bool = True) -> str:
    """Swedish style formatting: ``1 234,56 kr``."""
    currency = get_settings().currency
    suffix = "kr" if currency == "SEK" else currency
    if include_cents:
        text = f"{amount:,.2f}".replace(",", " ").replace(".", ",")
    else:
        text = f"{amount:,.0f}".replace(",", " ")
    return f"{text} {suffix}"


def format_fixed(amount: float) -> str:
    return f"{amount:.2f}"
