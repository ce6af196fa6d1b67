"""Fixed-rate conversion between the shop's base (USD) and local (PHP) currency."""
from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

from .config import DEFAULT_USD_TO_PHP_RATE

CENT = Decimal("0.01")
PESO = Decimal("1")
#: Largest amount accepted from user input; keeps every quantize within precision.
MAX_AMOUNT = Decimal("1000000000")


def _as_decimal(value: Decimal | float | int | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 25.5 from dragging binary noise along
    return Decimal(str(value))


def usd_to_php(amount: Decimal | float | int | str, rate: Decimal = DEFAULT_USD_TO_PHP_RATE) -> Decimal:
    """Convert dollars to whole pesos, truncating any fraction."""

    return (_as_decimal(amount) * _as_decimal(rate)).quantize(PESO, rounding=ROUND_DOWN)


def php_to_usd(amount: Decimal | float | int | str, rate: Decimal = DEFAULT_USD_TO_PHP_RATE) -> Decimal:
    """Convert pesos back to dollars, rounded to the cent."""

    rate = _as_decimal(rate)
    if rate <= 0:
        raise ValueError("Exchange rate must be positive")
    return (_as_decimal(amount) / rate).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(raw: str) -> Decimal:
    """Parse user input such as ``$1,250.50`` or ``₱ 900`` into a Decimal."""

    cleaned = raw.strip().replace(",", "").lstrip("$₱").strip()
    for suffix in ("usd", "php"):
        if cleaned.lower().endswith(suffix):
            cleaned = cleaned[: -len(suffix)].strip()
    if not cleaned:
        raise ValueError("Amount is required")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {raw!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise ValueError(f"Invalid amount: {raw!r}")
    if amount > MAX_AMOUNT:
        raise ValueError(f"Amount cannot be more than {MAX_AMOUNT:,}")
    return amount


def format_usd(amount: Decimal | float | int | str) -> str:
    return f"${_as_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP):,.2f}"


def format_php(amount: Decimal | float | int | str) -> str:
    return f"₱{_as_decimal(amount).quantize(PESO, rounding=ROUND_DOWN):,.0f}"


def dual_price(amount: Decimal | float | int | str, rate: Decimal = DEFAULT_USD_TO_PHP_RATE) -> str:
    """Render a USD price with its PHP equivalent, e.g. ``$25.50 (₱1,440)``."""

    return f"{format_usd(amount)} ({format_php(usd_to_php(amount, rate))})"
