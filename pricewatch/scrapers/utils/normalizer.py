"""Locale-aware normalization of price, quantity and unit text.

All functions are pure. Price parsing is strict (a record without a price is
useless) while quantity parsing is lenient (a missing quantity only means no
per-unit price can be computed).
"""

import re
from decimal import Decimal, InvalidOperation
from typing import NamedTuple, Optional, Tuple, Union

from pricewatch.core.exceptions import ParseError


class Quantity(NamedTuple):
    """A quantity expressed in a canonical (or passed-through) unit."""

    unit: str
    quantity: float


CANONICAL_UNITS = ("kg", "g", "l", "ml", "pieces")

# Alias -> canonical unit. "cl" is intermediate and folded into ml.
UNIT_ALIASES = {
    # mass
    "kg": "kg", "kgs": "kg", "kilo": "kg", "kilos": "kg", "kilogram": "kg",
    "kilograms": "kg", "kilogramm": "kg", "kilogramo": "kg", "кг": "kg",
    "g": "g", "gr": "g", "grs": "g", "gram": "g", "grams": "g", "gramm": "g",
    "gramos": "g", "г": "g", "гр": "g",
    # volume
    "l": "l", "lt": "l", "ltr": "l", "liter": "l", "liters": "l", "litre": "l",
    "litres": "l", "litro": "l", "litros": "l", "л": "l",
    "ml": "ml", "milliliter": "ml", "millilitre": "ml", "мл": "ml",
    "cl": "cl",
    # count
    "pcs": "pieces", "pc": "pieces", "piece": "pieces", "pieces": "pieces",
    "stk": "pieces", "stück": "pieces", "st": "pieces", "adet": "pieces",
    "шт": "pieces", "ud": "pieces", "uds": "pieces", "unidades": "pieces",
}

_CURRENCY_SYMBOLS = re.compile(r"[€$£¥₺₽₴₸₩₹]")
_CURRENCY_CODES = re.compile(
    r"\b(?:EUR|USD|GBP|TRY|TL|RUB|UAH|KZT|UZS|ALL|MYR|RM|CHF|PLN|CZK|HUF|RON|"
    r"BGN|SEK|NOK|DKK|Lek|грн|руб|сум|лек|тг)\b\.?",
    re.IGNORECASE,
)
_NUMBER_TOKEN = re.compile(r"\d(?:[\d.,]*\d)?")

_UNIT_PATTERN = "|".join(
    re.escape(alias) for alias in sorted(UNIT_ALIASES, key=len, reverse=True)
)
_NUM = r"(\d+(?:[.,]\d+)?)"
_NOT_LETTER_AFTER = r"(?![^\W\d_])"
_MULTIPACK = re.compile(
    rf"(?<![\d.,])(\d+)\s*[x×*]\s*{_NUM}\s*({_UNIT_PATTERN}){_NOT_LETTER_AFTER}",
    re.IGNORECASE,
)
_SINGLE = re.compile(
    rf"(?<![\d.,]){_NUM}\s*({_UNIT_PATTERN}){_NOT_LETTER_AFTER}",
    re.IGNORECASE,
)
_BARE_QUANTITY = re.compile(r"^\s*(\d+(?:[.,]\d+)?)\s*([^\W\d_]+)\.?\s*$")

Number = Union[int, float, Decimal]


def parse_price(text: Union[str, Number, None]) -> Decimal:
    """Parse a locale-formatted price into a Decimal in major currency units.

    Handles formats like "1.999,99 €", "$1,999.99", "18,95 TL", "1 299 ₽".

    Raises:
        ParseError: If no non-negative number can be read
    """
    if isinstance(text, bool) or text is None:
        raise ParseError(text, "missing price")

    if isinstance(text, (int, float, Decimal)):
        try:
            value = Decimal(str(text))
        except InvalidOperation:
            raise ParseError(text, "invalid price") from None
        if not value.is_finite() or value < 0:
            raise ParseError(text, "invalid price")
        return value

    cleaned = _CURRENCY_SYMBOLS.sub("", text)
    cleaned = _CURRENCY_CODES.sub("", cleaned)
    cleaned = re.sub(r"[\s'’]", "", cleaned)

    if cleaned.startswith("-"):
        raise ParseError(text, "negative price")

    match = _NUMBER_TOKEN.search(cleaned)
    if not match:
        raise ParseError(text, "no digits in price")

    try:
        return Decimal(_disambiguate_separators(match.group(0)))
    except InvalidOperation:
        raise ParseError(text, "invalid price") from None


def _disambiguate_separators(token: str) -> str:
    """Turn a digits-and-separators token into a plain decimal string."""
    has_comma = "," in token
    has_dot = "." in token

    if has_comma and has_dot:
        last = max(token.rfind(","), token.rfind("."))
        sep = token[last]
        other = "." if sep == "," else ","
        decimals = token[last + 1:]
        if len(decimals) <= 2 and token.count(sep) == 1:
            return f"{token[:last].replace(other, '')}.{decimals}"
        return token.replace(",", "").replace(".", "")

    if has_comma:
        if token.count(",") == 1 and re.search(r",\d{2}$", token):
            return token.replace(",", ".")
        return token.replace(",", "")

    if has_dot and token.count(".") > 1:
        return token.replace(".", "")

    return token


def _to_float(number: str) -> float:
    return float(number.replace(",", "."))


def to_canonical_unit(raw_unit: str, raw_quantity: Number) -> Quantity:
    """Map a unit alias to its canonical unit, collapsing large g/ml amounts.

    Unknown units are passed through unchanged.
    """
    quantity = float(raw_quantity)
    unit = UNIT_ALIASES.get(raw_unit.strip().lower()) if raw_unit else None
    if unit is None:
        return Quantity(raw_unit, quantity)

    if unit == "cl":
        unit, quantity = "ml", quantity * 10

    if unit == "g" and quantity >= 1000:
        unit, quantity = "kg", quantity / 1000
    elif unit == "ml" and quantity >= 1000:
        unit, quantity = "l", quantity / 1000

    return Quantity(unit, round(quantity, 6))


def parse_quantity(text: Optional[str]) -> Optional[Quantity]:
    """Extract a quantity like "500 g", "1,5l" or "6 x 330 ml" from text.

    Returns:
        Canonical Quantity, or None when nothing usable is found
    """
    if not text:
        return None

    match = _MULTIPACK.search(text)
    if match:
        count = int(match.group(1))
        per_item = _to_float(match.group(2))
        if count > 0 and per_item > 0:
            return to_canonical_unit(match.group(3), count * per_item)

    match = _SINGLE.search(text)
    if match:
        value = _to_float(match.group(1))
        if value > 0:
            return to_canonical_unit(match.group(2), value)

    match = _BARE_QUANTITY.match(text)
    if match:
        value = _to_float(match.group(1))
        if value > 0:
            return to_canonical_unit(match.group(2), value)

    return None


def price_per_canonical_unit(
    price: Number, quantity: Optional[Number], unit: Optional[str]
) -> Optional[Decimal]:
    """Price per kg, per l, or per piece/pass-through unit.

    Returns:
        Price per canonical unit rounded to 4 places, or None
    """
    if not quantity or not unit:
        return None

    standard = Decimal(str(quantity))
    if standard <= 0:
        return None

    canonical = UNIT_ALIASES.get(unit.lower(), unit)
    if canonical in ("g", "ml"):
        standard = standard / 1000
    elif canonical == "cl":
        standard = standard / 100

    return (Decimal(str(price)) / standard).quantize(Decimal("0.0001"))


def resolve_sale_prices(
    price: Decimal, original_price: Optional[Decimal]
) -> Tuple[Decimal, Optional[Decimal]]:
    """Order current/original prices so the original is the higher one.

    When the "original" price is lower than the current one the two are
    swapped. This can mis-tag discounts on pages that show unrelated prices
    (unit price next to pack price); kept as observed on the sites.
    """
    if original_price is None:
        return price, None
    if original_price < price:
        price, original_price = original_price, price
    if original_price == price:
        return price, None
    return price, original_price


def normalize_product_name(name: str) -> str:
    """Lower-case a product name and strip symbols for matching."""
    if not name:
        return ""
    cleaned = re.sub(r"[®™©]", "", name.lower())
    cleaned = re.sub(r"[^\w\s]|_", "", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()
