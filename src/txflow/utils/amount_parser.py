"""Amount parsing utilities."""

from decimal import Decimal, InvalidOperation
import re

from txflow.domain.errors import FieldAnomaly

_CURRENCY_SYMBOLS = re.compile(r"[$€£¥₹₩₽₺₪¢]|\b(?:USD|EUR|GBP|CAD|AUD|CHF|JPY|INR)\b", re.IGNORECASE)


def parse_amount(amount_str: str) -> Decimal:
    """Parse an amount string into a signed Decimal.

    Handles various formats:
    - "123.45"
    - "$123.45"
    - "-123.45"
    - "-$123.45"
    - "1,234.56"
    - "(123.45)" (negative in parentheses)
    - "123.45-" (trailing minus)
    - "USD 123.45"

    Args:
        amount_str: Amount string

    Returns:
        Decimal amount

    Raises:
        FieldAnomaly: If amount string cannot be parsed
    """
    if amount_str is None or not amount_str.strip():
        raise FieldAnomaly("amount", amount_str, "empty amount string")

    # Remove whitespace
    cleaned = amount_str.strip()

    # Handle parentheses notation (negative)
    is_negative = False
    if cleaned.startswith("(") and cleaned.endswith(")"):
        is_negative = True
        cleaned = cleaned[1:-1]

    # Remove currency symbols and codes
    cleaned = _CURRENCY_SYMBOLS.sub("", cleaned)

    # Remove thousands separators and inner whitespace
    cleaned = cleaned.replace(",", "").replace(" ", "").replace("\u00a0", "")

    if cleaned.endswith("-"):
        is_negative = not is_negative
        cleaned = cleaned[:-1]
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise FieldAnomaly("amount", amount_str, "not a number")
    if not amount.is_finite():
        raise FieldAnomaly("amount", amount_str, "not a finite number")
    return -amount if is_negative else amount
