from __future__ import annotations
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from .exceptions import ValidationError

_CENT = Decimal("0.01")
NOTES_MAX_LEN = 500


def normalize_calendar_date(value: Any, field: str = "deliveryDate") -> date:
    """
    Parse an ISO date or datetime and truncate it to a calendar date.

    Aware datetimes are converted to UTC first, so "2024-05-01T23:30:00-02:00"
    becomes 2024-05-02. Naive values are taken as already being UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return value
    else:
        text = str(value or "").strip()
        if not text:
            raise ValidationError(f"{field} is required")
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{field} is not a valid date: {text!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def parse_optional_date(value: Any, field: str) -> Optional[date]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return normalize_calendar_date(value, field)


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    # accepts "1,5" as well as "1.5"
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return default
    text = str(value).strip().replace(" ", "").replace(",", ".")
    if not text:
        return default
    try:
        d = Decimal(text)
    except InvalidOperation:
        return default
    return d if d.is_finite() else default


def round_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def clip_text(value: Optional[str], limit: int = NOTES_MAX_LEN) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text[:limit] if text else None


def decimal_out(value: Optional[Decimal]) -> Optional[float]:
    """Decimal -> JSON number."""
    if value is None:
        return None
    return float(value)
