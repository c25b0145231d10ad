# supply_hub/services/quantities.py
"""
Unit granularity rule.

Every quantity written to an order line goes through ``validate_quantity``:

- continuous units (weight, e.g. kg): > 0, at most 2 decimal places
- discrete units (box, bucket, bag): positive integer
- any other unit: > 0, at most 3 decimal places

No unit may carry more than QTY_SCALE decimals; quantity columns are stored
at that scale.
"""
from __future__ import annotations
import enum
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from supply_hub.exceptions import InvalidQuantityError
from supply_hub.settings import settings

QTY_SCALE = 3


class UnitKind(str, enum.Enum):
    continuous = "continuous"
    discrete = "discrete"
    other = "other"


def classify_unit(unit: Optional[str]) -> UnitKind:
    u = (unit or "").strip()
    if u in settings.CONTINUOUS_UNITS or u.lower() in settings.CONTINUOUS_UNITS:
        return UnitKind.continuous
    if u in settings.DISCRETE_UNITS or u.lower() in settings.DISCRETE_UNITS:
        return UnitKind.discrete
    return UnitKind.other


def _as_decimal(qty: Any) -> Optional[Decimal]:
    if isinstance(qty, bool) or qty is None:
        return None
    try:
        # str() first so floats like 0.1 keep their printed digits
        d = Decimal(str(qty).strip())
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def quantity_error(unit: Optional[str], qty: Any) -> Optional[str]:
    """Return why ``qty`` is not allowed for ``unit``, or None when it is."""
    d = _as_decimal(qty)
    if d is None:
        return "quantity must be a number"
    if d <= 0:
        return "quantity must be greater than 0"

    kind = classify_unit(unit)
    if kind is UnitKind.continuous and d.normalize().as_tuple().exponent < -2:
        return f"quantity for unit '{unit}' allows at most 2 decimal places"
    if kind is UnitKind.discrete and d != d.to_integral_value():
        return f"quantity for unit '{unit}' must be a whole number"
    if d.normalize().as_tuple().exponent < -QTY_SCALE:
        return f"quantity allows at most {QTY_SCALE} decimal places"
    return None


def validate_quantity(unit: Optional[str], qty: Any, *, label: Optional[str] = None) -> Decimal:
    err = quantity_error(unit, qty)
    if err:
        msg = f"{label}: {err}" if label else err
        raise InvalidQuantityError(msg, details={"unit": unit, "quantity": str(qty)})
    return _as_decimal(qty)
