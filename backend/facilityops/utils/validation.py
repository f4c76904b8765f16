from __future__ import annotations
"""Reusable payload validation helpers.

All helpers raise ValidationError (HTTP 400, title "Validation Error") so the engine and
the route handlers report bad input the same way.
"""
import math
from typing import Any, Iterable, Optional
from facilityops.errors import ValidationError


def validate_choice(value: Any, allowed: Iterable[str], field_name: str) -> str:
    """Validate that value is one of allowed; returns the plain string value."""
    allowed_values = [getattr(a, 'value', a) for a in allowed]
    value = getattr(value, 'value', value)
    if value not in allowed_values:
        raise ValidationError(f"{field_name} must be one of {', '.join(allowed_values)}", field=field_name)
    return value


def require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field_name} required', field=field_name)
    return value.strip()


def require_int(value: Any, field_name: str) -> int:
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field_name} required', field=field_name)
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f'{field_name} must be an integer', field=field_name)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field_name} must be an integer', field=field_name)


def optional_int(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    return require_int(value, field_name)


def non_negative_amount(value: Any, field_name: str, required: bool = False) -> Optional[float]:
    if value is None:
        if required:
            raise ValidationError(f'{field_name} required', field=field_name)
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{field_name} must be a number', field=field_name)
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field_name} must be a number', field=field_name)
    if not math.isfinite(amount):
        raise ValidationError(f'{field_name} must be a finite number', field=field_name)
    if amount < 0:
        raise ValidationError(f'{field_name} cannot be negative', field=field_name)
    return amount


def list_value(value: Any, field_name: str) -> list:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f'{field_name} must be a list', field=field_name)
    return list(value)


__all__ = ['validate_choice', 'require_text', 'require_int', 'optional_int', 'non_negative_amount', 'list_value']
