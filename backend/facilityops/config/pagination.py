"""List endpoint paging bounds (issues, vendor rankings, notifications, activity)."""
from typing import Any, Tuple
from facilityops.errors import ValidationError

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


def _bound(raw: Any, default: int, field: str) -> int:
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer', field=field)


def normalize_pagination(limit_raw, offset_raw, max_limit: int = MAX_LIMIT) -> Tuple[int, int]:
    """Clamp limit to [1, max_limit] and offset to >= 0; blank values fall back to defaults."""
    limit = _bound(limit_raw, DEFAULT_LIMIT, 'limit')
    offset = _bound(offset_raw, 0, 'offset')
    return max(1, min(limit, max_limit)), max(0, offset)
