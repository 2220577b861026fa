"""Line Item Input Normalization.

Single adapter step between caller-supplied line items and canonical records:
- FIELD_ALIASES: Every accepted name (snake_case and camelCase) per field
- resolve_field: Alias lookup on a mapping
- to_number: Numeric coercion with documented defaults
- normalize_date / normalize_timestamp: Date and time canonicalization

Timestamps are canonicalized so that the same instant always produces the same
string, which keeps dedupe keys stable across "2025-12-15 15:04:00+00",
"2025-12-15T10:04:00-05:00" and "2025-12-15T15:04:00.000Z".
"""

import math
import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple, Union


# Canonical field -> accepted input names, in lookup order.
# The first name holding a non-None value wins.
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "product_id": ("product_id", "productId"),
    "vendor_id": ("vendor_id", "vendorId"),
    "quantity_used": ("quantity_used", "quantityUsed", "quantity"),
    "unit_price": ("unit_price", "unitPrice", "price"),
    "promised_date": ("promised_date", "promisedDate", "lineItemPromisedDate", "dateScheduled"),
    "requires_scheduling": ("requires_scheduling", "requiresScheduling"),
    "no_schedule_reason": ("no_schedule_reason", "noScheduleReason"),
    "is_off_site": ("is_off_site", "isOffSite"),
    "scheduled_start_time": ("scheduled_start_time", "scheduledStartTime"),
    "scheduled_end_time": ("scheduled_end_time", "scheduledEndTime"),
}

DEFAULT_QUANTITY = 1
DEFAULT_UNIT_PRICE = 0

Number = Union[int, float]

_PG_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}")
_SHORT_OFFSET = re.compile(r"([+-]\d{2})$")
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def resolve_field(item: Mapping[str, Any], field: str) -> Any:
    """Look up a canonical field on a raw item through its aliases."""
    for name in FIELD_ALIASES[field]:
        value = item.get(name)
        if value is not None:
            return value
    return None


def is_blank(value: Any) -> bool:
    """True for None and empty/whitespace-only strings."""
    if value is None:
        return True
    return isinstance(value, str) and value.strip() == ""


def clean_reference(value: Any) -> Optional[str]:
    """Normalize an id reference: blank -> None, otherwise a stripped string."""
    if is_blank(value):
        return None
    return str(value).strip()


def to_number(value: Any, default: Number) -> Number:
    """Coerce a quantity/price to a number.

    Unparseable or non-finite input returns ``default``. Integral results are
    returned as ``int`` so 2 and "2" and 2.0 compare and store identically.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        if isinstance(value, str):
            s = value.strip().replace(",", "")
            if s == "":
                return default
            number = float(s)
        elif isinstance(value, (int, float, Decimal)):
            number = float(value)
        else:
            return default
    except (ValueError, InvalidOperation, OverflowError):
        return default

    if not math.isfinite(number):
        return default
    return int(number) if number.is_integer() else number


def to_flag(value: Any) -> bool:
    """Truthiness with string awareness ("false", "0" and "" are False)."""
    if isinstance(value, str):
        return value.strip().lower() not in ("", "false", "0", "no", "off")
    return bool(value)


def normalize_date(value: Any) -> Optional[str]:
    """Normalize a promised date.

    - date/datetime -> "YYYY-MM-DD"
    - empty or whitespace string -> None
    - any other non-empty value -> stripped string, passed through
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    s = str(value).strip()
    return s or None


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        return value.isoformat()
    utc = value.astimezone(timezone.utc).replace(tzinfo=None)
    return utc.isoformat() + "Z"


def normalize_timestamp(value: Any) -> Optional[str]:
    """Normalize a scheduled start/end time to an ISO-8601 string.

    Timezone-aware values are rendered in UTC with a trailing "Z"; naive
    values keep their wall-clock time. Strings that cannot be parsed are
    passed through stripped.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _format_timestamp(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day).isoformat()

    s = str(value).strip()
    if not s:
        return None

    candidate = s
    if _PG_TIMESTAMP.match(candidate):
        candidate = candidate.replace(" ", "T", 1)
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    elif _SHORT_OFFSET.search(candidate) and "T" in candidate:
        candidate = candidate + ":00"
    elif _COMPACT_OFFSET.search(candidate) and "T" in candidate:
        candidate = _COMPACT_OFFSET.sub(r"\1:\2", candidate)

    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        return s
    return _format_timestamp(parsed)
