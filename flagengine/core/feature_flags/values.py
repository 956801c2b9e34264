"""Flag value types and explicit conversions.

Flag values are plain Python values (``bool``, ``str``, ``int``/``float`` or
any JSON-shaped structure). ``FlagType`` is the closed set of shapes a flag
can have; the ``to_*`` helpers are the only places values are coerced.
"""

from __future__ import annotations

import copy
import json
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class FlagType(str, Enum):
    """Shape of a flag's value."""
    BOOLEAN = "boolean"
    STRING = "string"
    NUMBER = "number"
    JSON = "json"

    @classmethod
    def infer(cls, value: Any) -> "FlagType":
        """Infer the flag type from a default value."""
        if isinstance(value, bool):
            return cls.BOOLEAN
        if isinstance(value, str):
            return cls.STRING
        if isinstance(value, (int, float)):
            return cls.NUMBER
        return cls.JSON


def to_text(value: Any) -> str:
    """Canonical string form used by equality and membership operators.

    ``1``, ``1.0`` and ``"1"`` all canonicalize to ``"1"``.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        try:
            return json.dumps(
                list(value) if isinstance(value, (set, frozenset, tuple)) else value,
                sort_keys=True,
                separators=(",", ":"),
                default=str,
            )
        except (TypeError, ValueError):
            return str(value)
    return str(value)


def to_number(value: Any) -> Optional[float]:
    """Coerce to float; ``None`` when the value is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def ensure_utc(moment: datetime) -> datetime:
    """Attach UTC to naive datetimes and normalize aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def to_timestamp(value: Any) -> Optional[datetime]:
    """Coerce a datetime or RFC3339 string to an aware UTC datetime."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def is_truthy(value: Any, flag_type: FlagType) -> bool:
    """Whether a resolved value counts as "on" for dependency checks."""
    if flag_type is FlagType.BOOLEAN:
        return value is True
    if flag_type is FlagType.NUMBER:
        number = to_number(value)
        return number is not None and number != 0
    if flag_type is FlagType.STRING:
        return bool(value)
    return value is not None


def snapshot_value(value: Any) -> Any:
    """Copy mutable (json) values so callers cannot alter a stored flag."""
    if isinstance(value, (dict, list)):
        return copy.deepcopy(value)
    return value
