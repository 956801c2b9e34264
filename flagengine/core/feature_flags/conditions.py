"""Condition evaluation against an evaluation context.

A condition never raises: a missing property, a non-numeric operand for an
ordering operator or an unparseable timestamp all evaluate to ``False``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from flagengine.core.feature_flags.models import Condition, EvaluationContext, Operator
from flagengine.core.feature_flags.values import to_number, to_text, to_timestamp

logger = logging.getLogger(__name__)

_MISSING = object()


def lookup(context: EvaluationContext, path: str) -> Tuple[bool, Any]:
    """Resolve a property by name or dot-separated path.

    Returns ``(found, value)``. Reserved names are checked first, then an
    exact key in ``properties``, then the dotted walk through nested
    mappings.
    """
    if path == "subject_id":
        return True, context.subject_id
    if path == "timestamp":
        return True, context.timestamp

    properties = context.properties
    if path in properties:
        return True, properties[path]

    current: Any = properties
    for segment in path.split("."):
        if not isinstance(current, Mapping):
            return False, None
        current = current.get(segment, _MISSING)
        if current is _MISSING:
            return False, None
    return True, current


def _as_items(operand: Any) -> Optional[Iterable[Any]]:
    if isinstance(operand, (list, tuple, set, frozenset)):
        return operand
    return None


def _equals(left: Any, right: Any) -> bool:
    return to_text(left) == to_text(right)


def _not_equals(left: Any, right: Any) -> bool:
    return to_text(left) != to_text(right)


def _ordered(compare: Callable[[float, float], bool]) -> Callable[[Any, Any], bool]:
    def check(left: Any, right: Any) -> bool:
        a, b = to_number(left), to_number(right)
        if a is None or b is None:
            return False
        return compare(a, b)

    return check


def _in(left: Any, right: Any) -> bool:
    items = _as_items(right)
    if items is None:
        return False
    needle = to_text(left)
    return any(to_text(item) == needle for item in items)


def _not_in(left: Any, right: Any) -> bool:
    items = _as_items(right)
    if items is None:
        return False
    needle = to_text(left)
    return all(to_text(item) != needle for item in items)


def _contains(left: Any, right: Any) -> bool:
    return to_text(right) in to_text(left)


def _not_contains(left: Any, right: Any) -> bool:
    return to_text(right) not in to_text(left)


def _temporal(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(left: Any, right: Any) -> bool:
        a, b = to_timestamp(left), to_timestamp(right)
        if a is None or b is None:
            return False
        return compare(a, b)

    return check


OPERATORS: Dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQUALS: _equals,
    Operator.NOT_EQUALS: _not_equals,
    Operator.GREATER_THAN: _ordered(lambda a, b: a > b),
    Operator.GREATER_THAN_OR_EQUAL: _ordered(lambda a, b: a >= b),
    Operator.LESS_THAN: _ordered(lambda a, b: a < b),
    Operator.LESS_THAN_OR_EQUAL: _ordered(lambda a, b: a <= b),
    Operator.IN: _in,
    Operator.NOT_IN: _not_in,
    Operator.CONTAINS: _contains,
    Operator.NOT_CONTAINS: _not_contains,
    Operator.BEFORE: _temporal(lambda a, b: a < b),
    Operator.AFTER: _temporal(lambda a, b: a > b),
}


def evaluate_condition(condition: Condition, context: EvaluationContext) -> bool:
    """Evaluate one condition; malformed input degrades to ``False``."""
    found, actual = lookup(context, condition.property)
    if not found:
        return False

    check = OPERATORS.get(condition.operator)
    if check is None:
        logger.warning(f"Unsupported operator {condition.operator!r} on {condition.property}")
        return False

    try:
        return check(actual, condition.value)
    except (TypeError, ValueError, OverflowError) as e:
        logger.debug(f"Condition on {condition.property} degraded to false: {e}")
        return False
