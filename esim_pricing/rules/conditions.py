"""Condition evaluation against a pricing context."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable
import json
import logging
import operator
import re

from ..core.models import (
    ConditionOperator, RuleCondition, PricingContext,
    NullValue, BooleanValue, NumberValue, StringValue, DateValue, ListValue, RangeValue,
    ConditionValue, DATE_PATTERN, parse_date, resolve_condition_value, to_decimal, _jsonable,
)

logger = logging.getLogger(__name__)

_MISSING = object()

# Whole-path aliases for field names used by stored rules
FIELD_ALIASES = {
    'customer.paymentMethod': 'payment_method',
    'customer.payment_method': 'payment_method',
    'request.duration': 'requested_duration',
    'group': 'bundle_group',
}

# Leading-segment aliases
PREFIX_ALIASES = {
    'user': 'customer',
}

_ORDERING = {
    ConditionOperator.GREATER_THAN: operator.gt,
    ConditionOperator.LESS_THAN: operator.lt,
    ConditionOperator.GREATER_THAN_OR_EQUAL: operator.ge,
    ConditionOperator.LESS_THAN_OR_EQUAL: operator.le,
}


def _snake_case(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def _is_date_only(raw: Any) -> bool:
    if isinstance(raw, datetime):
        return False
    if isinstance(raw, date):
        return True
    if isinstance(raw, str):
        match = DATE_PATTERN.match(raw.strip())
        return bool(match) and match.group(1) is None
    return False


class ConditionEvaluator:
    """Evaluates single rule conditions.

    Unknown fields and unsupported operators make a condition false instead
    of raising, since rules are authored by admins and a typo must not break
    pricing.
    """

    def __init__(self):
        self._handlers: Dict[ConditionOperator, Callable[[Any, ConditionValue], bool]] = {
            ConditionOperator.EQUALS: self._equals,
            ConditionOperator.NOT_EQUALS: lambda value, cv: not self._equals(value, cv),
            ConditionOperator.BETWEEN: self._between,
            ConditionOperator.IN: self._in,
            ConditionOperator.NOT_IN: self._not_in,
            ConditionOperator.CONTAINS: self._contains,
        }
        for op in _ORDERING:
            self._handlers[op] = self._make_ordering(op)

    def evaluate(self, condition: RuleCondition, context: PricingContext) -> bool:
        """Evaluate condition against context."""
        value = self.resolve_field(condition.field, context)

        if condition.operator == ConditionOperator.EXISTS:
            return value is not _MISSING and value is not None
        if condition.operator == ConditionOperator.NOT_EXISTS:
            return value is _MISSING or value is None
        if value is _MISSING:
            logger.debug(f"Field '{condition.field}' not found in pricing context")
            return False

        handler = self._handlers.get(condition.operator)
        if handler is None:
            logger.warning(f"Unsupported operator: {condition.operator}")
            return False

        try:
            return bool(handler(value, condition.resolved))
        except (TypeError, ValueError, ArithmeticError) as e:
            logger.debug(f"Condition on '{condition.field}' could not be compared: {e}")
            return False

    def evaluate_all(self, conditions: Iterable[RuleCondition], context: PricingContext) -> bool:
        """AND-combine conditions; an empty list matches."""
        return all(self.evaluate(condition, context) for condition in conditions)

    def resolve_field(self, path: str, context: Any) -> Any:
        """Navigate a dot path through objects and dicts."""
        path = FIELD_ALIASES.get(path, path)
        parts = path.split('.')
        parts[0] = PREFIX_ALIASES.get(parts[0], parts[0])

        current = context
        for part in parts:
            current = self._lookup(current, part)
            if current is _MISSING:
                return _MISSING
        return current

    @staticmethod
    def _lookup(obj: Any, part: str) -> Any:
        if obj is None:
            return _MISSING
        candidates = (part, _snake_case(part))
        if isinstance(obj, dict):
            for key in candidates:
                if key in obj:
                    return obj[key]
            return _MISSING
        for key in candidates:
            if not key.startswith('_') and hasattr(obj, key):
                return getattr(obj, key)
        return _MISSING

    # Operators

    def _equals(self, value: Any, cv: ConditionValue) -> bool:
        if isinstance(cv, DateValue):
            field_date = parse_date(value)
            if field_date is not None:
                # Calendar date only
                return field_date.date() == cv.value.date()
            return value == cv.raw
        return self._strict_equal(value, cv)

    @staticmethod
    def _strict_equal(value: Any, cv: ConditionValue) -> bool:
        if isinstance(value, Enum):
            value = value.value
        if isinstance(cv, NullValue):
            return value is None
        if isinstance(cv, BooleanValue):
            return isinstance(value, bool) and value == cv.value
        if isinstance(cv, NumberValue):
            if isinstance(value, bool) or isinstance(value, str):
                return False
            return to_decimal(value) == cv.value
        if isinstance(cv, StringValue):
            return isinstance(value, str) and value == cv.value
        if isinstance(cv, DateValue):
            return parse_date(value) == cv.value
        if isinstance(cv, (ListValue, RangeValue)):
            if not isinstance(value, (list, tuple)):
                return False
            return (json.dumps(_jsonable(list(value)), sort_keys=True)
                    == json.dumps(_jsonable(list(cv.raw)), sort_keys=True))
        return False

    def _make_ordering(self, op: ConditionOperator) -> Callable[[Any, ConditionValue], bool]:
        compare = _ORDERING[op]

        def handler(value: Any, cv: ConditionValue) -> bool:
            field_date = parse_date(value)
            if field_date is not None:
                target = cv.value if isinstance(cv, DateValue) else parse_date(getattr(cv, 'raw', None))
                if target is None:
                    return False
                return compare(field_date, target)

            left = to_decimal(value)
            right = cv.value if isinstance(cv, NumberValue) else to_decimal(getattr(cv, 'raw', None))
            if left is None or right is None:
                return False
            return compare(left, right)

        return handler

    def _between(self, value: Any, cv: ConditionValue) -> bool:
        if not isinstance(cv, RangeValue):
            logger.warning("BETWEEN requires a two-element [start, end] value")
            return False

        field_date = parse_date(value)
        if field_date is not None:
            start = parse_date(cv.start.raw)
            end = parse_date(cv.end.raw)
            if start is None or end is None:
                return False
            if _is_date_only(cv.end.raw):
                return start <= field_date and field_date.date() <= end.date()
            return start <= field_date <= end

        number = to_decimal(value)
        start = to_decimal(cv.start.raw)
        end = to_decimal(cv.end.raw)
        if number is None or start is None or end is None:
            return False
        return start <= number <= end

    def _in(self, value: Any, cv: ConditionValue) -> bool:
        if not isinstance(cv, ListValue):
            return False
        return any(self._strict_equal(value, resolve_condition_value(item)) for item in cv.items)

    def _not_in(self, value: Any, cv: ConditionValue) -> bool:
        if not isinstance(cv, ListValue):
            return False
        return not self._in(value, cv)

    def _contains(self, value: Any, cv: ConditionValue) -> bool:
        if isinstance(value, str):
            return cv.raw is not None and str(cv.raw) in value
        if isinstance(value, (list, tuple, set, frozenset)):
            return any(self._strict_equal(item, cv) for item in value)
        return False
