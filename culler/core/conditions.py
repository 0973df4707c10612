# Copyright (c) 2025 Trae AI. All rights reserved.

import logging
import math
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional
from .errors import InvalidRuleError
from .models import MediaItem, RuleCondition, utc_now

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 ** 3
SECONDS_PER_DAY = 24 * 60 * 60


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class FieldKind(str, Enum):
    NUMBER = "number"
    STRING = "string"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"


FIELD_KINDS = {
    "type": FieldKind.STRING,
    "title": FieldKind.STRING,
    "resolution": FieldKind.STRING,
    "codec": FieldKind.STRING,
    "file_size": FieldKind.NUMBER,
    "size_gb": FieldKind.NUMBER,
    "play_count": FieldKind.NUMBER,
    "days_since_added": FieldKind.NUMBER,
    "days_since_watched": FieldKind.NUMBER,
    "added_at": FieldKind.TIMESTAMP,
    "last_watched_at": FieldKind.TIMESTAMP,
    "never_watched": FieldKind.BOOLEAN,
}

EMPTINESS_OPERATORS = {Operator.IS_EMPTY, Operator.IS_NOT_EMPTY}

OPERATORS_BY_KIND = {
    FieldKind.NUMBER: {
        Operator.EQUALS, Operator.NOT_EQUALS, Operator.GREATER_THAN, Operator.LESS_THAN,
        Operator.IS_EMPTY, Operator.IS_NOT_EMPTY,
    },
    FieldKind.STRING: {
        Operator.EQUALS, Operator.NOT_EQUALS, Operator.CONTAINS, Operator.NOT_CONTAINS,
        Operator.IS_EMPTY, Operator.IS_NOT_EMPTY,
    },
    FieldKind.TIMESTAMP: {
        Operator.EQUALS, Operator.NOT_EQUALS, Operator.IS_EMPTY, Operator.IS_NOT_EMPTY,
    },
    FieldKind.BOOLEAN: {Operator.EQUALS, Operator.NOT_EQUALS},
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _days_since(timestamp: Optional[datetime], now: datetime) -> Optional[int]:
    if timestamp is None:
        return None
    return math.floor((now - timestamp).total_seconds() / SECONDS_PER_DAY)


def get_field_value(item: MediaItem, field: str, now: Optional[datetime] = None) -> Any:
    """
    Resolves a condition field against a media item.

    Derived fields are computed from ``now`` on every call. Unknown fields
    resolve to None.
    """
    now = now or utc_now()

    if field == "type":
        return item.type.value
    if field in ("title", "resolution", "codec", "file_size", "play_count"):
        return getattr(item, field)
    if field == "size_gb":
        return item.file_size / BYTES_PER_GB if item.file_size else None
    if field in ("added_at", "last_watched_at"):
        timestamp = getattr(item, field)
        return timestamp.isoformat() if timestamp else None
    if field == "days_since_added":
        return _days_since(item.added_at, now)
    if field == "days_since_watched":
        return _days_since(item.last_watched_at, now)
    if field == "never_watched":
        return item.play_count == 0
    return None


def _strict_equals(left: Any, right: Any) -> bool:
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def compare(item_value: Any, operator: str, value: Any) -> bool:
    if operator == Operator.EQUALS:
        return _strict_equals(item_value, value)
    if operator == Operator.NOT_EQUALS:
        return not _strict_equals(item_value, value)
    if operator == Operator.GREATER_THAN:
        return _is_number(item_value) and _is_number(value) and item_value > value
    if operator == Operator.LESS_THAN:
        return _is_number(item_value) and _is_number(value) and item_value < value
    if operator in (Operator.CONTAINS, Operator.NOT_CONTAINS):
        if not isinstance(item_value, str) or not isinstance(value, str):
            return False
        found = value.lower() in item_value.lower()
        return found if operator == Operator.CONTAINS else not found
    if operator == Operator.IS_EMPTY:
        return item_value is None or item_value == ""
    if operator == Operator.IS_NOT_EMPTY:
        return item_value is not None and item_value != ""

    logger.warning(f"Unknown condition operator: {operator}")
    return False


def evaluate(item: MediaItem, field: str, operator: str, value: Any, now: Optional[datetime] = None) -> bool:
    return compare(get_field_value(item, field, now), operator, value)


def evaluate_conditions(
    item: MediaItem, conditions: Iterable[RuleCondition], now: Optional[datetime] = None
) -> bool:
    """
    AND semantics. An empty condition list never matches.
    """
    conditions = list(conditions)
    if not conditions:
        return False
    now = now or utc_now()
    return all(evaluate(item, c.field, c.operator, c.value, now) for c in conditions)


def validate_condition(condition: RuleCondition):
    kind = FIELD_KINDS.get(condition.field)
    if kind is None:
        raise InvalidRuleError(f"Unknown condition field: {condition.field}")

    try:
        operator = Operator(condition.operator)
    except ValueError:
        raise InvalidRuleError(f"Unknown condition operator: {condition.operator}")

    if operator not in OPERATORS_BY_KIND[kind]:
        raise InvalidRuleError(
            f"Operator {operator.value} cannot be used with {kind.value} field {condition.field}"
        )

    if operator in EMPTINESS_OPERATORS:
        return

    value = condition.value
    if kind == FieldKind.NUMBER and not _is_number(value):
        raise InvalidRuleError(f"Field {condition.field} expects a numeric value, got {value!r}")
    if kind in (FieldKind.STRING, FieldKind.TIMESTAMP) and not isinstance(value, str):
        raise InvalidRuleError(f"Field {condition.field} expects a string value, got {value!r}")
    if kind == FieldKind.BOOLEAN and not isinstance(value, bool):
        raise InvalidRuleError(f"Field {condition.field} expects true or false, got {value!r}")


def validate_conditions(conditions: Iterable[RuleCondition]):
    """
    Rejects conditions that could never match because of a field/operator/value
    type mismatch. Called when rules are saved.
    """
    for condition in conditions:
        validate_condition(condition)
