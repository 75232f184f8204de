"""Pure condition evaluation for automation rules.

Invariants:
- Conditions are AND-ed; an empty list always matches.
- Evaluation never raises. Type mismatches resolve to False (fail closed) and
  are logged at debug level so one malformed rule cannot stall a board.
- A field missing from the card is treated as empty.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping

from app.models.board import Priority
from app.schema.condition import Condition, ConditionField, ConditionOperator
from app.utils.datetime import parse_datetime

logger = logging.getLogger("app.services.condition_evaluator")


class _Mismatch(Exception):
    """Internal signal for an incomparable operand."""


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def _scalar(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def _as_set(value: Any) -> set[Any]:
    if value is None:
        return set()
    if isinstance(value, (list, tuple, set, frozenset)):
        return {_scalar(item) for item in value}
    raise _Mismatch(f"expected a collection, got {type(value).__name__}")


def _ordinal(field: ConditionField, value: Any) -> Any:
    """Map a value onto an ordered domain for greater_than/less_than."""
    if field is ConditionField.PRIORITY:
        try:
            return Priority(_scalar(value)).rank
        except ValueError as exc:
            raise _Mismatch(f"unknown priority {value!r}") from exc
    if field is ConditionField.DUE_DATE:
        parsed = parse_datetime(value) if isinstance(value, (str, datetime)) else None
        if parsed is None:
            raise _Mismatch(f"not a datetime: {value!r}")
        return parsed
    raise _Mismatch(f"{field.value} is not ordered")


def _equals(field: ConditionField, actual: Any, expected: Any) -> bool:
    if field.is_collection:
        if not isinstance(expected, (list, tuple, set)):
            raise _Mismatch("collection equality needs a list value")
        return _as_set(actual) == _as_set(expected)
    if field is ConditionField.DUE_DATE and actual is not None and expected is not None:
        return _ordinal(field, actual) == _ordinal(field, expected)
    if isinstance(expected, (list, tuple, set, dict)):
        raise _Mismatch("scalar equality needs a scalar value")
    return _scalar(actual) == _scalar(expected)


def _membership(field: ConditionField, actual: Any, expected: Any) -> bool:
    """``in``: scalar is one of value, or a collection shares an item with value."""
    if not isinstance(expected, (list, tuple, set)):
        raise _Mismatch("in/not_in need a list value")
    options = {_scalar(item) for item in expected}
    if field.is_collection:
        return bool(_as_set(actual) & options)
    if actual is None:
        return False
    return _scalar(actual) in options


def _contains(field: ConditionField, actual: Any, expected: Any) -> bool:
    if not field.is_collection:
        raise _Mismatch(f"contains on scalar field {field.value}")
    members = _as_set(actual)
    if isinstance(expected, (list, tuple, set)):
        return {_scalar(item) for item in expected} <= members
    return _scalar(expected) in members


def _compare(field: ConditionField, actual: Any, expected: Any, *, greater: bool) -> bool:
    if actual is None:
        return False
    left = _ordinal(field, actual)
    right = _ordinal(field, expected)
    return left > right if greater else left < right


def evaluate_condition(condition: Condition, card: Mapping[str, Any]) -> bool:
    """Evaluate a single condition against a card attribute view."""
    field = condition.field
    actual = card.get(field.value)
    operator = condition.operator
    expected = condition.value
    try:
        if operator is ConditionOperator.IS_EMPTY:
            return _is_empty(actual)
        if operator is ConditionOperator.IS_NOT_EMPTY:
            return not _is_empty(actual)
        if operator is ConditionOperator.EQUALS:
            return _equals(field, actual, expected)
        if operator is ConditionOperator.NOT_EQUALS:
            return not _equals(field, actual, expected)
        if operator is ConditionOperator.IN:
            return _membership(field, actual, expected)
        if operator is ConditionOperator.NOT_IN:
            return not _membership(field, actual, expected)
        if operator is ConditionOperator.CONTAINS:
            return _contains(field, actual, expected)
        if operator is ConditionOperator.GREATER_THAN:
            return _compare(field, actual, expected, greater=True)
        if operator is ConditionOperator.LESS_THAN:
            return _compare(field, actual, expected, greater=False)
    except (_Mismatch, TypeError, ValueError) as exc:
        logger.debug(
            "Condition %s %s %r failed closed: %s", field.value, operator.value, expected, exc
        )
        return False
    return False


def evaluate(conditions: Iterable[Condition], card: Mapping[str, Any]) -> bool:
    """Return True when every condition holds (logical AND)."""
    return all(evaluate_condition(condition, card) for condition in conditions)
