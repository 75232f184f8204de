"""Condition schema shared by rule definitions and the evaluator."""

from __future__ import annotations

import enum
from typing import Any

from app.schema.base import StrictVariant


class ConditionField(str, enum.Enum):
    """Card attributes a condition may inspect."""
    PRIORITY = "priority"
    ASSIGNEE_IDS = "assignee_ids"
    LABEL_IDS = "label_ids"
    DUE_DATE = "due_date"
    COLUMN_ID = "column_id"
    SWIMLANE_ID = "swimlane_id"

    @property
    def is_collection(self) -> bool:
        return self in {ConditionField.ASSIGNEE_IDS, ConditionField.LABEL_IDS}


class ConditionOperator(str, enum.Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class Condition(StrictVariant):
    """Predicate ``card[field] <operator> value``; emptiness checks ignore value."""
    field: ConditionField
    operator: ConditionOperator
    value: Any = None
