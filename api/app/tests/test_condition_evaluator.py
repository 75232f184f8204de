from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

import pytest

from app.schema.condition import Condition
from app.services.condition_evaluator import evaluate, evaluate_condition

LABEL_BUG = "bug"
LABEL_UI = "ui"


def _card(**overrides):
    card = {
        "priority": "high",
        "label_ids": [LABEL_BUG, LABEL_UI],
        "assignee_ids": [],
        "due_date": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        "column_id": uuid.UUID("11111111-1111-1111-1111-111111111111"),
        "swimlane_id": None,
    }
    card.update(overrides)
    return card


def _cond(field, operator, value=None):
    return Condition(field=field, operator=operator, value=value)


def test_empty_condition_list_always_matches():
    assert evaluate([], _card()) is True


def test_conditions_are_combined_with_and():
    conditions = [_cond("priority", "equals", "high"), _cond("label_ids", "contains", LABEL_BUG)]
    assert evaluate(conditions, _card()) is True
    assert evaluate(conditions + [_cond("assignee_ids", "is_not_empty")], _card()) is False


@pytest.mark.parametrize(
    ("condition", "expected"),
    [
        (_cond("priority", "equals", "high"), True),
        (_cond("priority", "not_equals", "high"), False),
        (_cond("priority", "in", ["high", "urgent"]), True),
        (_cond("priority", "not_in", ["low"]), True),
        (_cond("priority", "greater_than", "medium"), True),
        (_cond("priority", "less_than", "medium"), False),
        (_cond("label_ids", "contains", [LABEL_BUG, LABEL_UI]), True),
        (_cond("label_ids", "contains", "docs"), False),
        (_cond("label_ids", "in", ["docs", LABEL_UI]), True),
        (_cond("label_ids", "not_in", ["docs"]), True),
        (_cond("label_ids", "equals", [LABEL_UI, LABEL_BUG]), True),
        (_cond("column_id", "equals", "11111111-1111-1111-1111-111111111111"), True),
        (_cond("due_date", "less_than", "2024-06-01T00:00:00Z"), True),
        (_cond("due_date", "greater_than", "2024-06-01T00:00:00Z"), False),
        (_cond("swimlane_id", "is_empty", "ignored"), True),
        (_cond("assignee_ids", "is_empty"), True),
    ],
)
def test_operator_semantics(condition, expected):
    assert evaluate_condition(condition, _card()) is expected


def test_missing_field_is_treated_as_empty():
    card = _card()
    del card["swimlane_id"]
    card.pop("assignee_ids")

    assert evaluate_condition(_cond("swimlane_id", "is_empty"), card) is True
    assert evaluate_condition(_cond("assignee_ids", "contains", "someone"), card) is False


@pytest.mark.parametrize(
    "condition",
    [
        _cond("priority", "contains", "high"),
        _cond("label_ids", "greater_than", 3),
        _cond("priority", "greater_than", "extreme"),
        _cond("due_date", "less_than", "next tuesday"),
        _cond("priority", "in", "high"),
        _cond("label_ids", "equals", LABEL_BUG),
    ],
)
def test_type_mismatches_fail_closed_without_raising(condition, caplog):
    caplog.set_level(logging.DEBUG, logger="app.services.condition_evaluator")

    assert evaluate_condition(condition, _card()) is False
    assert "failed closed" in caplog.text


def test_mismatch_in_one_rule_does_not_affect_another():
    bad = [_cond("priority", "contains", "high")]
    good = [_cond("priority", "equals", "high")]

    assert evaluate(bad, _card()) is False
    assert evaluate(good, _card()) is True


def test_null_due_date_comparison_checks_presence():
    dated = _card()
    undated = _card(due_date=None)

    assert evaluate_condition(_cond("due_date", "not_equals", None), dated) is True
    assert evaluate_condition(_cond("due_date", "equals", None), dated) is False
    assert evaluate_condition(_cond("due_date", "equals", None), undated) is True
    assert evaluate_condition(_cond("due_date", "not_equals", None), undated) is False
