from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from app.schema.recurring import RecurringConfigCreate
from app.utils.cron import CronExpressionError, next_fire_after, normalize_cron


def test_weekly_expression_skips_the_monday_already_passed():
    tuesday = datetime(2024, 1, 2, 10, 30, tzinfo=timezone.utc)

    assert next_fire_after("0 9 * * MON", tuesday) == datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)


def test_next_fire_is_strictly_after_the_reference():
    on_the_dot = datetime(2024, 1, 8, 9, 0, tzinfo=timezone.utc)

    assert next_fire_after("0 9 * * MON", on_the_dot) == on_the_dot + timedelta(days=7)


def test_next_fire_is_deterministic_and_normalizes_naive_inputs():
    naive = datetime(2024, 3, 31, 23, 59)
    first = next_fire_after("0 0 1 * *", naive)

    assert first == next_fire_after("0 0 1 * *", naive)
    assert first == datetime(2024, 4, 1, 0, 0, tzinfo=timezone.utc)
    assert first.tzinfo is not None


def test_normalize_cron_collapses_whitespace():
    assert normalize_cron("  */15   9-17 * *  1-5 ") == "*/15 9-17 * * 1-5"


@pytest.mark.parametrize("expression", ["* * * *", "0 9 * * MON *", "61 * * * *", "not a cron at all", "0 0 30 2 *"])
def test_invalid_expressions_are_rejected(expression):
    with pytest.raises(CronExpressionError):
        normalize_cron(expression)


def test_recurring_payload_rejects_invalid_cron():
    with pytest.raises(ValidationError):
        RecurringConfigCreate(cron_expression="0 25 * * *")


def test_expression_that_never_fires_is_rejected_before_scheduling():
    with pytest.raises(CronExpressionError):
        next_fire_after("0 0 30 2 *", datetime(2024, 1, 1, tzinfo=timezone.utc))
    with pytest.raises(ValidationError):
        RecurringConfigCreate(cron_expression="0 0 31 4 *")
