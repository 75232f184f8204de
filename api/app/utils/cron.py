"""Five-field cron evaluation for recurring card schedules.

Invariants:
- Expressions have exactly five fields (minute hour day-of-month month day-of-week).
- next_fire_after is pure: the result depends only on the expression and the reference instant.
- The returned instant is strictly later than the reference instant.
"""

from __future__ import annotations

from datetime import datetime

from croniter import CroniterError, croniter

from app.utils.datetime import ensure_utc, utcnow

CRON_FIELD_COUNT = 5


class CronExpressionError(ValueError):
    """Raised when a cron expression cannot be scheduled."""


def normalize_cron(expression: str) -> str:
    """Collapse whitespace and validate a five-field cron expression."""
    if not isinstance(expression, str):
        raise CronExpressionError("cron_expression_not_a_string")
    parts = expression.split()
    if len(parts) != CRON_FIELD_COUNT:
        raise CronExpressionError(f"cron_expression_needs_{CRON_FIELD_COUNT}_fields")
    normalized = " ".join(parts)
    if not croniter.is_valid(normalized):
        raise CronExpressionError(f"cron_expression_invalid:{normalized}")
    # Syntactically valid expressions such as Feb 30 never fire.
    _next_occurrence(normalized, utcnow())
    return normalized


def _next_occurrence(normalized: str, base: datetime) -> datetime:
    try:
        return croniter(normalized, base).get_next(datetime)
    except CroniterError as exc:
        raise CronExpressionError(f"cron_expression_never_fires:{normalized}") from exc


def next_fire_after(expression: str, after: datetime) -> datetime:
    """Return the earliest fire time strictly after ``after``, in UTC."""
    normalized = normalize_cron(expression)
    base = ensure_utc(after)
    # croniter treats a base sitting exactly on a fire time as already fired.
    return ensure_utc(_next_occurrence(normalized, base))
