from . import (
    automation_engine,
    automation_service,
    board_gateway,
    condition_evaluator,
    due_date_scanner,
    notification_service,
    recurring_service,
    rule_store,
    webhook_service,
)

__all__ = [
    "automation_engine",
    "automation_service",
    "board_gateway",
    "condition_evaluator",
    "due_date_scanner",
    "notification_service",
    "recurring_service",
    "rule_store",
    "webhook_service",
]
"""Service-layer helpers for API operations."""
