from app.models.automation import AutomationExecutionLog, AutomationRule, EventType, ExecutionStatus
from app.models.board import Board, BoardColumn, Card, CardComment, Priority
from app.models.notification import Notification
from app.models.recurring import RecurringConfig

__all__ = [
    "AutomationExecutionLog",
    "AutomationRule",
    "Board",
    "BoardColumn",
    "Card",
    "CardComment",
    "EventType",
    "ExecutionStatus",
    "Notification",
    "Priority",
    "RecurringConfig",
]
"""SQLAlchemy ORM models for the Boardflow automation API."""
