"""Automation rule models for event-driven board workflows."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, Integer, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base_class import Base
from app.db.types import UTCDateTime

JSON_COMPATIBLE = JSON().with_variant(JSONB, "postgresql")


class EventType(str, enum.Enum):
    """Board event kinds; trigger variants share these tags."""
    CARD_CREATED = "card_created"
    CARD_MOVED = "card_moved"
    LABEL_ADDED = "label_added"
    LABEL_REMOVED = "label_removed"
    DUE_DATE_REACHED = "due_date_reached"
    DUE_DATE_CHANGED = "due_date_changed"
    COMMENT_ADDED = "comment_added"
    CARD_ASSIGNED = "card_assigned"
    PRIORITY_CHANGED = "priority_changed"
    CARD_ARCHIVED = "card_archived"


class ExecutionStatus(str, enum.Enum):
    """Outcome recorded for a single action or guard trip."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    THROTTLED = "throttled"


class AutomationRule(Base):
    """Board-scoped rule: one trigger, ordered conditions, ordered actions."""

    __tablename__ = "automation_rules"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    board_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    trigger: Mapped[dict] = mapped_column(JSON_COMPATIBLE, nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    conditions: Mapped[list] = mapped_column(JSON_COMPATIBLE, default=list, nullable=False)
    actions: Mapped[list] = mapped_column(JSON_COMPATIBLE, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    last_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    last_error: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class AutomationExecutionLog(Base):
    """Per-action audit row written after a rule fires."""

    __tablename__ = "automation_execution_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    rule_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("automation_rules.id", ondelete="CASCADE"), index=True
    )
    board_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    card_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    event_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    action_type: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(
            ExecutionStatus,
            name="automation_execution_status",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        nullable=False,
    )
    detail: Mapped[dict | None] = mapped_column(JSON_COMPATIBLE)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc), nullable=False, index=True
    )
