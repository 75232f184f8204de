"""Recurring card schedule schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, field_validator

from app.schema.base import ORMModel
from app.utils.cron import normalize_cron


class RecurringConfigCreate(BaseModel):
    """Payload for scheduling a template card; next_run_at defaults from the cron."""
    cron_expression: str
    next_run_at: datetime | None = None
    enabled: bool = True

    @field_validator("cron_expression")
    @classmethod
    def _validate_cron(cls, value: str) -> str:
        return normalize_cron(value)


class RecurringConfigUpdate(BaseModel):
    """Partial update; a new cron without next_run_at recomputes the next fire."""
    cron_expression: str | None = None
    next_run_at: datetime | None = None
    enabled: bool | None = None

    @field_validator("cron_expression")
    @classmethod
    def _validate_cron(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_cron(value)


class RecurringConfigRead(ORMModel):
    """Recurring schedule representation."""
    id: UUID
    template_card_id: UUID
    cron_expression: str
    next_run_at: datetime
    last_run_at: datetime | None = None
    enabled: bool
    created_at: datetime
    updated_at: datetime


class RecurrenceTickRead(BaseModel):
    """Summary of a single scheduler tick."""
    ran_at: datetime
    due: int
    created_card_ids: list[UUID]
    lost_claims: list[UUID]
    failed_config_ids: list[UUID]
    due_date_events: int
