"""Automation rule schemas.

Triggers and actions are closed tagged variants keyed by ``type``; each
variant carries exactly the fields its kind needs and unknown kinds or extra
fields are rejected when the payload is parsed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import AnyHttpUrl, BaseModel, Field, TypeAdapter, model_validator

from app.models.automation import EventType, ExecutionStatus
from app.models.board import Priority
from app.schema.base import ORMModel, StrictVariant
from app.schema.condition import Condition


def _same_id(expected: UUID | None, actual: Any) -> bool:
    if expected is None:
        return True
    return actual is not None and str(actual) == str(expected)


class CardCreatedTrigger(StrictVariant):
    type: Literal["card_created"] = "card_created"

    def matches(self, payload: dict[str, Any]) -> bool:
        return True


class CardMovedTrigger(StrictVariant):
    type: Literal["card_moved"] = "card_moved"
    from_column_id: UUID | None = None
    to_column_id: UUID | None = None

    def matches(self, payload: dict[str, Any]) -> bool:
        return _same_id(self.from_column_id, payload.get("from_column_id")) and _same_id(
            self.to_column_id, payload.get("to_column_id")
        )


class LabelAddedTrigger(StrictVariant):
    type: Literal["label_added"] = "label_added"
    label: str | None = None

    def matches(self, payload: dict[str, Any]) -> bool:
        return self.label is None or payload.get("label") == self.label


class LabelRemovedTrigger(StrictVariant):
    type: Literal["label_removed"] = "label_removed"
    label: str | None = None

    def matches(self, payload: dict[str, Any]) -> bool:
        return self.label is None or payload.get("label") == self.label


class DueDateReachedTrigger(StrictVariant):
    type: Literal["due_date_reached"] = "due_date_reached"

    def matches(self, payload: dict[str, Any]) -> bool:
        return True


class DueDateChangedTrigger(StrictVariant):
    type: Literal["due_date_changed"] = "due_date_changed"

    def matches(self, payload: dict[str, Any]) -> bool:
        return True


class CommentAddedTrigger(StrictVariant):
    type: Literal["comment_added"] = "comment_added"

    def matches(self, payload: dict[str, Any]) -> bool:
        return True


class CardAssignedTrigger(StrictVariant):
    type: Literal["card_assigned"] = "card_assigned"

    def matches(self, payload: dict[str, Any]) -> bool:
        return True


class PriorityChangedTrigger(StrictVariant):
    type: Literal["priority_changed"] = "priority_changed"
    priority: Priority | None = None

    def matches(self, payload: dict[str, Any]) -> bool:
        return self.priority is None or payload.get("priority") == self.priority.value


class CardArchivedTrigger(StrictVariant):
    type: Literal["card_archived"] = "card_archived"

    def matches(self, payload: dict[str, Any]) -> bool:
        return True


TriggerSpec = Annotated[
    Union[
        CardCreatedTrigger,
        CardMovedTrigger,
        LabelAddedTrigger,
        LabelRemovedTrigger,
        DueDateReachedTrigger,
        DueDateChangedTrigger,
        CommentAddedTrigger,
        CardAssignedTrigger,
        PriorityChangedTrigger,
        CardArchivedTrigger,
    ],
    Field(discriminator="type"),
]


class MoveCardAction(StrictVariant):
    type: Literal["move_card"] = "move_card"
    column_id: UUID


class AddLabelAction(StrictVariant):
    type: Literal["add_label"] = "add_label"
    label: str = Field(min_length=1, max_length=120)


class RemoveLabelAction(StrictVariant):
    type: Literal["remove_label"] = "remove_label"
    label: str = Field(min_length=1, max_length=120)


class AssignUserAction(StrictVariant):
    type: Literal["assign_user"] = "assign_user"
    user_id: UUID


class SetDueDateAction(StrictVariant):
    """Absolute due date, or an offset from the triggering event time."""
    type: Literal["set_due_date"] = "set_due_date"
    due_date: datetime | None = None
    offset_days: int | None = None
    offset_hours: int | None = None

    @model_validator(mode="after")
    def _exactly_one_target(self) -> "SetDueDateAction":
        has_offset = self.offset_days is not None or self.offset_hours is not None
        if (self.due_date is None) == (not has_offset):
            raise ValueError("set_due_date needs either due_date or an offset, not both")
        return self


class SetPriorityAction(StrictVariant):
    type: Literal["set_priority"] = "set_priority"
    priority: Priority


class ArchiveCardAction(StrictVariant):
    type: Literal["archive_card"] = "archive_card"


class ChecklistItemSpec(StrictVariant):
    title: str = Field(min_length=1, max_length=500)
    is_checked: bool = False


class CreateChecklistAction(StrictVariant):
    """Append a checklist; a card already holding one with this title is left alone."""
    type: Literal["create_checklist"] = "create_checklist"
    title: str = Field(min_length=1, max_length=200)
    items: list[ChecklistItemSpec] = Field(default_factory=list)


class PostCommentAction(StrictVariant):
    type: Literal["post_comment"] = "post_comment"
    template: str = Field(min_length=1, max_length=5000)
    author_id: UUID | None = None


class SendNotificationAction(StrictVariant):
    type: Literal["send_notification"] = "send_notification"
    template: str = Field(min_length=1, max_length=2000)
    title: str | None = Field(default=None, max_length=200)


class TriggerWebhookAction(StrictVariant):
    type: Literal["trigger_webhook"] = "trigger_webhook"
    url: AnyHttpUrl
    payload_template: dict[str, Any] | None = None


ActionSpec = Annotated[
    Union[
        MoveCardAction,
        AddLabelAction,
        RemoveLabelAction,
        AssignUserAction,
        SetDueDateAction,
        SetPriorityAction,
        ArchiveCardAction,
        CreateChecklistAction,
        PostCommentAction,
        SendNotificationAction,
        TriggerWebhookAction,
    ],
    Field(discriminator="type"),
]

TRIGGER_ADAPTER: TypeAdapter[TriggerSpec] = TypeAdapter(TriggerSpec)
ACTIONS_ADAPTER: TypeAdapter[list[ActionSpec]] = TypeAdapter(list[ActionSpec])
CONDITIONS_ADAPTER: TypeAdapter[list[Condition]] = TypeAdapter(list[Condition])


class AutomationRuleCreate(BaseModel):
    """Payload for creating an automation rule."""
    name: str = Field(min_length=1, max_length=200)
    trigger: TriggerSpec
    conditions: list[Condition] = Field(default_factory=list)
    actions: list[ActionSpec] = Field(min_length=1)
    is_enabled: bool = True
    created_by_id: UUID | None = None


class AutomationRuleUpdate(BaseModel):
    """Partial patch; ``expected_version`` enables optimistic concurrency."""
    name: Annotated[str, Field(min_length=1, max_length=200)] | None = None
    trigger: TriggerSpec | None = None
    conditions: list[Condition] | None = None
    actions: Annotated[list[ActionSpec], Field(min_length=1)] | None = None
    is_enabled: bool | None = None
    expected_version: int | None = None


class AutomationRuleRead(ORMModel):
    """Automation rule representation."""
    id: UUID
    board_id: UUID
    name: str
    trigger: TriggerSpec
    conditions: list[Condition]
    actions: list[ActionSpec]
    is_enabled: bool
    version: int
    consecutive_failures: int
    created_by_id: UUID | None = None
    last_run_at: datetime | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime


class AutomationExecutionLogRead(ORMModel):
    """Execution log entry for a single action outcome."""
    id: UUID
    rule_id: UUID | None = None
    card_id: UUID | None = None
    event_id: UUID | None = None
    action_type: str | None = None
    status: ExecutionStatus
    detail: dict | None = None
    created_at: datetime


def trigger_event_type(trigger: Any) -> EventType:
    """Return the event type a trigger listens for."""
    return EventType(trigger.type)
