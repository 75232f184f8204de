"""Automation execution engine for rule actions.

Invariants:
- Actions run strictly in declared order, one at a time; each successful action
  is committed before the next starts so later actions observe its effects.
- A failed action is rolled back and recorded, and the remaining actions still run.
- Card mutations yield a derived event (depth + 1); comments and checklists do not.
- After ``automation_failure_threshold`` consecutive failing runs a rule is
  disabled and the board owner is notified.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.automation import AutomationExecutionLog, AutomationRule, EventType, ExecutionStatus
from app.models.board import Card
from app.schema.automation import (
    AddLabelAction,
    ArchiveCardAction,
    AssignUserAction,
    CreateChecklistAction,
    MoveCardAction,
    PostCommentAction,
    RemoveLabelAction,
    SendNotificationAction,
    SetDueDateAction,
    SetPriorityAction,
    TriggerWebhookAction,
)
from app.services import notification_service, webhook_service
from app.services.board_events import BoardEvent
from app.services.board_gateway import BoardGateway, card_snapshot
from app.services.rule_store import RuleSnapshot
from app.utils.datetime import ensure_utc, utcnow
from app.utils.templating import render_template, render_value

logger = logging.getLogger("app.services.automation_engine")


class AutomationExecutionError(RuntimeError):
    """Raised for expected action failures that should be recorded on the outcome."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


@dataclass(slots=True)
class ActionContext:
    """Everything an action handler may touch while a rule fires."""
    session: AsyncSession
    gateway: BoardGateway
    rule: RuleSnapshot
    event: BoardEvent
    now: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class HandlerResult:
    detail: dict[str, Any] = field(default_factory=dict)
    produced_event: BoardEvent | None = None


@dataclass(slots=True)
class ActionOutcome:
    """Result of one action: Succeeded or Failed, with the event it produced."""
    action: Any
    status: ExecutionStatus
    error: str | None = None
    produced_event: BoardEvent | None = None
    detail: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status is ExecutionStatus.SUCCEEDED


@dataclass(slots=True)
class RuleRun:
    rule_id: uuid.UUID
    outcomes: list[ActionOutcome]
    disabled: bool = False

    @property
    def produced_events(self) -> list[BoardEvent]:
        return [outcome.produced_event for outcome in self.outcomes if outcome.produced_event]

    @property
    def failed(self) -> bool:
        return any(not outcome.succeeded for outcome in self.outcomes)


ActionHandler = Callable[[ActionContext, Any], Awaitable[HandlerResult]]


def _truncate_error(value: str | None, limit: int = 500) -> str | None:
    if not value:
        return None
    return value[:limit]


async def _require_card(ctx: ActionContext, *, allow_archived: bool = False) -> Card:
    card = await ctx.gateway.get_card(ctx.event.card_id)
    if not card:
        raise AutomationExecutionError("card_not_found")
    if card.archived_at and not allow_archived:
        raise AutomationExecutionError("card_archived")
    return card


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


async def _template_context(ctx: ActionContext, card: Card) -> dict[str, Any]:
    column = await ctx.gateway.get_column(card.column_id)
    board = await ctx.gateway.get_board(card.board_id)
    snapshot = _jsonable(card_snapshot(card))
    return {
        "card": snapshot,
        "title": card.title,
        "priority": snapshot["priority"],
        "column": column.name if column else "",
        "board": board.name if board else "",
        "rule": {"id": str(ctx.rule.id), "name": ctx.rule.name},
        "event": {
            "id": str(ctx.event.event_id),
            "type": ctx.event.type.value,
            "depth": ctx.event.depth,
            "payload": _jsonable(ctx.event.payload),
        },
        "now": ctx.now.isoformat(),
    }


async def _execute_move_card(ctx: ActionContext, action: MoveCardAction) -> HandlerResult:
    card = await _require_card(ctx)
    column = await ctx.gateway.get_column(action.column_id)
    if not column or column.board_id != card.board_id:
        raise AutomationExecutionError("column_not_found")
    from_column_id = card.column_id
    changed = await ctx.gateway.move_card(card, column.id)
    detail = {"changed": changed, "from_column_id": str(from_column_id), "to_column_id": str(column.id)}
    if not changed:
        return HandlerResult(detail=detail)
    event = ctx.event.derive(
        type=EventType.CARD_MOVED,
        payload={"from_column_id": str(from_column_id), "to_column_id": str(column.id)},
        board_id=card.board_id,
    )
    return HandlerResult(detail=detail, produced_event=event)


async def _execute_add_label(ctx: ActionContext, action: AddLabelAction) -> HandlerResult:
    card = await _require_card(ctx)
    changed = await ctx.gateway.add_label(card, action.label)
    event = ctx.event.derive(type=EventType.LABEL_ADDED, payload={"label": action.label}) if changed else None
    return HandlerResult(detail={"changed": changed, "label": action.label}, produced_event=event)


async def _execute_remove_label(ctx: ActionContext, action: RemoveLabelAction) -> HandlerResult:
    card = await _require_card(ctx)
    changed = await ctx.gateway.remove_label(card, action.label)
    event = ctx.event.derive(type=EventType.LABEL_REMOVED, payload={"label": action.label}) if changed else None
    return HandlerResult(detail={"changed": changed, "label": action.label}, produced_event=event)


async def _execute_assign_user(ctx: ActionContext, action: AssignUserAction) -> HandlerResult:
    card = await _require_card(ctx)
    changed = await ctx.gateway.assign_user(card, action.user_id)
    event = (
        ctx.event.derive(type=EventType.CARD_ASSIGNED, payload={"user_id": str(action.user_id)})
        if changed
        else None
    )
    return HandlerResult(detail={"changed": changed, "user_id": str(action.user_id)}, produced_event=event)


async def _execute_set_due_date(ctx: ActionContext, action: SetDueDateAction) -> HandlerResult:
    card = await _require_card(ctx)
    if action.due_date is not None:
        due_date = ensure_utc(action.due_date)
    else:
        due_date = ctx.event.occurred_at + timedelta(
            days=action.offset_days or 0, hours=action.offset_hours or 0
        )
    changed = await ctx.gateway.set_due_date(card, due_date)
    event = (
        ctx.event.derive(type=EventType.DUE_DATE_CHANGED, payload={"due_date": due_date.isoformat()})
        if changed
        else None
    )
    return HandlerResult(detail={"changed": changed, "due_date": due_date.isoformat()}, produced_event=event)


async def _execute_set_priority(ctx: ActionContext, action: SetPriorityAction) -> HandlerResult:
    card = await _require_card(ctx)
    changed = await ctx.gateway.set_priority(card, action.priority)
    event = (
        ctx.event.derive(type=EventType.PRIORITY_CHANGED, payload={"priority": action.priority.value})
        if changed
        else None
    )
    return HandlerResult(detail={"changed": changed, "priority": action.priority.value}, produced_event=event)


async def _execute_archive_card(ctx: ActionContext, action: ArchiveCardAction) -> HandlerResult:
    card = await _require_card(ctx, allow_archived=True)
    changed = await ctx.gateway.archive_card(card, ctx.now)
    event = (
        ctx.event.derive(type=EventType.CARD_ARCHIVED, payload={"archived_at": ctx.now.isoformat()})
        if changed
        else None
    )
    return HandlerResult(detail={"changed": changed}, produced_event=event)


async def _execute_create_checklist(ctx: ActionContext, action: CreateChecklistAction) -> HandlerResult:
    card = await _require_card(ctx)
    items = [item.model_dump() for item in action.items]
    changed = await ctx.gateway.add_checklist(card, action.title, items)
    return HandlerResult(detail={"changed": changed, "title": action.title, "items": len(items)})


async def _execute_post_comment(ctx: ActionContext, action: PostCommentAction) -> HandlerResult:
    card = await _require_card(ctx)
    content = render_template(action.template, await _template_context(ctx, card)).strip()
    if not content:
        raise AutomationExecutionError("comment_rendered_empty")
    comment = await ctx.gateway.add_comment(card, content, author_id=action.author_id)
    return HandlerResult(detail={"comment_id": str(comment.id), "content": content})


def _recipients(card: Card, owner_id: uuid.UUID | None) -> list[uuid.UUID]:
    recipients: list[uuid.UUID] = []
    for raw in card.assignee_ids or []:
        try:
            recipients.append(uuid.UUID(str(raw)))
        except ValueError:
            logger.debug("Skipping malformed assignee id %r on card %s", raw, card.id)
    if not recipients and owner_id:
        recipients.append(owner_id)
    return recipients


async def _execute_send_notification(ctx: ActionContext, action: SendNotificationAction) -> HandlerResult:
    card = await _require_card(ctx, allow_archived=True)
    board = await ctx.gateway.get_board(card.board_id)
    context = await _template_context(ctx, card)
    message = render_template(action.template, context)
    title = render_template(action.title, context) if action.title else f"Automation: {ctx.rule.name}"
    recipients = _recipients(card, board.owner_id if board else None)
    if not recipients:
        raise AutomationExecutionError("notification_has_no_recipients")
    for user_id in recipients:
        await notification_service.notify(
            ctx.session,
            user_id,
            {
                "kind": "automation",
                "title": title,
                "message": message,
                "link": f"/boards/{card.board_id}/cards/{card.id}",
                "data": {"rule_id": str(ctx.rule.id), "card_id": str(card.id)},
            },
        )
    return HandlerResult(detail={"recipients": [str(user_id) for user_id in recipients]})


def build_webhook_payload(ctx: ActionContext, card: Card) -> dict[str, Any]:
    """Wire contract for webhook receivers (camelCase keys)."""
    return {
        "event": ctx.event.type.value,
        "boardId": str(card.board_id),
        "cardId": str(card.id),
        "ruleId": str(ctx.rule.id),
        "timestamp": ctx.now.isoformat(),
        "card": {
            "id": str(card.id),
            "title": card.title,
            "columnId": str(card.column_id),
            "swimlaneId": str(card.swimlane_id) if card.swimlane_id else None,
            "priority": card_snapshot(card)["priority"],
            "labelIds": list(card.label_ids or []),
            "assigneeIds": list(card.assignee_ids or []),
            "dueDate": card.due_date.isoformat() if card.due_date else None,
        },
    }


async def _execute_trigger_webhook(ctx: ActionContext, action: TriggerWebhookAction) -> HandlerResult:
    card = await _require_card(ctx, allow_archived=True)
    payload = build_webhook_payload(ctx, card)
    if action.payload_template:
        payload["data"] = render_value(action.payload_template, await _template_context(ctx, card))
    try:
        delivery = await webhook_service.deliver_webhook(
            str(action.url),
            payload,
            timeout=settings.automation_webhook_timeout_seconds,
        )
    except webhook_service.WebhookDeliveryError as exc:
        raise AutomationExecutionError(exc.message) from exc
    return HandlerResult(detail={"url": str(action.url), **delivery})


ACTION_HANDLERS: dict[str, ActionHandler] = {
    "move_card": _execute_move_card,
    "add_label": _execute_add_label,
    "remove_label": _execute_remove_label,
    "assign_user": _execute_assign_user,
    "set_due_date": _execute_set_due_date,
    "set_priority": _execute_set_priority,
    "archive_card": _execute_archive_card,
    "create_checklist": _execute_create_checklist,
    "post_comment": _execute_post_comment,
    "send_notification": _execute_send_notification,
    "trigger_webhook": _execute_trigger_webhook,
}


def _action_timeout(action: Any) -> float:
    if action.type == "trigger_webhook":
        return settings.automation_webhook_timeout_seconds
    return settings.automation_action_timeout_seconds


async def execute_actions(ctx: ActionContext, actions: list[Any] | tuple[Any, ...]) -> list[ActionOutcome]:
    """Run actions sequentially and return one outcome per action, in order."""
    outcomes: list[ActionOutcome] = []
    for action in actions:
        handler = ACTION_HANDLERS.get(action.type)
        if not handler:
            outcomes.append(
                ActionOutcome(action=action, status=ExecutionStatus.FAILED, error=f"unsupported_action:{action.type}")
            )
            continue
        try:
            result = await asyncio.wait_for(handler(ctx, action), timeout=_action_timeout(action))
            await ctx.session.commit()
        except asyncio.TimeoutError:
            await ctx.session.rollback()
            logger.warning("Action %s of rule %s timed out", action.type, ctx.rule.id)
            outcomes.append(ActionOutcome(action=action, status=ExecutionStatus.FAILED, error="timeout"))
            continue
        except AutomationExecutionError as exc:
            await ctx.session.rollback()
            logger.info("Action %s of rule %s failed: %s", action.type, ctx.rule.id, exc.message)
            outcomes.append(ActionOutcome(action=action, status=ExecutionStatus.FAILED, error=exc.message))
            continue
        except Exception as exc:
            await ctx.session.rollback()
            logger.exception("Automation action %s failed for rule %s", action.type, ctx.rule.id)
            outcomes.append(ActionOutcome(action=action, status=ExecutionStatus.FAILED, error=str(exc) or "action_failed"))
            continue
        outcomes.append(
            ActionOutcome(
                action=action,
                status=ExecutionStatus.SUCCEEDED,
                produced_event=result.produced_event,
                detail=result.detail,
            )
        )
    return outcomes


async def _record_outcomes(
    session: AsyncSession, ctx: ActionContext, outcomes: list[ActionOutcome], *, rule_id: uuid.UUID | None
) -> None:
    for outcome in outcomes:
        detail = dict(outcome.detail)
        if outcome.error:
            detail["error"] = outcome.error
        if outcome.produced_event:
            detail["produced_event_id"] = str(outcome.produced_event.event_id)
        detail["depth"] = ctx.event.depth
        session.add(
            AutomationExecutionLog(
                rule_id=rule_id,
                board_id=ctx.rule.board_id,
                card_id=ctx.event.card_id,
                event_id=ctx.event.event_id,
                action_type=outcome.action.type,
                status=outcome.status,
                detail=detail,
            )
        )


async def _notify_auto_disabled(ctx: ActionContext, rule: AutomationRule, error: str | None) -> None:
    board = await ctx.gateway.get_board(rule.board_id)
    if not board:
        return
    await notification_service.notify(
        ctx.session,
        board.owner_id,
        {
            "kind": "automation_disabled",
            "title": f"Automation disabled: {rule.name}",
            "message": (
                f"The rule failed {rule.consecutive_failures} times in a row and was turned off. "
                f"Last error: {error or 'unknown'}"
            ),
            "link": f"/boards/{rule.board_id}/automations",
            "data": {"rule_id": str(rule.id)},
        },
    )


async def execute_rule(ctx: ActionContext) -> RuleRun:
    """Fire a rule's actions for an event and record the run."""
    outcomes = await execute_actions(ctx, ctx.rule.actions)
    run = RuleRun(rule_id=ctx.rule.id, outcomes=outcomes)
    session = ctx.session

    rule = await session.get(AutomationRule, ctx.rule.id, populate_existing=True)
    await _record_outcomes(session, ctx, outcomes, rule_id=rule.id if rule else None)
    if rule:
        rule.last_run_at = ctx.now
        if run.failed:
            first_error = next((outcome.error for outcome in outcomes if outcome.error), "action_failed")
            rule.consecutive_failures += 1
            rule.last_error = _truncate_error(first_error)
            if rule.is_enabled and rule.consecutive_failures >= settings.automation_failure_threshold:
                rule.is_enabled = False
                rule.version += 1
                run.disabled = True
                logger.warning(
                    "Automation rule %s disabled after %s consecutive failures",
                    rule.id,
                    rule.consecutive_failures,
                )
                await _notify_auto_disabled(ctx, rule, first_error)
        else:
            rule.consecutive_failures = 0
            rule.last_error = None
    await session.commit()
    return run
