"""Initial boards, automation rules, execution logs, and recurring configs.

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 00:00:01
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261018_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_COMPATIBLE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
CARD_PRIORITY = sa.Enum("low", "medium", "high", "urgent", name="card_priority")
EXECUTION_STATUS = sa.Enum("succeeded", "failed", "throttled", name="automation_execution_status")


def upgrade() -> None:
    """Create board data, automation, and recurrence tables."""
    op.create_table(
        "boards",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_boards"),
    )
    op.create_index("ix_boards_owner_id", "boards", ["owner_id"], unique=False)

    op.create_table(
        "board_columns",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("board_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["board_id"], ["boards.id"], name="fk_board_columns_board_id_boards", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_board_columns"),
    )
    op.create_index("ix_board_columns_board_id", "board_columns", ["board_id"], unique=False)

    op.create_table(
        "cards",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("board_id", sa.Uuid(), nullable=False),
        sa.Column("column_id", sa.Uuid(), nullable=False),
        sa.Column("swimlane_id", sa.Uuid(), nullable=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", CARD_PRIORITY, nullable=False),
        sa.Column("label_ids", JSON_COMPATIBLE, nullable=False),
        sa.Column("assignee_ids", JSON_COMPATIBLE, nullable=False),
        sa.Column("custom_fields", JSON_COMPATIBLE, nullable=False),
        sa.Column("checklists", JSON_COMPATIBLE, nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("due_reached_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["board_id"], ["boards.id"], name="fk_cards_board_id_boards", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["column_id"], ["board_columns.id"], name="fk_cards_column_id_board_columns", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_cards"),
    )
    op.create_index("ix_cards_board_id", "cards", ["board_id"], unique=False)
    op.create_index("ix_cards_column_id", "cards", ["column_id"], unique=False)
    op.create_index("ix_cards_due_date", "cards", ["due_date"], unique=False)

    op.create_table(
        "card_comments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("card_id", sa.Uuid(), nullable=False),
        sa.Column("author_id", sa.Uuid(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["card_id"], ["cards.id"], name="fk_card_comments_card_id_cards", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_card_comments"),
    )
    op.create_index("ix_card_comments_card_id", "card_comments", ["card_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.String(length=2000), nullable=False),
        sa.Column("link", sa.String(length=500), nullable=True),
        sa.Column("payload", JSON_COMPATIBLE, nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)

    op.create_table(
        "automation_rules",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("board_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("trigger", JSON_COMPATIBLE, nullable=False),
        sa.Column("trigger_type", sa.String(length=64), nullable=False),
        sa.Column("conditions", JSON_COMPATIBLE, nullable=False),
        sa.Column("actions", JSON_COMPATIBLE, nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False),
        sa.Column("created_by_id", sa.Uuid(), nullable=True),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["board_id"], ["boards.id"], name="fk_automation_rules_board_id_boards", ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id", name="pk_automation_rules"),
    )
    op.create_index("ix_automation_rules_board_id", "automation_rules", ["board_id"], unique=False)
    op.create_index("ix_automation_rules_trigger_type", "automation_rules", ["trigger_type"], unique=False)

    op.create_table(
        "automation_execution_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("rule_id", sa.Uuid(), nullable=True),
        sa.Column("board_id", sa.Uuid(), nullable=False),
        sa.Column("card_id", sa.Uuid(), nullable=True),
        sa.Column("event_id", sa.Uuid(), nullable=True),
        sa.Column("action_type", sa.String(length=64), nullable=True),
        sa.Column("status", EXECUTION_STATUS, nullable=False),
        sa.Column("detail", JSON_COMPATIBLE, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["rule_id"],
            ["automation_rules.id"],
            name="fk_automation_execution_logs_rule_id_automation_rules",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_automation_execution_logs"),
    )
    op.create_index(
        "ix_automation_execution_logs_rule_id", "automation_execution_logs", ["rule_id"], unique=False
    )
    op.create_index(
        "ix_automation_execution_logs_board_id", "automation_execution_logs", ["board_id"], unique=False
    )
    op.create_index(
        "ix_automation_execution_logs_created_at", "automation_execution_logs", ["created_at"], unique=False
    )

    op.create_table(
        "recurring_configs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("template_card_id", sa.Uuid(), nullable=False),
        sa.Column("cron_expression", sa.String(length=120), nullable=False),
        sa.Column("next_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("claim_version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["template_card_id"],
            ["cards.id"],
            name="fk_recurring_configs_template_card_id_cards",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_recurring_configs"),
        sa.UniqueConstraint("template_card_id", name="uq_recurring_configs_template_card_id"),
    )
    op.create_index("ix_recurring_configs_next_run_at", "recurring_configs", ["next_run_at"], unique=False)


def downgrade() -> None:
    """Drop automation and board tables."""
    op.drop_index("ix_recurring_configs_next_run_at", table_name="recurring_configs")
    op.drop_table("recurring_configs")
    op.drop_index("ix_automation_execution_logs_created_at", table_name="automation_execution_logs")
    op.drop_index("ix_automation_execution_logs_board_id", table_name="automation_execution_logs")
    op.drop_index("ix_automation_execution_logs_rule_id", table_name="automation_execution_logs")
    op.drop_table("automation_execution_logs")
    op.drop_index("ix_automation_rules_trigger_type", table_name="automation_rules")
    op.drop_index("ix_automation_rules_board_id", table_name="automation_rules")
    op.drop_table("automation_rules")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_card_comments_card_id", table_name="card_comments")
    op.drop_table("card_comments")
    op.drop_index("ix_cards_due_date", table_name="cards")
    op.drop_index("ix_cards_column_id", table_name="cards")
    op.drop_index("ix_cards_board_id", table_name="cards")
    op.drop_table("cards")
    op.drop_index("ix_board_columns_board_id", table_name="board_columns")
    op.drop_table("board_columns")
    op.drop_index("ix_boards_owner_id", table_name="boards")
    op.drop_table("boards")
    EXECUTION_STATUS.drop(op.get_bind(), checkfirst=True)
    CARD_PRIORITY.drop(op.get_bind(), checkfirst=True)
