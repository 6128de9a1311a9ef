"""Initial schema: projects, timers, time entries, settings and notifications

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 00:00:00.000000

Tables:
- clients / projects: display data and budgets (owned by the CRUD layer)
- running_timers: at most one per (tenant_id, user_id), enforced by
  uq_running_timers_tenant_user
- time_entries: open entry per running timer plus closed history and
  overrun placeholders
- user_settings: interrupt, budget warning and Pomodoro preferences
- notification_preferences / push_subscriptions: alert delivery settings

Written manually (not via autogenerate) consistent with project migration policy.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
    )
    op.create_index("ix_clients_tenant_id", "clients", ["tenant_id"])

    op.create_table(
        "projects",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("client_id", UUID(as_uuid=True), sa.ForeignKey("clients.id"), nullable=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("hourly_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("budget_type", sa.String(10), nullable=False, server_default="hours"),
        sa.Column("budget_hours", sa.Float(), nullable=True),
        sa.Column("budget_amount", sa.Float(), nullable=True),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_projects_tenant_id", "projects", ["tenant_id"])

    op.create_table(
        "running_timers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("project_id", UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_heartbeat_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("awaiting_ack", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("ack_shown_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_interrupt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("budget_warning_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("budget_warning_type", sa.String(10), nullable=True),
        sa.Column("overrun_alert_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_nudge_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pomodoro_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pomodoro_phase", sa.String(10), nullable=True),
        sa.Column("pomodoro_transition_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pomodoro_work_minutes", sa.Float(), nullable=True),
        sa.Column("pomodoro_break_minutes", sa.Float(), nullable=True),
        sa.Column("pomodoro_current_cycle", sa.Integer(), nullable=True),
        sa.Column("pomodoro_completed_cycles", sa.Integer(), nullable=True),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_running_timers_tenant_user"),
    )
    op.create_index(
        "ix_running_timers_awaiting_ack",
        "running_timers",
        ["awaiting_ack", "ack_shown_at"],
    )

    op.create_table(
        "time_entries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("project_id", UUID(as_uuid=True), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("stopped_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("seconds", sa.Integer(), nullable=True),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("is_overrun", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index(
        "ix_time_entries_tenant_user_started",
        "time_entries",
        ["tenant_id", "user_id", "started_at"],
    )
    op.create_index("ix_time_entries_project", "time_entries", ["project_id"])

    op.create_table(
        "user_settings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("interrupt_interval_minutes", sa.Float(), nullable=False, server_default="60"),
        sa.Column("interrupt_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("budget_warning_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("budget_warning_threshold_hours", sa.Float(), nullable=True, server_default="1"),
        sa.Column("budget_warning_threshold_amount", sa.Float(), nullable=True, server_default="50"),
        sa.Column("pomodoro_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pomodoro_work_minutes", sa.Float(), nullable=False, server_default="25"),
        sa.Column("pomodoro_break_minutes", sa.Float(), nullable=False, server_default="5"),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_user_settings_tenant_user"),
    )

    op.create_table(
        "notification_preferences",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("push_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("sms_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("webhook_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("fallback_email", sa.String(320), nullable=True),
        sa.Column("sms_number", sa.String(32), nullable=True),
        sa.Column("webhook_url", sa.Text(), nullable=True),
        sa.Column("quiet_hours_start", sa.String(5), nullable=True),
        sa.Column("quiet_hours_end", sa.String(5), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("escalation_delay_minutes", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("do_not_disturb", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_notification_prefs_tenant_user"),
    )

    op.create_table(
        "push_subscriptions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False, unique=True),
        sa.Column("p256dh_key", sa.String(255), nullable=False),
        sa.Column("auth_key", sa.String(255), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index(
        "ix_push_subscriptions_user_active",
        "push_subscriptions",
        ["tenant_id", "user_id", "is_active"],
    )


def downgrade() -> None:
    op.drop_index("ix_push_subscriptions_user_active", table_name="push_subscriptions")
    op.drop_table("push_subscriptions")
    op.drop_table("notification_preferences")
    op.drop_table("user_settings")
    op.drop_index("ix_time_entries_project", table_name="time_entries")
    op.drop_index("ix_time_entries_tenant_user_started", table_name="time_entries")
    op.drop_table("time_entries")
    op.drop_index("ix_running_timers_awaiting_ack", table_name="running_timers")
    op.drop_table("running_timers")
    op.drop_index("ix_projects_tenant_id", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_clients_tenant_id", table_name="clients")
    op.drop_table("clients")
