"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
  return [
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
  ]


def upgrade() -> None:
  op.create_table(
    "users",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("username", sa.String(64), nullable=False),
    sa.Column("email", sa.String(320), nullable=False),
    sa.Column("password_hash", sa.String(), nullable=False),
    sa.Column("role", sa.String(16), nullable=False),
    *_timestamps(),
  )
  op.create_index("ix_users_username", "users", ["username"], unique=True)
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.create_table(
    "sessions",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("created_ip", sa.String(), nullable=True),
    sa.Column("user_agent", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_sessions_user_id", "sessions", ["user_id"], unique=False)

  op.create_table(
    "projects",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("name", sa.String(200), nullable=False),
    sa.Column("description", sa.Text(), nullable=False),
    sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("status", sa.String(16), nullable=False),
    sa.Column("start_date", sa.Date(), nullable=True),
    sa.Column("end_date", sa.Date(), nullable=True),
    sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("version", sa.Integer(), nullable=False),
    *_timestamps(),
  )
  op.create_index("ix_projects_owner_id", "projects", ["owner_id"], unique=False)

  op.create_table(
    "project_members",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id"), nullable=False),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("role", sa.String(16), nullable=False),
    sa.Column("invited_by", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("version", sa.Integer(), nullable=False),
    *_timestamps(),
    sa.UniqueConstraint("project_id", "user_id", name="ux_project_member_project_user"),
  )
  op.create_index("ix_project_members_project_id", "project_members", ["project_id"], unique=False)
  op.create_index("ix_project_members_user_id", "project_members", ["user_id"], unique=False)

  op.create_table(
    "stages",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id"), nullable=False),
    sa.Column("name", sa.String(120), nullable=False),
    sa.Column("description", sa.Text(), nullable=False),
    sa.Column("color", sa.String(16), nullable=False),
    sa.Column("position", sa.Integer(), nullable=False),
    sa.Column("task_limit", sa.Integer(), nullable=False),
    sa.Column("allow_task_creation", sa.Boolean(), nullable=False),
    sa.Column("allow_task_deletion", sa.Boolean(), nullable=False),
    sa.Column("allow_task_movement", sa.Boolean(), nullable=False),
    sa.Column("max_tasks", sa.Integer(), nullable=False),
    sa.Column("notification_enabled", sa.Boolean(), nullable=False),
    sa.Column("auto_assign_status", sa.String(32), nullable=True),
    sa.Column("is_completed", sa.Boolean(), nullable=False),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("version", sa.Integer(), nullable=False),
    *_timestamps(),
  )
  op.create_index("ix_stages_project_id", "stages", ["project_id"], unique=False)

  op.create_table(
    "tasks",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("stage_id", sa.String(36), sa.ForeignKey("stages.id"), nullable=False),
    sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id"), nullable=False),
    sa.Column("title", sa.String(300), nullable=False),
    sa.Column("description", sa.Text(), nullable=False),
    sa.Column("status", sa.String(32), nullable=False),
    sa.Column("priority", sa.String(8), nullable=False),
    sa.Column("assignee_id", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("due_date", sa.Date(), nullable=True),
    sa.Column("estimated_hours", sa.Float(), nullable=True),
    sa.Column("actual_hours", sa.Float(), nullable=True),
    sa.Column("position", sa.Integer(), nullable=False),
    sa.Column("created_by", sa.String(36), sa.ForeignKey("users.id"), nullable=True),
    sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("version", sa.Integer(), nullable=False),
    *_timestamps(),
  )
  op.create_index("ix_tasks_stage_id", "tasks", ["stage_id"], unique=False)
  op.create_index("ix_tasks_project_id", "tasks", ["project_id"], unique=False)
  op.create_index("ix_tasks_assignee_id", "tasks", ["assignee_id"], unique=False)

  op.create_table(
    "comments",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("task_id", sa.String(36), sa.ForeignKey("tasks.id"), nullable=False),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("content", sa.Text(), nullable=False),
    sa.Column("media_id", sa.String(), nullable=True),
    sa.Column("media_type", sa.String(32), nullable=True),
    sa.Column("media_name", sa.String(), nullable=True),
    sa.Column("reply_to_id", sa.String(36), nullable=True),
    sa.Column("parent_comment_id", sa.String(36), nullable=True),
    *_timestamps(),
  )
  op.create_index("ix_comments_task_id", "comments", ["task_id"], unique=False)
  op.create_index("ix_comments_user_id", "comments", ["user_id"], unique=False)
  op.create_index("ix_comments_parent_comment_id", "comments", ["parent_comment_id"], unique=False)

  op.create_table(
    "task_activities",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("task_id", sa.String(36), nullable=True),
    sa.Column("project_id", sa.String(36), nullable=False),
    sa.Column("user_id", sa.String(36), nullable=True),
    sa.Column("action_type", sa.String(32), nullable=False),
    sa.Column("description", sa.Text(), nullable=False),
    sa.Column("field_name", sa.String(64), nullable=True),
    sa.Column("old_value", sa.Text(), nullable=True),
    sa.Column("new_value", sa.Text(), nullable=True),
    sa.Column("details", sa.JSON(), nullable=False),
    sa.Column("ip_address", sa.String(), nullable=True),
    sa.Column("user_agent", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
  )
  op.create_index("ix_task_activities_task_id", "task_activities", ["task_id"], unique=False)
  op.create_index("ix_task_activities_project_id", "task_activities", ["project_id"], unique=False)
  op.create_index("ix_task_activities_user_id", "task_activities", ["user_id"], unique=False)
  op.create_index("ix_task_activities_created_at", "task_activities", ["created_at"], unique=False)

  op.create_table(
    "user_presence",
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("project_id", sa.String(36), sa.ForeignKey("projects.id"), nullable=False),
    sa.Column("connection_id", sa.String(), nullable=True),
    sa.Column("is_online", sa.Boolean(), nullable=False),
    sa.Column("last_heartbeat", sa.DateTime(timezone=True), nullable=False),
    sa.Column("last_activity", sa.DateTime(timezone=True), nullable=False),
    sa.Column("user_agent", sa.String(), nullable=True),
    sa.Column("ip_address", sa.String(), nullable=True),
    *_timestamps(),
    sa.UniqueConstraint("user_id", "project_id", name="ux_user_presence_user_project"),
  )
  op.create_index("ix_user_presence_user_id", "user_presence", ["user_id"], unique=False)
  op.create_index("ix_user_presence_project_id", "user_presence", ["project_id"], unique=False)


def downgrade() -> None:
  op.drop_table("user_presence")
  op.drop_table("task_activities")
  op.drop_table("comments")
  op.drop_table("tasks")
  op.drop_table("stages")
  op.drop_table("project_members")
  op.drop_table("projects")
  op.drop_table("sessions")
  op.drop_table("users")
