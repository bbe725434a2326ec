"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
  return [
    sa.Column("created_at", sa.DateTime(), nullable=False),
    sa.Column("updated_at", sa.DateTime(), nullable=False),
  ]


def upgrade() -> None:
  op.create_table(
    "users",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("email", sa.String(), nullable=False),
    sa.Column("username", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=True),
    sa.Column("password", sa.String(), nullable=False),
    sa.Column("role", sa.String(), nullable=False),
    sa.Column("avatar_url", sa.String(), nullable=True),
    *_timestamps(),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.create_table(
    "projects",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("start_date", sa.DateTime(), nullable=True),
    sa.Column("end_date", sa.DateTime(), nullable=True),
    sa.Column("priority", sa.String(), nullable=False),
    sa.Column("banner_image", sa.String(), nullable=True),
    sa.Column("status", sa.String(), nullable=True),
    sa.Column("owner_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("created_by", sa.String(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    *_timestamps(),
  )
  op.create_index("ix_projects_owner_id", "projects", ["owner_id"], unique=False)

  op.create_table(
    "task_statuses",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("order", sa.Integer(), nullable=False),
    sa.Column("project_id", sa.String(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    *_timestamps(),
  )
  op.create_index("ix_task_statuses_project_id", "task_statuses", ["project_id"], unique=False)

  op.create_table(
    "tasks",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("priority", sa.String(), nullable=False),
    sa.Column("due_date", sa.DateTime(), nullable=True),
    sa.Column("estimated_hours", sa.Float(), nullable=True),
    sa.Column("actual_hours", sa.Float(), nullable=True),
    sa.Column("documentation", sa.Text(), nullable=True),
    sa.Column("progress", sa.Integer(), nullable=False),
    sa.Column("last_alert_sent", sa.DateTime(), nullable=True),
    sa.Column("completed_at", sa.DateTime(), nullable=True),
    sa.Column("project_id", sa.String(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    sa.Column("status_id", sa.String(), sa.ForeignKey("task_statuses.id"), nullable=False),
    sa.Column("assignee_id", sa.String(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    *_timestamps(),
  )
  op.create_index("ix_tasks_project_id", "tasks", ["project_id"], unique=False)
  op.create_index("ix_tasks_status_id", "tasks", ["status_id"], unique=False)
  op.create_index("ix_tasks_assignee_id", "tasks", ["assignee_id"], unique=False)

  op.create_table(
    "comments",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("task_id", sa.String(), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
    sa.Column("content", sa.Text(), nullable=False),
    *_timestamps(),
  )
  op.create_index("ix_comments_task_id", "comments", ["task_id"], unique=False)

  op.create_table(
    "attachments",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("task_id", sa.String(), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    sa.Column("file_name", sa.String(), nullable=False),
    sa.Column("file_url", sa.String(), nullable=False),
    sa.Column("file_type", sa.String(), nullable=False),
    sa.Column("file_size", sa.Integer(), nullable=False),
    sa.Column("created_at", sa.DateTime(), nullable=False),
  )
  op.create_index("ix_attachments_task_id", "attachments", ["task_id"], unique=False)

  op.create_table(
    "project_members",
    sa.Column("id", sa.String(), primary_key=True),
    sa.Column("project_id", sa.String(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
    sa.Column("user_id", sa.String(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("role", sa.String(), nullable=False),
    sa.Column("joined_at", sa.DateTime(), nullable=False),
    sa.Column("added_by", sa.String(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    sa.UniqueConstraint("project_id", "user_id", name="uq_project_member"),
  )
  op.create_index("ix_project_members_project_id", "project_members", ["project_id"], unique=False)
  op.create_index("ix_project_members_user_id", "project_members", ["user_id"], unique=False)


def downgrade() -> None:
  op.drop_table("project_members")
  op.drop_table("attachments")
  op.drop_table("comments")
  op.drop_table("tasks")
  op.drop_table("task_statuses")
  op.drop_table("projects")
  op.drop_table("users")
