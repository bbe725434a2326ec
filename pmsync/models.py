from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


class Base(DeclarativeBase):
  pass


# Attribute names match the SQL Server column names so both stores share one field table.


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  email: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
  username: Mapped[str] = mapped_column(String, nullable=False)
  name: Mapped[str | None] = mapped_column(String, nullable=True)
  password: Mapped[str] = mapped_column(String, nullable=False)
  role: Mapped[str] = mapped_column(String, nullable=False, default="MEMBER")
  avatar_url: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Project(Base):
  __tablename__ = "projects"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
  end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
  priority: Mapped[str] = mapped_column(String, nullable=False, default="MEDIUM")
  banner_image: Mapped[str | None] = mapped_column(String, nullable=True)
  status: Mapped[str | None] = mapped_column(String, nullable=True)
  owner_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
  created_by: Mapped[str | None] = mapped_column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class TaskStatus(Base):
  __tablename__ = "task_statuses"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  name: Mapped[str] = mapped_column(String, nullable=False)
  order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  project_id: Mapped[str] = mapped_column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
  created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  title: Mapped[str] = mapped_column(String, nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  priority: Mapped[str] = mapped_column(String, nullable=False, default="MEDIUM")
  due_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
  estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
  actual_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
  documentation: Mapped[str | None] = mapped_column(Text, nullable=True)
  progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  last_alert_sent: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
  completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
  project_id: Mapped[str] = mapped_column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
  status_id: Mapped[str] = mapped_column(String, ForeignKey("task_statuses.id"), nullable=False, index=True)
  assignee_id: Mapped[str | None] = mapped_column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
  created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Comment(Base):
  __tablename__ = "comments"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  task_id: Mapped[str] = mapped_column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
  content: Mapped[str] = mapped_column(Text, nullable=False)
  created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Attachment(Base):
  __tablename__ = "attachments"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  task_id: Mapped[str] = mapped_column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
  file_name: Mapped[str] = mapped_column(String, nullable=False)
  file_url: Mapped[str] = mapped_column(String, nullable=False)
  file_type: Mapped[str] = mapped_column(String, nullable=False)
  file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class ProjectMember(Base):
  __tablename__ = "project_members"
  __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_member"),)

  id: Mapped[str] = mapped_column(String, primary_key=True)
  project_id: Mapped[str] = mapped_column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
  role: Mapped[str] = mapped_column(String, nullable=False, default="MEMBER")
  joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
  added_by: Mapped[str | None] = mapped_column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
