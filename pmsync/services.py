from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pmsync.entities import MEMBER_ROLES, Record
from pmsync.repositories.base import Repository

logger = logging.getLogger(__name__)

DEFAULT_STATUSES: tuple[tuple[str, int], ...] = (("To Do", 0), ("In Progress", 1), ("Done", 2))


def _now() -> datetime:
  return datetime.now(timezone.utc)


async def _require(repo: Repository, key: str, record_id: str | None, label: str) -> Record:
  rec = await repo.entity(key).find_unique(record_id) if record_id else None
  if rec is None:
    raise ValueError(f"{label} not found: {record_id}")
  return rec


async def create_project(
  repo: Repository,
  *,
  name: str,
  owner_id: str,
  description: str | None = None,
  start_date: datetime | None = None,
  end_date: datetime | None = None,
  priority: str = "MEDIUM",
  status: str | None = None,
  created_by: str | None = None,
) -> Record:
  """Create a project with its default statuses and the owner's membership."""
  name = (name or "").strip()
  if not name:
    raise ValueError("Project name is required")
  await _require(repo, "users", owner_id, "User")

  now = _now()
  project = await repo.entity("projects").create(
    {
      "name": name,
      "description": description,
      "startDate": start_date,
      "endDate": end_date,
      "priority": priority,
      "status": status,
      "ownerId": owner_id,
      "createdBy": created_by or owner_id,
      "createdAt": now,
      "updatedAt": now,
    }
  )
  statuses = repo.entity("statuses")
  for status_name, order in DEFAULT_STATUSES:
    await statuses.create({"name": status_name, "order": order, "projectId": project["id"], "createdAt": now, "updatedAt": now})
  await repo.entity("project_members").create(
    {"projectId": project["id"], "userId": owner_id, "role": "OWNER", "joinedAt": now, "addedBy": created_by or owner_id}
  )
  logger.info("Created project %s with %d statuses on %s", project["id"], len(DEFAULT_STATUSES), repo.name)
  return project


async def create_task(
  repo: Repository,
  *,
  project_id: str,
  status_id: str,
  title: str,
  description: str | None = None,
  priority: str = "MEDIUM",
  due_date: datetime | None = None,
  estimated_hours: float | None = None,
  assignee_id: str | None = None,
) -> Record:
  title = (title or "").strip()
  if not title:
    raise ValueError("Task title is required")
  await _require(repo, "projects", project_id, "Project")
  status = await _require(repo, "statuses", status_id, "Status")
  if status.get("projectId") != project_id:
    raise ValueError(f"Status {status_id} does not belong to project {project_id}")
  if assignee_id:
    await _require(repo, "users", assignee_id, "User")

  now = _now()
  fields: dict[str, Any] = {
    "title": title,
    "description": description,
    "priority": priority,
    "dueDate": due_date,
    "estimatedHours": estimated_hours,
    "progress": 0,
    "projectId": project_id,
    "statusId": status_id,
    "assigneeId": assignee_id,
    "createdAt": now,
    "updatedAt": now,
  }
  return await repo.entity("tasks").create(fields)


async def add_member(
  repo: Repository,
  *,
  project_id: str,
  user_id: str,
  role: str = "MEMBER",
  added_by: str | None = None,
) -> Record:
  role = (role or "").strip().upper()
  if role not in MEMBER_ROLES:
    raise ValueError(f"Invalid role {role!r}. Must be one of: {', '.join(MEMBER_ROLES)}")
  await _require(repo, "projects", project_id, "Project")
  await _require(repo, "users", user_id, "User")

  members = repo.entity("project_members")
  if await members.find_many({"projectId": project_id, "userId": user_id}):
    raise ValueError(f"User {user_id} is already a member of project {project_id}")
  return await members.create(
    {"projectId": project_id, "userId": user_id, "role": role, "joinedAt": _now(), "addedBy": added_by}
  )
