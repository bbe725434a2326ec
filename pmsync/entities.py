from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Literal

FieldKind = Literal["str", "int", "float", "datetime"]

Record = dict[str, Any]


class SchemaError(ValueError):
  def __init__(self, message: str, *, entity: str | None = None, fields: list[str] | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.entity = entity
    self.fields = fields or []


@dataclass(frozen=True)
class FieldSpec:
  name: str
  column: str
  kind: FieldKind = "str"


@dataclass(frozen=True)
class EntitySchema:
  key: str
  table: str
  id_prefix: str
  fields: tuple[FieldSpec, ...]
  filters: frozenset[str] = frozenset()
  order_by: tuple[str, ...] = ("createdAt",)

  @property
  def field_names(self) -> tuple[str, ...]:
    return tuple(f.name for f in self.fields)

  @property
  def tracked_fields(self) -> tuple[FieldSpec, ...]:
    return tuple(f for f in self.fields if f.name != "id")

  def has_field(self, name: str) -> bool:
    return any(f.name == name for f in self.fields)

  def field(self, name: str) -> FieldSpec:
    for f in self.fields:
      if f.name == name:
        return f
    raise SchemaError(f"Unknown field for {self.key}: {name}", entity=self.key, fields=[name])

  def check_fields(self, names: Iterable[str]) -> None:
    known = set(self.field_names)
    unknown = sorted(str(n) for n in names if n not in known)
    if unknown:
      raise SchemaError(f"Unknown field(s) for {self.key}: {', '.join(unknown)}", entity=self.key, fields=unknown)

  def check_filters(self, names: Iterable[str]) -> None:
    unsupported = sorted(str(n) for n in names if n not in self.filters)
    if unsupported:
      allowed = ", ".join(sorted(self.filters)) or "none"
      raise SchemaError(
        f"Unsupported filter(s) for {self.key}: {', '.join(unsupported)} (supported: {allowed})",
        entity=self.key,
        fields=unsupported,
      )


def _f(name: str, column: str | None = None, kind: FieldKind = "str") -> FieldSpec:
  return FieldSpec(name=name, column=column or name, kind=kind)


_TIMESTAMPS = (_f("createdAt", "created_at", "datetime"), _f("updatedAt", "updated_at", "datetime"))


USERS = EntitySchema(
  key="users",
  table="pm_users",
  id_prefix="user",
  fields=(
    _f("id"),
    _f("email"),
    _f("username"),
    _f("name"),
    _f("password"),
    _f("role"),
    _f("avatarUrl", "avatar_url"),
    *_TIMESTAMPS,
  ),
  filters=frozenset({"email", "username", "role"}),
)

PROJECTS = EntitySchema(
  key="projects",
  table="pm_projects",
  id_prefix="proj",
  fields=(
    _f("id"),
    _f("name"),
    _f("description"),
    _f("startDate", "start_date", "datetime"),
    _f("endDate", "end_date", "datetime"),
    _f("priority"),
    _f("bannerImage", "banner_image"),
    _f("status"),
    _f("ownerId", "owner_id"),
    _f("createdBy", "created_by"),
    *_TIMESTAMPS,
  ),
  filters=frozenset({"ownerId", "status", "createdBy"}),
)

STATUSES = EntitySchema(
  key="statuses",
  table="pm_task_statuses",
  id_prefix="status",
  fields=(
    _f("id"),
    _f("name"),
    _f("order", kind="int"),
    _f("projectId", "project_id"),
    *_TIMESTAMPS,
  ),
  filters=frozenset({"projectId", "name"}),
  order_by=("projectId", "order"),
)

TASKS = EntitySchema(
  key="tasks",
  table="pm_tasks",
  id_prefix="task",
  fields=(
    _f("id"),
    _f("title"),
    _f("description"),
    _f("priority"),
    _f("dueDate", "due_date", "datetime"),
    _f("estimatedHours", "estimated_hours", "float"),
    _f("actualHours", "actual_hours", "float"),
    _f("documentation"),
    _f("progress", kind="int"),
    _f("lastAlertSent", "last_alert_sent", "datetime"),
    _f("completedAt", "completed_at", "datetime"),
    _f("projectId", "project_id"),
    _f("statusId", "status_id"),
    _f("assigneeId", "assignee_id"),
    *_TIMESTAMPS,
  ),
  filters=frozenset({"projectId", "statusId", "assigneeId"}),
)

COMMENTS = EntitySchema(
  key="comments",
  table="pm_comments",
  id_prefix="comment",
  fields=(
    _f("id"),
    _f("taskId", "task_id"),
    _f("userId", "user_id"),
    _f("content"),
    *_TIMESTAMPS,
  ),
  filters=frozenset({"taskId", "userId"}),
)

ATTACHMENTS = EntitySchema(
  key="attachments",
  table="pm_attachments",
  id_prefix="att",
  fields=(
    _f("id"),
    _f("taskId", "task_id"),
    _f("fileName", "file_name"),
    _f("fileUrl", "file_url"),
    _f("fileType", "file_type"),
    _f("fileSize", "file_size", "int"),
    _f("createdAt", "created_at", "datetime"),
  ),
  filters=frozenset({"taskId", "fileType"}),
)

PROJECT_MEMBERS = EntitySchema(
  key="project_members",
  table="pm_project_members",
  id_prefix="member",
  fields=(
    _f("id"),
    _f("projectId", "project_id"),
    _f("userId", "user_id"),
    _f("role"),
    _f("joinedAt", "joined_at", "datetime"),
    _f("addedBy", "added_by"),
  ),
  filters=frozenset({"projectId", "userId", "role"}),
  order_by=("joinedAt",),
)

# Foreign-key dependency order: every table only references tables before it.
SYNC_ORDER: tuple[str, ...] = (
  "users",
  "projects",
  "statuses",
  "tasks",
  "comments",
  "attachments",
  "project_members",
)

ENTITIES: dict[str, EntitySchema] = {
  s.key: s for s in (USERS, PROJECTS, STATUSES, TASKS, COMMENTS, ATTACHMENTS, PROJECT_MEMBERS)
}

MEMBER_ROLES = ("OWNER", "PM", "MEMBER")


def get_entity(key: str) -> EntitySchema:
  schema = ENTITIES.get(key)
  if schema is None:
    raise SchemaError(f"Unknown entity: {key}", entity=key)
  return schema


def new_id(prefix: str) -> str:
  return f"{prefix}_{uuid.uuid4().hex}"
