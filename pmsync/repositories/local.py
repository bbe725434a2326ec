from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from pmsync.entities import EntitySchema, Record, SchemaError, get_entity, new_id
from pmsync.mapper import normalize_datetime
from pmsync.models import Attachment, Base, Comment, Project, ProjectMember, Task, TaskStatus, User

MODELS: dict[str, type[Base]] = {
  "users": User,
  "projects": Project,
  "statuses": TaskStatus,
  "tasks": Task,
  "comments": Comment,
  "attachments": Attachment,
  "project_members": ProjectMember,
}


def _to_db_value(schema: EntitySchema, name: str, value: Any) -> Any:
  if value is None:
    return None
  if schema.field(name).kind == "datetime":
    try:
      dt = normalize_datetime(value)
    except SchemaError as e:
      raise SchemaError(f"{name}: {e.message}", entity=schema.key, fields=[name]) from e
    # SQLite keeps naive timestamps; everything stored is UTC.
    return dt.replace(tzinfo=None) if dt is not None else None
  return value


def _from_db_value(schema: EntitySchema, name: str, value: Any) -> Any:
  if value is None:
    return None
  if schema.field(name).kind == "datetime":
    return normalize_datetime(value)
  return value


class LocalEntityRepository:
  def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], schema: EntitySchema) -> None:
    self._sessionmaker = sessionmaker
    self.schema = schema
    self.model = MODELS[schema.key]

  def _record(self, obj: Any) -> Record:
    return {f.name: _from_db_value(self.schema, f.name, getattr(obj, f.column)) for f in self.schema.fields}

  def _values(self, fields: Mapping[str, Any]) -> dict[str, Any]:
    self.schema.check_fields(fields.keys())
    return {self.schema.field(k).column: _to_db_value(self.schema, k, v) for k, v in fields.items()}

  async def find_unique(self, key: str) -> Record | None:
    async with self._sessionmaker() as db:
      obj = await db.get(self.model, key)
      return self._record(obj) if obj is not None else None

  async def find_many(self, filter: Mapping[str, Any] | None = None) -> list[Record]:
    where = dict(filter or {})
    self.schema.check_filters(where.keys())
    q = select(self.model)
    for name, value in where.items():
      col = getattr(self.model, self.schema.field(name).column)
      q = q.where(col.is_(None) if value is None else col == _to_db_value(self.schema, name, value))
    q = q.order_by(*[getattr(self.model, self.schema.field(n).column).asc() for n in self.schema.order_by], self.model.id.asc())
    async with self._sessionmaker() as db:
      res = await db.execute(q)
      return [self._record(obj) for obj in res.scalars().all()]

  async def create(self, fields: Mapping[str, Any]) -> Record:
    values = self._values(fields)
    values["id"] = values.get("id") or new_id(self.schema.id_prefix)
    async with self._sessionmaker() as db:
      obj = self.model(**values)
      db.add(obj)
      await db.commit()
      return self._record(obj)

  async def update(self, key: str, fields: Mapping[str, Any]) -> Record | None:
    if "id" in fields and fields["id"] != key:
      raise SchemaError(f"Cannot change id of {self.schema.key} {key}", entity=self.schema.key, fields=["id"])
    values = self._values(fields)
    values.pop("id", None)
    async with self._sessionmaker() as db:
      obj = await db.get(self.model, key)
      if obj is None:
        return None
      for column, value in values.items():
        setattr(obj, column, value)
        # Written even when unchanged, so a supplied updated_at wins over onupdate.
        flag_modified(obj, column)
      await db.commit()
      return self._record(obj)

  async def delete(self, key: str) -> bool:
    async with self._sessionmaker() as db:
      obj = await db.get(self.model, key)
      if obj is None:
        return False
      await db.delete(obj)
      await db.commit()
      return True


class LocalRepository:
  name = "local"
  concurrent_writes = False

  def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
    self._sessionmaker = sessionmaker
    self._entities: dict[str, LocalEntityRepository] = {}

  def entity(self, key: str) -> LocalEntityRepository:
    repo = self._entities.get(key)
    if repo is None:
      repo = LocalEntityRepository(self._sessionmaker, get_entity(key))
      self._entities[key] = repo
    return repo
