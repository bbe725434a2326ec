from __future__ import annotations

from typing import Any, Mapping

from pmsync.entities import EntitySchema, Record, SchemaError, get_entity, new_id
from pmsync.gateway.client import GatewayError, SqlGatewayClient
from pmsync.mapper import from_remote_columns, to_remote_columns


def _quote(identifier: str) -> str:
  # Names containing brackets are rejected, not escaped.
  if not identifier or "]" in identifier or "[" in identifier:
    raise SchemaError(f"Invalid identifier: {identifier!r}")
  return f"[{identifier}]"


def _column_list(schema: EntitySchema, prefix: str = "") -> str:
  return ", ".join(f"{prefix}{_quote(f.column)}" for f in schema.fields)


def _order_clause(schema: EntitySchema) -> str:
  cols = [_quote(schema.field(n).column) for n in schema.order_by]
  if "[id]" not in cols:
    cols.append("[id]")
  return " ORDER BY " + ", ".join(f"{c} ASC" for c in cols)


def build_select(schema: EntitySchema, where: Mapping[str, Any] | None = None, *, top: int | None = None) -> tuple[str, dict[str, Any]]:
  where = dict(where or {})
  params = to_remote_columns(where, strict=True)
  conditions: list[str] = []
  for column, value in list(params.items()):
    if value is None:
      conditions.append(f"{_quote(column)} IS NULL")
      params.pop(column)
    else:
      conditions.append(f"{_quote(column)} = @{column}")
  head = f"SELECT TOP {int(top)} " if top else "SELECT "
  sql = f"{head}{_column_list(schema)} FROM {_quote(schema.table)}"
  if conditions:
    sql += " WHERE " + " AND ".join(conditions)
  if not top:
    sql += _order_clause(schema)
  return sql, params


def build_insert(schema: EntitySchema, fields: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
  """Guarded insert: re-running it after a lost response inserts nothing."""
  schema.check_fields(fields.keys())
  params = to_remote_columns(fields, strict=True)
  if not params.get("id"):
    raise SchemaError(f"id is required to insert into {schema.key}", entity=schema.key, fields=["id"])
  columns = list(params.keys())
  table = _quote(schema.table)
  sql = (
    f"IF NOT EXISTS (SELECT 1 FROM {table} WHERE [id] = @id) "
    f"INSERT INTO {table} ({', '.join(_quote(c) for c in columns)}) "
    f"OUTPUT {_column_list(schema, 'INSERTED.')} "
    f"VALUES ({', '.join('@' + c for c in columns)})"
  )
  return sql, params


def build_update(schema: EntitySchema, key: str, fields: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
  schema.check_fields(fields.keys())
  if "id" in fields and fields["id"] != key:
    raise SchemaError(f"Cannot change id of {schema.key} {key}", entity=schema.key, fields=["id"])
  params = to_remote_columns({k: v for k, v in fields.items() if k != "id"}, strict=True)
  if not params:
    raise SchemaError(f"No fields to update for {schema.key} {key}", entity=schema.key)
  set_clause = ", ".join(f"{_quote(c)} = @{c}" for c in params)
  sql = f"UPDATE {_quote(schema.table)} SET {set_clause} OUTPUT {_column_list(schema, 'INSERTED.')} WHERE [id] = @id"
  params["id"] = key
  return sql, params


def build_delete(schema: EntitySchema, key: str) -> tuple[str, dict[str, Any]]:
  return f"DELETE FROM {_quote(schema.table)} WHERE [id] = @id", {"id": key}


class GatewayEntityRepository:
  def __init__(self, client: SqlGatewayClient, schema: EntitySchema) -> None:
    self._client = client
    self.schema = schema

  def _record(self, row: Mapping[str, Any]) -> Record:
    return from_remote_columns(row, strict=True)

  async def find_unique(self, key: str) -> Record | None:
    sql, params = build_select(self.schema, {"id": key}, top=1)
    result = await self._client.execute(sql, params, idempotent=True)
    return self._record(result.first) if result.first else None

  async def find_many(self, filter: Mapping[str, Any] | None = None) -> list[Record]:
    where = dict(filter or {})
    self.schema.check_filters(where.keys())
    sql, params = build_select(self.schema, where)
    result = await self._client.execute(sql, params, idempotent=True)
    return [self._record(r) for r in result.recordset]

  async def create(self, fields: Mapping[str, Any]) -> Record:
    self.schema.check_fields(fields.keys())
    data = dict(fields)
    data["id"] = data.get("id") or new_id(self.schema.id_prefix)
    sql, params = build_insert(self.schema, data)
    result = await self._client.execute(sql, params, idempotent=True)
    if result.first:
      return self._record(result.first)
    # Guard matched: the row already exists (e.g. the first attempt landed but its response was lost).
    existing = await self.find_unique(data["id"])
    if existing is None:
      raise GatewayError(
        f"Insert into {self.schema.table} returned no row",
        sql=sql,
        server=self._client.server,
        database=self._client.database,
      )
    return existing

  async def update(self, key: str, fields: Mapping[str, Any]) -> Record | None:
    self.schema.check_fields(fields.keys())
    if "id" in fields and fields["id"] != key:
      raise SchemaError(f"Cannot change id of {self.schema.key} {key}", entity=self.schema.key, fields=["id"])
    if not any(k != "id" for k in fields):
      return await self.find_unique(key)
    sql, params = build_update(self.schema, key, fields)
    result = await self._client.execute(sql, params)
    return self._record(result.first) if result.first else None

  async def delete(self, key: str) -> bool:
    sql, params = build_delete(self.schema, key)
    result = await self._client.execute(sql, params)
    return bool(result.rows_affected and result.rows_affected[0] > 0)


class GatewayRepository:
  name = "gateway"
  concurrent_writes = True

  def __init__(self, client: SqlGatewayClient) -> None:
    self.client = client
    self._entities: dict[str, GatewayEntityRepository] = {}

  def entity(self, key: str) -> GatewayEntityRepository:
    repo = self._entities.get(key)
    if repo is None:
      repo = GatewayEntityRepository(self.client, get_entity(key))
      self._entities[key] = repo
    return repo
