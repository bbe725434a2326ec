"""
Column mapping between application records and gateway rows.

Application records use the API naming (``ownerId``); the SQL Server tables behind
the gateway use ``owner_id``. The mapping is built from the entity field tables and
must stay a bijection.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Mapping

from dateutil import parser as dateparser

from pmsync.entities import ENTITIES, Record, SchemaError

logger = logging.getLogger(__name__)


def _build_column_map() -> dict[str, str]:
  out: dict[str, str] = {}
  for schema in ENTITIES.values():
    for f in schema.fields:
      prev = out.get(f.name)
      if prev is not None and prev != f.column:
        raise RuntimeError(f"Field {f.name} maps to both {prev} and {f.column}")
      out[f.name] = f.column
  reverse: dict[str, str] = {}
  for name, column in out.items():
    if column in reverse:
      raise RuntimeError(f"Column {column} is claimed by both {reverse[column]} and {name}")
    reverse[column] = name
  return out


COLUMN_MAP: dict[str, str] = _build_column_map()
REVERSE_COLUMN_MAP: dict[str, str] = {v: k for k, v in COLUMN_MAP.items()}

DATETIME_FIELDS: frozenset[str] = frozenset(
  f.name for schema in ENTITIES.values() for f in schema.fields if f.kind == "datetime"
)
DATETIME_COLUMNS: frozenset[str] = frozenset(COLUMN_MAP[n] for n in DATETIME_FIELDS)


def normalize_datetime(value: Any) -> datetime | None:
  """Coerce to an aware UTC datetime truncated to milliseconds (SQL Server DATETIME granularity)."""
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, date):
    dt = datetime(value.year, value.month, value.day)
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    try:
      dt = dateparser.isoparse(s)
    except (ValueError, OverflowError) as e:
      raise SchemaError(f"Cannot interpret {s[:40]!r} as a datetime") from e
  else:
    raise SchemaError(f"Cannot interpret {type(value).__name__} as a datetime")

  if dt.tzinfo is None:
    dt = dt.replace(tzinfo=timezone.utc)
  else:
    dt = dt.astimezone(timezone.utc)
  return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


def format_datetime(value: Any) -> str | None:
  dt = normalize_datetime(value)
  if dt is None:
    return None
  return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{dt.microsecond // 1000:03d}Z"


def _report_unmapped(names: list[str], direction: str, strict: bool) -> None:
  if strict:
    raise SchemaError(f"Unmapped field(s) {direction}: {', '.join(sorted(names))}", fields=sorted(names))
  logger.warning("Unmapped field(s) %s passed through unchanged: %s", direction, ", ".join(sorted(names)))


def to_remote_columns(record: Mapping[str, Any], *, strict: bool = False) -> Record:
  out: Record = {}
  unmapped: list[str] = []
  for key, value in record.items():
    column = COLUMN_MAP.get(key)
    if column is None:
      unmapped.append(key)
      column = key
    if isinstance(value, (datetime, date)) or (key in DATETIME_FIELDS and value is not None):
      value = format_datetime(value)
    out[column] = value
  if unmapped:
    _report_unmapped(unmapped, "to remote", strict)
  return out


def from_remote_columns(row: Mapping[str, Any], *, strict: bool = False) -> Record:
  out: Record = {}
  unmapped: list[str] = []
  for column, value in row.items():
    name = REVERSE_COLUMN_MAP.get(column)
    if name is None:
      unmapped.append(column)
      name = column
    if column in DATETIME_COLUMNS or isinstance(value, datetime):
      try:
        value = normalize_datetime(value)
      except SchemaError as e:
        raise SchemaError(f"{column}: {e.message}", fields=[name]) from e
    out[name] = value
  if unmapped:
    _report_unmapped(unmapped, "from remote", strict)
  return out
