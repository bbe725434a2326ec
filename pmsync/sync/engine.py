from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from sqlalchemy.exc import SQLAlchemyError

from pmsync.entities import SYNC_ORDER, EntitySchema, Record, SchemaError, get_entity
from pmsync.gateway.client import GatewayError, TransportError
from pmsync.mapper import normalize_datetime
from pmsync.repositories.base import EntityRepository, Repository

logger = logging.getLogger(__name__)

DIRECTIONS: tuple[str, ...] = ("pull", "push", "both")

# Failures isolated to a single row; anything else aborts the run.
ROW_ERRORS = (TransportError, GatewayError, SchemaError, SQLAlchemyError)


@dataclass
class SyncOptions:
  direction: str = "pull"
  # None means every table.
  tables: Iterable[str] | None = None
  dry_run: bool = False


@dataclass
class TableResult:
  name: str
  direction: str
  inserted: int = 0
  updated: int = 0
  skipped: int = 0
  errors: int = 0


@dataclass
class SyncResult:
  success: bool
  timestamp: datetime
  direction: str
  dry_run: bool
  tables: list[TableResult] = field(default_factory=list)
  errors: list[str] = field(default_factory=list)
  cancelled: bool = False

  def totals(self) -> dict[str, int]:
    return {
      "inserted": sum(t.inserted for t in self.tables),
      "updated": sum(t.updated for t in self.tables),
      "skipped": sum(t.skipped for t in self.tables),
      "errors": sum(t.errors for t in self.tables),
    }


def resolve_tables(tables: Iterable[str] | None) -> list[str]:
  """Validate requested table names and return them in foreign-key order."""
  if tables is None:
    return list(SYNC_ORDER)
  requested = {str(t).strip() for t in tables}
  unknown = sorted(t for t in requested if t not in SYNC_ORDER)
  if unknown:
    raise ValueError(f"Invalid tables: {', '.join(unknown)}. Valid tables are: {', '.join(SYNC_ORDER)}")
  return [t for t in SYNC_ORDER if t in requested]


def _error_text(exc: Exception) -> str:
  message = (getattr(exc, "message", None) or str(exc)).strip()
  if message:
    return f"{exc.__class__.__name__}: {message}"
  return exc.__class__.__name__


def values_equal(kind: str, a: Any, b: Any) -> bool:
  if a is None or b is None:
    return a is None and b is None
  if kind == "datetime":
    try:
      return normalize_datetime(a) == normalize_datetime(b)
    except SchemaError:
      return a == b
  if kind in ("int", "float"):
    try:
      return float(a) == float(b)
    except (TypeError, ValueError):
      return a == b
  return a == b


def diff_record(schema: EntitySchema, source: Mapping[str, Any], dest: Mapping[str, Any]) -> Record:
  """Source values for every tracked field that differs from the destination."""
  out: Record = {}
  for f in schema.tracked_fields:
    if f.name not in source:
      continue
    if not values_equal(f.kind, source[f.name], dest.get(f.name)):
      out[f.name] = source[f.name]
  return out


class SyncEngine:
  def __init__(self, *, local: Repository, remote: Repository, row_concurrency: int = 8) -> None:
    self.local = local
    self.remote = remote
    self.row_concurrency = max(1, int(row_concurrency))
    self.state = "idle"

  async def sync(self, options: SyncOptions | None = None, *, cancel: asyncio.Event | None = None) -> SyncResult:
    options = options or SyncOptions()
    if options.direction not in DIRECTIONS:
      raise ValueError(f'Invalid direction {options.direction!r}. Must be "push", "pull", or "both"')
    tables = resolve_tables(options.tables)
    if self.state == "running":
      raise RuntimeError("A sync is already running")

    cancel = cancel or asyncio.Event()
    result = SyncResult(
      success=False,
      timestamp=datetime.now(timezone.utc),
      direction=options.direction,
      dry_run=bool(options.dry_run),
    )
    self.state = "running"
    logger.info(
      "Sync started direction=%s tables=%s dry_run=%s local=%s remote=%s",
      options.direction,
      ",".join(tables),
      result.dry_run,
      self.local.name,
      self.remote.name,
    )
    try:
      # Projected post-pull local rows, so a dry-run push sees what a real pull would have written.
      overlay: dict[str, list[Record]] | None = {} if options.dry_run and options.direction == "both" else None
      if options.direction in ("pull", "both"):
        await self._run_pass("pull", tables, source=self.remote, dest=self.local, result=result, cancel=cancel, overlay=overlay)
      if options.direction in ("push", "both") and not cancel.is_set():
        await self._run_pass("push", tables, source=self.local, dest=self.remote, result=result, cancel=cancel, source_rows=overlay)
    except Exception:
      self.state = "failed"
      logger.exception("Sync aborted direction=%s", options.direction)
      raise

    result.cancelled = cancel.is_set()
    totals = result.totals()
    result.success = totals["errors"] == 0 and not result.cancelled
    self.state = "failed" if result.cancelled else "completed"
    logger.info(
      "Sync finished direction=%s inserted=%d updated=%d skipped=%d errors=%d cancelled=%s",
      options.direction,
      totals["inserted"],
      totals["updated"],
      totals["skipped"],
      totals["errors"],
      result.cancelled,
    )
    return result

  async def _run_pass(
    self,
    direction: str,
    tables: list[str],
    *,
    source: Repository,
    dest: Repository,
    result: SyncResult,
    cancel: asyncio.Event,
    overlay: dict[str, list[Record]] | None = None,
    source_rows: dict[str, list[Record]] | None = None,
  ) -> None:
    for table in tables:
      if cancel.is_set():
        logger.info("Sync cancelled before %s %s", direction, table)
        return
      table_result = TableResult(name=table, direction=direction)
      result.tables.append(table_result)
      await self._sync_table(
        table_result,
        source=source.entity(table),
        dest=dest.entity(table),
        concurrent=dest.concurrent_writes,
        result=result,
        cancel=cancel,
        overlay=overlay,
        preloaded=(source_rows or {}).get(table),
      )

  async def _sync_table(
    self,
    table_result: TableResult,
    *,
    source: EntityRepository,
    dest: EntityRepository,
    concurrent: bool,
    result: SyncResult,
    cancel: asyncio.Event,
    overlay: dict[str, list[Record]] | None,
    preloaded: list[Record] | None,
  ) -> None:
    table = table_result.name
    schema = get_entity(table)
    try:
      rows = preloaded if preloaded is not None else await source.find_many()
      existing = {r["id"]: r for r in await dest.find_many()}
    except ROW_ERRORS as e:
      err = _error_text(e)
      table_result.errors += 1
      result.errors.append(f"{table}: {err}")
      logger.warning("Sync %s: cannot read %s: %s", table_result.direction, table, err)
      return

    if concurrent and self.row_concurrency > 1:
      sem = asyncio.Semaphore(self.row_concurrency)

      async def _bounded(row: Record) -> None:
        async with sem:
          if cancel.is_set():
            return
          await self._sync_row(table_result, schema, dest, row, existing, result=result)

      tasks = [asyncio.ensure_future(_bounded(r)) for r in rows]
      try:
        await asyncio.gather(*tasks)
      except BaseException:
        # Stop the remaining row writes before the run is reported as aborted.
        for t in tasks:
          t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    else:
      for row in rows:
        if cancel.is_set():
          break
        await self._sync_row(table_result, schema, dest, row, existing, result=result)

    if overlay is not None:
      overlay[table] = list(existing.values())

  async def _sync_row(
    self,
    table_result: TableResult,
    schema: EntitySchema,
    dest: EntityRepository,
    row: Record,
    existing: dict[str, Record],
    *,
    result: SyncResult,
  ) -> None:
    row_id = row.get("id")
    dry_run = result.dry_run
    try:
      if not row_id:
        raise SchemaError(f"Row without id in {schema.key}", entity=schema.key, fields=["id"])
      current = existing.get(row_id)
      if current is None:
        if not dry_run:
          await dest.create(dict(row))
        table_result.inserted += 1
        existing[row_id] = dict(row)
        return

      changes = diff_record(schema, row, current)
      if not changes:
        table_result.skipped += 1
        return
      # Carry the source timestamp so the destination does not stamp its own.
      if schema.has_field("updatedAt") and row.get("updatedAt") is not None:
        changes["updatedAt"] = row["updatedAt"]
      if not dry_run and await dest.update(row_id, changes) is None:
        self._row_failed(table_result, result, schema.key, row_id, "LookupError: row no longer exists")
        return
      table_result.updated += 1
      existing[row_id] = {**current, **changes}
    except ROW_ERRORS as e:
      self._row_failed(table_result, result, schema.key, row_id, _error_text(e))

  def _row_failed(self, table_result: TableResult, result: SyncResult, table: str, row_id: Any, err: str) -> None:
    table_result.errors += 1
    result.errors.append(f"{table} {row_id}: {err}")
    logger.warning("Sync %s failed for %s %s: %s", table_result.direction, table, row_id, err)
