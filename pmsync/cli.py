from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import httpx

from pmsync.config import ConfigError, Settings, configure_logging, settings
from pmsync.db import init_schema, make_engine, make_sessionmaker
from pmsync.gateway.client import SqlGatewayClient
from pmsync.repositories.gateway import GatewayRepository
from pmsync.repositories.local import LocalRepository
from pmsync.sync.engine import DIRECTIONS, SyncEngine, SyncOptions, SyncResult


def _parse_tables(raw: str | None) -> list[str] | None:
  if raw is None:
    return None
  return [t.strip() for t in raw.split(",") if t.strip()]


def build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(prog="pmsync-sync", description="Synchronize the local database with SQL Server via the SQL gateway")
  parser.add_argument("--direction", choices=DIRECTIONS, default="pull")
  parser.add_argument("--tables", default=None, help="Comma-separated table names (default: all)")
  parser.add_argument("--dry-run", action="store_true", help="Compare only, write nothing")
  parser.add_argument("--init-db", action="store_true", help="Create missing local tables before syncing")
  return parser


async def _run(args: argparse.Namespace, s: Settings, transport: httpx.AsyncBaseTransport | None) -> SyncResult:
  options = SyncOptions(direction=args.direction, tables=_parse_tables(args.tables), dry_run=args.dry_run)
  cancel = asyncio.Event()
  try:
    asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancel.set)
  except (NotImplementedError, RuntimeError):
    pass

  db_engine = make_engine(s.database_url, echo=s.debug)
  try:
    if args.init_db:
      await init_schema(db_engine)
    async with SqlGatewayClient.from_settings(s, transport=transport) as gateway:
      engine = SyncEngine(
        local=LocalRepository(make_sessionmaker(db_engine)),
        remote=GatewayRepository(gateway),
        row_concurrency=s.sync_row_concurrency,
      )
      return await engine.sync(options, cancel=cancel)
  finally:
    await db_engine.dispose()


def _print_summary(result: SyncResult) -> None:
  mode = " (dry run)" if result.dry_run else ""
  print(f"Sync {result.direction}{mode} at {result.timestamp.isoformat()}")
  for t in result.tables:
    print(f"  {t.direction:<4} {t.name:<16} inserted={t.inserted} updated={t.updated} skipped={t.skipped} errors={t.errors}")
  totals = result.totals()
  print(
    f"Total: inserted={totals['inserted']} updated={totals['updated']} "
    f"skipped={totals['skipped']} errors={totals['errors']}"
  )
  for err in result.errors:
    print(f"  ! {err}")
  if result.cancelled:
    print("Cancelled before completion")


def main(argv: list[str] | None = None, s: Settings | None = None, *, transport: httpx.AsyncBaseTransport | None = None) -> int:
  s = s or settings
  args = build_parser().parse_args(argv)
  configure_logging(s)
  try:
    s.require_gateway()
    result = asyncio.run(_run(args, s, transport))
  except ConfigError as e:
    print(f"Configuration error: {e}", file=sys.stderr)
    return 2
  except ValueError as e:
    print(f"Invalid arguments: {e}", file=sys.stderr)
    return 2
  _print_summary(result)
  return 0 if result.success else 1


if __name__ == "__main__":
  raise SystemExit(main())
