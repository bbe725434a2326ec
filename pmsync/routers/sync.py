from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from pmsync.deps import get_gateway, get_repository, get_sync_engine
from pmsync.gateway.client import SqlGatewayClient
from pmsync.repositories.base import Repository
from pmsync.schemas import GatewayServerOut, SyncIn, SyncOut, SyncStatusOut, SyncSummaryOut, SyncTableOut
from pmsync.sync.engine import SyncEngine, SyncOptions, SyncResult

router = APIRouter(prefix="/sync", tags=["sync"])

SYNC_DIRECTIONS = {
  "pull": "SQL Server -> local database (download data from server)",
  "push": "local database -> SQL Server (upload local changes)",
  "both": "Pull, then push",
}


def _server_out(raw: dict) -> GatewayServerOut:
  port = raw.get("port")
  try:
    port = int(port) if port is not None else None
  except (TypeError, ValueError):
    port = None
  return GatewayServerOut(name=str(raw.get("name") or ""), host=raw.get("host"), port=port)


def _sync_out(result: SyncResult) -> SyncOut:
  totals = result.totals()
  return SyncOut(
    success=result.success,
    direction=result.direction,
    dryRun=result.dry_run,
    cancelled=result.cancelled,
    timestamp=result.timestamp,
    summary=SyncSummaryOut(
      totalInserted=totals["inserted"],
      totalUpdated=totals["updated"],
      totalSkipped=totals["skipped"],
      totalErrors=totals["errors"],
    ),
    details=[
      SyncTableOut(
        name=t.name,
        direction=t.direction,
        inserted=t.inserted,
        updated=t.updated,
        skipped=t.skipped,
        errors=t.errors,
      )
      for t in result.tables
    ],
    errors=list(result.errors),
  )


@router.get("/status", response_model=SyncStatusOut)
async def sync_status(
  gateway: SqlGatewayClient = Depends(get_gateway),
  repo: Repository = Depends(get_repository),
) -> SyncStatusOut:
  if not await gateway.health_check():
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cannot connect to SQL gateway")
  servers = await gateway.list_servers()
  return SyncStatusOut(
    connected=True,
    store=repo.name,
    server=gateway.server,
    database=gateway.database,
    servers=[_server_out(s) for s in servers],
    syncDirections=SYNC_DIRECTIONS,
    metrics=gateway.metrics.snapshot(),
  )


@router.post("", response_model=SyncOut)
async def run_sync(payload: SyncIn, engine: SyncEngine = Depends(get_sync_engine)) -> SyncOut:
  if engine.state == "running":
    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A sync is already running")
  options = SyncOptions(direction=payload.direction, tables=payload.tables, dry_run=payload.dryRun)
  try:
    result = await engine.sync(options)
  except ValueError as e:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
  return _sync_out(result)
