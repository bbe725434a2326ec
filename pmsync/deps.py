from __future__ import annotations

from fastapi import HTTPException, Request, status

from pmsync.gateway.client import SqlGatewayClient
from pmsync.repositories.base import Repository
from pmsync.sync.engine import SyncEngine


def get_repository(request: Request) -> Repository:
  return request.app.state.repository


def get_gateway(request: Request) -> SqlGatewayClient:
  gateway = getattr(request.app.state, "gateway", None)
  if gateway is None:
    raise HTTPException(
      status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
      detail="SQL gateway is not configured (set API_QUERY_URL and API_TOKEN)",
    )
  return gateway


def get_sync_engine(request: Request) -> SyncEngine:
  engine = getattr(request.app.state, "sync_engine", None)
  if engine is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Sync is not available without the SQL gateway")
  return engine
