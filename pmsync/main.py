from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from pmsync.config import settings, configure_logging
from pmsync.db import make_engine, make_sessionmaker
from pmsync.gateway.client import GatewayError, SqlGatewayClient, TransportError
from pmsync.metrics import GatewayMetrics
from pmsync.repositories.base import build_repository
from pmsync.repositories.gateway import GatewayRepository
from pmsync.repositories.local import LocalRepository
from pmsync.routers.sync import router as sync_router
from pmsync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

app = FastAPI(title="pmsync API", version=settings.app_version)


@app.exception_handler(GatewayError)
async def _gateway_error_handler(_, exc: GatewayError) -> JSONResponse:
  return JSONResponse(
    status_code=502,
    content={"detail": {"message": exc.message, "server": exc.server, "database": exc.database}},
  )


@app.exception_handler(TransportError)
async def _transport_error_handler(_, exc: TransportError) -> JSONResponse:
  return JSONResponse(status_code=503, content={"detail": {"message": exc.message, "statusCode": exc.status_code}})


app.include_router(sync_router)


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version}


@app.on_event("startup")
async def _startup() -> None:
  configure_logging(settings)
  state = app.state
  # Tests inject their own stores.
  if getattr(state, "repository", None) is not None:
    return
  if settings.use_sql_server:
    settings.require_gateway()

  state.db_engine = make_engine(settings.database_url, echo=settings.debug)
  state.sessionmaker = make_sessionmaker(state.db_engine)
  state.metrics = GatewayMetrics()
  state.gateway = SqlGatewayClient.from_settings(settings, metrics=state.metrics) if settings.gateway_configured() else None
  state.repository = build_repository(settings, sessionmaker=state.sessionmaker, gateway=state.gateway)
  state.sync_engine = None
  if state.gateway is not None:
    state.sync_engine = SyncEngine(
      local=LocalRepository(state.sessionmaker),
      remote=GatewayRepository(state.gateway),
      row_concurrency=settings.sync_row_concurrency,
    )
  else:
    logger.warning("SQL gateway not configured; /sync endpoints are disabled")
  logger.info("pmsync API bound to the %s store", state.repository.name)


@app.on_event("shutdown")
async def _shutdown() -> None:
  state = app.state
  gateway = getattr(state, "gateway", None)
  if gateway is not None:
    await gateway.aclose()
  db_engine = getattr(state, "db_engine", None)
  if db_engine is not None:
    await db_engine.dispose()
