from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class SyncIn(BaseModel):
  # Validated by the router so bad values map to 400, not 422.
  direction: str = "pull"
  tables: list[str] | None = None
  dryRun: bool = False


class SyncTableOut(BaseModel):
  name: str
  direction: str
  inserted: int
  updated: int
  skipped: int
  errors: int


class SyncSummaryOut(BaseModel):
  totalInserted: int
  totalUpdated: int
  totalSkipped: int
  totalErrors: int


class SyncOut(BaseModel):
  success: bool
  direction: str
  dryRun: bool
  cancelled: bool
  timestamp: datetime
  summary: SyncSummaryOut
  details: list[SyncTableOut]
  errors: list[str] = []


class GatewayServerOut(BaseModel):
  name: str
  host: str | None = None
  port: int | None = None


class SyncStatusOut(BaseModel):
  connected: bool
  store: str
  server: str
  database: str
  servers: list[GatewayServerOut] = []
  syncDirections: dict[str, str]
  metrics: dict[str, Any]
