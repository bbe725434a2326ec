from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from time import monotonic
from typing import Any

import httpx

from pmsync.config import ConfigError, Settings
from pmsync.metrics import GatewayMetrics, statement_kind

logger = logging.getLogger(__name__)


def normalize_base_url(base_url: str | None) -> str:
  b = (base_url or "").strip().rstrip("/")
  if not b:
    raise ConfigError("API_QUERY_URL is required")
  if not (b.startswith("http://") or b.startswith("https://")):
    b = "http://" + b
  return b


class TransportError(RuntimeError):
  def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = True) -> None:
    super().__init__(message)
    self.message = message
    self.status_code = status_code
    self.retryable = retryable


class GatewayError(RuntimeError):
  def __init__(
    self,
    message: str,
    *,
    sql: str | None = None,
    server: str | None = None,
    database: str | None = None,
  ) -> None:
    super().__init__(message)
    self.message = message
    self.sql = sql
    self.server = server
    self.database = database


@dataclass
class QueryResult:
  recordset: list[dict[str, Any]] = field(default_factory=list)
  rows_affected: list[int] = field(default_factory=list)

  @property
  def first(self) -> dict[str, Any] | None:
    return self.recordset[0] if self.recordset else None


class SqlGatewayClient:
  def __init__(
    self,
    *,
    base_url: str | None,
    api_key: str | None,
    server: str,
    database: str,
    timeout: float = 30.0,
    retry_attempts: int = 3,
    retry_backoff_seconds: float = 0.5,
    user_agent: str = "pmsync/0.1",
    metrics: GatewayMetrics | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    debug: bool = False,
  ) -> None:
    token = (api_key or "").strip()
    if not token:
      raise ConfigError("API_TOKEN is required")
    self.base_url = normalize_base_url(base_url)
    self.server = server
    self.database = database
    self.retry_attempts = max(1, int(retry_attempts))
    self.retry_backoff_seconds = max(0.0, float(retry_backoff_seconds))
    self.metrics = metrics or GatewayMetrics()
    self.debug = debug
    self._api_key = token
    self._client = httpx.AsyncClient(
      base_url=self.base_url,
      timeout=timeout,
      headers={"Accept": "application/json", "User-Agent": user_agent},
      transport=transport,
    )

  @classmethod
  def from_settings(
    cls,
    s: Settings,
    *,
    metrics: GatewayMetrics | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
  ) -> SqlGatewayClient:
    s.require_gateway()
    return cls(
      base_url=s.api_query_url,
      api_key=s.api_token,
      server=s.gateway_server_profile,
      database=s.gateway_database,
      timeout=s.gateway_timeout_seconds,
      retry_attempts=s.gateway_retry_attempts,
      retry_backoff_seconds=s.gateway_retry_backoff_seconds,
      user_agent=s.gateway_user_agent,
      metrics=metrics,
      transport=transport,
      debug=s.debug,
    )

  async def aclose(self) -> None:
    await self._client.aclose()

  async def __aenter__(self) -> SqlGatewayClient:
    return self

  async def __aexit__(self, *exc: object) -> None:
    await self.aclose()

  async def execute(self, sql: str, params: dict[str, Any] | None = None, *, idempotent: bool = False) -> QueryResult:
    """
    Run one statement through POST /v1/query.

    Only idempotent statements (reads, guarded inserts) are retried, and only for
    network errors, timeouts and 5xx responses.
    """
    attempts = self.retry_attempts if idempotent else 1
    kind = statement_kind(sql)
    attempt = 0
    while True:
      attempt += 1
      try:
        return await self._execute_once(sql, params, kind=kind)
      except TransportError as e:
        if not e.retryable or attempt >= attempts:
          raise
        delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
        self.metrics.record_retry(kind)
        logger.warning("Gateway request failed (%s); retry %d/%d in %.2fs", e.message, attempt, attempts - 1, delay)
        await asyncio.sleep(delay)

  async def _execute_once(self, sql: str, params: dict[str, Any] | None, *, kind: str) -> QueryResult:
    body: dict[str, Any] = {"sql": sql, "server": self.server, "database": self.database}
    if params:
      body["params"] = params
    if self.debug:
      logger.debug("SQL %s params=%s", sql, sorted(params or {}))

    payload = await self._request_json("POST", "/v1/query", kind=kind, json=body, headers={"x-api-key": self._api_key})
    if not isinstance(payload, dict):
      raise TransportError("Unexpected SQL gateway response", retryable=False)
    if not payload.get("success"):
      message = str(payload.get("error") or "Query failed")
      logger.debug("Gateway rejected statement: %s", message)
      raise GatewayError(message, sql=sql, server=self.server, database=self.database)

    data = payload.get("data") or {}
    recordset = data.get("recordset") or []
    rows_affected = data.get("rowsAffected") or []
    return QueryResult(
      recordset=[r for r in recordset if isinstance(r, dict)],
      rows_affected=[int(x) for x in rows_affected if x is not None],
    )

  async def _request_json(self, method: str, path: str, *, kind: str, **kwargs: Any) -> Any:
    start = monotonic()
    outcome = "unreachable"
    error: str | None = None
    try:
      try:
        r = await self._client.request(method, path, **kwargs)
      except httpx.TimeoutException as e:
        raise TransportError(f"SQL gateway request timed out: {e.__class__.__name__}") from e
      except httpx.TransportError as e:
        raise TransportError(f"Cannot reach SQL gateway at {self.base_url}: {e}") from e

      outcome = "http_error"
      if r.status_code >= 400:
        snippet = (r.text or "").strip()[:300]
        raise TransportError(
          f"SQL gateway returned HTTP {r.status_code}" + (f": {snippet}" if snippet else ""),
          status_code=r.status_code,
          retryable=r.status_code >= 500,
        )
      try:
        payload = r.json() if r.content else None
      except ValueError as e:
        raise TransportError("SQL gateway returned invalid JSON", status_code=r.status_code, retryable=False) from e
      if isinstance(payload, dict) and payload.get("success") is False:
        outcome = "gateway_error"
        error = str(payload.get("error") or "")
      else:
        outcome = "ok"
      return payload
    except TransportError as e:
      error = e.message
      raise
    finally:
      self.metrics.observe(kind, outcome, (monotonic() - start) * 1000.0, error=error)

  async def health_check(self) -> bool:
    try:
      data = await self._request_json("GET", "/health", kind="health")
    except TransportError:
      return False
    return isinstance(data, dict) and data.get("status") == "ok"

  async def list_servers(self) -> list[dict[str, Any]]:
    data = await self._request_json("GET", "/v1/servers", kind="diagnostics", headers={"x-api-key": self._api_key})
    if not isinstance(data, dict) or not data.get("success"):
      return []
    servers = (data.get("data") or {}).get("servers") or []
    return [s for s in servers if isinstance(s, dict)]

  async def list_databases(self, server: str | None = None) -> list[str]:
    data = await self._request_json(
      "GET",
      "/v1/databases",
      kind="diagnostics",
      params={"server": server or self.server},
      headers={"x-api-key": self._api_key},
    )
    if not isinstance(data, dict) or not data.get("success"):
      return []
    return [str(d) for d in ((data.get("data") or {}).get("databases") or [])]
