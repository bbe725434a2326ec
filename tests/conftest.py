from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

import httpx
import pytest

from pmsync.db import init_schema, make_engine, make_sessionmaker
from pmsync.entities import Record, get_entity, new_id
from pmsync.gateway.client import GatewayError, SqlGatewayClient
from pmsync.metrics import GatewayMetrics
from pmsync.repositories.local import LocalRepository


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
async def db_engine(tmp_path):
  engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'local.db'}")
  await init_schema(engine)
  yield engine
  await engine.dispose()


@pytest.fixture
def local_repo(db_engine) -> LocalRepository:
  return LocalRepository(make_sessionmaker(db_engine))


class MemoryEntityRepository:
  """Dict-backed stand-in for the remote store with the same contract as the adapters."""

  def __init__(self, owner: MemoryRepository, key: str) -> None:
    self.owner = owner
    self.schema = get_entity(key)
    self.rows: dict[str, Record] = {}

  def _check(self, key: str) -> None:
    if key in self.owner.crash_ids:
      raise RuntimeError(f"remote store crashed on {key}")
    if key in self.owner.fail_ids:
      raise GatewayError(f"Violation of PRIMARY KEY constraint for {key}", server="SERVER_PROFILE_1", database="extend_db_ptrj")

  async def _write(self) -> None:
    self.owner.in_flight += 1
    self.owner.max_in_flight = max(self.owner.max_in_flight, self.owner.in_flight)
    try:
      await asyncio.sleep(0)
    finally:
      self.owner.in_flight -= 1
    self.owner.writes += 1
    if self.owner.after_write is not None:
      self.owner.after_write()

  async def find_unique(self, key: str) -> Record | None:
    row = self.rows.get(key)
    return dict(row) if row is not None else None

  async def find_many(self, filter: Mapping[str, Any] | None = None) -> list[Record]:
    where = dict(filter or {})
    self.schema.check_filters(where.keys())
    if self.schema.key in self.owner.unreadable:
      raise GatewayError(f"Invalid object name '{self.schema.table}'.")
    rows = [r for r in self.rows.values() if all(r.get(k) == v for k, v in where.items())]
    return [dict(r) for r in sorted(rows, key=lambda r: r["id"])]

  async def create(self, fields: Mapping[str, Any]) -> Record:
    self.schema.check_fields(fields.keys())
    row: Record = {name: None for name in self.schema.field_names}
    row.update(fields)
    row["id"] = row.get("id") or new_id(self.schema.id_prefix)
    self._check(row["id"])
    await self._write()
    self.rows[row["id"]] = row
    return dict(row)

  async def update(self, key: str, fields: Mapping[str, Any]) -> Record | None:
    self.schema.check_fields(fields.keys())
    self._check(key)
    if key not in self.rows:
      return None
    await self._write()
    self.rows[key].update({k: v for k, v in fields.items() if k != "id"})
    return dict(self.rows[key])

  async def delete(self, key: str) -> bool:
    return self.rows.pop(key, None) is not None


class MemoryRepository:
  name = "gateway"
  concurrent_writes = True

  def __init__(self) -> None:
    self.fail_ids: set[str] = set()
    self.crash_ids: set[str] = set()
    self.unreadable: set[str] = set()
    self.after_write: Callable[[], None] | None = None
    self.writes = 0
    self.in_flight = 0
    self.max_in_flight = 0
    self._entities: dict[str, MemoryEntityRepository] = {}

  def entity(self, key: str) -> MemoryEntityRepository:
    repo = self._entities.get(key)
    if repo is None:
      repo = MemoryEntityRepository(self, key)
      self._entities[key] = repo
    return repo


@pytest.fixture
def remote_repo() -> MemoryRepository:
  return MemoryRepository()


T0 = datetime(2026, 3, 1, 8, 30, 15, 123000, tzinfo=timezone.utc)
T1 = datetime(2026, 3, 2, 9, 0, 0, 456000, tzinfo=timezone.utc)


def user_row(user_id: str, email: str, **over: Any) -> Record:
  row = {
    "id": user_id,
    "email": email,
    "username": email.split("@", 1)[0],
    "name": None,
    "password": "$2b$10$hash",
    "role": "MEMBER",
    "avatarUrl": None,
    "createdAt": T0,
    "updatedAt": T0,
  }
  row.update(over)
  return row


async def seed_graph(repo: Any, *, suffix: str = "1") -> dict[str, str]:
  """One of everything, FK-consistent: user, project, status, task, comment, attachment, member."""
  ids = {
    "user": f"user_{suffix}",
    "project": f"proj_{suffix}",
    "status": f"status_{suffix}",
    "task": f"task_{suffix}",
    "comment": f"comment_{suffix}",
    "attachment": f"att_{suffix}",
    "member": f"member_{suffix}",
  }
  await repo.entity("users").create(user_row(ids["user"], f"owner{suffix}@example.com", role="ADMIN"))
  await repo.entity("projects").create(
    {
      "id": ids["project"],
      "name": f"Project {suffix}",
      "description": "Migration board",
      "startDate": T0,
      "endDate": None,
      "priority": "HIGH",
      "bannerImage": None,
      "status": "ACTIVE",
      "ownerId": ids["user"],
      "createdBy": ids["user"],
      "createdAt": T0,
      "updatedAt": T0,
    }
  )
  await repo.entity("statuses").create(
    {"id": ids["status"], "name": "To Do", "order": 0, "projectId": ids["project"], "createdAt": T0, "updatedAt": T0}
  )
  await repo.entity("tasks").create(
    {
      "id": ids["task"],
      "title": "Wire the gateway",
      "description": None,
      "priority": "MEDIUM",
      "dueDate": T1,
      "estimatedHours": 2.5,
      "actualHours": None,
      "documentation": None,
      "progress": 10,
      "lastAlertSent": None,
      "completedAt": None,
      "projectId": ids["project"],
      "statusId": ids["status"],
      "assigneeId": ids["user"],
      "createdAt": T0,
      "updatedAt": T0,
    }
  )
  await repo.entity("comments").create(
    {"id": ids["comment"], "taskId": ids["task"], "userId": ids["user"], "content": "First!", "createdAt": T0, "updatedAt": T0}
  )
  await repo.entity("attachments").create(
    {
      "id": ids["attachment"],
      "taskId": ids["task"],
      "fileName": "spec.pdf",
      "fileUrl": "/uploads/spec.pdf",
      "fileType": "application/pdf",
      "fileSize": 2048,
      "createdAt": T0,
    }
  )
  await repo.entity("project_members").create(
    {"id": ids["member"], "projectId": ids["project"], "userId": ids["user"], "role": "OWNER", "joinedAt": T0, "addedBy": None}
  )
  return ids


class GatewayStub:
  """Scripted SQL gateway for httpx.MockTransport: records requests, replays queued responses."""

  def __init__(self) -> None:
    self.requests: list[httpx.Request] = []
    self.responses: list[httpx.Response | Exception] = []
    self.default: httpx.Response | None = None
    # Answers /v1/query bodies by content; None falls through to the queue.
    self.route: Callable[[dict], httpx.Response | None] | None = None

  def queue(self, *items: httpx.Response | Exception) -> None:
    self.responses.extend(items)

  def queue_rows(self, recordset: list[dict], rows_affected: list[int] | None = None) -> None:
    self.queue(envelope(recordset, rows_affected))

  @property
  def queries(self) -> list[dict]:
    return [json.loads(r.content) for r in self.requests if r.url.path == "/v1/query"]

  def __call__(self, request: httpx.Request) -> httpx.Response:
    self.requests.append(request)
    if self.route is not None and request.url.path == "/v1/query":
      routed = self.route(json.loads(request.content))
      if routed is not None:
        return routed
    if self.responses:
      item = self.responses.pop(0)
    elif self.default is not None:
      item = self.default
    else:
      item = envelope([])
    if isinstance(item, Exception):
      raise item
    return item


def envelope(recordset: list[dict] | None = None, rows_affected: list[int] | None = None) -> httpx.Response:
  rows = recordset or []
  return httpx.Response(
    200,
    json={"success": True, "data": {"recordset": rows, "rowsAffected": rows_affected if rows_affected is not None else [len(rows)]}},
  )


def gateway_failure(message: str) -> httpx.Response:
  return httpx.Response(200, json={"success": False, "error": message})


@pytest.fixture
def gateway_stub() -> GatewayStub:
  return GatewayStub()


@pytest.fixture
async def gateway(gateway_stub: GatewayStub):
  client = SqlGatewayClient(
    base_url="http://gateway.test",
    api_key="test-key",
    server="SERVER_PROFILE_1",
    database="extend_db_ptrj",
    retry_attempts=3,
    retry_backoff_seconds=0,
    metrics=GatewayMetrics(),
    transport=httpx.MockTransport(gateway_stub),
  )
  yield client
  await client.aclose()
