from __future__ import annotations

import pytest

from pmsync.entities import PROJECTS, STATUSES, SchemaError
from pmsync.gateway.client import GatewayError
from pmsync.repositories.gateway import GatewayRepository, _quote, build_select
from tests.conftest import T0, envelope

PROJECT_ROW = {
  "id": "proj_1",
  "name": "Gateway",
  "description": None,
  "start_date": "2026-03-01T08:30:15.123Z",
  "end_date": None,
  "priority": "HIGH",
  "banner_image": None,
  "status": "ACTIVE",
  "owner_id": "user_1",
  "created_by": "user_1",
  "created_at": "2026-03-01T08:30:15.123Z",
  "updated_at": "2026-03-01T08:30:15.123Z",
}


def test_select_lists_columns_and_orders_deterministically() -> None:
  sql, params = build_select(STATUSES, {"projectId": "proj_1"})
  assert sql == (
    "SELECT [id], [name], [order], [project_id], [created_at], [updated_at] FROM [pm_task_statuses]"
    " WHERE [project_id] = @project_id ORDER BY [project_id] ASC, [order] ASC, [id] ASC"
  )
  assert params == {"project_id": "proj_1"}


@pytest.mark.anyio
async def test_create_emits_guarded_insert_with_mapped_parameters(gateway, gateway_stub):
  gateway_stub.queue_rows([PROJECT_ROW])
  repo = GatewayRepository(gateway).entity("projects")

  created = await repo.create({"id": "proj_1", "name": "Gateway", "ownerId": "user_1", "startDate": T0, "priority": "HIGH"})

  body = gateway_stub.queries[0]
  assert body["sql"].startswith("IF NOT EXISTS (SELECT 1 FROM [pm_projects] WHERE [id] = @id) INSERT INTO [pm_projects] ")
  assert "([id], [name], [owner_id], [start_date], [priority])" in body["sql"]
  assert "OUTPUT INSERTED.[id], INSERTED.[name]" in body["sql"]
  assert body["sql"].endswith("VALUES (@id, @name, @owner_id, @start_date, @priority)")
  assert body["params"] == {
    "id": "proj_1",
    "name": "Gateway",
    "owner_id": "user_1",
    "start_date": "2026-03-01T08:30:15.123Z",
    "priority": "HIGH",
  }
  assert created["ownerId"] == "user_1"
  assert created["startDate"] == T0
  assert created["endDate"] is None


@pytest.mark.anyio
async def test_create_generates_an_id_when_missing(gateway, gateway_stub):
  gateway_stub.queue_rows([{**PROJECT_ROW, "id": "proj_generated"}])
  repo = GatewayRepository(gateway).entity("projects")

  await repo.create({"name": "Gateway", "ownerId": "user_1"})

  assert gateway_stub.queries[0]["params"]["id"].startswith("proj_")


@pytest.mark.anyio
async def test_unknown_field_is_rejected_before_any_request(gateway, gateway_stub):
  repo = GatewayRepository(gateway).entity("projects")

  with pytest.raises(SchemaError) as exc:
    await repo.create({"id": "proj_1", "name": "x", "ownerId": "user_1", "color": "red"})
  with pytest.raises(SchemaError):
    await repo.update("proj_1", {"colour": "red"})

  assert exc.value.fields == ["color"]
  assert gateway_stub.requests == []


@pytest.mark.anyio
async def test_guarded_insert_that_matched_returns_the_existing_row(gateway, gateway_stub):
  # First response: guard skipped the insert (row landed on an earlier attempt).
  gateway_stub.queue(envelope([], [0]), envelope([PROJECT_ROW]))
  repo = GatewayRepository(gateway).entity("projects")

  created = await repo.create({"id": "proj_1", "name": "Gateway", "ownerId": "user_1"})

  assert created["id"] == "proj_1"
  assert gateway_stub.queries[1]["sql"].startswith("SELECT TOP 1 ")
  assert gateway_stub.queries[1]["params"] == {"id": "proj_1"}


@pytest.mark.anyio
async def test_guarded_insert_without_any_row_raises(gateway, gateway_stub):
  gateway_stub.queue(envelope([], [0]), envelope([]))
  repo = GatewayRepository(gateway).entity("projects")

  with pytest.raises(GatewayError):
    await repo.create({"id": "proj_1", "name": "Gateway", "ownerId": "user_1"})


@pytest.mark.anyio
async def test_update_sets_mapped_columns_and_returns_the_row(gateway, gateway_stub):
  gateway_stub.queue_rows([{**PROJECT_ROW, "status": "DONE"}])
  repo = GatewayRepository(gateway).entity("projects")

  updated = await repo.update("proj_1", {"status": "DONE", "bannerImage": None})

  body = gateway_stub.queries[0]
  assert body["sql"].startswith("UPDATE [pm_projects] SET [status] = @status, [banner_image] = @banner_image OUTPUT INSERTED.[id]")
  assert body["sql"].endswith("WHERE [id] = @id")
  assert body["params"] == {"status": "DONE", "banner_image": None, "id": "proj_1"}
  assert updated["status"] == "DONE"


@pytest.mark.anyio
async def test_update_edge_cases(gateway, gateway_stub):
  repo = GatewayRepository(gateway).entity("projects")

  gateway_stub.queue_rows([], [0])
  assert await repo.update("proj_missing", {"status": "DONE"}) is None

  with pytest.raises(SchemaError):
    await repo.update("proj_1", {"id": "proj_2"})

  # Nothing to change: current row is returned.
  gateway_stub.queue_rows([PROJECT_ROW])
  current = await repo.update("proj_1", {"id": "proj_1"})
  assert current["id"] == "proj_1"
  assert gateway_stub.queries[-1]["sql"].startswith("SELECT TOP 1 ")


@pytest.mark.anyio
async def test_find_many_filters(gateway, gateway_stub):
  gateway_stub.queue_rows([PROJECT_ROW])
  repo = GatewayRepository(gateway).entity("projects")

  rows = await repo.find_many({"ownerId": "user_1", "status": None})

  body = gateway_stub.queries[0]
  assert "WHERE [owner_id] = @owner_id AND [status] IS NULL" in body["sql"]
  assert body["params"] == {"owner_id": "user_1"}
  assert rows[0]["ownerId"] == "user_1"

  with pytest.raises(SchemaError) as exc:
    await repo.find_many({"name": "Gateway"})
  assert "supported" in exc.value.message
  assert len(gateway_stub.requests) == 1


@pytest.mark.anyio
async def test_find_unique_and_delete(gateway, gateway_stub):
  repo = GatewayRepository(gateway).entity("projects")

  gateway_stub.queue_rows([])
  assert await repo.find_unique("proj_nope") is None

  gateway_stub.queue(envelope([], [1]), envelope([], [0]))
  assert await repo.delete("proj_1") is True
  assert await repo.delete("proj_1") is False
  assert gateway_stub.queries[1] == {
    "sql": "DELETE FROM [pm_projects] WHERE [id] = @id",
    "server": "SERVER_PROFILE_1",
    "database": "extend_db_ptrj",
    "params": {"id": "proj_1"},
  }


@pytest.mark.anyio
async def test_unexpected_remote_columns_are_rejected(gateway, gateway_stub):
  gateway_stub.queue_rows([{**PROJECT_ROW, "legacy_code": "X"}])
  repo = GatewayRepository(gateway).entity("projects")

  with pytest.raises(SchemaError):
    await repo.find_unique("proj_1")


def test_projects_filters_are_the_documented_set() -> None:
  assert PROJECTS.filters == {"ownerId", "status", "createdBy"}


def test_identifiers_are_bracket_quoted_and_brackets_rejected() -> None:
  assert _quote("pm_tasks") == "[pm_tasks]"
  for bad in ("", "pm]tasks", "[pm_tasks"):
    with pytest.raises(SchemaError):
      _quote(bad)
