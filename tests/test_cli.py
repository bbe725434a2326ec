from __future__ import annotations

import httpx

from pmsync.cli import _parse_tables, main
from pmsync.config import Settings
from tests.conftest import GatewayStub, gateway_failure


def _settings(tmp_path, **over) -> Settings:
  values = {
    "api_query_url": "http://gateway.test",
    "api_token": "test-key",
    "database_url": f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}",
    "gateway_retry_backoff_seconds": 0,
  }
  values.update(over)
  return Settings(_env_file=None, **values)


def test_parse_tables() -> None:
  assert _parse_tables(None) is None
  assert _parse_tables("users, projects,,") == ["users", "projects"]


def test_missing_gateway_config_exits_2(tmp_path, capsys):
  code = main(["--direction", "pull"], _settings(tmp_path, api_token=""))

  assert code == 2
  assert "API_TOKEN" in capsys.readouterr().err


def test_unknown_table_exits_2(tmp_path, capsys):
  code = main(["--tables", "users,boards", "--init-db"], _settings(tmp_path), transport=httpx.MockTransport(GatewayStub()))

  assert code == 2
  assert "boards" in capsys.readouterr().err


def test_dry_run_against_an_empty_remote_succeeds(tmp_path, capsys):
  stub = GatewayStub()

  code = main(["--dry-run", "--init-db", "--tables", "projects,users"], _settings(tmp_path), transport=httpx.MockTransport(stub))

  out = capsys.readouterr().out
  assert code == 0
  assert "Sync pull (dry run)" in out
  assert "Total: inserted=0 updated=0 skipped=0 errors=0" in out
  sent = [q["sql"] for q in stub.queries]
  assert sent[0].startswith("SELECT [id], [email]")
  assert "FROM [pm_projects]" in sent[1]


def test_reported_errors_exit_1(tmp_path, capsys):
  stub = GatewayStub()
  stub.queue(gateway_failure("Invalid object name 'pm_users'."))

  code = main(["--init-db", "--tables", "users"], _settings(tmp_path), transport=httpx.MockTransport(stub))

  out = capsys.readouterr().out
  assert code == 1
  assert "users: GatewayError: Invalid object name 'pm_users'." in out
