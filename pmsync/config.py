from __future__ import annotations

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(RuntimeError):
  pass


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  app_version: str = "0.1.0"
  database_url: str = "sqlite+aiosqlite:///./pmsync.db"

  # Which store the application binds to: the embedded database or the SQL gateway.
  use_sql_server: bool = False

  api_query_url: str | None = None
  api_token: str | None = None
  gateway_server_profile: str = "SERVER_PROFILE_1"
  gateway_database: str = "extend_db_ptrj"
  gateway_user_agent: str = "pmsync/0.1"
  gateway_timeout_seconds: float = 30.0
  gateway_retry_attempts: int = 3
  gateway_retry_backoff_seconds: float = 0.5

  sync_row_concurrency: int = 8

  log_level: str = "INFO"
  debug: bool = False

  def gateway_configured(self) -> bool:
    return bool((self.api_query_url or "").strip() and (self.api_token or "").strip())

  def require_gateway(self) -> None:
    missing = []
    if not (self.api_query_url or "").strip():
      missing.append("API_QUERY_URL")
    if not (self.api_token or "").strip():
      missing.append("API_TOKEN")
    if missing:
      raise ConfigError(f"Missing required configuration: {', '.join(missing)}")


def configure_logging(s: Settings) -> None:
  level = logging.DEBUG if s.debug else getattr(logging, (s.log_level or "INFO").upper(), logging.INFO)
  logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
  # httpx logs every request at INFO; keep it for debug runs only.
  logging.getLogger("httpx").setLevel(logging.DEBUG if s.debug else logging.WARNING)


settings = Settings()
