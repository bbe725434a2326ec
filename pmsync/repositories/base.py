from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Protocol

from pmsync.config import Settings
from pmsync.entities import EntitySchema, Record

if TYPE_CHECKING:
  from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

  from pmsync.gateway.client import SqlGatewayClient


class EntityRepository(Protocol):
  schema: EntitySchema

  async def find_unique(self, key: str) -> Record | None: ...

  async def find_many(self, filter: Mapping[str, Any] | None = None) -> list[Record]: ...

  async def create(self, fields: Mapping[str, Any]) -> Record: ...

  async def update(self, key: str, fields: Mapping[str, Any]) -> Record | None: ...

  async def delete(self, key: str) -> bool: ...


class Repository(Protocol):
  name: str
  # Whether rows may be written concurrently (the embedded store serializes writes).
  concurrent_writes: bool

  def entity(self, key: str) -> EntityRepository: ...


def build_repository(
  s: Settings,
  *,
  sessionmaker: async_sessionmaker[AsyncSession] | None = None,
  gateway: SqlGatewayClient | None = None,
) -> Repository:
  """Pick the store the application binds to, once, from USE_SQL_SERVER."""
  if s.use_sql_server:
    from pmsync.repositories.gateway import GatewayRepository

    if gateway is None:
      s.require_gateway()
      raise ValueError("USE_SQL_SERVER is enabled but no gateway client was provided")
    return GatewayRepository(gateway)

  from pmsync.repositories.local import LocalRepository

  if sessionmaker is None:
    raise ValueError("A session factory is required for the embedded store")
  return LocalRepository(sessionmaker)
