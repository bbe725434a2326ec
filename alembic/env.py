from __future__ import annotations

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from pmsync.config import settings
from pmsync.db import make_engine
from pmsync.models import Base

config = context.config
if config.config_file_name is not None:
  fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
  context.configure(url=settings.database_url, target_metadata=target_metadata, literal_binds=True, render_as_batch=True)
  with context.begin_transaction():
    context.run_migrations()


def _do_run_migrations(connection: Connection) -> None:
  context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)
  with context.begin_transaction():
    context.run_migrations()


async def run_migrations_online() -> None:
  engine = make_engine(settings.database_url)
  async with engine.connect() as connection:
    await connection.run_sync(_do_run_migrations)
  await engine.dispose()


if context.is_offline_mode():
  run_migrations_offline()
else:
  asyncio.run(run_migrations_online())
