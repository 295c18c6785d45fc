"""PostgreSQL fixtures for tests that need real row locking."""

import os

import pytest_asyncio

from refstore.config import DatabaseConfig
from refstore.infrastructure.persistence.database import create_db_engine, create_session_factory
from refstore.infrastructure.persistence.tables import metadata

POSTGRES_URL = os.environ.get("REFSTORE_DATABASE__URL", "")


@pytest_asyncio.fixture
async def pg_session_factory():
    engine = create_db_engine(DatabaseConfig(url=POSTGRES_URL, pool_size=20))
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)
    yield create_session_factory(engine)
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()
