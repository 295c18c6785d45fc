"""Shared fixtures: an in-memory SQLite database with the full schema."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from refstore.config import DatabaseConfig
from refstore.domain.ingest.model.batch import BatchConfig
from refstore.domain.ingest.service.coordinator import JobCoordinator
from refstore.domain.ingest.service.staging import StagingService
from refstore.domain.ingest.service.storage import StorageOrchestrator
from refstore.infrastructure.persistence.database import create_db_engine, create_session_factory
from refstore.infrastructure.persistence.repository.job import SQLAlchemyJobRepository
from refstore.infrastructure.persistence.repository.provenance import (
    SQLAlchemyFileUploadRepository,
    SQLAlchemyRawFileRepository,
)
from refstore.infrastructure.persistence.repository.record import SQLAlchemyRecordStore
from refstore.infrastructure.persistence.repository.staging import SQLAlchemyStagingRepository
from refstore.infrastructure.persistence.repository.version import (
    SQLAlchemyVersionMappingRepository,
)
from refstore.infrastructure.persistence.repository.work_unit import (
    SQLAlchemyWorkUnitRepository,
)
from refstore.infrastructure.persistence.tables import metadata


@pytest_asyncio.fixture
async def engine():
    engine = create_db_engine(DatabaseConfig(url="sqlite+aiosqlite:///:memory:"))
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine):
    return create_session_factory(engine)


@pytest.fixture
def batch_config() -> BatchConfig:
    # One worker: the in-memory database is a single shared connection
    return BatchConfig(
        parse_batch_size=3,
        store_batch_size=4,
        max_retries=2,
        heartbeat_interval_secs=0.05,
        worker_timeout_secs=1.0,
        workers=1,
    )


@pytest.fixture
def job_repo(session_factory):
    return SQLAlchemyJobRepository(session_factory)


@pytest.fixture
def work_unit_repo(session_factory):
    return SQLAlchemyWorkUnitRepository(session_factory)


@pytest.fixture
def staging_repo(session_factory):
    return SQLAlchemyStagingRepository(session_factory)


@pytest.fixture
def raw_file_repo(session_factory):
    return SQLAlchemyRawFileRepository(session_factory)


@pytest.fixture
def upload_repo(session_factory):
    return SQLAlchemyFileUploadRepository(session_factory)


@pytest.fixture
def mapping_repo(session_factory):
    return SQLAlchemyVersionMappingRepository(session_factory)


@pytest.fixture
def record_store(session_factory):
    return SQLAlchemyRecordStore(session_factory)


@pytest.fixture
def coordinator(job_repo, work_unit_repo, raw_file_repo, batch_config) -> JobCoordinator:
    return JobCoordinator(
        jobs=job_repo, work_units=work_unit_repo, raw_files=raw_file_repo, config=batch_config
    )


@pytest.fixture
def staging(staging_repo) -> StagingService:
    return StagingService(staging=staging_repo)


@pytest.fixture
def storage(staging_repo, coordinator, batch_config) -> StorageOrchestrator:
    return StorageOrchestrator(staging=staging_repo, coordinator=coordinator, config=batch_config)
