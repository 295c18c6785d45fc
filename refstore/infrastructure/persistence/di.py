import logging
from typing import AsyncIterable

from dishka import Provider, provide
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from refstore.config import Config
from refstore.domain.ingest.port.repository import (
    FileUploadRepository,
    JobRepository,
    RawFileRepository,
    StagingRepository,
    VersionMappingRepository,
    WorkUnitRepository,
)
from refstore.infrastructure.persistence.database import create_db_engine, create_session_factory
from refstore.infrastructure.persistence.migrate import run_migrations
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
from refstore.util.di.scope import Scope

logger = logging.getLogger(__name__)


class PersistenceProvider(Provider):
    # APP-scoped factories
    @provide(scope=Scope.APP)
    async def get_engine(self, config: Config) -> AsyncIterable[AsyncEngine]:
        if config.database.auto_migrate and config.database.url.startswith("sqlite"):
            run_migrations(config.database.url)
        engine = create_db_engine(config.database)
        yield engine
        await engine.dispose()

    @provide(scope=Scope.APP)
    def get_session_factory(self, engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
        return create_session_factory(engine)

    # Repositories open their own short transactions, so one instance serves the app
    job_repo = provide(SQLAlchemyJobRepository, scope=Scope.APP, provides=JobRepository)
    work_unit_repo = provide(
        SQLAlchemyWorkUnitRepository, scope=Scope.APP, provides=WorkUnitRepository
    )
    staging_repo = provide(
        SQLAlchemyStagingRepository, scope=Scope.APP, provides=StagingRepository
    )
    raw_file_repo = provide(
        SQLAlchemyRawFileRepository, scope=Scope.APP, provides=RawFileRepository
    )
    file_upload_repo = provide(
        SQLAlchemyFileUploadRepository, scope=Scope.APP, provides=FileUploadRepository
    )
    version_mapping_repo = provide(
        SQLAlchemyVersionMappingRepository, scope=Scope.APP, provides=VersionMappingRepository
    )
    record_store = provide(SQLAlchemyRecordStore, scope=Scope.APP)
