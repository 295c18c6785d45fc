import logging
from typing import AsyncIterable

import httpx
from dishka import AsyncContainer, Provider, provide

from refstore.application.ingest import IngestApplication
from refstore.config import Config
from refstore.domain.ingest.model.batch import BatchConfig
from refstore.domain.ingest.port.source import Downloader
from refstore.domain.ingest.port.storage import ObjectStore
from refstore.domain.ingest.service.coordinator import JobCoordinator
from refstore.domain.ingest.service.parallel import ParallelOrchestrator
from refstore.domain.ingest.service.staging import StagingService
from refstore.domain.ingest.service.storage import StorageOrchestrator
from refstore.infrastructure.http.downloader import HttpDownloader
from refstore.infrastructure.ingest.catalog import ParserRegistry, SourceCatalog, default_parsers
from refstore.infrastructure.storage.object_store import LocalObjectStore
from refstore.infrastructure.worker import WorkerPool
from refstore.util.di.scope import Scope

logger = logging.getLogger(__name__)


class IngestProvider(Provider):
    """Provides ingestion components.

    Clients, stores and registries are APP-scoped singletons; services are
    UOW-scoped so each run or worker poll resolves a fresh graph.
    """

    @provide(scope=Scope.APP)
    def get_batch_config(self, config: Config) -> BatchConfig:
        return config.ingest.batch_config()

    @provide(scope=Scope.APP)
    async def get_http_client(self, config: Config) -> AsyncIterable[httpx.AsyncClient]:
        async with httpx.AsyncClient(
            timeout=config.download.timeout,
            follow_redirects=True,
            headers={"User-Agent": config.download.user_agent},
        ) as client:
            yield client

    @provide(scope=Scope.APP)
    def get_downloader(self, client: httpx.AsyncClient, config: Config) -> Downloader:
        return HttpDownloader(client, config.download)

    @provide(scope=Scope.APP)
    def get_object_store(self, config: Config) -> ObjectStore:
        return LocalObjectStore(base_path=config.storage.base_path)

    @provide(scope=Scope.APP)
    def get_catalog(self, config: Config, downloader: Downloader) -> SourceCatalog:
        catalog = SourceCatalog(config, downloader)
        logger.info(f"Source catalog: {', '.join(catalog.job_types())}")
        return catalog

    @provide(scope=Scope.APP)
    def get_parsers(self) -> ParserRegistry:
        return default_parsers()

    @provide(scope=Scope.APP)
    def get_worker_pool(self, container: AsyncContainer, config: Config) -> WorkerPool:
        return WorkerPool(container=container, config=config.ingest)

    # UOW-scoped services
    coordinator = provide(JobCoordinator, scope=Scope.UOW)
    staging = provide(StagingService, scope=Scope.UOW)
    storage = provide(StorageOrchestrator, scope=Scope.UOW)
    application = provide(IngestApplication, scope=Scope.UOW)

    @provide(scope=Scope.UOW)
    def get_parallel(self, config: Config) -> ParallelOrchestrator:
        return ParallelOrchestrator(default_concurrency=config.sources.genbank.concurrency)
