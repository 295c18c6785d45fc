"""Entry points that assemble pipelines for the catalogued archives and run them."""

import logging
from datetime import date
from uuid import UUID

from refstore.config import Config
from refstore.domain.ingest.model.batch import BatchConfig
from refstore.domain.ingest.model.job import IngestionJob, JobProgress
from refstore.domain.ingest.port.repository import FileUploadRepository, VersionMappingRepository
from refstore.domain.ingest.port.source import Downloader
from refstore.domain.ingest.port.storage import ObjectStore
from refstore.domain.ingest.service.coordinator import JobCoordinator
from refstore.domain.ingest.service.discovery import VersionDiscovery
from refstore.domain.ingest.service.parallel import AggregateResult, ParallelOrchestrator
from refstore.domain.ingest.service.pipeline import (
    BackfillResult,
    IdempotentPipeline,
    PipelineResult,
    PipelineStream,
)
from refstore.domain.ingest.service.staging import StagingService
from refstore.domain.ingest.service.storage import StorageOrchestrator
from refstore.domain.shared.service import Service
from refstore.infrastructure.ingest import genbank
from refstore.infrastructure.ingest.adapter import record_table_adapter_factory
from refstore.infrastructure.ingest.catalog import ParserRegistry, SourceCatalog
from refstore.infrastructure.persistence.repository.record import SQLAlchemyRecordStore

logger = logging.getLogger(__name__)


class IngestApplication(Service):
    config: Config
    batch_config: BatchConfig
    catalog: SourceCatalog
    parsers: ParserRegistry
    coordinator: JobCoordinator
    staging: StagingService
    storage: StorageOrchestrator
    parallel: ParallelOrchestrator
    mappings: VersionMappingRepository
    uploads: FileUploadRepository
    record_store: SQLAlchemyRecordStore
    downloader: Downloader
    object_store: ObjectStore

    def pipeline(self, job_type: str) -> IdempotentPipeline:
        """Assemble the pipeline for ``job_type``.

        Raises:
            NotFoundError: The job type is not catalogued.
            ConfigurationError: No parser is registered for it.
        """
        entry = self.catalog.get(job_type)
        parser = self.parsers.get(job_type)
        return IdempotentPipeline(
            job_type=job_type,
            discovery=VersionDiscovery(source=entry.source, mappings=self.mappings),
            coordinator=self.coordinator,
            staging=self.staging,
            storage=self.storage,
            downloader=self.downloader,
            object_store=self.object_store,
            parser=parser,
            adapter_factory=record_table_adapter_factory(
                entry.record_type,
                parser.output_formats,
                self.record_store,
                self.uploads,
                self.object_store,
            ),
            config=self.batch_config,
        )

    def _org(self, organization_id: str | None) -> str:
        return organization_id or self.config.organization_id

    async def ingest(
        self, job_type: str, version: str | None = None, organization_id: str | None = None
    ) -> PipelineResult:
        return await self.pipeline(job_type).run_version(self._org(organization_id), version)

    async def backfill(
        self,
        job_type: str,
        start: date | None = None,
        end: date | None = None,
        organization_id: str | None = None,
    ) -> BackfillResult:
        return await self.pipeline(job_type).run_pending(self._org(organization_id), start, end)

    async def ingest_genbank(
        self,
        version: str | None = None,
        divisions: list[str] | None = None,
        organization_id: str | None = None,
    ) -> AggregateResult:
        """Ingest a GenBank release, one stream per division.

        Divisions fail independently; the call raises only if all of them fail.
        """
        org = self._org(organization_id)
        streams = [
            PipelineStream(
                name=division,
                pipeline=self.pipeline(genbank.job_type_for(division)),
                organization_id=org,
                version=version,
            )
            for division in divisions or self.catalog.genbank_divisions
        ]
        result = await self.parallel.run_streams(streams, self.catalog.genbank_concurrency)
        logger.info(
            f"GenBank: {len(result.succeeded)} divisions ingested, "
            f"{len(result.failed)} failed, {result.records_stored} records stored"
        )
        return result

    async def progress(self, job_id: UUID) -> JobProgress:
        return await self.coordinator.get_job_progress(job_id)

    async def cancel(self, job_id: UUID) -> IngestionJob:
        return await self.coordinator.cancel_job(job_id)
