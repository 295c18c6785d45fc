"""IdempotentPipeline - per-source facade: discover, skip if ingested, ingest once."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

import logfire

from refstore.domain.ingest.model.batch import BatchConfig
from refstore.domain.ingest.model.job import CreateJobParams, IngestionJob, JobStatus
from refstore.domain.ingest.model.record import md5_hex
from refstore.domain.ingest.model.version import DiscoveredVersion, ReleaseArtifact, VersionMapping
from refstore.domain.ingest.port.parser import Parser
from refstore.domain.ingest.port.source import Downloader
from refstore.domain.ingest.port.storage import ObjectStore, StorageAdapter
from refstore.domain.ingest.service.coordinator import JobCoordinator
from refstore.domain.ingest.service.discovery import (
    VersionDiscovery,
    filter_by_date_range,
    filter_new_versions,
)
from refstore.domain.ingest.service.parallel import StreamResult
from refstore.domain.ingest.service.staging import StagingService
from refstore.domain.ingest.service.storage import StorageOrchestrator
from refstore.domain.ingest.service.worker import IngestionWorker, WorkerStats
from refstore.domain.shared.error import (
    AlreadyIngestedError,
    ChecksumMismatchError,
    JobCancelledError,
    ParseError,
    RefstoreError,
    ValidationError,
)
from refstore.domain.shared.service import Service

logger = logging.getLogger(__name__)

# parse_range end offset meaning "to the end of the stream"
_END_OF_STREAM = 2**62


@dataclass(frozen=True)
class IngestStats:
    total_records: int = 0
    records_processed: int = 0
    records_stored: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    bytes_downloaded: int = 0

    @property
    def partially_failed(self) -> bool:
        return self.records_failed > 0


@dataclass(frozen=True)
class PipelineResult:
    external_version: str
    internal_version: str | None
    stats: IngestStats
    skipped: bool
    job_id: UUID | None = None

    def to_stream_result(self, name: str) -> StreamResult:
        return StreamResult(
            name=name,
            records_processed=self.stats.records_processed,
            records_stored=self.stats.records_stored,
            records_failed=self.stats.records_failed,
            bytes_downloaded=self.stats.bytes_downloaded,
            external_version=self.external_version,
            internal_version=self.internal_version,
            skipped=self.skipped,
        )


@dataclass
class BackfillResult:
    discovered: int = 0
    already_ingested: int = 0
    results: list[PipelineResult] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def newly_ingested(self) -> list[str]:
        return [r.external_version for r in self.results if not r.skipped]


class IdempotentPipeline(Service):
    """Ingests one archive's releases for a job type, each at most once.

    A run is: discover -> skip if already ingested -> create job -> download and
    verify -> parse into work units -> stage -> assign internal version ->
    store -> complete -> record version mapping. Completion is arbitrated by
    the one-completed-job-per-release rule, and only a completed job writes
    the version mapping that later runs read as the "ingested" marker.

    Any failure after the job exists marks it failed and is re-raised, except
    cancellation, which leaves the job cancelled.
    """

    job_type: str
    discovery: VersionDiscovery
    coordinator: JobCoordinator
    staging: StagingService
    storage: StorageOrchestrator
    downloader: Downloader
    object_store: ObjectStore
    parser: Parser
    adapter_factory: Callable[[IngestionJob], StorageAdapter]
    config: BatchConfig

    async def run_version(
        self, organization_id: str, version: str | None = None
    ) -> PipelineResult:
        """Ingest ``version``, or the archive's current release when None.

        Returns ``skipped=True`` without writing anything when the release is
        already ingested.
        """
        with logfire.span(
            "ingest {job_type} {version}",
            job_type=self.job_type,
            version=version or "current",
            organization_id=organization_id,
        ):
            if version is None:
                discovered = await self.discovery.discover_current()
            elif await self.discovery.mappings.get(organization_id, self.job_type, version):
                # Mapped releases stay skipped after the archive stops listing them
                logger.info(f"{self.job_type} {version} already ingested, skipping")
                return await self._skipped(organization_id, version)
            else:
                discovered = await self.discovery.find_version(version)
            return await self.ingest(organization_id, discovered)

    async def run_pending(
        self,
        organization_id: str,
        start: date | None = None,
        end: date | None = None,
    ) -> BackfillResult:
        """Ingest every published release not yet ingested, oldest first.

        A failing release is recorded and the backfill moves on to the next one.
        """
        discovered = filter_by_date_range(await self.discovery.discover_all_versions(), start, end)
        pending = filter_new_versions(
            discovered, await self.discovery.already_ingested(organization_id, self.job_type)
        )
        backfill = BackfillResult(
            discovered=len(discovered),
            already_ingested=len(discovered) - len(pending),
        )
        for version in pending:
            try:
                backfill.results.append(await self.ingest(organization_id, version))
            except JobCancelledError:
                raise
            except RefstoreError as e:
                logger.error(f"Backfill of {self.job_type} {version.external_version} failed: {e}")
                backfill.errors[version.external_version] = e.message
        logger.info(
            f"Backfill {self.job_type}: {len(backfill.newly_ingested)} ingested, "
            f"{len(backfill.errors)} failed, {backfill.already_ingested} already present"
        )
        return backfill

    async def ingest(self, organization_id: str, discovered: DiscoveredVersion) -> PipelineResult:
        if await self.discovery.is_ingested(organization_id, self.job_type, discovered):
            logger.info(f"{self.job_type} {discovered.external_version} already ingested, skipping")
            return await self._skipped(organization_id, discovered.external_version)

        try:
            job = await self.coordinator.create_job(
                CreateJobParams(
                    organization_id=organization_id,
                    job_type=self.job_type,
                    external_version=discovered.external_version,
                    source_metadata=discovered.source_metadata(),
                )
            )
        except AlreadyIngestedError:
            logger.info(f"{self.job_type} {discovered.external_version} completed elsewhere")
            return await self._skipped(organization_id, discovered.external_version)

        try:
            return await self._run_job(job, discovered)
        except JobCancelledError:
            logfire.warn("job {job_id} cancelled", job_id=str(job.id))
            raise
        except AlreadyIngestedError as e:
            # Lost the race to a concurrent run of the same release
            await self._fail_quietly(job.id, f"superseded: {e.message}")
            return await self._skipped(organization_id, discovered.external_version)
        except Exception as e:
            current = await self.coordinator.get_job(job.id)
            if current.status == JobStatus.CANCELLED:
                raise JobCancelledError(f"Job {job.id} was cancelled") from e
            logfire.error("job {job_id} failed: {error}", job_id=str(job.id), error=str(e))
            await self._fail_quietly(job.id, str(e) or type(e).__name__)
            raise

    async def _run_job(self, job: IngestionJob, discovered: DiscoveredVersion) -> PipelineResult:
        source = self.discovery.source
        await self.coordinator.transition_job(job.id, JobStatus.DOWNLOADING)
        with logfire.span("download {version}", version=discovered.external_version):
            artifacts = await source.release_artifacts(discovered)
            downloaded = await self._download(job, artifacts)
        await self.coordinator.transition_job(job.id, JobStatus.DOWNLOAD_VERIFIED)

        data = self._primary_payload(artifacts, downloaded)
        with logfire.span("parse {version}", version=discovered.external_version):
            total = await self._count_records(data)
            await self.coordinator.create_work_units(job.id, self.parser.record_type, total)
            await self.coordinator.transition_job(job.id, JobStatus.PARSING)
            await self._run_workers(job.id, data)

        has_major_changes = source.has_major_changes(discovered, downloaded)
        internal_version = await self.discovery.determine_next_internal_version(
            job.organization_id, self.job_type, has_major_changes
        )
        await self.coordinator.assign_internal_version(job.id, internal_version)

        job = await self.coordinator.transition_job(job.id, JobStatus.STORING)
        with logfire.span("store {version}", version=discovered.external_version):
            await self.storage.run(job.id, self.adapter_factory(job))

        # A cancelled or superseded job fails here, before any mapping exists
        job = await self.coordinator.transition_job(job.id, JobStatus.COMPLETED)
        await self.discovery.record_mapping(
            VersionMapping(
                organization_id=job.organization_id,
                job_type=self.job_type,
                external_version=discovered.external_version,
                internal_version=internal_version,
                job_id=job.id,
                was_current=discovered.is_current,
                release_date=discovered.release_date,
            )
        )

        stats = IngestStats(
            total_records=job.total_records or 0,
            records_processed=job.records_processed,
            records_stored=job.records_stored,
            records_failed=job.records_failed,
            records_skipped=job.records_skipped,
            bytes_downloaded=sum(len(b) for b in downloaded.values()),
        )
        logfire.info(
            "ingested {job_type} {external} as {internal}",
            job_type=self.job_type,
            external=discovered.external_version,
            internal=internal_version,
            stored=stats.records_stored,
            failed=stats.records_failed,
        )
        return PipelineResult(
            external_version=discovered.external_version,
            internal_version=internal_version,
            stats=stats,
            skipped=False,
            job_id=job.id,
        )

    async def _download(
        self, job: IngestionJob, artifacts: list[ReleaseArtifact]
    ) -> dict[str, bytes]:
        downloaded: dict[str, bytes] = {}
        for artifact in artifacts:
            data = await self.downloader.fetch(artifact.url)
            computed = md5_hex(data)
            key = (
                f"{job.organization_id}/{self.job_type}/{job.external_version}/raw/{artifact.name}"
            )
            stored_md5 = await self.object_store.put(key, data, artifact.content_type)
            if stored_md5.lower() != computed:
                raise ChecksumMismatchError(key, computed, stored_md5)
            await self.coordinator.register_raw_file(
                job.id,
                file_type="primary" if artifact.primary else "auxiliary",
                file_name=artifact.name,
                object_key=key,
                data=data,
                expected_md5=artifact.expected_md5,
                computed_md5=computed,
                compression=artifact.compression,
            )
            downloaded[artifact.name] = data
            logger.info(f"Downloaded {artifact.name} ({len(data)} bytes)")
        return downloaded

    def _primary_payload(
        self, artifacts: list[ReleaseArtifact], downloaded: dict[str, bytes]
    ) -> bytes:
        """Parser input: the primary artifacts joined in listed order.

        Concatenated gzip members decompress as one stream.
        """
        primaries = [a for a in artifacts if a.primary]
        if not primaries:
            raise ValidationError(
                f"{self.discovery.source.name} release has no primary artifact"
            )
        if len(primaries) == 1:
            return downloaded[primaries[0].name]
        return b"".join(downloaded[a.name] for a in primaries)

    async def _count_records(self, data: bytes) -> int:
        try:
            total = await asyncio.to_thread(self.parser.count_records, data)
            if total is None:
                records = await asyncio.to_thread(
                    self.parser.parse_range, data, 0, _END_OF_STREAM
                )
                total = len(records)
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"Cannot read {self.parser.record_type} stream: {e}") from e
        return total

    async def _run_workers(self, job_id: UUID, data: bytes) -> WorkerStats:
        """Drain the job's work units with ``config.workers`` concurrent workers.

        Units leased by workers elsewhere are waited on; once their lease
        expires they become claimable again and are picked up here.
        """
        stats = WorkerStats()
        while True:
            workers = [
                IngestionWorker(
                    coordinator=self.coordinator,
                    staging=self.staging,
                    parser=self.parser,
                    config=self.config,
                )
                for _ in range(self.config.workers)
            ]
            results = await asyncio.gather(*(w.run(job_id, data) for w in workers))
            for result in results:
                stats = stats.merge(result)
            if stats.cancelled:
                raise JobCancelledError(f"Job {job_id} was cancelled")
            if await self.coordinator.is_parsing_complete(job_id):
                break
            job = await self.coordinator.get_job(job_id)
            if job.status == JobStatus.CANCELLED:
                raise JobCancelledError(f"Job {job_id} was cancelled")
            logger.info(f"Job {job_id}: waiting on work units leased elsewhere")
            await asyncio.sleep(self.config.heartbeat_interval_secs)

        progress = await self.coordinator.get_job_progress(job_id)
        failed = progress.work_units.get("failed", 0)
        if failed:
            raise ParseError(f"{failed} work units of job {job_id} failed permanently")
        return stats

    async def _skipped(self, organization_id: str, external_version: str) -> PipelineResult:
        mapping = await self.discovery.mappings.get(
            organization_id, self.job_type, external_version
        )
        if mapping is None:
            mapping = await self._restore_mapping(organization_id, external_version)
        return PipelineResult(
            external_version=external_version,
            internal_version=mapping.internal_version if mapping else None,
            stats=IngestStats(),
            skipped=True,
            job_id=mapping.job_id if mapping else None,
        )

    async def _restore_mapping(
        self, organization_id: str, external_version: str
    ) -> VersionMapping | None:
        """Write the mapping of a completed job that stopped before recording it."""
        job = await self.coordinator.find_completed_job(
            organization_id, self.job_type, external_version
        )
        if job is None or job.internal_version is None:
            return None
        release_date = job.source_metadata.get("release_date")
        mapping = VersionMapping(
            organization_id=organization_id,
            job_type=self.job_type,
            external_version=external_version,
            internal_version=job.internal_version,
            job_id=job.id,
            was_current=bool(job.source_metadata.get("is_current", False)),
            release_date=date.fromisoformat(release_date) if release_date else None,
        )
        try:
            await self.discovery.record_mapping(mapping)
        except RefstoreError as e:
            logger.error(f"Cannot restore mapping of {self.job_type} {external_version}: {e}")
            return await self.discovery.mappings.get(
                organization_id, self.job_type, external_version
            )
        logger.warning(f"Restored version mapping of completed job {job.id}")
        return mapping

    async def _fail_quietly(self, job_id: UUID, error: str) -> None:
        try:
            await self.coordinator.fail_job(job_id, error)
        except RefstoreError as e:
            logger.error(f"Could not mark job {job_id} failed: {e}")


@dataclass
class PipelineStream:
    """Adapts one pipeline run to the ParallelOrchestrator's stream contract."""

    name: str
    pipeline: IdempotentPipeline
    organization_id: str
    version: str | None = None

    async def run(self) -> StreamResult:
        result = await self.pipeline.run_version(self.organization_id, self.version)
        return result.to_stream_result(self.name)
