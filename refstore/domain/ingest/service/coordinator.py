"""JobCoordinator - the job and work-unit state machines over their repositories."""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from refstore.domain.ingest.model.batch import BatchConfig
from refstore.domain.ingest.model.job import (
    CounterDelta,
    CreateJobParams,
    IngestionJob,
    JobProgress,
    JobStatus,
    job_predecessors,
)
from refstore.domain.ingest.model.record import md5_hex
from refstore.domain.ingest.model.staged import RawFile
from refstore.domain.ingest.model.work_unit import (
    ClaimedWorkUnit,
    IngestionWorkUnit,
    WorkUnitStatus,
    plan_work_units,
)
from refstore.domain.ingest.port.repository import (
    JobRepository,
    RawFileRepository,
    WorkUnitRepository,
)
from refstore.domain.shared.error import (
    AlreadyIngestedError,
    ChecksumMismatchError,
    IllegalTransitionError,
    JobCancelledError,
    LeaseLostError,
    NotFoundError,
)
from refstore.domain.shared.service import Service

logger = logging.getLogger(__name__)


class JobCoordinator(Service):
    """Creates jobs, plans and leases their work units, and records provenance."""

    jobs: JobRepository
    work_units: WorkUnitRepository
    raw_files: RawFileRepository
    config: BatchConfig

    # --- Jobs ---

    async def create_job(self, params: CreateJobParams) -> IngestionJob:
        """Insert a pending job.

        Raises:
            AlreadyIngestedError: A completed job exists for the same release.
        """
        job = IngestionJob.create(params)
        if not await self.jobs.create_unless_completed(job):
            raise AlreadyIngestedError(
                f"{params.job_type} {params.external_version} already ingested "
                f"for {params.organization_id}"
            )
        logger.info(f"Created job {job.id} ({job.job_type} {job.external_version})")
        return job

    async def get_job(self, job_id: UUID) -> IngestionJob:
        job = await self.jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def list_jobs(self, status: JobStatus) -> list[IngestionJob]:
        return await self.jobs.list_by_status(status)

    async def find_completed_job(
        self, organization_id: str, job_type: str, external_version: str
    ) -> IngestionJob | None:
        return await self.jobs.find_completed(organization_id, job_type, external_version)

    async def transition_job(
        self, job_id: UUID, new_status: JobStatus, error: str | None = None
    ) -> IngestionJob:
        """Move the job to ``new_status`` if the state machine allows it.

        Raises:
            NotFoundError: No such job.
            IllegalTransitionError: The current status cannot reach ``new_status``.
            AlreadyIngestedError: Completing would create a second completed job.
        """
        now = datetime.now(UTC)
        changed = await self.jobs.transition(
            job_id, job_predecessors(new_status), new_status, now, error=error
        )
        job = await self.get_job(job_id)
        if not changed:
            raise IllegalTransitionError("job", job.status, new_status)
        logger.debug(f"Job {job_id} -> {new_status}")
        return job

    async def fail_job(self, job_id: UUID, error: str) -> IngestionJob:
        return await self.transition_job(job_id, JobStatus.FAILED, error=error)

    async def cancel_job(self, job_id: UUID) -> IngestionJob:
        """Cancel the job. In-flight workers notice on their next heartbeat or claim."""
        job = await self.transition_job(job_id, JobStatus.CANCELLED)
        logger.info(f"Job {job_id} cancelled")
        return job

    async def update_job_counters(self, job_id: UUID, delta: CounterDelta) -> None:
        if delta.is_empty:
            return
        await self.jobs.add_counters(job_id, delta, datetime.now(UTC))

    async def assign_internal_version(self, job_id: UUID, internal_version: str) -> None:
        await self.jobs.set_internal_version(job_id, internal_version, datetime.now(UTC))

    async def get_job_progress(self, job_id: UUID) -> JobProgress:
        job = await self.get_job(job_id)
        counts = await self.work_units.count_by_status(job_id)
        return JobProgress(
            job_id=job.id,
            status=job.status,
            total_records=job.total_records,
            records_processed=job.records_processed,
            records_stored=job.records_stored,
            records_failed=job.records_failed,
            records_skipped=job.records_skipped,
            work_units={str(status): count for status, count in counts.items()},
        )

    async def is_parsing_complete(self, job_id: UUID) -> bool:
        """True once no unit is pending or leased."""
        counts = await self.work_units.count_by_status(job_id)
        return not any(count for status, count in counts.items() if not status.is_terminal)

    # --- Work units ---

    async def create_work_units(
        self, job_id: UUID, unit_type: str, total_records: int
    ) -> list[IngestionWorkUnit]:
        """Split the job's input into ``parse_batch_size`` slices and record the total."""
        now = datetime.now(UTC)
        units = [
            IngestionWorkUnit(
                job_id=job_id,
                unit_type=unit_type,
                batch_number=batch_number,
                start_offset=start,
                end_offset=end,
                max_retries=self.config.max_retries,
                created_at=now,
                updated_at=now,
            )
            for batch_number, start, end in plan_work_units(
                total_records, self.config.parse_batch_size
            )
        ]
        await self.jobs.set_total_records(job_id, total_records, now)
        if units:
            await self.work_units.add_many(units)
        logger.info(f"Job {job_id}: {len(units)} work units for {total_records} records")
        return units

    async def claim_work_unit(
        self, job_id: UUID, worker_id: str, worker_hostname: str | None = None
    ) -> ClaimedWorkUnit | None:
        """Lease one pending or lease-expired unit; None when nothing is claimable.

        Claims against a job that has reached a terminal status are rejected.
        """
        job = await self.get_job(job_id)
        if job.status.is_terminal:
            logger.debug(f"Claim on {job.status} job {job_id} rejected")
            return None
        now = datetime.now(UTC)
        unit = await self.work_units.claim(
            job_id,
            worker_id,
            worker_hostname,
            now=now,
            lease_cutoff=now - self.config.worker_timeout,
        )
        if unit is None:
            return None
        return ClaimedWorkUnit.from_unit(unit)

    async def heartbeat(self, unit_id: UUID, worker_id: str, job_id: UUID) -> None:
        """Refresh the lease on ``unit_id``.

        Raises:
            JobCancelledError: The job was cancelled; the unit is marked cancelled.
            LeaseLostError: Another worker reclaimed the unit.
        """
        now = datetime.now(UTC)
        job = await self.get_job(job_id)
        if job.status == JobStatus.CANCELLED:
            await self.work_units.cancel(unit_id, now)
            raise JobCancelledError(f"Job {job_id} was cancelled")
        if not await self.work_units.heartbeat(unit_id, worker_id, now):
            raise LeaseLostError(f"Worker {worker_id} lost the lease on unit {unit_id}")

    async def start_processing(self, unit_id: UUID, worker_id: str) -> None:
        if not await self.work_units.start_processing(unit_id, worker_id, datetime.now(UTC)):
            raise LeaseLostError(f"Worker {worker_id} does not hold unit {unit_id}")

    async def complete_unit(self, unit_id: UUID, worker_id: str, record_count: int) -> None:
        if not await self.work_units.complete(unit_id, worker_id, record_count, datetime.now(UTC)):
            raise LeaseLostError(f"Worker {worker_id} does not hold unit {unit_id}")

    async def fail_unit(self, unit_id: UUID, error: str) -> WorkUnitStatus:
        status = await self.work_units.fail(unit_id, error, datetime.now(UTC))
        if status is None:
            raise NotFoundError(f"Work unit {unit_id} not found")
        if status == WorkUnitStatus.FAILED:
            logger.error(f"Work unit {unit_id} failed permanently: {error}")
        else:
            logger.warning(f"Work unit {unit_id} failed, will retry: {error}")
        return status

    async def reclaim_stale_work_units(self, timeout: timedelta | None = None) -> int:
        """Expire leases whose heartbeat is older than ``timeout``."""
        now = datetime.now(UTC)
        count = await self.work_units.reclaim_stale(
            now - (self.config.worker_timeout if timeout is None else timeout), now
        )
        if count > 0:
            logger.info(f"Reclaimed {count} stale work units")
        return count

    # --- Raw files ---

    async def register_raw_file(
        self,
        job_id: UUID,
        file_type: str,
        file_name: str,
        object_key: str,
        data: bytes,
        expected_md5: str | None = None,
        computed_md5: str | None = None,
        compression: str | None = None,
    ) -> RawFile:
        """Record a downloaded artifact and verify it against its published checksum.

        The row is written whatever the outcome.

        Raises:
            ChecksumMismatchError: The published checksum does not match.
        """
        raw_file = RawFile(
            job_id=job_id,
            file_type=file_type,
            file_name=file_name,
            object_key=object_key,
            size_bytes=len(data),
            expected_md5=expected_md5,
            computed_md5=computed_md5 or md5_hex(data),
            compression=compression,
        )
        verified = raw_file.verify()
        await self.raw_files.add(raw_file)
        if not verified:
            raise ChecksumMismatchError(file_name, expected_md5 or "", raw_file.computed_md5)
        return raw_file

    async def list_raw_files(self, job_id: UUID) -> list[RawFile]:
        return await self.raw_files.list_for_job(job_id)
