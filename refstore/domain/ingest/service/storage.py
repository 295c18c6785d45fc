"""StorageOrchestrator - drains staged records through upload and commit."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from refstore.domain.ingest.model.batch import BatchConfig
from refstore.domain.ingest.model.job import CounterDelta, JobStatus
from refstore.domain.ingest.model.staged import RecordStatus, StagedRecord
from refstore.domain.ingest.port.repository import StagingRepository
from refstore.domain.ingest.port.storage import StorageAdapter
from refstore.domain.ingest.service.coordinator import JobCoordinator
from refstore.domain.shared.error import JobCancelledError
from refstore.domain.shared.service import Service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchOutcome:
    """What one ``process_batch`` pass did.

    Attributes:
        claimed: Records taken from the staged backlog.
        stored: Records that reached ``stored``.
        failed: Records marked ``failed`` (upload or commit).
        batch_failed: The commit of the surviving set failed.
    """

    claimed: int = 0
    stored: int = 0
    failed: int = 0
    batch_failed: bool = False


class StorageOrchestrator(Service):
    """Moves a job's staged records to final tables in batches.

    Uploads are isolated per record: one failing record is marked ``failed`` and
    the rest of the batch continues. The commit is all-or-nothing: every record
    handed to ``store_batch`` ends up ``stored``, or every one ends up ``failed``.
    Neither kind of failure is raised; both are recorded on the rows and in the
    job's ``records_failed`` counter.

    Several orchestrators may drain the same job; each batch is claimed with a
    non-blocking exclusive claim so no record is processed twice.
    """

    staging: StagingRepository
    coordinator: JobCoordinator
    config: BatchConfig

    async def process_batch(self, job_id: UUID, adapter: StorageAdapter) -> int:
        """Process one batch; returns the number of records stored."""
        outcome = await self.process_batch_detailed(job_id, adapter)
        return outcome.stored

    async def process_batch_detailed(self, job_id: UUID, adapter: StorageAdapter) -> BatchOutcome:
        records = await self.staging.claim_batch(
            job_id, self.config.store_batch_size, datetime.now(UTC)
        )
        if not records:
            return BatchOutcome()

        formats = adapter.supported_formats()
        uploaded: list[StagedRecord] = []
        upload_failures = 0
        for record in records:
            try:
                await adapter.upload_files(record, formats)
            except Exception as e:
                logger.warning(f"Upload failed for {record.record_identifier} ({record.id}): {e}")
                await self.staging.set_status(
                    [record.id],
                    RecordStatus.FAILED,
                    from_statuses=[RecordStatus.UPLOADING_FILES],
                    now=datetime.now(UTC),
                    error=f"upload: {e}",
                )
                upload_failures += 1
                continue
            uploaded.append(record)

        stored = 0
        commit_failures = 0
        skipped = 0
        if uploaded:
            ids = [r.id for r in uploaded]
            await self.staging.set_status(
                ids,
                RecordStatus.FILES_UPLOADED,
                from_statuses=[RecordStatus.UPLOADING_FILES],
                now=datetime.now(UTC),
            )
            await self.staging.set_status(
                ids,
                RecordStatus.STORING_DB,
                from_statuses=[RecordStatus.FILES_UPLOADED],
                now=datetime.now(UTC),
            )
            try:
                final_ids = await adapter.store_batch(uploaded)
                await adapter.mark_stored(ids)
            except Exception as e:
                logger.error(
                    f"Batch commit of {len(uploaded)} records for job {job_id} failed: {e}"
                )
                # Rows the adapter already committed are no longer storing_db
                commit_failures = await self.staging.set_status(
                    ids,
                    RecordStatus.FAILED,
                    from_statuses=[RecordStatus.STORING_DB],
                    now=datetime.now(UTC),
                    error=f"commit: {e}",
                )
                stored = len(uploaded) - commit_failures
            else:
                stored = len(uploaded)
                skipped = len(uploaded) - len(set(final_ids))

        await self.coordinator.update_job_counters(
            job_id,
            CounterDelta(
                records_stored=stored,
                records_failed=upload_failures + commit_failures,
                records_skipped=skipped,
            ),
        )
        outcome = BatchOutcome(
            claimed=len(records),
            stored=stored,
            failed=upload_failures + commit_failures,
            batch_failed=commit_failures > 0,
        )
        logger.debug(f"Job {job_id} batch: {outcome}")
        return outcome

    async def run(self, job_id: UUID, adapter: StorageAdapter) -> int:
        """Drain the job's staged backlog; returns the total stored.

        A batch that stored nothing because its commit failed does not end the
        drain; only an empty claim does. Calling this on an empty backlog is a no-op.

        Raises:
            JobCancelledError: The job was cancelled; batches already stored stay.
        """
        total_stored = 0
        batches = 0
        failed_batches = 0
        while True:
            job = await self.coordinator.get_job(job_id)
            if job.status == JobStatus.CANCELLED:
                logger.info(f"Job {job_id} cancelled after {batches} batches")
                raise JobCancelledError(f"Job {job_id} was cancelled")
            outcome = await self.process_batch_detailed(job_id, adapter)
            if outcome.claimed == 0:
                break
            batches += 1
            failed_batches += int(outcome.batch_failed)
            total_stored += outcome.stored
        if batches:
            logger.info(
                f"Job {job_id}: stored {total_stored} records in {batches} batches "
                f"({failed_batches} failed)"
            )
        return total_stored
