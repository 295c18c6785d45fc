"""Unit tests for StorageOrchestrator."""

from datetime import UTC, datetime
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from refstore.domain.ingest.model.job import CreateJobParams
from refstore.domain.ingest.model.record import GenericRecord
from refstore.domain.ingest.model.staged import RecordStatus, StagedRecord
from refstore.domain.ingest.service.storage import StorageOrchestrator
from refstore.domain.shared.error import JobCancelledError


class FakeAdapter:
    """Adapter whose uploads or commit can be made to fail on demand."""

    def __init__(self, staging_repo, failing_uploads=(), fail_commit=False):
        self.staging_repo = staging_repo
        self.failing_uploads = set(failing_uploads)
        self.fail_commit = fail_commit
        self.committed: list[str] = []

    def record_type(self) -> str:
        return "protein"

    def supported_formats(self) -> list[str]:
        return ["json"]

    async def upload_files(self, record: StagedRecord, formats) -> list[UUID]:
        if record.record_identifier in self.failing_uploads:
            raise OSError("disk full")
        return [uuid4()]

    async def store_batch(self, records) -> list[UUID]:
        if self.fail_commit:
            raise RuntimeError("constraint violated")
        self.committed.extend(r.record_identifier for r in records)
        # Identical content collapses to one final row
        by_md5: dict[str, UUID] = {}
        return [by_md5.setdefault(r.content_md5, uuid4()) for r in records]

    async def mark_stored(self, record_ids) -> None:
        await self.staging_repo.set_status(
            record_ids,
            RecordStatus.STORED,
            from_statuses=[RecordStatus.STORING_DB],
            now=datetime.now(UTC),
        )


class CancellingAdapter(FakeAdapter):
    """Cancels the job once its first batch is committed."""

    def __init__(self, staging_repo, coordinator, job_id):
        super().__init__(staging_repo)
        self.coordinator = coordinator
        self.job_id = job_id

    async def store_batch(self, records) -> list[UUID]:
        final_ids = await super().store_batch(records)
        await self.coordinator.cancel_job(self.job_id)
        return final_ids


@pytest_asyncio.fixture
async def job(coordinator):
    return await coordinator.create_job(
        CreateJobParams(organization_id="org", job_type="uniprot", external_version="v1")
    )


async def _stage(staging, job_id, identifiers, data=None):
    records = [
        GenericRecord.build("protein", ident, data or {"id": ident}) for ident in identifiers
    ]
    return await staging.stage_records(job_id, None, records)


class TestStorageOrchestrator:
    @pytest.mark.asyncio
    async def test_drains_backlog_in_batches(
        self, storage: StorageOrchestrator, staging, job, staging_repo, coordinator
    ):
        # store_batch_size is 4
        await _stage(staging, job.id, [f"p{i}" for i in range(10)])
        adapter = FakeAdapter(staging_repo)

        stored = await storage.run(job.id, adapter)

        assert stored == 10
        assert len(adapter.committed) == 10
        counts = await staging.count_by_status(job.id)
        assert counts == {RecordStatus.STORED: 10}
        assert (await coordinator.get_job(job.id)).records_stored == 10

    @pytest.mark.asyncio
    async def test_upload_failure_is_isolated(
        self, storage, staging, job, staging_repo, coordinator
    ):
        await _stage(staging, job.id, ["a", "b", "c"])
        adapter = FakeAdapter(staging_repo, failing_uploads={"b"})

        outcome = await storage.process_batch_detailed(job.id, adapter)

        assert (outcome.claimed, outcome.stored, outcome.failed) == (3, 2, 1)
        assert not outcome.batch_failed
        assert sorted(adapter.committed) == ["a", "c"]
        counts = await staging.count_by_status(job.id)
        assert counts == {RecordStatus.STORED: 2, RecordStatus.FAILED: 1}
        job = await coordinator.get_job(job.id)
        assert (job.records_stored, job.records_failed) == (2, 1)

    @pytest.mark.asyncio
    async def test_commit_failure_fails_whole_batch(
        self, storage, staging, job, staging_repo, coordinator
    ):
        staged = await _stage(staging, job.id, ["a", "b"])
        adapter = FakeAdapter(staging_repo, fail_commit=True)

        stored = await storage.run(job.id, adapter)

        assert stored == 0
        assert await staging.count_by_status(job.id) == {RecordStatus.FAILED: 2}
        failed = await staging_repo.get(staged[0].id)
        assert failed.error_message.startswith("commit:")
        assert (await coordinator.get_job(job.id)).records_failed == 2

    @pytest.mark.asyncio
    async def test_identical_content_is_counted_as_skipped(
        self, storage, staging, job, staging_repo, coordinator
    ):
        await _stage(staging, job.id, ["a", "b"], data={"same": True})

        await storage.run(job.id, FakeAdapter(staging_repo))

        job = await coordinator.get_job(job.id)
        assert job.records_stored == 2
        assert job.records_skipped == 1

    @pytest.mark.asyncio
    async def test_empty_backlog_is_a_noop(self, storage, job, staging_repo):
        assert await storage.run(job.id, FakeAdapter(staging_repo)) == 0
        assert await storage.process_batch(job.id, FakeAdapter(staging_repo)) == 0

    @pytest.mark.asyncio
    async def test_records_are_claimed_once(self, storage, staging, job, staging_repo):
        await _stage(staging, job.id, ["a", "b", "c"])

        claimed = await staging_repo.claim_batch(job.id, 10, datetime.now(UTC))
        outcome = await storage.process_batch_detailed(job.id, FakeAdapter(staging_repo))

        assert len(claimed) == 3
        assert outcome.claimed == 0

    @pytest.mark.asyncio
    async def test_cancellation_stops_drain_between_batches(
        self, storage, staging, job, staging_repo, coordinator
    ):
        await _stage(staging, job.id, [f"p{i}" for i in range(10)])
        adapter = CancellingAdapter(staging_repo, coordinator, job.id)

        with pytest.raises(JobCancelledError):
            await storage.run(job.id, adapter)

        assert len(adapter.committed) == 4
        counts = await staging.count_by_status(job.id)
        assert counts == {RecordStatus.STORED: 4, RecordStatus.STAGED: 6}
