"""Unit tests for JobCoordinator state machines and leasing."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from refstore.domain.ingest.model.batch import BatchConfig
from refstore.domain.ingest.model.job import CounterDelta, CreateJobParams, IngestionJob, JobStatus
from refstore.domain.ingest.model.record import md5_hex
from refstore.domain.ingest.model.work_unit import IngestionWorkUnit, WorkUnitStatus
from refstore.domain.ingest.service.coordinator import JobCoordinator
from refstore.domain.shared.error import (
    AlreadyIngestedError,
    ChecksumMismatchError,
    IllegalTransitionError,
    JobCancelledError,
    LeaseLostError,
    NotFoundError,
)

PARAMS = CreateJobParams(organization_id="org", job_type="uniprot", external_version="2024_01")

TO_STORING = [
    JobStatus.DOWNLOADING,
    JobStatus.DOWNLOAD_VERIFIED,
    JobStatus.PARSING,
    JobStatus.STORING,
]


async def _advance(coordinator: JobCoordinator, job: IngestionJob, statuses) -> IngestionJob:
    for status in statuses:
        job = await coordinator.transition_job(job.id, status)
    return job


class FakeSkipLockedWorkUnits:
    """Claims read candidates, yield to the loop, then compare-and-swap.

    The yield between read and write lets concurrent claimers interleave the
    way they would against a real database.
    """

    def __init__(self, units: list[IngestionWorkUnit]):
        self.units = {u.id: u for u in units}

    async def claim(self, job_id, worker_id, worker_hostname, now, lease_cutoff):
        candidates = [
            u.id
            for u in sorted(self.units.values(), key=lambda u: u.batch_number)
            if u.job_id == job_id and u.status == WorkUnitStatus.PENDING
        ]
        await asyncio.sleep(0)
        for unit_id in candidates:
            unit = self.units[unit_id]
            if unit.status != WorkUnitStatus.PENDING:
                continue
            unit.status = WorkUnitStatus.CLAIMED
            unit.worker_id = worker_id
            unit.claimed_at = now
            unit.heartbeat_at = now
            return unit
        return None


class TestJobs:
    @pytest.mark.asyncio
    async def test_create_job_starts_pending(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        stored = await coordinator.get_job(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.external_version == "2024_01"

    @pytest.mark.asyncio
    async def test_create_is_refused_once_release_completed(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        await _advance(coordinator, job, [*TO_STORING, JobStatus.COMPLETED])

        with pytest.raises(AlreadyIngestedError):
            await coordinator.create_job(PARAMS)

    @pytest.mark.asyncio
    async def test_failed_attempt_does_not_block_a_new_job(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        await coordinator.fail_job(job.id, "network down")

        retry = await coordinator.create_job(PARAMS)

        assert retry.id != job.id
        failed = await coordinator.get_job(job.id)
        assert failed.error_message == "network down"
        assert failed.completed_at is not None

    @pytest.mark.asyncio
    async def test_second_completion_is_rejected(self, coordinator: JobCoordinator):
        first = await coordinator.create_job(PARAMS)
        second = await coordinator.create_job(PARAMS)
        await _advance(coordinator, first, TO_STORING)
        await _advance(coordinator, second, TO_STORING)
        await coordinator.transition_job(first.id, JobStatus.COMPLETED)

        with pytest.raises(AlreadyIngestedError):
            await coordinator.transition_job(second.id, JobStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_illegal_transition(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        with pytest.raises(IllegalTransitionError):
            await coordinator.transition_job(job.id, JobStatus.PARSING)
        assert (await coordinator.get_job(job.id)).status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_terminal_job_cannot_be_cancelled(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        await coordinator.fail_job(job.id, "x")
        with pytest.raises(IllegalTransitionError):
            await coordinator.cancel_job(job.id)

    @pytest.mark.asyncio
    async def test_unknown_job(self, coordinator: JobCoordinator):
        job = IngestionJob.create(PARAMS)
        with pytest.raises(NotFoundError):
            await coordinator.get_job(job.id)

    @pytest.mark.asyncio
    async def test_counters_accumulate(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        await coordinator.update_job_counters(job.id, CounterDelta(records_processed=3))
        await coordinator.update_job_counters(
            job.id, CounterDelta(records_processed=2, records_failed=1)
        )
        job = await coordinator.get_job(job.id)
        assert job.records_processed == 5
        assert job.records_failed == 1


class TestWorkUnits:
    @pytest.mark.asyncio
    async def test_units_cover_total(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        units = await coordinator.create_work_units(job.id, "protein", 7)

        assert [(u.start_offset, u.end_offset) for u in units] == [(0, 2), (3, 5), (6, 6)]
        assert (await coordinator.get_job(job.id)).total_records == 7
        progress = await coordinator.get_job_progress(job.id)
        assert progress.work_units == {"pending": 3}

    @pytest.mark.asyncio
    async def test_claims_in_batch_order_until_exhausted(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        await coordinator.create_work_units(job.id, "protein", 6)

        first = await coordinator.claim_work_unit(job.id, "w1")
        second = await coordinator.claim_work_unit(job.id, "w2")
        third = await coordinator.claim_work_unit(job.id, "w3")

        assert (first.batch_number, second.batch_number) == (0, 1)
        assert third is None

    @pytest.mark.asyncio
    async def test_claim_on_terminal_job_is_rejected(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        await coordinator.create_work_units(job.id, "protein", 3)
        await coordinator.cancel_job(job.id)
        assert await coordinator.claim_work_unit(job.id, "w1") is None

    @pytest.mark.asyncio
    async def test_concurrent_claims_never_share_a_unit(self, batch_config: BatchConfig):
        job = IngestionJob.create(PARAMS)
        units = [
            IngestionWorkUnit(
                job_id=job.id, unit_type="protein", batch_number=i, start_offset=i, end_offset=i
            )
            for i in range(4)
        ]
        jobs = AsyncMock()
        jobs.get.return_value = job
        coordinator = JobCoordinator(
            jobs=jobs,
            work_units=FakeSkipLockedWorkUnits(units),
            raw_files=AsyncMock(),
            config=batch_config,
        )

        claims = await asyncio.gather(
            *(coordinator.claim_work_unit(job.id, f"w{i}") for i in range(10))
        )

        won = [c for c in claims if c is not None]
        assert len(won) == 4
        assert len({c.id for c in won}) == 4

    @pytest.mark.asyncio
    async def test_full_unit_lifecycle(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        await coordinator.create_work_units(job.id, "protein", 3)
        unit = await coordinator.claim_work_unit(job.id, "w1")

        await coordinator.start_processing(unit.id, "w1")
        await coordinator.heartbeat(unit.id, "w1", job.id)
        await coordinator.complete_unit(unit.id, "w1", 3)

        assert await coordinator.is_parsing_complete(job.id)
        stored = await coordinator.work_units.get(unit.id)
        assert stored.status == WorkUnitStatus.COMPLETED
        assert stored.record_count == 3
        assert stored.processing_duration_ms is not None

    @pytest.mark.asyncio
    async def test_heartbeat_on_cancelled_job(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        await coordinator.create_work_units(job.id, "protein", 3)
        unit = await coordinator.claim_work_unit(job.id, "w1")
        await coordinator.cancel_job(job.id)

        with pytest.raises(JobCancelledError):
            await coordinator.heartbeat(unit.id, "w1", job.id)

        stored = await coordinator.work_units.get(unit.id)
        assert stored.status == WorkUnitStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_reclaimed_unit_is_lost_by_its_first_worker(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        await coordinator.create_work_units(job.id, "protein", 3)
        unit = await coordinator.claim_work_unit(job.id, "w1")

        assert await coordinator.reclaim_stale_work_units(timedelta(0)) == 1
        taken = await coordinator.claim_work_unit(job.id, "w2")

        assert taken.id == unit.id
        assert taken.retry_count == 1
        with pytest.raises(LeaseLostError):
            await coordinator.heartbeat(unit.id, "w1", job.id)
        with pytest.raises(LeaseLostError):
            await coordinator.complete_unit(unit.id, "w1", 3)

    @pytest.mark.asyncio
    async def test_fresh_lease_is_not_reclaimed(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        await coordinator.create_work_units(job.id, "protein", 3)
        await coordinator.claim_work_unit(job.id, "w1")
        assert await coordinator.reclaim_stale_work_units(timedelta(hours=1)) == 0

    @pytest.mark.asyncio
    async def test_failures_retry_until_exhausted(self, coordinator: JobCoordinator):
        # max_retries is 2 in the shared batch config
        job = await coordinator.create_job(PARAMS)
        await coordinator.create_work_units(job.id, "protein", 3)

        unit = await coordinator.claim_work_unit(job.id, "w1")
        assert await coordinator.fail_unit(unit.id, "bad bytes") == WorkUnitStatus.PENDING

        unit = await coordinator.claim_work_unit(job.id, "w1")
        assert await coordinator.fail_unit(unit.id, "bad bytes") == WorkUnitStatus.FAILED

        assert await coordinator.claim_work_unit(job.id, "w1") is None
        stored = await coordinator.work_units.get(unit.id)
        assert stored.last_error == "bad bytes"
        assert stored.retry_count == 2

    @pytest.mark.asyncio
    async def test_fail_unknown_unit(self, coordinator: JobCoordinator):
        unit = IngestionWorkUnit(
            job_id=IngestionJob.create(PARAMS).id,
            unit_type="protein",
            batch_number=0,
            start_offset=0,
            end_offset=0,
        )
        with pytest.raises(NotFoundError):
            await coordinator.fail_unit(unit.id, "x")


class TestRawFiles:
    @pytest.mark.asyncio
    async def test_verified_against_published_checksum(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        data = b">sp|P1|X\nMK\n"
        raw = await coordinator.register_raw_file(
            job.id, "primary", "a.fasta", "k/a.fasta", data, expected_md5=md5_hex(data).upper()
        )
        assert raw.verified_md5
        assert raw.size_bytes == len(data)

    @pytest.mark.asyncio
    async def test_unpublished_checksum_is_not_verified(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        raw = await coordinator.register_raw_file(job.id, "primary", "a", "k/a", b"x")
        assert not raw.verified_md5

    @pytest.mark.asyncio
    async def test_mismatch_raises_but_keeps_provenance(self, coordinator: JobCoordinator):
        job = await coordinator.create_job(PARAMS)
        with pytest.raises(ChecksumMismatchError):
            await coordinator.register_raw_file(
                job.id, "primary", "a", "k/a", b"x", expected_md5="0" * 32
            )
        files = await coordinator.list_raw_files(job.id)
        assert len(files) == 1
        assert not files[0].verified_md5
        assert files[0].computed_md5 == md5_hex(b"x")

