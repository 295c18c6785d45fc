"""Concurrent claim tests that need real row locking."""

import asyncio
import os
from datetime import UTC, datetime, timedelta

import pytest

from refstore.domain.ingest.model.batch import BatchConfig
from refstore.domain.ingest.model.job import CreateJobParams, JobStatus
from refstore.domain.ingest.model.record import GenericRecord
from refstore.domain.ingest.service.coordinator import JobCoordinator
from refstore.domain.ingest.service.staging import StagingService
from refstore.domain.shared.error import AlreadyIngestedError
from refstore.infrastructure.persistence.repository.job import SQLAlchemyJobRepository
from refstore.infrastructure.persistence.repository.provenance import (
    SQLAlchemyRawFileRepository,
)
from refstore.infrastructure.persistence.repository.staging import SQLAlchemyStagingRepository
from refstore.infrastructure.persistence.repository.work_unit import (
    SQLAlchemyWorkUnitRepository,
)

pytestmark = pytest.mark.skipif(
    "postgresql" not in os.environ.get("REFSTORE_DATABASE__URL", ""),
    reason="REFSTORE_DATABASE__URL is not PostgreSQL",
)


def _coordinator(session_factory) -> JobCoordinator:
    return JobCoordinator(
        jobs=SQLAlchemyJobRepository(session_factory),
        work_units=SQLAlchemyWorkUnitRepository(session_factory),
        raw_files=SQLAlchemyRawFileRepository(session_factory),
        config=BatchConfig(parse_batch_size=10, heartbeat_interval_secs=1, worker_timeout_secs=5),
    )


PARAMS = CreateJobParams(organization_id="org", job_type="uniprot", external_version="2024_01")


@pytest.mark.asyncio
async def test_every_unit_claimed_exactly_once(pg_session_factory):
    coordinator = _coordinator(pg_session_factory)
    job = await coordinator.create_job(PARAMS)
    await coordinator.create_work_units(job.id, "protein", 200)

    async def drain(worker_id: str) -> list:
        won = []
        while (unit := await coordinator.claim_work_unit(job.id, worker_id)) is not None:
            won.append(unit.id)
        return won

    results = await asyncio.gather(*(drain(f"w{i}") for i in range(8)))

    claimed = [unit_id for won in results for unit_id in won]
    assert len(claimed) == 20
    assert len(set(claimed)) == 20


@pytest.mark.asyncio
async def test_staged_batches_never_overlap(pg_session_factory):
    coordinator = _coordinator(pg_session_factory)
    staging_repo = SQLAlchemyStagingRepository(pg_session_factory)
    job = await coordinator.create_job(PARAMS)
    records = [GenericRecord.build("protein", f"p{i}", {"i": i}) for i in range(100)]
    await StagingService(staging=staging_repo).stage_records(job.id, None, records)
    now = datetime.now(UTC)

    batches = await asyncio.gather(*(staging_repo.claim_batch(job.id, 7, now) for _ in range(30)))

    claimed = [r.id for batch in batches for r in batch]
    while rest := await staging_repo.claim_batch(job.id, 7, now):
        claimed.extend(r.id for r in rest)
    assert len(claimed) == len(set(claimed))
    assert len(claimed) == 100


@pytest.mark.asyncio
async def test_concurrent_completions_leave_one_completed(pg_session_factory):
    coordinator = _coordinator(pg_session_factory)
    jobs = [await coordinator.create_job(PARAMS) for _ in range(4)]
    for job in jobs:
        for status in (
            JobStatus.DOWNLOADING,
            JobStatus.DOWNLOAD_VERIFIED,
            JobStatus.PARSING,
            JobStatus.STORING,
        ):
            await coordinator.transition_job(job.id, status)

    results = await asyncio.gather(
        *(coordinator.transition_job(j.id, JobStatus.COMPLETED) for j in jobs),
        return_exceptions=True,
    )

    assert sum(1 for r in results if not isinstance(r, Exception)) == 1
    assert all(isinstance(r, AlreadyIngestedError) for r in results if isinstance(r, Exception))
    assert len(await coordinator.list_jobs(JobStatus.COMPLETED)) == 1


@pytest.mark.asyncio
async def test_reclaim_respects_timeout(pg_session_factory):
    coordinator = _coordinator(pg_session_factory)
    job = await coordinator.create_job(PARAMS)
    await coordinator.create_work_units(job.id, "protein", 10)
    await coordinator.claim_work_unit(job.id, "w1")

    assert await coordinator.reclaim_stale_work_units(timedelta(hours=1)) == 0
    assert await coordinator.reclaim_stale_work_units(timedelta(0)) == 1
