"""SQLAlchemy adapter implementing JobRepository."""

import logging
from collections.abc import Collection
from datetime import datetime
from uuid import UUID

from sqlalchemy import insert, literal, select, update
from sqlalchemy.exc import IntegrityError

from refstore.domain.ingest.model.job import CounterDelta, IngestionJob, JobStatus
from refstore.domain.ingest.port.repository import JobRepository
from refstore.domain.shared.error import AlreadyIngestedError
from refstore.infrastructure.persistence.mappers import job_to_dict, row_to_job
from refstore.infrastructure.persistence.repository.base import SQLAlchemyRepository
from refstore.infrastructure.persistence.tables import jobs_table

logger = logging.getLogger(__name__)


class SQLAlchemyJobRepository(SQLAlchemyRepository, JobRepository):
    async def create_unless_completed(self, job: IngestionJob) -> bool:
        """INSERT ... SELECT ... WHERE NOT EXISTS (completed job for the release)."""
        values = job_to_dict(job)
        columns = list(values)
        completed = select(jobs_table.c.id).where(
            jobs_table.c.organization_id == job.organization_id,
            jobs_table.c.job_type == job.job_type,
            jobs_table.c.external_version == job.external_version,
            jobs_table.c.status == JobStatus.COMPLETED.value,
        )
        source = select(
            *[literal(values[name], jobs_table.c[name].type) for name in columns]
        ).where(~completed.exists())
        stmt = insert(jobs_table).from_select(columns, source)

        async with self._session_factory.begin() as session:
            result = await session.execute(stmt)
            inserted = result.rowcount == 1
        if not inserted:
            logger.info(
                f"Refused job for {job.job_type} {job.external_version}: already completed"
            )
        return inserted

    async def get(self, job_id: UUID) -> IngestionJob | None:
        stmt = select(jobs_table).where(jobs_table.c.id == str(job_id))
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).mappings().first()
        return row_to_job(dict(row)) if row else None

    async def find_completed(
        self, organization_id: str, job_type: str, external_version: str
    ) -> IngestionJob | None:
        stmt = select(jobs_table).where(
            jobs_table.c.organization_id == organization_id,
            jobs_table.c.job_type == job_type,
            jobs_table.c.external_version == external_version,
            jobs_table.c.status == JobStatus.COMPLETED.value,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).mappings().first()
        return row_to_job(dict(row)) if row else None

    async def list_by_status(self, status: JobStatus) -> list[IngestionJob]:
        stmt = (
            select(jobs_table)
            .where(jobs_table.c.status == status.value)
            .order_by(jobs_table.c.created_at.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [row_to_job(dict(row)) for row in rows]

    async def transition(
        self,
        job_id: UUID,
        from_statuses: Collection[JobStatus],
        to_status: JobStatus,
        now: datetime,
        error: str | None = None,
    ) -> bool:
        values: dict = {"status": to_status.value, "updated_at": now}
        if to_status == JobStatus.DOWNLOADING:
            values["started_at"] = now
        if to_status.is_terminal:
            values["completed_at"] = now
        if error is not None:
            values["error_message"] = error

        stmt = (
            update(jobs_table)
            .where(
                jobs_table.c.id == str(job_id),
                jobs_table.c.status.in_([s.value for s in from_statuses]),
            )
            .values(**values)
        )
        try:
            async with self._session_factory.begin() as session:
                result = await session.execute(stmt)
                changed = result.rowcount == 1
        except IntegrityError as e:
            raise AlreadyIngestedError(
                f"Job {job_id} would duplicate a completed ingestion"
            ) from e
        return changed

    async def add_counters(self, job_id: UUID, delta: CounterDelta, now: datetime) -> None:
        c = jobs_table.c
        stmt = (
            update(jobs_table)
            .where(c.id == str(job_id))
            .values(
                records_processed=c.records_processed + delta.records_processed,
                records_stored=c.records_stored + delta.records_stored,
                records_failed=c.records_failed + delta.records_failed,
                records_skipped=c.records_skipped + delta.records_skipped,
                updated_at=now,
            )
        )
        async with self._session_factory.begin() as session:
            await session.execute(stmt)

    async def set_total_records(self, job_id: UUID, total: int, now: datetime) -> None:
        stmt = (
            update(jobs_table)
            .where(jobs_table.c.id == str(job_id))
            .values(total_records=total, updated_at=now)
        )
        async with self._session_factory.begin() as session:
            await session.execute(stmt)

    async def set_internal_version(self, job_id: UUID, version: str, now: datetime) -> None:
        stmt = (
            update(jobs_table)
            .where(jobs_table.c.id == str(job_id))
            .values(internal_version=version, updated_at=now)
        )
        async with self._session_factory.begin() as session:
            await session.execute(stmt)
