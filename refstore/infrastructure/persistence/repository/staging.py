"""SQLAlchemy adapter implementing StagingRepository."""

from collections.abc import Collection, Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, func, insert, select, update

from refstore.domain.ingest.model.staged import RecordStatus, StagedRecord
from refstore.domain.ingest.model.work_unit import WorkUnitStatus
from refstore.domain.ingest.port.repository import StagingRepository
from refstore.infrastructure.persistence.mappers import (
    row_to_staged_record,
    staged_record_to_dict,
)
from refstore.infrastructure.persistence.repository.base import SQLAlchemyRepository
from refstore.infrastructure.persistence.tables import staged_records_table, work_units_table


class SQLAlchemyStagingRepository(SQLAlchemyRepository, StagingRepository):
    async def add_many(self, records: Sequence[StagedRecord]) -> None:
        async with self._session_factory.begin() as session:
            await session.execute(
                insert(staged_records_table), [staged_record_to_dict(r) for r in records]
            )

    async def add_many_leased(
        self, records: Sequence[StagedRecord], unit_id: UUID, worker_id: str, now: datetime
    ) -> bool:
        w = work_units_table
        async with self._session_factory.begin() as session:
            # Refreshing the lease row first holds it against reclaim until commit
            result = await session.execute(
                update(w)
                .where(
                    w.c.id == str(unit_id),
                    w.c.worker_id == worker_id,
                    w.c.status == WorkUnitStatus.PROCESSING.value,
                )
                .values(heartbeat_at=now, updated_at=now)
            )
            if result.rowcount != 1:
                return False
            # An earlier holder of the unit may have staged before losing it
            await session.execute(
                delete(staged_records_table).where(
                    staged_records_table.c.work_unit_id == str(unit_id),
                    staged_records_table.c.status == RecordStatus.STAGED.value,
                )
            )
            if records:
                await session.execute(
                    insert(staged_records_table), [staged_record_to_dict(r) for r in records]
                )
        return True

    async def get(self, record_id: UUID) -> StagedRecord | None:
        stmt = select(staged_records_table).where(staged_records_table.c.id == str(record_id))
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).mappings().first()
        return row_to_staged_record(dict(row)) if row else None

    async def claim_batch(self, job_id: UUID, limit: int, now: datetime) -> list[StagedRecord]:
        t = staged_records_table
        stmt = (
            select(t)
            .where(t.c.job_id == str(job_id), t.c.status == RecordStatus.STAGED.value)
            .order_by(t.c.created_at.asc(), t.c.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        async with self._session_factory.begin() as session:
            rows = (await session.execute(stmt)).mappings().all()
            if not rows:
                return []
            result = await session.execute(
                update(t)
                .where(
                    t.c.id.in_([row["id"] for row in rows]),
                    t.c.status == RecordStatus.STAGED.value,
                )
                .values(status=RecordStatus.UPLOADING_FILES.value, updated_at=now)
                .returning(t.c.id)
            )
            won = set(result.scalars().all())

        return [
            row_to_staged_record(
                {**row, "status": RecordStatus.UPLOADING_FILES.value, "updated_at": now}
            )
            for row in rows
            if row["id"] in won
        ]

    async def set_status(
        self,
        record_ids: Sequence[UUID],
        to_status: RecordStatus,
        from_statuses: Collection[RecordStatus],
        now: datetime,
        error: str | None = None,
    ) -> int:
        if not record_ids:
            return 0
        t = staged_records_table
        values: dict = {"status": to_status.value, "updated_at": now}
        if to_status == RecordStatus.STORED:
            values["stored_at"] = now
        if error is not None:
            values["error_message"] = error
        stmt = (
            update(t)
            .where(
                t.c.id.in_([str(i) for i in record_ids]),
                t.c.status.in_([s.value for s in from_statuses]),
            )
            .values(**values)
        )
        async with self._session_factory.begin() as session:
            result = await session.execute(stmt)
            return result.rowcount

    async def count_by_status(self, job_id: UUID) -> dict[RecordStatus, int]:
        t = staged_records_table
        stmt = (
            select(t.c.status, func.count())
            .where(t.c.job_id == str(job_id))
            .group_by(t.c.status)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return {RecordStatus(status): count for status, count in rows}
