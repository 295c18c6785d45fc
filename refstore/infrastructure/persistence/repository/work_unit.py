"""SQLAlchemy adapter implementing WorkUnitRepository.

Claims select candidates with FOR UPDATE SKIP LOCKED and then take each one
with a compare-and-swap UPDATE guarded by the observed status, so two callers
can never both win the same unit even on engines without row-skip-locking.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, case, func, insert, or_, select, update

from refstore.domain.ingest.model.work_unit import (
    LEASED_STATUSES,
    IngestionWorkUnit,
    WorkUnitStatus,
)
from refstore.domain.ingest.port.repository import WorkUnitRepository
from refstore.infrastructure.persistence.mappers import (
    as_utc,
    row_to_work_unit,
    work_unit_to_dict,
)
from refstore.infrastructure.persistence.repository.base import SQLAlchemyRepository
from refstore.infrastructure.persistence.tables import work_units_table

logger = logging.getLogger(__name__)

# Candidates examined per claim attempt before giving up
CLAIM_CANDIDATES = 8

_LEASED = [s.value for s in LEASED_STATUSES]


class SQLAlchemyWorkUnitRepository(SQLAlchemyRepository, WorkUnitRepository):
    async def add_many(self, units: Sequence[IngestionWorkUnit]) -> None:
        async with self._session_factory.begin() as session:
            await session.execute(
                insert(work_units_table), [work_unit_to_dict(u) for u in units]
            )

    async def get(self, unit_id: UUID) -> IngestionWorkUnit | None:
        stmt = select(work_units_table).where(work_units_table.c.id == str(unit_id))
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).mappings().first()
        return row_to_work_unit(dict(row)) if row else None

    async def claim(
        self,
        job_id: UUID,
        worker_id: str,
        worker_hostname: str | None,
        now: datetime,
        lease_cutoff: datetime,
    ) -> IngestionWorkUnit | None:
        t = work_units_table
        expired = and_(t.c.status.in_(_LEASED), t.c.heartbeat_at < lease_cutoff)
        stmt = (
            select(t)
            .where(
                t.c.job_id == str(job_id),
                or_(t.c.status == WorkUnitStatus.PENDING.value, expired),
            )
            .order_by(t.c.batch_number.asc())
            .limit(CLAIM_CANDIDATES)
            .with_for_update(skip_locked=True)
        )

        async with self._session_factory.begin() as session:
            rows = (await session.execute(stmt)).mappings().all()
            for row in rows:
                if row["status"] == WorkUnitStatus.PENDING.value:
                    guard = t.c.status == WorkUnitStatus.PENDING.value
                    retry_count = row["retry_count"]
                else:
                    # Taking over an expired lease counts as a retry
                    guard = and_(t.c.status == row["status"], t.c.heartbeat_at < lease_cutoff)
                    retry_count = row["retry_count"] + 1
                    if retry_count >= row["max_retries"]:
                        await session.execute(
                            update(t)
                            .where(t.c.id == row["id"], guard)
                            .values(
                                status=WorkUnitStatus.FAILED.value,
                                retry_count=retry_count,
                                last_error="lease expired; retries exhausted",
                                worker_id=None,
                                updated_at=now,
                            )
                        )
                        logger.warning(
                            f"Unit {row['id']} lease expired with retries exhausted, failed"
                        )
                        continue

                values = {
                    "status": WorkUnitStatus.CLAIMED.value,
                    "worker_id": worker_id,
                    "worker_hostname": worker_hostname,
                    "claimed_at": now,
                    "heartbeat_at": now,
                    "started_processing_at": None,
                    "retry_count": retry_count,
                    "updated_at": now,
                }
                result = await session.execute(
                    update(t).where(t.c.id == row["id"], guard).values(**values)
                )
                if result.rowcount == 1:
                    if row["status"] != WorkUnitStatus.PENDING.value:
                        logger.info(
                            f"Worker {worker_id} reclaimed unit {row['id']} "
                            f"from {row['worker_id']} (retry {retry_count})"
                        )
                    return row_to_work_unit({**row, **values})
        return None

    async def heartbeat(self, unit_id: UUID, worker_id: str, now: datetime) -> bool:
        t = work_units_table
        stmt = (
            update(t)
            .where(t.c.id == str(unit_id), t.c.worker_id == worker_id, t.c.status.in_(_LEASED))
            .values(heartbeat_at=now, updated_at=now)
        )
        async with self._session_factory.begin() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def start_processing(self, unit_id: UUID, worker_id: str, now: datetime) -> bool:
        t = work_units_table
        stmt = (
            update(t)
            .where(
                t.c.id == str(unit_id),
                t.c.worker_id == worker_id,
                t.c.status == WorkUnitStatus.CLAIMED.value,
            )
            .values(
                status=WorkUnitStatus.PROCESSING.value,
                started_processing_at=now,
                heartbeat_at=now,
                updated_at=now,
            )
        )
        async with self._session_factory.begin() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def complete(
        self, unit_id: UUID, worker_id: str, record_count: int, now: datetime
    ) -> bool:
        t = work_units_table
        async with self._session_factory.begin() as session:
            started = (
                await session.execute(
                    select(t.c.started_processing_at).where(t.c.id == str(unit_id))
                )
            ).scalar()
            started = as_utc(started)
            duration_ms = int((now - started).total_seconds() * 1000) if started else None
            result = await session.execute(
                update(t)
                .where(
                    t.c.id == str(unit_id),
                    t.c.worker_id == worker_id,
                    t.c.status == WorkUnitStatus.PROCESSING.value,
                )
                .values(
                    status=WorkUnitStatus.COMPLETED.value,
                    record_count=record_count,
                    completed_at=now,
                    processing_duration_ms=duration_ms,
                    updated_at=now,
                )
            )
            return result.rowcount == 1

    async def fail(self, unit_id: UUID, error: str, now: datetime) -> WorkUnitStatus | None:
        t = work_units_table
        async with self._session_factory.begin() as session:
            row = (
                (
                    await session.execute(
                        select(t.c.status, t.c.retry_count, t.c.max_retries)
                        .where(t.c.id == str(unit_id))
                        .with_for_update()
                    )
                )
                .mappings()
                .first()
            )
            if row is None:
                logger.warning(f"Work unit {unit_id} not found for fail")
                return None
            if row["status"] not in _LEASED:
                return WorkUnitStatus(row["status"])

            new_retry_count = (row["retry_count"] or 0) + 1
            if new_retry_count >= row["max_retries"]:
                target = WorkUnitStatus.FAILED
            else:
                target = WorkUnitStatus.PENDING

            result = await session.execute(
                update(t)
                .where(t.c.id == str(unit_id), t.c.status == row["status"])
                .values(
                    status=target.value,
                    retry_count=new_retry_count,
                    last_error=error,
                    worker_id=None,
                    worker_hostname=None,
                    claimed_at=None,
                    heartbeat_at=None,
                    started_processing_at=None,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                current = (
                    await session.execute(select(t.c.status).where(t.c.id == str(unit_id)))
                ).scalar()
                return WorkUnitStatus(current)
            return target

    async def cancel(self, unit_id: UUID, now: datetime) -> bool:
        t = work_units_table
        stmt = (
            update(t)
            .where(
                t.c.id == str(unit_id),
                t.c.status.in_([WorkUnitStatus.PENDING.value, *_LEASED]),
            )
            .values(status=WorkUnitStatus.CANCELLED.value, updated_at=now)
        )
        async with self._session_factory.begin() as session:
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def reclaim_stale(self, cutoff: datetime, now: datetime) -> int:
        t = work_units_table
        exhausted = t.c.retry_count + 1 >= t.c.max_retries
        stmt = (
            update(t)
            .where(t.c.status.in_(_LEASED), t.c.heartbeat_at < cutoff)
            .values(
                status=case(
                    (exhausted, WorkUnitStatus.FAILED.value),
                    else_=WorkUnitStatus.PENDING.value,
                ),
                retry_count=t.c.retry_count + 1,
                last_error=case(
                    (exhausted, "lease expired; retries exhausted"),
                    else_="lease expired",
                ),
                worker_id=None,
                worker_hostname=None,
                claimed_at=None,
                heartbeat_at=None,
                started_processing_at=None,
                updated_at=now,
            )
        )
        async with self._session_factory.begin() as session:
            result = await session.execute(stmt)
            count = result.rowcount
        if count > 0:
            logger.info(f"Reset {count} stale work units (heartbeat before {cutoff})")
        return count

    async def count_by_status(self, job_id: UUID) -> dict[WorkUnitStatus, int]:
        t = work_units_table
        stmt = (
            select(t.c.status, func.count())
            .where(t.c.job_id == str(job_id))
            .group_by(t.c.status)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        return {WorkUnitStatus(status): count for status, count in rows}
