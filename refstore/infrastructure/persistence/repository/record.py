"""Final, versioned record table writes."""

import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import insert, select, update

from refstore.domain.ingest.model.staged import RecordStatus, StagedRecord
from refstore.infrastructure.persistence.repository.base import SQLAlchemyRepository
from refstore.infrastructure.persistence.tables import data_records_table, staged_records_table

logger = logging.getLogger(__name__)


class SQLAlchemyRecordStore(SQLAlchemyRepository):
    """Upserts committed records keyed by (organization, type, identifier, internal version).

    A row whose ``content_md5`` is unchanged is reused as-is; duplicates inside one
    batch collapse to a single row. The staged records of the batch are flagged
    ``stored`` in the same transaction, so a batch is either fully committed or not
    at all.
    """

    async def commit_batch(
        self,
        records: Sequence[StagedRecord],
        organization_id: str,
        internal_version: str,
        job_id: UUID,
    ) -> list[UUID]:
        if not records:
            return []
        now = datetime.now(UTC)
        t = data_records_table

        # Last occurrence of an identifier wins
        latest: dict[tuple[str, str], StagedRecord] = {}
        for record in records:
            latest[(record.record_type, record.record_identifier)] = record

        async with self._session_factory.begin() as session:
            existing_rows = (
                await session.execute(
                    select(t.c.id, t.c.record_type, t.c.record_identifier, t.c.content_md5).where(
                        t.c.organization_id == organization_id,
                        t.c.internal_version == internal_version,
                        t.c.record_type.in_(sorted({k[0] for k in latest})),
                        t.c.record_identifier.in_(sorted({k[1] for k in latest})),
                    )
                )
            ).all()
            existing = {(row[1], row[2]): (row[0], row[3]) for row in existing_rows}

            final_ids: dict[tuple[str, str], str] = {}
            inserts = []
            reused = 0
            for key, record in latest.items():
                if key in existing:
                    row_id, md5 = existing[key]
                    final_ids[key] = row_id
                    if md5 == record.content_md5:
                        reused += 1
                        continue
                    await session.execute(
                        update(t)
                        .where(t.c.id == row_id)
                        .values(
                            record_name=record.record_name,
                            record_data=record.record_data,
                            content_md5=record.content_md5,
                            sequence_md5=record.sequence_md5,
                            job_id=str(job_id),
                            updated_at=now,
                        )
                    )
                    continue
                row_id = str(uuid4())
                final_ids[key] = row_id
                inserts.append(
                    {
                        "id": row_id,
                        "organization_id": organization_id,
                        "record_type": record.record_type,
                        "record_identifier": record.record_identifier,
                        "internal_version": internal_version,
                        "record_name": record.record_name,
                        "record_data": record.record_data,
                        "content_md5": record.content_md5,
                        "sequence_md5": record.sequence_md5,
                        "job_id": str(job_id),
                        "created_at": now,
                        "updated_at": now,
                    }
                )
            if inserts:
                await session.execute(insert(t), inserts)

            await session.execute(
                update(staged_records_table)
                .where(
                    staged_records_table.c.id.in_([str(r.id) for r in records]),
                    staged_records_table.c.status == RecordStatus.STORING_DB.value,
                )
                .values(status=RecordStatus.STORED.value, stored_at=now, updated_at=now)
            )

        logger.debug(
            f"Committed {len(records)} records ({len(inserts)} new, {reused} unchanged)"
        )
        return [UUID(final_ids[(r.record_type, r.record_identifier)]) for r in records]

    async def find(
        self, organization_id: str, record_type: str, record_identifier: str, internal_version: str
    ) -> dict | None:
        t = data_records_table
        stmt = select(t).where(
            t.c.organization_id == organization_id,
            t.c.record_type == record_type,
            t.c.record_identifier == record_identifier.lower(),
            t.c.internal_version == internal_version,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).mappings().first()
        return dict(row) if row else None

    async def mark_stored(self, record_ids: Sequence[UUID]) -> int:
        """Flag staged records stored; rows already stored are left alone."""
        if not record_ids:
            return 0
        now = datetime.now(UTC)
        stmt = (
            update(staged_records_table)
            .where(
                staged_records_table.c.id.in_([str(i) for i in record_ids]),
                staged_records_table.c.status == RecordStatus.STORING_DB.value,
            )
            .values(status=RecordStatus.STORED.value, stored_at=now, updated_at=now)
        )
        async with self._session_factory.begin() as session:
            result = await session.execute(stmt)
            return result.rowcount
