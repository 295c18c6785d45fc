import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from uuid import UUID

from refstore.domain.ingest.model.record import GenericRecord
from refstore.domain.ingest.model.staged import RecordStatus, StagedRecord
from refstore.domain.ingest.model.work_unit import ClaimedWorkUnit
from refstore.domain.ingest.port.repository import StagingRepository
from refstore.domain.shared.error import LeaseLostError
from refstore.domain.shared.service import Service

logger = logging.getLogger(__name__)


class StagingService(Service):
    """Holds parsed records durably until the storage orchestrator commits them.

    ``content_md5`` travels with each record as a dedup hint for the storage
    adapter; identical content staged by different work units is legal here.
    """

    staging: StagingRepository

    async def stage_records(
        self, job_id: UUID, work_unit_id: UUID | None, records: Sequence[GenericRecord]
    ) -> list[StagedRecord]:
        staged = [StagedRecord.from_record(job_id, work_unit_id, r) for r in records]
        if staged:
            await self.staging.add_many(staged)
        logger.debug(f"Staged {len(staged)} records for job {job_id}")
        return staged

    async def stage_leased_records(
        self, unit: ClaimedWorkUnit, worker_id: str, records: Sequence[GenericRecord]
    ) -> list[StagedRecord]:
        """Stage a work unit's records while ``worker_id`` still holds its lease.

        Raises:
            LeaseLostError: The lease expired or was taken over; nothing was staged.
        """
        staged = [StagedRecord.from_record(unit.job_id, unit.id, r) for r in records]
        if not await self.staging.add_many_leased(staged, unit.id, worker_id, datetime.now(UTC)):
            raise LeaseLostError(f"Worker {worker_id} lost unit {unit.id} before staging")
        logger.debug(f"Staged {len(staged)} records for unit {unit.id}")
        return staged

    async def count_by_status(self, job_id: UUID) -> dict[RecordStatus, int]:
        return await self.staging.count_by_status(job_id)
