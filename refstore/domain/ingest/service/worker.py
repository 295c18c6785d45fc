"""IngestionWorker - claims work units of a job and stages their records."""

import asyncio
import logging
import socket
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID, uuid4

from refstore.domain.ingest.model.batch import BatchConfig
from refstore.domain.ingest.model.job import CounterDelta
from refstore.domain.ingest.model.work_unit import ClaimedWorkUnit
from refstore.domain.ingest.port.parser import Parser
from refstore.domain.ingest.service.coordinator import JobCoordinator
from refstore.domain.ingest.service.staging import StagingService
from refstore.domain.shared.error import JobCancelledError, LeaseLostError
from refstore.domain.shared.service import Service

logger = logging.getLogger(__name__)


def _new_worker_id() -> str:
    return f"worker-{uuid4().hex[:12]}"


def _raise_if_beat_failed(heartbeat: asyncio.Task) -> None:
    if heartbeat.done() and not heartbeat.cancelled():
        heartbeat.result()


@dataclass
class WorkerStats:
    units_completed: int = 0
    units_failed: int = 0
    units_abandoned: int = 0
    records_staged: int = 0
    records_failed: int = 0
    cancelled: bool = False

    def merge(self, other: "WorkerStats") -> "WorkerStats":
        return WorkerStats(
            units_completed=self.units_completed + other.units_completed,
            units_failed=self.units_failed + other.units_failed,
            units_abandoned=self.units_abandoned + other.units_abandoned,
            records_staged=self.records_staged + other.records_staged,
            records_failed=self.records_failed + other.records_failed,
            cancelled=self.cancelled or other.cancelled,
        )


class IngestionWorker(Service):
    """Claims units until none remain, parsing each slice and staging its records.

    While a unit is processed a background task refreshes its lease every
    ``heartbeat_interval_secs``. A cancelled job stops the worker; a lost lease
    abandons the unit to whoever reclaimed it.
    """

    coordinator: JobCoordinator
    staging: StagingService
    parser: Parser
    config: BatchConfig
    worker_id: str = field(default_factory=_new_worker_id)
    hostname: str = field(default_factory=socket.gethostname)

    async def run(self, job_id: UUID, data: bytes) -> WorkerStats:
        stats = WorkerStats()
        while True:
            unit = await self.coordinator.claim_work_unit(job_id, self.worker_id, self.hostname)
            if unit is None:
                break
            try:
                staged, failed = await self.process_work_unit(unit, data)
            except JobCancelledError:
                logger.info(f"{self.worker_id}: job {job_id} cancelled, stopping")
                stats.cancelled = True
                break
            except LeaseLostError as e:
                logger.warning(f"{self.worker_id}: {e}")
                stats.units_abandoned += 1
                continue
            except Exception as e:
                logger.error(f"{self.worker_id}: unit {unit.batch_number} of job {job_id}: {e}")
                await self.coordinator.fail_unit(unit.id, str(e))
                stats.units_failed += 1
                continue
            stats.units_completed += 1
            stats.records_staged += staged
            stats.records_failed += failed
        logger.debug(f"{self.worker_id}: finished job {job_id}: {stats}")
        return stats

    async def process_work_unit(self, unit: ClaimedWorkUnit, data: bytes) -> tuple[int, int]:
        """Parse and stage one unit. Returns (records staged, records skipped as unparseable)."""
        started = datetime.now(UTC)
        await self.coordinator.start_processing(unit.id, self.worker_id)

        # One lease statement at a time per unit
        lease_lock = asyncio.Lock()
        heartbeat = asyncio.create_task(
            self._heartbeat_loop(unit, lease_lock), name=f"heartbeat-{unit.id}"
        )
        try:
            records = await asyncio.to_thread(
                self.parser.parse_range, data, unit.start_offset, unit.end_offset
            )
            _raise_if_beat_failed(heartbeat)
            async with lease_lock:
                # Cancellation must be seen before anything is staged
                await self.coordinator.heartbeat(unit.id, self.worker_id, unit.job_id)
                await self.staging.stage_leased_records(unit, self.worker_id, records)
                await self.coordinator.complete_unit(unit.id, self.worker_id, len(records))
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass
            except (JobCancelledError, LeaseLostError):
                pass

        # Counted only once the unit is ours for good
        failed = max(0, unit.size - len(records))
        await self.coordinator.update_job_counters(
            unit.job_id,
            CounterDelta(records_processed=len(records), records_failed=failed),
        )

        elapsed = (datetime.now(UTC) - started).total_seconds()
        logger.debug(
            f"{self.worker_id}: unit {unit.batch_number} staged {len(records)} records "
            f"({failed} unparseable) in {elapsed:.2f}s"
        )
        return len(records), failed

    async def _heartbeat_loop(self, unit: ClaimedWorkUnit, lease_lock: asyncio.Lock) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval_secs)
            async with lease_lock:
                await self.coordinator.heartbeat(unit.id, self.worker_id, unit.job_id)
