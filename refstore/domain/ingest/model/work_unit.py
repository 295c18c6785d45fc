from datetime import UTC, datetime, timedelta
from enum import StrEnum
from uuid import UUID, uuid4

from pydantic import Field

from refstore.domain.shared.model.entity import Entity
from refstore.domain.shared.model.value import ValueObject


class WorkUnitStatus(StrEnum):
    PENDING = "pending"
    CLAIMED = "claimed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_leased(self) -> bool:
        return self in (WorkUnitStatus.CLAIMED, WorkUnitStatus.PROCESSING)

    @property
    def is_terminal(self) -> bool:
        return self in (WorkUnitStatus.COMPLETED, WorkUnitStatus.FAILED, WorkUnitStatus.CANCELLED)


LEASED_STATUSES = (WorkUnitStatus.CLAIMED, WorkUnitStatus.PROCESSING)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class IngestionWorkUnit(Entity):
    """A contiguous, independently claimable slice of a job's input.

    Offsets are record indices; ``end_offset`` is inclusive.
    """

    id: UUID = Field(default_factory=uuid4)
    job_id: UUID
    unit_type: str
    batch_number: int
    start_offset: int
    end_offset: int
    record_count: int | None = None
    status: WorkUnitStatus = WorkUnitStatus.PENDING
    worker_id: str | None = None
    worker_hostname: str | None = None
    claimed_at: datetime | None = None
    heartbeat_at: datetime | None = None
    started_processing_at: datetime | None = None
    completed_at: datetime | None = None
    processing_duration_ms: int | None = None
    retry_count: int = 0
    max_retries: int = 3
    last_error: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def size(self) -> int:
        return self.end_offset - self.start_offset + 1

    def lease_expired(self, now: datetime, timeout: timedelta) -> bool:
        if not self.status.is_leased or self.heartbeat_at is None:
            return False
        return self.heartbeat_at < now - timeout


class ClaimedWorkUnit(ValueObject):
    """What a worker receives from a successful claim."""

    id: UUID
    job_id: UUID
    unit_type: str
    batch_number: int
    start_offset: int
    end_offset: int
    worker_id: str
    claimed_at: datetime
    retry_count: int
    max_retries: int

    @property
    def size(self) -> int:
        return self.end_offset - self.start_offset + 1

    @classmethod
    def from_unit(cls, unit: IngestionWorkUnit) -> "ClaimedWorkUnit":
        if unit.worker_id is None or unit.claimed_at is None:
            raise ValueError(f"Work unit {unit.id} is not claimed")
        return cls(
            id=unit.id,
            job_id=unit.job_id,
            unit_type=unit.unit_type,
            batch_number=unit.batch_number,
            start_offset=unit.start_offset,
            end_offset=unit.end_offset,
            worker_id=unit.worker_id,
            claimed_at=unit.claimed_at,
            retry_count=unit.retry_count,
            max_retries=unit.max_retries,
        )


def plan_work_units(total_records: int, batch_size: int) -> list[tuple[int, int, int]]:
    """Split ``total_records`` into ``(batch_number, start_offset, end_offset)`` slices.

    The slices are contiguous, non-overlapping and cover ``0..total_records-1``.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    if total_records <= 0:
        return []
    slices = []
    for batch_number, start in enumerate(range(0, total_records, batch_size)):
        end = min(start + batch_size, total_records) - 1
        slices.append((batch_number, start, end))
    return slices
