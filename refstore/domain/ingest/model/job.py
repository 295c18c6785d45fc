from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from pydantic import Field, NonNegativeInt

from refstore.domain.shared.model.entity import Entity
from refstore.domain.shared.model.value import ValueObject


class JobStatus(StrEnum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    DOWNLOAD_VERIFIED = "download_verified"
    PARSING = "parsing"
    STORING = "storing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in _TRANSITIONS[self]


_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

_ABORT = {JobStatus.FAILED, JobStatus.CANCELLED}

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.DOWNLOADING, *_ABORT}),
    JobStatus.DOWNLOADING: frozenset({JobStatus.DOWNLOAD_VERIFIED, *_ABORT}),
    JobStatus.DOWNLOAD_VERIFIED: frozenset({JobStatus.PARSING, *_ABORT}),
    JobStatus.PARSING: frozenset({JobStatus.STORING, *_ABORT}),
    JobStatus.STORING: frozenset({JobStatus.COMPLETED, *_ABORT}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


def job_predecessors(target: JobStatus) -> frozenset[JobStatus]:
    """Statuses from which ``target`` may be entered."""
    return frozenset(status for status, nexts in _TRANSITIONS.items() if target in nexts)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class CreateJobParams(ValueObject):
    organization_id: str
    job_type: str
    external_version: str
    source_metadata: dict[str, Any] = {}


class CounterDelta(ValueObject):
    """Additive job counter increments. Negative values are rejected."""

    records_processed: NonNegativeInt = 0
    records_stored: NonNegativeInt = 0
    records_failed: NonNegativeInt = 0
    records_skipped: NonNegativeInt = 0

    @property
    def is_empty(self) -> bool:
        return not (
            self.records_processed
            or self.records_stored
            or self.records_failed
            or self.records_skipped
        )


class IngestionJob(Entity):
    """One attempt to ingest one external release for one organization/job_type."""

    id: UUID = Field(default_factory=uuid4)
    organization_id: str
    job_type: str
    external_version: str
    internal_version: str | None = None
    status: JobStatus = JobStatus.PENDING
    total_records: int | None = None
    records_processed: int = 0
    records_stored: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    source_metadata: dict[str, Any] = {}
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def create(cls, params: CreateJobParams) -> "IngestionJob":
        return cls(
            organization_id=params.organization_id,
            job_type=params.job_type,
            external_version=params.external_version,
            source_metadata=dict(params.source_metadata),
        )

    @property
    def was_current(self) -> bool:
        return bool(self.source_metadata.get("is_current", False))


class JobProgress(ValueObject):
    job_id: UUID
    status: JobStatus
    total_records: int | None
    records_processed: int
    records_stored: int
    records_failed: int
    records_skipped: int
    work_units: dict[str, int]

    @property
    def total_work_units(self) -> int:
        return sum(self.work_units.values())

    @property
    def completion_percentage(self) -> float:
        if not self.total_records:
            return 0.0
        return min(100.0, self.records_stored * 100.0 / self.total_records)

    @property
    def work_unit_percentage(self) -> float:
        total = self.total_work_units
        if total == 0:
            return 0.0
        return self.work_units.get("completed", 0) * 100.0 / total
