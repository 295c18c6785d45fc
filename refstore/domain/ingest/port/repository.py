"""Persistence ports for the ingestion domain.

Every mutating method is one atomic unit against the shared tables; none of
them spans a call to an external archive or object store.
"""

from abc import abstractmethod
from collections.abc import Collection, Sequence
from datetime import datetime
from typing import Protocol
from uuid import UUID

from refstore.domain.ingest.model.job import CounterDelta, IngestionJob, JobStatus
from refstore.domain.ingest.model.staged import FileUpload, RawFile, RecordStatus, StagedRecord
from refstore.domain.ingest.model.version import VersionMapping
from refstore.domain.ingest.model.work_unit import IngestionWorkUnit, WorkUnitStatus
from refstore.domain.shared.port import Port


class JobRepository(Port, Protocol):
    @abstractmethod
    async def create_unless_completed(self, job: IngestionJob) -> bool:
        """Insert ``job`` unless a completed job exists for the same release.

        The check and the insert are one statement. Returns False when blocked.
        """
        ...

    @abstractmethod
    async def get(self, job_id: UUID) -> IngestionJob | None: ...

    @abstractmethod
    async def find_completed(
        self, organization_id: str, job_type: str, external_version: str
    ) -> IngestionJob | None: ...

    @abstractmethod
    async def list_by_status(self, status: JobStatus) -> list[IngestionJob]: ...

    @abstractmethod
    async def transition(
        self,
        job_id: UUID,
        from_statuses: Collection[JobStatus],
        to_status: JobStatus,
        now: datetime,
        error: str | None = None,
    ) -> bool:
        """Compare-and-swap the status. Returns False when no row matched.

        Raises AlreadyIngestedError when completing would duplicate a completed job.
        """
        ...

    @abstractmethod
    async def add_counters(self, job_id: UUID, delta: CounterDelta, now: datetime) -> None: ...

    @abstractmethod
    async def set_total_records(self, job_id: UUID, total: int, now: datetime) -> None: ...

    @abstractmethod
    async def set_internal_version(self, job_id: UUID, version: str, now: datetime) -> None: ...


class WorkUnitRepository(Port, Protocol):
    @abstractmethod
    async def add_many(self, units: Sequence[IngestionWorkUnit]) -> None: ...

    @abstractmethod
    async def get(self, unit_id: UUID) -> IngestionWorkUnit | None: ...

    @abstractmethod
    async def claim(
        self,
        job_id: UUID,
        worker_id: str,
        worker_hostname: str | None,
        now: datetime,
        lease_cutoff: datetime,
    ) -> IngestionWorkUnit | None:
        """Claim one pending or lease-expired unit of ``job_id``.

        Rows locked by a concurrent claim are skipped. Taking over an expired lease
        increments ``retry_count``; a unit whose count reaches ``max_retries`` is
        failed instead of claimed.
        """
        ...

    @abstractmethod
    async def heartbeat(self, unit_id: UUID, worker_id: str, now: datetime) -> bool:
        """Refresh the lease. False when ``worker_id`` no longer holds it."""
        ...

    @abstractmethod
    async def start_processing(self, unit_id: UUID, worker_id: str, now: datetime) -> bool: ...

    @abstractmethod
    async def complete(
        self, unit_id: UUID, worker_id: str, record_count: int, now: datetime
    ) -> bool: ...

    @abstractmethod
    async def fail(self, unit_id: UUID, error: str, now: datetime) -> WorkUnitStatus | None:
        """Record a failure; back to pending while retries remain, else failed.

        Returns the resulting status, or None when the unit does not exist.
        """
        ...

    @abstractmethod
    async def cancel(self, unit_id: UUID, now: datetime) -> bool: ...

    @abstractmethod
    async def reclaim_stale(self, cutoff: datetime, now: datetime) -> int:
        """Return expired leases to pending (or failed once retries run out)."""
        ...

    @abstractmethod
    async def count_by_status(self, job_id: UUID) -> dict[WorkUnitStatus, int]: ...


class StagingRepository(Port, Protocol):
    @abstractmethod
    async def add_many(self, records: Sequence[StagedRecord]) -> None: ...

    @abstractmethod
    async def add_many_leased(
        self, records: Sequence[StagedRecord], unit_id: UUID, worker_id: str, now: datetime
    ) -> bool:
        """Insert ``records`` only while ``worker_id`` still holds ``unit_id``.

        The lease check, a heartbeat refresh and the insert are one transaction.
        Records an earlier holder of the unit left in ``staged`` are replaced.
        Returns False, changing nothing, when the lease is gone.
        """
        ...

    @abstractmethod
    async def claim_batch(self, job_id: UUID, limit: int, now: datetime) -> list[StagedRecord]:
        """Move up to ``limit`` staged records to uploading_files and return them.

        Rows claimed by a concurrent orchestrator are skipped.
        """
        ...

    @abstractmethod
    async def set_status(
        self,
        record_ids: Sequence[UUID],
        to_status: RecordStatus,
        from_statuses: Collection[RecordStatus],
        now: datetime,
        error: str | None = None,
    ) -> int:
        """Move every listed record still in ``from_statuses``; returns rows changed."""
        ...

    @abstractmethod
    async def count_by_status(self, job_id: UUID) -> dict[RecordStatus, int]: ...


class RawFileRepository(Port, Protocol):
    @abstractmethod
    async def add(self, raw_file: RawFile) -> None: ...

    @abstractmethod
    async def list_for_job(self, job_id: UUID) -> list[RawFile]: ...


class FileUploadRepository(Port, Protocol):
    @abstractmethod
    async def add(self, upload: FileUpload) -> None: ...

    @abstractmethod
    async def list_for_record(self, staged_record_id: UUID) -> list[FileUpload]: ...


class VersionMappingRepository(Port, Protocol):
    @abstractmethod
    async def add(self, mapping: VersionMapping) -> None:
        """Raises ConflictError when the release or internal version is already mapped."""
        ...

    @abstractmethod
    async def get(
        self, organization_id: str, job_type: str, external_version: str
    ) -> VersionMapping | None: ...

    @abstractmethod
    async def list_for(self, organization_id: str, job_type: str) -> list[VersionMapping]: ...
