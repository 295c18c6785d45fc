from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from pydantic import Field

from refstore.domain.ingest.model.record import GenericRecord, checksums_match
from refstore.domain.shared.model.entity import Entity


class RecordStatus(StrEnum):
    STAGED = "staged"
    UPLOADING_FILES = "uploading_files"
    FILES_UPLOADED = "files_uploaded"
    STORING_DB = "storing_db"
    STORED = "stored"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RecordStatus.STORED, RecordStatus.FAILED)


class UploadStatus(StrEnum):
    UPLOADED = "uploaded"
    FAILED = "failed"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class StagedRecord(Entity):
    """A parsed record held durably until the storage orchestrator commits it."""

    id: UUID = Field(default_factory=uuid4)
    job_id: UUID
    work_unit_id: UUID | None = None
    record_type: str
    record_identifier: str
    record_name: str | None = None
    record_data: dict[str, Any]
    content_md5: str
    sequence_md5: str | None = None
    source_file: str | None = None
    source_offset: int | None = None
    status: RecordStatus = RecordStatus.STAGED
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    stored_at: datetime | None = None

    @classmethod
    def from_record(
        cls, job_id: UUID, work_unit_id: UUID | None, record: GenericRecord
    ) -> "StagedRecord":
        return cls(
            job_id=job_id,
            work_unit_id=work_unit_id,
            record_type=record.record_type,
            record_identifier=record.record_identifier,
            record_name=record.record_name,
            record_data=record.record_data,
            content_md5=record.content_md5,
            sequence_md5=record.sequence_md5,
            source_file=record.source_file,
            source_offset=record.source_offset,
        )

    def to_record(self) -> GenericRecord:
        return GenericRecord(
            record_type=self.record_type,
            record_identifier=self.record_identifier,
            record_name=self.record_name,
            record_data=self.record_data,
            content_md5=self.content_md5,
            sequence_md5=self.sequence_md5,
            source_file=self.source_file,
            source_offset=self.source_offset,
        )


class FileUpload(Entity):
    """Provenance of one per-format render of a staged record."""

    id: UUID = Field(default_factory=uuid4)
    job_id: UUID
    staged_record_id: UUID
    format: str
    object_key: str
    size_bytes: int
    content_type: str
    expected_md5: str
    computed_md5: str
    verified_md5: bool = False
    status: UploadStatus = UploadStatus.UPLOADED
    error_message: str | None = None
    uploaded_at: datetime = Field(default_factory=_utc_now)


class RawFile(Entity):
    """Provenance of one downloaded archive artifact."""

    id: UUID = Field(default_factory=uuid4)
    job_id: UUID
    file_type: str
    file_name: str
    object_key: str
    size_bytes: int
    expected_md5: str | None = None
    computed_md5: str
    verified_md5: bool = False
    compression: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    verified_at: datetime | None = None

    def verify(self) -> bool:
        """Compare against the published checksum; False only on a mismatch.

        ``verified_md5`` is set only when a checksum was published and matched.
        """
        if not self.expected_md5:
            return True
        self.verified_md5 = checksums_match(self.expected_md5, self.computed_md5)
        if self.verified_md5:
            self.verified_at = _utc_now()
        return self.verified_md5
