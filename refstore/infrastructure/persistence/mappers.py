"""Row <-> domain conversions for the ingestion tables."""

from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

from refstore.domain.ingest.model.job import IngestionJob, JobStatus
from refstore.domain.ingest.model.staged import (
    FileUpload,
    RawFile,
    RecordStatus,
    StagedRecord,
    UploadStatus,
)
from refstore.domain.ingest.model.version import VersionMapping
from refstore.domain.ingest.model.work_unit import IngestionWorkUnit, WorkUnitStatus


def as_utc(value: datetime | str | None) -> datetime | None:
    """SQLite hands back naive (or string) timestamps; everything stored is UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _as_date(value: date | str | None) -> date | None:
    if isinstance(value, str):
        return date.fromisoformat(value)
    return value


def _uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


def row_to_job(row: dict[str, Any]) -> IngestionJob:
    return IngestionJob(
        id=UUID(row["id"]),
        organization_id=row["organization_id"],
        job_type=row["job_type"],
        external_version=row["external_version"],
        internal_version=row["internal_version"],
        status=JobStatus(row["status"]),
        total_records=row["total_records"],
        records_processed=row["records_processed"] or 0,
        records_stored=row["records_stored"] or 0,
        records_failed=row["records_failed"] or 0,
        records_skipped=row["records_skipped"] or 0,
        source_metadata=row["source_metadata"] or {},
        error_message=row["error_message"],
        created_at=as_utc(row["created_at"]),
        updated_at=as_utc(row["updated_at"]),
        started_at=as_utc(row["started_at"]),
        completed_at=as_utc(row["completed_at"]),
    )


def job_to_dict(job: IngestionJob) -> dict[str, Any]:
    return {
        "id": str(job.id),
        "organization_id": job.organization_id,
        "job_type": job.job_type,
        "external_version": job.external_version,
        "internal_version": job.internal_version,
        "status": str(job.status),
        "total_records": job.total_records,
        "records_processed": job.records_processed,
        "records_stored": job.records_stored,
        "records_failed": job.records_failed,
        "records_skipped": job.records_skipped,
        "source_metadata": job.source_metadata,
        "error_message": job.error_message,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
    }


def row_to_work_unit(row: dict[str, Any]) -> IngestionWorkUnit:
    return IngestionWorkUnit(
        id=UUID(row["id"]),
        job_id=UUID(row["job_id"]),
        unit_type=row["unit_type"],
        batch_number=row["batch_number"],
        start_offset=row["start_offset"],
        end_offset=row["end_offset"],
        record_count=row["record_count"],
        status=WorkUnitStatus(row["status"]),
        worker_id=row["worker_id"],
        worker_hostname=row["worker_hostname"],
        claimed_at=as_utc(row["claimed_at"]),
        heartbeat_at=as_utc(row["heartbeat_at"]),
        started_processing_at=as_utc(row["started_processing_at"]),
        completed_at=as_utc(row["completed_at"]),
        processing_duration_ms=row["processing_duration_ms"],
        retry_count=row["retry_count"] or 0,
        max_retries=row["max_retries"],
        last_error=row["last_error"],
        created_at=as_utc(row["created_at"]),
        updated_at=as_utc(row["updated_at"]),
    )


def work_unit_to_dict(unit: IngestionWorkUnit) -> dict[str, Any]:
    return {
        "id": str(unit.id),
        "job_id": str(unit.job_id),
        "unit_type": unit.unit_type,
        "batch_number": unit.batch_number,
        "start_offset": unit.start_offset,
        "end_offset": unit.end_offset,
        "record_count": unit.record_count,
        "status": str(unit.status),
        "worker_id": unit.worker_id,
        "worker_hostname": unit.worker_hostname,
        "claimed_at": unit.claimed_at,
        "heartbeat_at": unit.heartbeat_at,
        "started_processing_at": unit.started_processing_at,
        "completed_at": unit.completed_at,
        "processing_duration_ms": unit.processing_duration_ms,
        "retry_count": unit.retry_count,
        "max_retries": unit.max_retries,
        "last_error": unit.last_error,
        "created_at": unit.created_at,
        "updated_at": unit.updated_at,
    }


def row_to_staged_record(row: dict[str, Any]) -> StagedRecord:
    return StagedRecord(
        id=UUID(row["id"]),
        job_id=UUID(row["job_id"]),
        work_unit_id=_uuid(row["work_unit_id"]),
        record_type=row["record_type"],
        record_identifier=row["record_identifier"],
        record_name=row["record_name"],
        record_data=row["record_data"] or {},
        content_md5=row["content_md5"],
        sequence_md5=row["sequence_md5"],
        source_file=row["source_file"],
        source_offset=row["source_offset"],
        status=RecordStatus(row["status"]),
        error_message=row["error_message"],
        created_at=as_utc(row["created_at"]),
        updated_at=as_utc(row["updated_at"]),
        stored_at=as_utc(row["stored_at"]),
    )


def staged_record_to_dict(record: StagedRecord) -> dict[str, Any]:
    return {
        "id": str(record.id),
        "job_id": str(record.job_id),
        "work_unit_id": str(record.work_unit_id) if record.work_unit_id else None,
        "record_type": record.record_type,
        "record_identifier": record.record_identifier,
        "record_name": record.record_name,
        "record_data": record.record_data,
        "content_md5": record.content_md5,
        "sequence_md5": record.sequence_md5,
        "source_file": record.source_file,
        "source_offset": record.source_offset,
        "status": str(record.status),
        "error_message": record.error_message,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
        "stored_at": record.stored_at,
    }


def row_to_file_upload(row: dict[str, Any]) -> FileUpload:
    return FileUpload(
        id=UUID(row["id"]),
        job_id=UUID(row["job_id"]),
        staged_record_id=UUID(row["staged_record_id"]),
        format=row["format"],
        object_key=row["object_key"],
        size_bytes=row["size_bytes"],
        content_type=row["content_type"],
        expected_md5=row["expected_md5"],
        computed_md5=row["computed_md5"],
        verified_md5=bool(row["verified_md5"]),
        status=UploadStatus(row["status"]),
        error_message=row["error_message"],
        uploaded_at=as_utc(row["uploaded_at"]),
    )


def file_upload_to_dict(upload: FileUpload) -> dict[str, Any]:
    return {
        "id": str(upload.id),
        "job_id": str(upload.job_id),
        "staged_record_id": str(upload.staged_record_id),
        "format": upload.format,
        "object_key": upload.object_key,
        "size_bytes": upload.size_bytes,
        "content_type": upload.content_type,
        "expected_md5": upload.expected_md5,
        "computed_md5": upload.computed_md5,
        "verified_md5": upload.verified_md5,
        "status": str(upload.status),
        "error_message": upload.error_message,
        "uploaded_at": upload.uploaded_at,
    }


def row_to_raw_file(row: dict[str, Any]) -> RawFile:
    return RawFile(
        id=UUID(row["id"]),
        job_id=UUID(row["job_id"]),
        file_type=row["file_type"],
        file_name=row["file_name"],
        object_key=row["object_key"],
        size_bytes=row["size_bytes"],
        expected_md5=row["expected_md5"],
        computed_md5=row["computed_md5"],
        verified_md5=bool(row["verified_md5"]),
        compression=row["compression"],
        created_at=as_utc(row["created_at"]),
        verified_at=as_utc(row["verified_at"]),
    )


def raw_file_to_dict(raw_file: RawFile) -> dict[str, Any]:
    return {
        "id": str(raw_file.id),
        "job_id": str(raw_file.job_id),
        "file_type": raw_file.file_type,
        "file_name": raw_file.file_name,
        "object_key": raw_file.object_key,
        "size_bytes": raw_file.size_bytes,
        "expected_md5": raw_file.expected_md5,
        "computed_md5": raw_file.computed_md5,
        "verified_md5": raw_file.verified_md5,
        "compression": raw_file.compression,
        "created_at": raw_file.created_at,
        "verified_at": raw_file.verified_at,
    }


def row_to_version_mapping(row: dict[str, Any]) -> VersionMapping:
    return VersionMapping(
        organization_id=row["organization_id"],
        job_type=row["job_type"],
        external_version=row["external_version"],
        internal_version=row["internal_version"],
        job_id=UUID(row["job_id"]),
        was_current=bool(row["was_current"]),
        release_date=_as_date(row["release_date"]),
        created_at=as_utc(row["created_at"]),
    )
