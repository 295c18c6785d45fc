"""Storage adapter committing any record type to the shared versioned record table."""

import logging
from collections.abc import Callable, Sequence
from uuid import UUID

from refstore.domain.ingest.model.job import IngestionJob
from refstore.domain.ingest.model.record import canonical_json, md5_hex
from refstore.domain.ingest.model.staged import FileUpload, StagedRecord, UploadStatus
from refstore.domain.ingest.port.repository import FileUploadRepository
from refstore.domain.ingest.port.storage import ObjectStore, StorageAdapter
from refstore.domain.shared.error import ChecksumMismatchError, InvalidStateError
from refstore.infrastructure.persistence.repository.record import SQLAlchemyRecordStore

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "json": "application/json",
    "fasta": "text/x-fasta",
}


def render_json(record: StagedRecord) -> bytes | None:
    return canonical_json(
        {
            "record_type": record.record_type,
            "identifier": record.record_identifier,
            "name": record.record_name,
            "data": record.record_data,
        }
    )


def render_fasta(record: StagedRecord, width: int = 60) -> bytes | None:
    """FASTA render, or None when the record carries no sequence."""
    sequence = record.record_data.get("sequence")
    if not isinstance(sequence, str) or not sequence:
        return None
    header = record.record_identifier
    if record.record_name:
        header = f"{header} {record.record_name}"
    lines = [f">{header}"]
    lines.extend(sequence[i : i + width] for i in range(0, len(sequence), width))
    return ("\n".join(lines) + "\n").encode()


RENDERERS: dict[str, Callable[[StagedRecord], bytes | None]] = {
    "json": render_json,
    "fasta": render_fasta,
}


def object_key(organization_id: str, identifier: str, internal_version: str, fmt: str) -> str:
    return f"{organization_id}/{identifier}/{internal_version}/{identifier}.{fmt}"


class RecordTableStorageAdapter(StorageAdapter):
    """Uploads per-format renders to the object store and commits to ``data_records``.

    Every upload is recorded as a FileUpload row; a render whose stored MD5 does
    not match is recorded ``failed`` and raised, which fails only that record.
    """

    def __init__(
        self,
        job: IngestionJob,
        record_type: str,
        formats: Sequence[str],
        record_store: SQLAlchemyRecordStore,
        uploads: FileUploadRepository,
        object_store: ObjectStore,
    ) -> None:
        if job.internal_version is None:
            raise InvalidStateError(f"Job {job.id} has no internal version to store under")
        unknown = [f for f in formats if f not in RENDERERS]
        if unknown:
            raise ValueError(f"Unsupported output formats: {unknown}")
        self._job = job
        self._record_type = record_type
        self._formats = list(formats)
        self._record_store = record_store
        self._uploads = uploads
        self._object_store = object_store

    def record_type(self) -> str:
        return self._record_type

    def supported_formats(self) -> list[str]:
        return list(self._formats)

    async def upload_files(self, record: StagedRecord, formats: Sequence[str]) -> list[UUID]:
        upload_ids: list[UUID] = []
        for fmt in formats:
            body = RENDERERS[fmt](record)
            if body is None:
                continue
            key = object_key(
                self._job.organization_id,
                record.record_identifier,
                self._job.internal_version or "",
                fmt,
            )
            content_type = CONTENT_TYPES[fmt]
            expected = md5_hex(body)
            computed = await self._object_store.put(key, body, content_type)
            verified = expected == computed.lower()
            upload = FileUpload(
                job_id=self._job.id,
                staged_record_id=record.id,
                format=fmt,
                object_key=key,
                size_bytes=len(body),
                content_type=content_type,
                expected_md5=expected,
                computed_md5=computed,
                verified_md5=verified,
                status=UploadStatus.UPLOADED if verified else UploadStatus.FAILED,
                error_message=None if verified else "checksum mismatch",
            )
            await self._uploads.add(upload)
            if not verified:
                raise ChecksumMismatchError(key, expected, computed)
            upload_ids.append(upload.id)
        return upload_ids

    async def store_batch(self, records: Sequence[StagedRecord]) -> list[UUID]:
        return await self._record_store.commit_batch(
            records,
            organization_id=self._job.organization_id,
            internal_version=self._job.internal_version or "",
            job_id=self._job.id,
        )

    async def mark_stored(self, record_ids: Sequence[UUID]) -> None:
        # commit_batch already flipped the rows; this only catches stragglers
        updated = await self._record_store.mark_stored(record_ids)
        if updated:
            logger.debug(f"mark_stored flipped {updated} records left in storing_db")


def record_table_adapter_factory(
    record_type: str,
    formats: Sequence[str],
    record_store: SQLAlchemyRecordStore,
    uploads: FileUploadRepository,
    object_store: ObjectStore,
) -> Callable[[IngestionJob], StorageAdapter]:
    """Build the per-job adapter factory an IdempotentPipeline expects."""

    def factory(job: IngestionJob) -> StorageAdapter:
        return RecordTableStorageAdapter(
            job, record_type, formats, record_store, uploads, object_store
        )

    return factory
