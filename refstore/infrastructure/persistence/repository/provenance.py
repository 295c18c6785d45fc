"""SQLAlchemy adapters for raw-file and file-upload provenance."""

from uuid import UUID

from sqlalchemy import insert, select

from refstore.domain.ingest.model.staged import FileUpload, RawFile
from refstore.domain.ingest.port.repository import FileUploadRepository, RawFileRepository
from refstore.infrastructure.persistence.mappers import (
    file_upload_to_dict,
    raw_file_to_dict,
    row_to_file_upload,
    row_to_raw_file,
)
from refstore.infrastructure.persistence.repository.base import SQLAlchemyRepository
from refstore.infrastructure.persistence.tables import file_uploads_table, raw_files_table


class SQLAlchemyRawFileRepository(SQLAlchemyRepository, RawFileRepository):
    async def add(self, raw_file: RawFile) -> None:
        async with self._session_factory.begin() as session:
            await session.execute(insert(raw_files_table).values(**raw_file_to_dict(raw_file)))

    async def list_for_job(self, job_id: UUID) -> list[RawFile]:
        stmt = (
            select(raw_files_table)
            .where(raw_files_table.c.job_id == str(job_id))
            .order_by(raw_files_table.c.created_at.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [row_to_raw_file(dict(row)) for row in rows]


class SQLAlchemyFileUploadRepository(SQLAlchemyRepository, FileUploadRepository):
    async def add(self, upload: FileUpload) -> None:
        async with self._session_factory.begin() as session:
            await session.execute(insert(file_uploads_table).values(**file_upload_to_dict(upload)))

    async def list_for_record(self, staged_record_id: UUID) -> list[FileUpload]:
        stmt = (
            select(file_uploads_table)
            .where(file_uploads_table.c.staged_record_id == str(staged_record_id))
            .order_by(file_uploads_table.c.format.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [row_to_file_upload(dict(row)) for row in rows]
