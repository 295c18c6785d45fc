"""SQLAlchemy adapter implementing VersionMappingRepository."""

from uuid import uuid4

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError

from refstore.domain.ingest.model.version import VersionMapping
from refstore.domain.ingest.port.repository import VersionMappingRepository
from refstore.domain.shared.error import AlreadyIngestedError, ConflictError
from refstore.infrastructure.persistence.mappers import row_to_version_mapping
from refstore.infrastructure.persistence.repository.base import SQLAlchemyRepository
from refstore.infrastructure.persistence.tables import version_mappings_table


class SQLAlchemyVersionMappingRepository(SQLAlchemyRepository, VersionMappingRepository):
    async def add(self, mapping: VersionMapping) -> None:
        stmt = insert(version_mappings_table).values(
            id=str(uuid4()),
            organization_id=mapping.organization_id,
            job_type=mapping.job_type,
            external_version=mapping.external_version,
            internal_version=mapping.internal_version,
            job_id=str(mapping.job_id),
            was_current=mapping.was_current,
            release_date=mapping.release_date,
            created_at=mapping.created_at,
        )
        try:
            async with self._session_factory.begin() as session:
                await session.execute(stmt)
        except IntegrityError as e:
            existing = await self.get(
                mapping.organization_id, mapping.job_type, mapping.external_version
            )
            if existing is not None:
                raise AlreadyIngestedError(
                    f"{mapping.job_type} {mapping.external_version} already mapped to "
                    f"{existing.internal_version}"
                ) from e
            raise ConflictError(
                f"Internal version {mapping.internal_version} of {mapping.job_type} "
                f"is already taken"
            ) from e

    async def get(
        self, organization_id: str, job_type: str, external_version: str
    ) -> VersionMapping | None:
        t = version_mappings_table
        stmt = select(t).where(
            t.c.organization_id == organization_id,
            t.c.job_type == job_type,
            t.c.external_version == external_version,
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).mappings().first()
        return row_to_version_mapping(dict(row)) if row else None

    async def list_for(self, organization_id: str, job_type: str) -> list[VersionMapping]:
        t = version_mappings_table
        stmt = (
            select(t)
            .where(t.c.organization_id == organization_id, t.c.job_type == job_type)
            .order_by(t.c.created_at.asc())
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [row_to_version_mapping(dict(row)) for row in rows]
