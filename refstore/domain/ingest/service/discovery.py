"""VersionDiscovery - what an archive publishes versus what is durably ingested."""

import logging
from collections.abc import Iterable
from datetime import date

from refstore.domain.ingest.model.version import (
    DiscoveredVersion,
    VersionMapping,
    latest_internal_version,
    next_internal_version,
)
from refstore.domain.ingest.port.repository import VersionMappingRepository
from refstore.domain.ingest.port.source import VersionSource
from refstore.domain.shared.error import DiscoveryError, NotFoundError
from refstore.domain.shared.service import Service

logger = logging.getLogger(__name__)


def sort_versions(versions: Iterable[DiscoveredVersion]) -> list[DiscoveredVersion]:
    """Oldest to newest by (release_date, external_version)."""
    return sorted(versions, key=lambda v: v.sort_key)


def filter_new_versions(
    discovered: Iterable[DiscoveredVersion], already_ingested: Iterable[str]
) -> list[DiscoveredVersion]:
    ingested = set(already_ingested)
    return [v for v in discovered if v.external_version not in ingested]


def filter_by_date_range(
    versions: Iterable[DiscoveredVersion],
    start: date | None = None,
    end: date | None = None,
) -> list[DiscoveredVersion]:
    """Keep versions released within ``start..end`` (both inclusive, both optional)."""
    return [
        v
        for v in versions
        if (start is None or v.release_date >= start) and (end is None or v.release_date <= end)
    ]


def should_reingest(
    discovered: DiscoveredVersion, external_version: str, was_ingested_as_current: bool
) -> bool:
    """Whether ``discovered`` is a different release from the ingested ``external_version``.

    A release ingested under the archive's "current" alias keeps its identifier when it
    is later published as a dated snapshot; that is the same release and is never
    ingested twice.
    """
    if discovered.external_version != external_version:
        return True
    if was_ingested_as_current and not discovered.is_current:
        logger.info(
            f"Release {external_version} moved out of the current alias; already ingested"
        )
    return False


class VersionDiscovery(Service):
    """Compares an archive's published releases against recorded version mappings."""

    source: VersionSource
    mappings: VersionMappingRepository

    async def discover_all_versions(self) -> list[DiscoveredVersion]:
        """Every published release, oldest first.

        Transport failures surface as DiscoveryError for the caller to retry.
        """
        versions = await self.source.list_versions()
        seen: dict[str, DiscoveredVersion] = {}
        for version in versions:
            if not version.external_version.strip():
                raise DiscoveryError(f"{self.source.name}: empty external version")
            existing = seen.get(version.external_version)
            # The current alias and its dated snapshot are the same release
            if existing is None or (version.is_current and not existing.is_current):
                seen[version.external_version] = version
        ordered = sort_versions(seen.values())
        logger.debug(f"{self.source.name}: discovered {len(ordered)} versions")
        return ordered

    async def discover_current(self) -> DiscoveredVersion:
        versions = await self.discover_all_versions()
        if not versions:
            raise DiscoveryError(f"{self.source.name}: archive lists no releases")
        current = [v for v in versions if v.is_current]
        return current[-1] if current else versions[-1]

    async def find_version(self, external_version: str) -> DiscoveredVersion:
        for version in await self.discover_all_versions():
            if version.external_version == external_version:
                return version
        raise NotFoundError(f"{self.source.name}: release {external_version} not published")

    async def already_ingested(self, organization_id: str, job_type: str) -> set[str]:
        mappings = await self.mappings.list_for(organization_id, job_type)
        return {m.external_version for m in mappings}

    async def is_ingested(
        self, organization_id: str, job_type: str, discovered: DiscoveredVersion
    ) -> bool:
        mapping = await self.mappings.get(organization_id, job_type, discovered.external_version)
        if mapping is None:
            return False
        return not should_reingest(discovered, mapping.external_version, mapping.was_current)

    async def check_for_newer_version(
        self, organization_id: str, job_type: str
    ) -> DiscoveredVersion | None:
        """The newest published release if it is newer than everything ingested."""
        mappings = await self.mappings.list_for(organization_id, job_type)
        newest = await self.discover_current()
        if not mappings:
            return newest
        ingested = {m.external_version for m in mappings}
        if newest.external_version in ingested:
            return None
        last_date = max((m.release_date for m in mappings if m.release_date), default=None)
        if last_date is not None and newest.release_date < last_date:
            return None
        return newest

    async def determine_next_internal_version(
        self, organization_id: str, job_type: str, has_major_changes: bool
    ) -> str:
        mappings = await self.mappings.list_for(organization_id, job_type)
        latest = latest_internal_version([m.internal_version for m in mappings])
        return next_internal_version(latest, has_major_changes)

    async def record_mapping(self, mapping: VersionMapping) -> None:
        await self.mappings.add(mapping)
        logger.info(
            f"Mapped {mapping.job_type} {mapping.external_version} -> "
            f"{mapping.internal_version} for {mapping.organization_id}"
        )
