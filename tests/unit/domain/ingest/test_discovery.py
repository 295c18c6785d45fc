"""Unit tests for VersionDiscovery and its pure helpers."""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from refstore.domain.ingest.service.discovery import (
    VersionDiscovery,
    filter_by_date_range,
    filter_new_versions,
    should_reingest,
    sort_versions,
)
from refstore.domain.shared.error import DiscoveryError, NotFoundError
from tests.unit.domain.ingest.fakes import FakeMappingRepository, mapping, version


def _discovery(versions, mappings=None) -> VersionDiscovery:
    source = AsyncMock()
    source.name = "fake"
    source.list_versions.return_value = versions
    return VersionDiscovery(source=source, mappings=FakeMappingRepository(mappings))


class TestHelpers:
    def test_sort_is_oldest_first(self):
        v1 = version("2024_02", date(2024, 2, 1))
        v2 = version("2024_01", date(2024, 1, 1))
        assert [v.external_version for v in sort_versions([v1, v2])] == ["2024_01", "2024_02"]

    def test_filter_new_versions(self):
        v1 = version("a", date(2024, 1, 1))
        v2 = version("b", date(2024, 2, 1))
        assert filter_new_versions([v1, v2], {"a"}) == [v2]

    def test_date_range_is_inclusive(self):
        versions = [version(str(m), date(2024, m, 1)) for m in range(1, 6)]
        kept = filter_by_date_range(versions, date(2024, 2, 1), date(2024, 4, 1))
        assert [v.external_version for v in kept] == ["2", "3", "4"]

    def test_open_ended_range(self):
        versions = [version(str(m), date(2024, m, 1)) for m in range(1, 4)]
        assert len(filter_by_date_range(versions, start=date(2024, 2, 1))) == 2
        assert len(filter_by_date_range(versions)) == 3

    def test_different_release_is_reingested(self):
        assert should_reingest(version("2024_02", date(2024, 2, 1)), "2024_01", True)

    def test_current_alias_moving_to_snapshot_is_not_reingested(self):
        snapshot = version("2024_01", date(2024, 1, 1), is_current=False)
        assert not should_reingest(snapshot, "2024_01", was_ingested_as_current=True)


class TestVersionDiscovery:
    @pytest.mark.asyncio
    async def test_current_alias_wins_over_snapshot_of_same_release(self):
        snapshot = version("2024_01", date(2024, 1, 1))
        current = version("2024_01", date(2024, 1, 1), is_current=True)
        discovery = _discovery([snapshot, current])

        versions = await discovery.discover_all_versions()

        assert len(versions) == 1
        assert versions[0].is_current

    @pytest.mark.asyncio
    async def test_empty_external_version_is_rejected(self):
        discovery = _discovery([version(" ", date(2024, 1, 1))])
        with pytest.raises(DiscoveryError):
            await discovery.discover_all_versions()

    @pytest.mark.asyncio
    async def test_discover_current_prefers_flagged_release(self):
        discovery = _discovery(
            [
                version("old", date(2023, 1, 1), is_current=True),
                version("newer-snapshot", date(2024, 1, 1)),
            ]
        )
        assert (await discovery.discover_current()).external_version == "old"

    @pytest.mark.asyncio
    async def test_discover_current_falls_back_to_newest(self):
        discovery = _discovery([version("a", date(2023, 1, 1)), version("b", date(2024, 1, 1))])
        assert (await discovery.discover_current()).external_version == "b"

    @pytest.mark.asyncio
    async def test_discover_current_on_empty_archive(self):
        with pytest.raises(DiscoveryError):
            await _discovery([]).discover_current()

    @pytest.mark.asyncio
    async def test_find_version(self):
        discovery = _discovery([version("a", date(2023, 1, 1))])
        assert (await discovery.find_version("a")).external_version == "a"
        with pytest.raises(NotFoundError):
            await discovery.find_version("missing")

    @pytest.mark.asyncio
    async def test_is_ingested(self):
        discovery = _discovery([], [mapping("a", "1.0", was_current=True)])
        snapshot = version("a", date(2023, 1, 1))
        assert await discovery.is_ingested("org", "fake", snapshot)
        assert not await discovery.is_ingested("org", "fake", version("b", date(2024, 1, 1)))
        assert not await discovery.is_ingested("other-org", "fake", snapshot)

    @pytest.mark.asyncio
    async def test_check_for_newer_version(self):
        newest = version("b", date(2024, 1, 1), is_current=True)
        discovery = _discovery([version("a", date(2023, 1, 1)), newest])

        assert await discovery.check_for_newer_version("org", "fake") == newest

        await discovery.record_mapping(mapping("a", "1.0", released=date(2023, 1, 1)))
        assert await discovery.check_for_newer_version("org", "fake") == newest

        await discovery.record_mapping(mapping("b", "1.1", released=date(2024, 1, 1)))
        assert await discovery.check_for_newer_version("org", "fake") is None

    @pytest.mark.asyncio
    async def test_older_current_release_is_not_newer(self):
        discovery = _discovery(
            [version("old", date(2022, 1, 1), is_current=True)],
            [mapping("later", "1.0", released=date(2023, 1, 1))],
        )
        assert await discovery.check_for_newer_version("org", "fake") is None

    @pytest.mark.asyncio
    async def test_next_internal_version_follows_history(self):
        discovery = _discovery([], [mapping("a", "1.0"), mapping("b", "1.1")])
        assert await discovery.determine_next_internal_version("org", "fake", False) == "1.2"
        assert await discovery.determine_next_internal_version("org", "fake", True) == "2.0"
        assert await discovery.determine_next_internal_version("org", "other", False) == "1.0"
