"""NCBI Taxonomy dated dump archive discovery.

Archives are ``taxdmp_YYYY-MM-DD.zip`` with a sibling ``.md5``; the newest is current.
"""

import io
import logging
import re
import zipfile
from datetime import date

from refstore.config import TaxonomyConfig
from refstore.domain.ingest.model.version import DiscoveredVersion, ReleaseArtifact
from refstore.domain.ingest.port.source import Downloader, VersionSource
from refstore.domain.shared.error import DiscoveryError, DownloadError, ParseError
from refstore.infrastructure.ingest.listing import fetch_text, join_url, listing_entries

logger = logging.getLogger(__name__)

JOB_TYPE = "ncbi-taxonomy"
RECORD_TYPE = "taxon"

_ARCHIVE_RE = re.compile(r"^taxdmp_(\d{4}-\d{2}-\d{2})\.zip$")
_MD5_RE = re.compile(r"\b([0-9a-fA-F]{32})\b")

# Dump members whose non-empty content means taxa were merged or removed
_DESTRUCTIVE_MEMBERS = ("merged.dmp", "delnodes.dmp")


def archive_name(external_version: str) -> str:
    return f"taxdmp_{external_version}.zip"


class TaxonomySource(VersionSource):
    name = JOB_TYPE

    def __init__(self, downloader: Downloader, config: TaxonomyConfig) -> None:
        self._downloader = downloader
        self._config = config

    async def list_versions(self) -> list[DiscoveredVersion]:
        listing = await fetch_text(
            self._downloader, self._config.base_url.rstrip("/") + "/", self.name
        )
        dated: list[tuple[date, str]] = []
        for entry in listing_entries(listing):
            match = _ARCHIVE_RE.match(entry)
            if match is None:
                continue
            try:
                dated.append((date.fromisoformat(match.group(1)), entry))
            except ValueError as e:
                raise DiscoveryError(f"Taxonomy archive with bad date: {entry}") from e
        if not dated:
            return []
        newest = max(d for d, _ in dated)
        return [
            DiscoveredVersion(
                external_version=released.isoformat(),
                release_date=released,
                is_current=released == newest,
                retrieval_path=entry,
            )
            for released, entry in dated
        ]

    async def release_artifacts(self, version: DiscoveredVersion) -> list[ReleaseArtifact]:
        name = archive_name(version.external_version)
        url = join_url(self._config.base_url, name)
        return [
            ReleaseArtifact(
                name=name,
                url=url,
                expected_md5=await self._published_md5(url),
                compression="zip",
                content_type="application/zip",
                primary=True,
            )
        ]

    async def _published_md5(self, url: str) -> str | None:
        try:
            text = (await self._downloader.fetch(f"{url}.md5")).decode("ascii", errors="replace")
        except DownloadError as e:
            logger.warning(f"No published checksum for {url}: {e.message}")
            return None
        match = _MD5_RE.search(text)
        if match is None:
            raise DiscoveryError(f"Unreadable checksum file for {url}")
        return match.group(1).lower()

    def has_major_changes(self, version: DiscoveredVersion, artifacts: dict[str, bytes]) -> bool:
        """True when the dump merges or deletes any taxon."""
        data = artifacts.get(archive_name(version.external_version))
        if data is None:
            return False
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                members = set(archive.namelist())
                for member in _DESTRUCTIVE_MEMBERS:
                    if member in members and archive.read(member).strip():
                        return True
        except zipfile.BadZipFile as e:
            raise ParseError(
                f"Taxonomy archive {version.external_version} is not a zip: {e}"
            ) from e
        return False
