"""UniProtKB release discovery.

The current release is read from ``current_release/knowledgebase/complete/reldate.txt``;
previous releases are the ``release-YYYY_MM`` directories under ``previous_releases``.
"""

import logging
import re
from datetime import date, datetime

from refstore.config import UniProtConfig
from refstore.domain.ingest.model.version import DiscoveredVersion, ReleaseArtifact
from refstore.domain.ingest.port.source import Downloader, VersionSource
from refstore.domain.shared.error import DiscoveryError, DownloadError
from refstore.infrastructure.ingest.listing import fetch_text, join_url, listing_entries
from refstore.infrastructure.ingest.metalink import find_md5, parse_metalink

logger = logging.getLogger(__name__)

JOB_TYPE = "uniprot"
RECORD_TYPE = "protein"

_RELEASE_RE = re.compile(r"Release\s+(\d{4}_\d{2})\s+of\s+(\d{2}-[A-Za-z]{3}-\d{4})")
_PREVIOUS_DIR_RE = re.compile(r"^release-(\d{4})_(\d{2})$")
_METALINK = "RELEASE.metalink"


def parse_release_notes(text: str) -> tuple[str, date]:
    """Version and date from reldate.txt, e.g. ``Release 2024_05 of 02-Oct-2024``."""
    match = _RELEASE_RE.search(text)
    if match is None:
        raise DiscoveryError("UniProt release notes carry no release line")
    try:
        released = datetime.strptime(match.group(2), "%d-%b-%Y").date()
    except ValueError as e:
        raise DiscoveryError(f"UniProt release notes carry a bad date: {match.group(2)}") from e
    return match.group(1), released


class UniProtSource(VersionSource):
    name = JOB_TYPE

    def __init__(self, downloader: Downloader, config: UniProtConfig) -> None:
        self._downloader = downloader
        self._config = config

    async def list_versions(self) -> list[DiscoveredVersion]:
        versions = [await self._current()]
        listing = await fetch_text(
            self._downloader, join_url(self._config.base_url, "previous_releases") + "/", self.name
        )
        for entry in listing_entries(listing):
            match = _PREVIOUS_DIR_RE.match(entry)
            if match is None:
                continue
            year, month = int(match.group(1)), int(match.group(2))
            if not 1 <= month <= 12:
                raise DiscoveryError(f"UniProt directory with bad month: {entry}")
            versions.append(
                DiscoveredVersion(
                    external_version=f"{match.group(1)}_{match.group(2)}",
                    release_date=date(year, month, 1),
                    is_current=False,
                    retrieval_path=f"previous_releases/{entry}",
                )
            )
        return versions

    async def _current(self) -> DiscoveredVersion:
        notes = await fetch_text(
            self._downloader,
            join_url(self._config.base_url, "current_release/knowledgebase/complete/reldate.txt"),
            self.name,
        )
        version, released = parse_release_notes(notes)
        return DiscoveredVersion(
            external_version=version,
            release_date=released,
            is_current=True,
            retrieval_path="current_release",
        )

    async def release_artifacts(self, version: DiscoveredVersion) -> list[ReleaseArtifact]:
        dataset = self._config.dataset
        if version.is_current:
            directory = join_url(self._config.base_url, "current_release/knowledgebase/complete")
            md5s = await self._published_md5s(directory)
            return [
                ReleaseArtifact(
                    name=f"{dataset}.fasta.gz",
                    url=join_url(directory, f"{dataset}.fasta.gz"),
                    expected_md5=find_md5(md5s, f"{dataset}.fasta.gz"),
                    compression="gzip",
                    content_type="application/gzip",
                    primary=True,
                ),
                ReleaseArtifact(
                    name="reldate.txt",
                    url=join_url(directory, "reldate.txt"),
                    expected_md5=find_md5(md5s, "reldate.txt"),
                    content_type="text/plain",
                ),
            ]
        # Previous releases only ship the knowledgebase as one tarball per dataset
        suffix = dataset.removeprefix("uniprot_")
        archive = f"knowledgebase{version.external_version}.tar.gz"
        if suffix != "sprot":
            archive = f"knowledgebase{version.external_version}_{suffix}.tar.gz"
        directory = join_url(self._config.base_url, version.retrieval_path, "knowledgebase")
        md5s = await self._published_md5s(directory)
        return [
            ReleaseArtifact(
                name=archive,
                url=join_url(directory, archive),
                expected_md5=find_md5(md5s, archive),
                compression="tar.gz",
                content_type="application/gzip",
                primary=True,
            )
        ]

    async def _published_md5s(self, directory: str) -> dict[str, str]:
        url = join_url(directory, _METALINK)
        try:
            text = (await self._downloader.fetch(url)).decode("utf-8", errors="replace")
        except DownloadError as e:
            logger.warning(f"No published checksums at {url}: {e.message}")
            return {}
        return parse_metalink(text)

    def has_major_changes(self, version: DiscoveredVersion, artifacts: dict[str, bytes]) -> bool:
        return False
