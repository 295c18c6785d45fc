"""Gene Ontology release discovery from the dated release archive (``YYYY-MM-DD/``)."""

import logging
import re
from datetime import date

from refstore.config import GeneOntologyConfig
from refstore.domain.ingest.model.version import DiscoveredVersion, ReleaseArtifact
from refstore.domain.ingest.port.source import Downloader, VersionSource
from refstore.infrastructure.ingest.listing import fetch_text, join_url, listing_entries

logger = logging.getLogger(__name__)

JOB_TYPE = "gene-ontology"
RECORD_TYPE = "ontology-term"

_RELEASE_DIR_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})$")


class GeneOntologySource(VersionSource):
    name = JOB_TYPE

    def __init__(self, downloader: Downloader, config: GeneOntologyConfig) -> None:
        self._downloader = downloader
        self._config = config

    async def list_versions(self) -> list[DiscoveredVersion]:
        listing = await fetch_text(
            self._downloader, self._config.base_url.rstrip("/") + "/", self.name
        )
        released: list[date] = []
        for entry in listing_entries(listing):
            match = _RELEASE_DIR_RE.match(entry)
            if match is None:
                continue
            try:
                released.append(date.fromisoformat(match.group(1)))
            except ValueError:
                logger.warning(f"Ignoring GO release directory with bad date: {entry}")
        if not released:
            return []
        newest = max(released)
        return [
            DiscoveredVersion(
                external_version=day.isoformat(),
                release_date=day,
                is_current=day == newest,
                retrieval_path=day.isoformat(),
            )
            for day in released
        ]

    async def release_artifacts(self, version: DiscoveredVersion) -> list[ReleaseArtifact]:
        ontology_file = self._config.ontology_file
        return [
            ReleaseArtifact(
                name=ontology_file,
                url=join_url(
                    self._config.base_url, version.retrieval_path, "ontology", ontology_file
                ),
                content_type="text/plain",
                primary=True,
            )
        ]

    def has_major_changes(self, version: DiscoveredVersion, artifacts: dict[str, bytes]) -> bool:
        return False
