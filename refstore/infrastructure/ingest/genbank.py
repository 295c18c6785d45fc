"""GenBank release discovery, one ingestion stream per division.

GenBank publishes only its current release; ``GB_Release_Number`` names it and the
division flat files (``gb{division}N.seq.gz``) sit in the same directory.
"""

import logging
import re
from datetime import date

from refstore.config import GenBankConfig
from refstore.domain.ingest.model.version import DiscoveredVersion, ReleaseArtifact
from refstore.domain.ingest.port.source import Downloader, VersionSource
from refstore.domain.shared.error import DiscoveryError
from refstore.infrastructure.ingest.listing import fetch_text, join_url, listing_entries

logger = logging.getLogger(__name__)

RECORD_TYPE = "genome"

# Release 1 shipped in 1982; roughly six releases a year since
_FIRST_RELEASE_YEAR = 1982
_RELEASES_PER_YEAR = 6


def job_type_for(division: str) -> str:
    return f"genbank-{division}"


def parse_release_number(text: str) -> int:
    value = text.strip()
    if not value.isdigit():
        raise DiscoveryError(f"GenBank release number file is not a number: {value!r}")
    return int(value)


def estimate_release_date(release_number: int) -> date:
    """Approximate publication date; GenBank does not publish one machine-readably."""
    year = _FIRST_RELEASE_YEAR + release_number // _RELEASES_PER_YEAR
    month = min((release_number % _RELEASES_PER_YEAR) * 2 + 1, 12)
    return date(year, month, 15)


class GenBankDivisionSource(VersionSource):
    """Releases of one GenBank division (``vrl``, ``phg``, ``bct``...)."""

    def __init__(self, downloader: Downloader, config: GenBankConfig, division: str) -> None:
        if not re.fullmatch(r"[a-z]{3}", division):
            raise ValueError(f"Invalid GenBank division: {division!r}")
        self.name = job_type_for(division)
        self.division = division
        self._downloader = downloader
        self._config = config
        self._file_re = re.compile(rf"^gb{division}\d+\.seq\.gz$")

    async def list_versions(self) -> list[DiscoveredVersion]:
        text = await fetch_text(
            self._downloader, join_url(self._config.base_url, "GB_Release_Number"), self.name
        )
        number = parse_release_number(text)
        return [
            DiscoveredVersion(
                external_version=f"GB-{number}",
                release_date=estimate_release_date(number),
                is_current=True,
                retrieval_path=self._config.base_url,
                metadata={"release_number": number, "division": self.division},
            )
        ]

    async def release_artifacts(self, version: DiscoveredVersion) -> list[ReleaseArtifact]:
        listing = await fetch_text(
            self._downloader, self._config.base_url.rstrip("/") + "/", self.name
        )
        files = [name for name in listing_entries(listing) if self._file_re.match(name)]
        if not files:
            raise DiscoveryError(
                f"No {self.division} division files listed for {version.external_version}"
            )
        # gbvrl1, gbvrl2, ... gbvrl10 in numeric order
        files.sort(key=lambda name: int(re.sub(r"\D", "", name)))
        logger.info(f"{self.name} {version.external_version}: {len(files)} division files")
        return [
            ReleaseArtifact(
                name=name,
                url=join_url(self._config.base_url, name),
                compression="gzip",
                content_type="application/gzip",
                primary=True,
            )
            for name in files
        ]

    def has_major_changes(self, version: DiscoveredVersion, artifacts: dict[str, bytes]) -> bool:
        return False
