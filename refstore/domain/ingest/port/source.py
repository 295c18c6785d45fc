from abc import abstractmethod
from typing import Protocol

from refstore.domain.ingest.model.version import DiscoveredVersion, ReleaseArtifact
from refstore.domain.shared.port import Port


class Downloader(Port, Protocol):
    @abstractmethod
    async def fetch(self, url: str) -> bytes:
        """Fetch ``url`` with retry/backoff applied; raises DownloadError when exhausted."""
        ...


class VersionSource(Port, Protocol):
    """Per-archive knowledge of how releases are published."""

    name: str

    @abstractmethod
    async def list_versions(self) -> list[DiscoveredVersion]:
        """Every release the archive publishes. Raises DiscoveryError."""
        ...

    @abstractmethod
    async def release_artifacts(self, version: DiscoveredVersion) -> list[ReleaseArtifact]:
        """Files to download for ``version``, one of them primary."""
        ...

    @abstractmethod
    def has_major_changes(self, version: DiscoveredVersion, artifacts: dict[str, bytes]) -> bool:
        """Whether this release warrants a major internal version bump."""
        ...
