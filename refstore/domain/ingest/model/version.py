import re
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from refstore.domain.shared.error import DiscoveryError
from refstore.domain.shared.model.value import ValueObject

INITIAL_INTERNAL_VERSION = "1.0"

_INTERNAL_VERSION_RE = re.compile(r"^(\d+)\.(\d+)$")


class DiscoveredVersion(ValueObject):
    """One release observed at an external archive. Never persisted as-is."""

    external_version: str
    release_date: date
    is_current: bool = False
    retrieval_path: str
    metadata: dict[str, Any] = {}

    @property
    def sort_key(self) -> tuple[date, str]:
        return (self.release_date, self.external_version)

    def source_metadata(self) -> dict[str, Any]:
        """Job metadata recorded for this observation."""
        return {
            "is_current": self.is_current,
            "release_date": self.release_date.isoformat(),
            "retrieval_path": self.retrieval_path,
            **self.metadata,
        }


class ReleaseArtifact(ValueObject):
    """A file making up a release, with its published checksum when one exists.

    The ``primary`` artifacts of a release, joined in order, are the parser input.
    """

    name: str
    url: str
    expected_md5: str | None = None
    compression: str | None = None
    content_type: str = "application/octet-stream"
    primary: bool = False


def _utc_now() -> datetime:
    return datetime.now(UTC)


class VersionMapping(ValueObject):
    """Durable external -> internal version record; the "fully ingested" marker."""

    organization_id: str
    job_type: str
    external_version: str
    internal_version: str
    job_id: UUID
    was_current: bool = False
    release_date: date | None = None
    created_at: datetime = Field(default_factory=_utc_now)


def parse_internal_version(value: str) -> tuple[int, int]:
    match = _INTERNAL_VERSION_RE.match(value.strip())
    if match is None:
        raise DiscoveryError(f"Malformed internal version: {value!r}")
    return int(match.group(1)), int(match.group(2))


def next_internal_version(latest: str | None, has_major_changes: bool) -> str:
    """Compute the internal version following ``latest``.

    No history gives ``1.0``; major changes bump ``X+1.0``, anything else ``X.Y+1``.
    """
    if latest is None:
        return INITIAL_INTERNAL_VERSION
    major, minor = parse_internal_version(latest)
    if has_major_changes:
        return f"{major + 1}.0"
    return f"{major}.{minor + 1}"


def latest_internal_version(versions: list[str]) -> str | None:
    """Highest of ``versions`` in numeric order."""
    if not versions:
        return None
    return max(versions, key=parse_internal_version)
