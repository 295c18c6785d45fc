"""Generic record model shared by every parser and storage adapter."""

import hashlib
import json
from typing import Any

from pydantic import field_validator

from refstore.domain.shared.model.value import ValueObject


def md5_hex(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def canonical_json(data: Any) -> bytes:
    """Serialize to a stable byte form so equal payloads hash equally."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str).encode()


def content_md5(record_data: dict[str, Any]) -> str:
    return md5_hex(canonical_json(record_data))


def sequence_md5(sequence: str) -> str:
    """Hash of a biological sequence, ignoring whitespace and case."""
    normalized = "".join(sequence.split()).upper()
    return md5_hex(normalized.encode())


def checksums_match(expected: str | None, computed: str) -> bool:
    """Case-insensitive comparison; a missing expectation always matches."""
    if not expected:
        return True
    return expected.strip().lower() == computed.strip().lower()


class GenericRecord(ValueObject):
    """A parsed record as produced by a Parser and consumed by a StorageAdapter.

    ``record_identifier`` is normalized to lowercase. ``content_md5`` hashes the
    whole ``record_data`` payload and is the deduplication key at commit time.
    """

    record_type: str
    record_identifier: str
    record_name: str | None = None
    record_data: dict[str, Any]
    content_md5: str
    sequence_md5: str | None = None
    source_file: str | None = None
    source_offset: int | None = None

    @field_validator("record_identifier")
    @classmethod
    def _normalize_identifier(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("record_identifier must not be empty")
        return value

    @classmethod
    def build(
        cls,
        record_type: str,
        record_identifier: str,
        record_data: dict[str, Any],
        record_name: str | None = None,
        sequence: str | None = None,
        source_file: str | None = None,
        source_offset: int | None = None,
    ) -> "GenericRecord":
        """Create a record, deriving both checksums from the payload."""
        return cls(
            record_type=record_type,
            record_identifier=record_identifier,
            record_name=record_name,
            record_data=record_data,
            content_md5=content_md5(record_data),
            sequence_md5=sequence_md5(sequence) if sequence else None,
            source_file=source_file,
            source_offset=source_offset,
        )
