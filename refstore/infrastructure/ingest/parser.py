"""Parsers for record streams the engine can read without archive-specific code.

Both parsers accept plain, gzip-compressed, or tar.gz payloads (the first member
with a matching suffix is read). Payloads are decoded once per parser instance
and reused across work units of the same job.
"""

import gzip
import io
import json
import logging
import tarfile
import threading
from typing import Any

from pydantic import ValidationError

from refstore.domain.ingest.model.record import GenericRecord
from refstore.domain.ingest.port.parser import Parser
from refstore.domain.shared.error import ParseError

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


def decompress(data: bytes, suffixes: tuple[str, ...]) -> bytes:
    """Unwrap gzip and tar layers around the payload."""
    if data[:2] == GZIP_MAGIC:
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError) as e:
            raise ParseError(f"Corrupt gzip stream: {e}") from e
    if len(data) > 262 and data[257:262] == b"ustar":
        with tarfile.open(fileobj=io.BytesIO(data)) as tar:
            for member in tar.getmembers():
                name = member.name.removesuffix(".gz")
                if member.isfile() and name.endswith(suffixes):
                    extracted = tar.extractfile(member)
                    if extracted is None:
                        continue
                    return decompress(extracted.read(), suffixes)
        raise ParseError(f"Archive has no member ending in {', '.join(suffixes)}")
    return data


class _DecodedCache:
    """Single-entry cache of the decoded text for the last payload seen."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._source: bytes | None = None
        self._value: Any = None

    def get(self, data: bytes, build: Any) -> Any:
        with self._lock:
            if self._source is not data:
                self._value = build(data)
                self._source = data
            return self._value


class JsonLinesParser(Parser):
    """One JSON object per line, for pre-normalised dumps.

    ``identifier_field`` names the record identifier; ``name_field`` and
    ``sequence_field`` are optional. Lines that are not objects or lack an
    identifier are skipped and logged.
    """

    def __init__(
        self,
        record_type: str,
        identifier_field: str = "id",
        name_field: str | None = "name",
        sequence_field: str | None = "sequence",
        output_formats: tuple[str, ...] = ("json",),
    ) -> None:
        self.record_type = record_type
        self.identifier_field = identifier_field
        self.name_field = name_field
        self.sequence_field = sequence_field
        self.output_formats = output_formats
        self._cache = _DecodedCache()

    def _lines(self, data: bytes) -> list[str]:
        def build(raw: bytes) -> list[str]:
            text = decompress(raw, (".jsonl", ".ndjson", ".json")).decode("utf-8")
            return [line for line in text.splitlines() if line.strip()]

        return self._cache.get(data, build)

    def count_records(self, data: bytes) -> int | None:
        return len(self._lines(data))

    def parse_range(self, data: bytes, start_offset: int, end_offset: int) -> list[GenericRecord]:
        lines = self._lines(data)
        records: list[GenericRecord] = []
        for offset in range(start_offset, min(end_offset, len(lines) - 1) + 1):
            try:
                payload = json.loads(lines[offset])
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping malformed {self.record_type} line {offset}: {e}")
                continue
            if not isinstance(payload, dict) or not payload.get(self.identifier_field):
                logger.warning(f"Skipping {self.record_type} line {offset}: no identifier")
                continue
            name = payload.get(self.name_field) if self.name_field else None
            sequence = payload.get(self.sequence_field) if self.sequence_field else None
            try:
                record = GenericRecord.build(
                    record_type=self.record_type,
                    record_identifier=str(payload[self.identifier_field]),
                    record_data=payload,
                    record_name=str(name) if name else None,
                    sequence=sequence if isinstance(sequence, str) else None,
                    source_offset=offset,
                )
            except (ValidationError, ValueError) as e:
                logger.warning(f"Skipping invalid {self.record_type} line {offset}: {e}")
                continue
            records.append(record)
        return records


class FastaParser(Parser):
    """FASTA entries; the identifier is the first header token.

    UniProt-style headers (``sp|P12345|NAME_HUMAN Description OS=...``) use the
    accession between the pipes.
    """

    def __init__(
        self,
        record_type: str,
        output_formats: tuple[str, ...] = ("json", "fasta"),
    ) -> None:
        self.record_type = record_type
        self.output_formats = output_formats
        self._cache = _DecodedCache()

    def _entries(self, data: bytes) -> list[tuple[str, str]]:
        def build(raw: bytes) -> list[tuple[str, str]]:
            text = decompress(raw, (".fasta", ".fa", ".faa", ".fna")).decode("utf-8")
            entries: list[tuple[str, str]] = []
            header: str | None = None
            chunks: list[str] = []
            for line in text.splitlines():
                if line.startswith(">"):
                    if header is not None:
                        entries.append((header, "".join(chunks)))
                    header, chunks = line[1:].strip(), []
                elif header is not None:
                    chunks.append(line.strip())
            if header is not None:
                entries.append((header, "".join(chunks)))
            if text.strip() and not entries:
                raise ParseError("Stream contains no FASTA headers")
            return entries

        return self._cache.get(data, build)

    @staticmethod
    def _split_header(header: str) -> tuple[str, str | None, str]:
        token, _, description = header.partition(" ")
        parts = token.split("|")
        if len(parts) >= 3:
            return parts[1], parts[2], description
        return token, None, description

    def count_records(self, data: bytes) -> int | None:
        return len(self._entries(data))

    def parse_range(self, data: bytes, start_offset: int, end_offset: int) -> list[GenericRecord]:
        entries = self._entries(data)
        records: list[GenericRecord] = []
        for offset in range(start_offset, min(end_offset, len(entries) - 1) + 1):
            header, sequence = entries[offset]
            identifier, entry_name, description = self._split_header(header)
            if not identifier or not sequence:
                logger.warning(f"Skipping {self.record_type} entry {offset}: empty sequence")
                continue
            try:
                record = GenericRecord.build(
                    record_type=self.record_type,
                    record_identifier=identifier,
                    record_data={
                        "accession": identifier,
                        "entry_name": entry_name,
                        "description": description,
                        "sequence": sequence,
                        "length": len(sequence),
                    },
                    record_name=entry_name or description or None,
                    sequence=sequence,
                    source_offset=offset,
                )
            except (ValidationError, ValueError) as e:
                logger.warning(f"Skipping invalid {self.record_type} entry {offset}: {e}")
                continue
            records.append(record)
        return records
