from abc import abstractmethod
from typing import Protocol

from refstore.domain.ingest.model.record import GenericRecord
from refstore.domain.shared.port import Port


class Parser(Port, Protocol):
    """Turns raw archive bytes into GenericRecords.

    Parsing is CPU-bound and synchronous; callers move it off the event loop.
    """

    record_type: str
    output_formats: tuple[str, ...]

    @abstractmethod
    def count_records(self, data: bytes) -> int | None:
        """Number of records in ``data``, or None when it cannot be counted cheaply."""
        ...

    @abstractmethod
    def parse_range(self, data: bytes, start_offset: int, end_offset: int) -> list[GenericRecord]:
        """Records ``start_offset..end_offset`` (inclusive).

        Individual malformed records are skipped; a stream that cannot be read at
        all raises ParseError.
        """
        ...
