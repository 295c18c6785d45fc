from abc import abstractmethod
from collections.abc import Sequence
from typing import Protocol
from uuid import UUID

from refstore.domain.ingest.model.staged import StagedRecord
from refstore.domain.shared.port import Port


class StorageAdapter(Port, Protocol):
    """Commits staged records of one record type to their final tables."""

    @abstractmethod
    def record_type(self) -> str: ...

    @abstractmethod
    def supported_formats(self) -> list[str]: ...

    @abstractmethod
    async def upload_files(self, record: StagedRecord, formats: Sequence[str]) -> list[UUID]:
        """Render and upload ``record`` in each format; returns file-upload ids."""
        ...

    @abstractmethod
    async def store_batch(self, records: Sequence[StagedRecord]) -> list[UUID]:
        """Write the whole batch to final tables, or nothing.

        Returns the ids of the final rows written or reused.
        """
        ...

    @abstractmethod
    async def mark_stored(self, record_ids: Sequence[UUID]) -> None:
        """Flag committed staged records as stored."""
        ...


class ObjectStore(Port, Protocol):
    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key``; returns the MD5 of what was written."""
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes: ...

    @abstractmethod
    async def exists(self, key: str) -> bool: ...
