"""ParallelOrchestrator - bounded-concurrency fan-out over independent streams."""

import asyncio
import logging
from abc import abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

import logfire

from refstore.domain.shared.error import AllStreamsFailedError
from refstore.domain.shared.service import Service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamResult:
    """Outcome of one successful stream."""

    name: str
    records_processed: int = 0
    records_stored: int = 0
    records_failed: int = 0
    bytes_downloaded: int = 0
    external_version: str | None = None
    internal_version: str | None = None
    skipped: bool = False


class IngestStream(Protocol):
    """One independently processable slice of a release (e.g. a GenBank division)."""

    name: str

    @abstractmethod
    async def run(self) -> StreamResult: ...


@dataclass
class AggregateResult:
    """Totals over successful streams; failed streams appear only in ``errors``."""

    results: list[StreamResult] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def records_processed(self) -> int:
        return sum(r.records_processed for r in self.results)

    @property
    def records_stored(self) -> int:
        return sum(r.records_stored for r in self.results)

    @property
    def records_failed(self) -> int:
        return sum(r.records_failed for r in self.results)

    @property
    def bytes_downloaded(self) -> int:
        return sum(r.bytes_downloaded for r in self.results)

    @property
    def succeeded(self) -> list[str]:
        return [r.name for r in self.results]

    @property
    def failed(self) -> list[str]:
        return list(self.errors)


class ParallelOrchestrator(Service):
    """Runs streams concurrently, at most ``concurrency`` at a time.

    A failing stream is logged and left out of the aggregate; the call raises
    only when every stream fails.
    """

    default_concurrency: int = 4

    async def run_streams(
        self, streams: Sequence[IngestStream], concurrency: int | None = None
    ) -> AggregateResult:
        """Run every stream, bounded by ``concurrency``.

        Raises:
            AllStreamsFailedError: No stream succeeded.
        """
        limit = concurrency or self.default_concurrency
        if limit < 1:
            raise ValueError("concurrency must be >= 1")
        aggregate = AggregateResult()
        if not streams:
            return aggregate

        semaphore = asyncio.Semaphore(limit)

        async def _run_one(stream: IngestStream) -> None:
            async with semaphore:
                with logfire.span("stream {name}", name=stream.name):
                    try:
                        result = await stream.run()
                    except Exception as e:
                        logger.error(f"Stream {stream.name} failed: {e}")
                        aggregate.errors[stream.name] = str(e) or type(e).__name__
                        return
                    aggregate.results.append(result)
                    logger.info(
                        f"Stream {stream.name}: {result.records_stored} stored, "
                        f"{result.records_failed} failed"
                    )

        await asyncio.gather(*(_run_one(s) for s in streams))

        if not aggregate.results:
            raise AllStreamsFailedError(aggregate.errors)
        if aggregate.errors:
            logfire.warn(
                "{failed} of {total} streams failed",
                failed=len(aggregate.errors),
                total=len(streams),
            )
        return aggregate
