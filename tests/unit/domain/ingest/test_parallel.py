"""Unit tests for ParallelOrchestrator."""

import asyncio
from dataclasses import dataclass

import pytest

from refstore.domain.ingest.service.parallel import ParallelOrchestrator, StreamResult
from refstore.domain.shared.error import AllStreamsFailedError


@dataclass
class FakeStream:
    name: str
    stored: int = 0
    error: Exception | None = None
    tracker: dict | None = None

    async def run(self) -> StreamResult:
        if self.tracker is not None:
            self.tracker["active"] += 1
            self.tracker["peak"] = max(self.tracker["peak"], self.tracker["active"])
            await asyncio.sleep(0.01)
            self.tracker["active"] -= 1
        if self.error is not None:
            raise self.error
        return StreamResult(
            name=self.name, records_stored=self.stored, records_processed=self.stored
        )


class TestParallelOrchestrator:
    @pytest.mark.asyncio
    async def test_aggregates_successful_streams(self):
        orchestrator = ParallelOrchestrator()
        result = await orchestrator.run_streams(
            [FakeStream("vrl", stored=3), FakeStream("phg", stored=4)]
        )
        assert result.records_stored == 7
        assert sorted(result.succeeded) == ["phg", "vrl"]
        assert result.errors == {}

    @pytest.mark.asyncio
    async def test_failed_stream_is_excluded_from_totals(self):
        orchestrator = ParallelOrchestrator()
        result = await orchestrator.run_streams(
            [FakeStream("vrl", stored=3), FakeStream("bct", error=RuntimeError("boom"))]
        )
        assert result.records_stored == 3
        assert result.failed == ["bct"]
        assert result.errors["bct"] == "boom"

    @pytest.mark.asyncio
    async def test_all_streams_failing_raises(self):
        orchestrator = ParallelOrchestrator()
        with pytest.raises(AllStreamsFailedError) as exc_info:
            await orchestrator.run_streams(
                [FakeStream("a", error=RuntimeError("x")), FakeStream("b", error=ValueError())]
            )
        assert set(exc_info.value.errors) == {"a", "b"}
        assert exc_info.value.errors["b"] == "ValueError"

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self):
        tracker = {"active": 0, "peak": 0}
        streams = [FakeStream(str(i), tracker=tracker) for i in range(6)]
        await ParallelOrchestrator().run_streams(streams, concurrency=2)
        assert tracker["peak"] == 2

    @pytest.mark.asyncio
    async def test_no_streams(self):
        result = await ParallelOrchestrator().run_streams([])
        assert result.results == []

    @pytest.mark.asyncio
    async def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            await ParallelOrchestrator(default_concurrency=0).run_streams([FakeStream("a")])
