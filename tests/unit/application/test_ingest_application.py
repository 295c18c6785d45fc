"""Unit tests for IngestApplication wiring."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from refstore.application.ingest import IngestApplication
from refstore.config import Config
from refstore.domain.ingest.service.parallel import ParallelOrchestrator, StreamResult
from refstore.domain.ingest.service.pipeline import IngestStats, PipelineResult
from refstore.domain.shared.error import ConfigurationError, NotFoundError
from refstore.infrastructure.ingest.catalog import ParserRegistry, SourceCatalog


@pytest.fixture
def app(tmp_path) -> IngestApplication:
    config = Config(data_dir=str(tmp_path), organization_id="lab")
    return IngestApplication(
        config=config,
        batch_config=config.ingest.batch_config(),
        catalog=SourceCatalog(config, AsyncMock()),
        parsers=ParserRegistry(),
        coordinator=AsyncMock(),
        staging=AsyncMock(),
        storage=AsyncMock(),
        parallel=ParallelOrchestrator(),
        mappings=AsyncMock(),
        uploads=AsyncMock(),
        record_store=AsyncMock(),
        downloader=AsyncMock(),
        object_store=AsyncMock(),
    )


class TestIngestApplication:
    def test_unknown_job_type(self, app: IngestApplication):
        with pytest.raises(NotFoundError):
            app.pipeline("pdb")

    def test_missing_parser(self, app: IngestApplication):
        with pytest.raises(ConfigurationError):
            app.pipeline("genbank-vrl")

    @pytest.mark.asyncio
    async def test_ingest_uses_default_organization(self, app: IngestApplication, monkeypatch):
        pipeline = MagicMock()
        pipeline.run_version = AsyncMock()
        monkeypatch.setattr(app, "pipeline", lambda job_type: pipeline)

        await app.ingest("uniprot", "2024_01")

        pipeline.run_version.assert_awaited_once_with("lab", "2024_01")

    @pytest.mark.asyncio
    async def test_genbank_runs_one_stream_per_division(
        self, app: IngestApplication, monkeypatch
    ):
        requested = []

        def fake_pipeline(job_type: str):
            requested.append(job_type)
            pipeline = MagicMock()
            if job_type == "genbank-bct":
                pipeline.run_version = AsyncMock(side_effect=RuntimeError("listing failed"))
            else:
                pipeline.run_version = AsyncMock(
                    return_value=PipelineResult(
                        external_version="GB-262",
                        internal_version="1.0",
                        stats=IngestStats(records_stored=5),
                        skipped=False,
                    )
                )
            return pipeline

        monkeypatch.setattr(app, "pipeline", fake_pipeline)

        result = await app.ingest_genbank()

        assert requested == ["genbank-vrl", "genbank-phg", "genbank-bct"]
        assert sorted(result.succeeded) == ["phg", "vrl"]
        assert result.failed == ["bct"]
        assert result.records_stored == 10
        assert all(isinstance(r, StreamResult) for r in result.results)
