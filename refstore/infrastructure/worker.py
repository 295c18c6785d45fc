"""WorkerPool for resuming parse work on jobs whose in-process workers are gone."""

import asyncio
import logging
from uuid import uuid4

from dishka import AsyncContainer

from refstore.config import IngestConfig
from refstore.domain.ingest.model.job import IngestionJob, JobStatus
from refstore.domain.ingest.port.storage import ObjectStore
from refstore.domain.ingest.service.coordinator import JobCoordinator
from refstore.domain.ingest.service.staging import StagingService
from refstore.domain.ingest.service.worker import IngestionWorker
from refstore.domain.shared.error import RefstoreError
from refstore.infrastructure.ingest.catalog import ParserRegistry
from refstore.util.di.scope import Scope

logger = logging.getLogger(__name__)


class PoolWorker:
    """One polling loop over jobs in ``parsing``.

    Each poll resolves its collaborators in a fresh UOW scope, picks the first
    parsing job with claimable units, loads its primary raw files from the object
    store and drains it with an IngestionWorker.
    """

    def __init__(self, name: str, container: AsyncContainer, poll_interval: float) -> None:
        self.name = name
        self._container = container
        self._poll_interval = poll_interval
        self._shutdown = False
        self._task: asyncio.Task | None = None
        self.units_completed = 0
        self.units_failed = 0
        self.error: Exception | None = None

    def start(self) -> asyncio.Task:
        self._shutdown = False
        self._task = asyncio.create_task(self._run(), name=f"worker-{self.name}")
        logger.info(f"Worker '{self.name}' started")
        return self._task

    def stop(self) -> None:
        """Signal the worker to stop after its current job."""
        self._shutdown = True
        logger.info(f"Worker '{self.name}' stopping...")

    async def _run(self) -> None:
        try:
            while not self._shutdown:
                had_work = await self._poll_once()
                if not had_work:
                    await asyncio.sleep(self._poll_interval)
        except asyncio.CancelledError:
            logger.info(f"Worker '{self.name}' cancelled")
            raise
        except Exception as e:
            logger.exception(f"Worker '{self.name}' crashed: {e}")
            self.error = e
            raise
        finally:
            logger.info(f"Worker '{self.name}' stopped")

    async def _poll_once(self) -> bool:
        """Work one parsing job; False when there was nothing to do."""
        async with self._container(scope=Scope.UOW) as scope:
            coordinator = await scope.get(JobCoordinator)
            for job in await coordinator.list_jobs(JobStatus.PARSING):
                if await coordinator.is_parsing_complete(job.id):
                    continue
                parsers = await scope.get(ParserRegistry)
                if job.job_type not in parsers:
                    logger.debug(f"No parser for {job.job_type}, leaving job {job.id}")
                    continue
                try:
                    data = await self._load_payload(job, coordinator, await scope.get(ObjectStore))
                except (RefstoreError, OSError) as e:
                    logger.error(f"Worker '{self.name}': cannot load input of job {job.id}: {e}")
                    continue
                worker = IngestionWorker(
                    coordinator=coordinator,
                    staging=await scope.get(StagingService),
                    parser=parsers.get(job.job_type),
                    config=coordinator.config,
                    worker_id=f"{self.name}-{uuid4().hex[:8]}",
                )
                stats = await worker.run(job.id, data)
                self.units_completed += stats.units_completed
                self.units_failed += stats.units_failed
                return stats.units_completed + stats.units_failed > 0
        return False

    @staticmethod
    async def _load_payload(
        job: IngestionJob, coordinator: JobCoordinator, object_store: ObjectStore
    ) -> bytes:
        raw_files = [
            f for f in await coordinator.list_raw_files(job.id) if f.file_type == "primary"
        ]
        if not raw_files:
            raise FileNotFoundError(f"job {job.id} has no primary raw file")
        chunks = [await object_store.get(f.object_key) for f in raw_files]
        return chunks[0] if len(chunks) == 1 else b"".join(chunks)


class WorkerPool:
    """Runs N PoolWorkers plus a periodic stale-lease reaper.

    Usage:
        pool = WorkerPool(container, config.ingest)
        async with pool:
            await some_long_running_task()
    """

    def __init__(self, container: AsyncContainer, config: IngestConfig) -> None:
        self._container = container
        self._config = config
        self._workers = [
            PoolWorker(f"pool-{i}", container, config.poll_interval_secs)
            for i in range(config.workers)
        ]
        self._reaper_task: asyncio.Task | None = None
        self._shutdown = False

    @property
    def workers(self) -> list[PoolWorker]:
        return self._workers

    async def start(self) -> None:
        self._shutdown = False
        for worker in self._workers:
            worker.start()
        if self._config.reaper_interval_secs > 0:
            self._reaper_task = asyncio.create_task(self._run_reaper(), name="stale-lease-reaper")
        logger.info(f"WorkerPool started with {len(self._workers)} workers")

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop all workers gracefully.

        Args:
            timeout: Maximum time to wait for workers to stop.
        """
        self._shutdown = True
        for worker in self._workers:
            worker.stop()

        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass

        tasks = [w._task for w in self._workers if w._task and not w._task.done()]
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()

        logger.info("WorkerPool stopped")

    async def reap_once(self) -> int:
        """Return expired leases to ``pending`` (or ``failed`` once out of retries)."""
        async with self._container(scope=Scope.UOW) as scope:
            coordinator = await scope.get(JobCoordinator)
            return await coordinator.reclaim_stale_work_units()

    async def _run_reaper(self) -> None:
        while not self._shutdown:
            try:
                await asyncio.sleep(self._config.reaper_interval_secs)
                if self._shutdown:
                    break
                await self.reap_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Stale lease reaper failed: {e}")

    async def __aenter__(self) -> "WorkerPool":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.stop()

