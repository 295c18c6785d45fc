from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class BatchConfig:
    """Batching, retry and lease settings passed into each orchestrator.

    Attributes:
        parse_batch_size: Records per work unit.
        store_batch_size: Staged records per storage batch.
        max_retries: Attempts per work unit before it is terminally failed.
        heartbeat_interval_secs: Seconds between worker heartbeats.
        worker_timeout_secs: Seconds without a heartbeat before a lease expires.
        workers: Concurrent workers a pipeline runs per job.
    """

    parse_batch_size: int = 1000
    store_batch_size: int = 100
    max_retries: int = 3
    heartbeat_interval_secs: float = 30.0
    worker_timeout_secs: float = 120.0
    workers: int = 4

    def __post_init__(self) -> None:
        if self.parse_batch_size < 1:
            raise ValueError("parse_batch_size must be >= 1")
        if self.store_batch_size < 1:
            raise ValueError("store_batch_size must be >= 1")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.heartbeat_interval_secs <= 0:
            raise ValueError("heartbeat_interval_secs must be > 0")
        if self.worker_timeout_secs <= self.heartbeat_interval_secs:
            raise ValueError("worker_timeout_secs must be > heartbeat_interval_secs")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")

    @property
    def worker_timeout(self) -> timedelta:
        return timedelta(seconds=self.worker_timeout_secs)
