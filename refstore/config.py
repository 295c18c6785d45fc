import logging
import os
import sys
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import BaseModel, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

from refstore.domain.ingest.model.batch import BatchConfig

# =============================================================================
# Application Configuration
# =============================================================================


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Load settings from YAML file specified by REFSTORE_CONFIG_FILE env var."""

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        """Get the value for a field from the YAML config."""
        yaml_data = self._load_yaml_config()
        field_value = yaml_data.get(field_name)
        return field_value, field_name, False

    def __call__(self) -> dict[str, Any]:
        """Return all settings from YAML file."""
        return self._load_yaml_config()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load config from YAML file if specified."""
        config_file = os.environ.get("REFSTORE_CONFIG_FILE")
        if config_file:
            path = Path(config_file)
            if path.exists():
                return yaml.safe_load(path.read_text()) or {}
        return {}


class DatabaseConfig(BaseModel):
    """Database configuration (nested in Config, uses env_nested_delimiter).

    An empty url means "derive a SQLite file under data_dir".
    """

    url: str = ""
    echo: bool = False
    auto_migrate: bool = True  # Auto-migrate for SQLite, manual for PostgreSQL
    pool_size: int = 10
    max_overflow: int = 10
    busy_timeout_secs: float = 30.0  # SQLite only


class LoggingConfig(BaseModel):
    """Logging configuration (nested in Config, uses env_nested_delimiter)."""

    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    @property
    def file(self) -> str | None:
        """Get log file path from REFSTORE_LOG_FILE env var."""
        return os.environ.get("REFSTORE_LOG_FILE")


class IngestConfig(BaseModel):
    """Batching, retry and lease settings for ingestion."""

    parse_batch_size: int = 1000  # Records per work unit
    store_batch_size: int = 100  # Staged records per storage batch
    max_retries: int = 3  # Attempts per work unit
    heartbeat_interval_secs: float = 30.0
    worker_timeout_secs: float = 120.0  # Lease expiry without a heartbeat
    workers: int = 4  # Concurrent workers per job
    reaper_interval_secs: float = 60.0  # Stale-lease sweep period, 0 disables
    poll_interval_secs: float = 5.0  # Idle wait of pooled workers

    def batch_config(self) -> BatchConfig:
        return BatchConfig(
            parse_batch_size=self.parse_batch_size,
            store_batch_size=self.store_batch_size,
            max_retries=self.max_retries,
            heartbeat_interval_secs=self.heartbeat_interval_secs,
            worker_timeout_secs=self.worker_timeout_secs,
            workers=self.workers,
        )


class DownloadConfig(BaseModel):
    """Archive download retry settings."""

    max_attempts: int = 5
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    timeout: float = 300.0  # seconds per request
    user_agent: str = "refstore/0.1"


class StorageConfig(BaseModel):
    """Object store settings. Empty base_path derives one under data_dir."""

    base_path: str = ""


class UniProtConfig(BaseModel):
    base_url: str = "https://ftp.uniprot.org/pub/databases/uniprot"
    dataset: str = "uniprot_sprot"  # uniprot_sprot or uniprot_trembl


class GenBankConfig(BaseModel):
    base_url: str = "https://ftp.ncbi.nlm.nih.gov/genbank"
    divisions: list[str] = ["vrl", "phg", "bct"]
    concurrency: int = 2  # Divisions ingested at once


class TaxonomyConfig(BaseModel):
    base_url: str = "https://ftp.ncbi.nlm.nih.gov/pub/taxonomy/taxdump_archive"


class GeneOntologyConfig(BaseModel):
    base_url: str = "https://release.geneontology.org"
    ontology_file: str = "go-basic.obo"


class SourcesConfig(BaseModel):
    uniprot: UniProtConfig = UniProtConfig()
    genbank: GenBankConfig = GenBankConfig()
    taxonomy: TaxonomyConfig = TaxonomyConfig()
    gene_ontology: GeneOntologyConfig = GeneOntologyConfig()


class Config(BaseSettings):
    # These are BaseModel, so env_nested_delimiter handles their env vars
    data_dir: str = "~/.refstore"
    organization_id: str = "default"
    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    ingest: IngestConfig = IngestConfig()
    download: DownloadConfig = DownloadConfig()
    storage: StorageConfig = StorageConfig()
    sources: SourcesConfig = SourcesConfig()

    model_config = {
        "env_prefix": "REFSTORE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",  # Allows REFSTORE_DATABASE__URL override
    }

    @model_validator(mode="after")
    def derive_paths(self) -> Self:
        """Fill database url and object store path from data_dir when unset."""
        data_dir = Path(self.data_dir).expanduser()
        if not self.database.url:
            self.database = self.database.model_copy(
                update={"url": f"sqlite+aiosqlite:///{data_dir / 'refstore.db'}"}
            )
        if not self.storage.base_path:
            self.storage = StorageConfig(base_path=str(data_dir / "objects"))
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings sources to include YAML config.

        Priority (highest to lowest):
        1. init_settings - values passed to Config()
        2. env_settings - environment variables
        3. dotenv_settings - .env file
        4. yaml_settings - REFSTORE_CONFIG_FILE yaml
        5. file_secret_settings - secrets from files
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def configure_logging(config: LoggingConfig) -> None:
    """Configure Python logging based on config.

    Should be called early in application startup so every module logger
    picks up the handlers.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(config.level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(config.format, datefmt=config.date_format)

    if config.file:
        log_path = Path(config.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(config.level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    else:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(config.level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.INFO)

    logging.debug("Logging configured: level=%s, file=%s", config.level, config.file)
