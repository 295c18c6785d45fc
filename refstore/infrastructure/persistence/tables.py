"""SQLAlchemy table definitions - dialect-agnostic (works with SQLite and PostgreSQL)."""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.types import JSON

# Metadata object for all tables
metadata = MetaData()

# ============================================================================
# INGESTION JOBS TABLE
# ============================================================================
jobs_table = Table(
    "ingestion_jobs",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False),
    Column("job_type", String(64), nullable=False),
    Column("external_version", String(128), nullable=False),
    Column("internal_version", String(32), nullable=True),  # Assigned after staging
    Column("status", String(32), nullable=False),  # JobStatus as string
    Column("total_records", BigInteger, nullable=True),
    Column("records_processed", BigInteger, nullable=False, server_default=text("0")),
    Column("records_stored", BigInteger, nullable=False, server_default=text("0")),
    Column("records_failed", BigInteger, nullable=False, server_default=text("0")),
    Column("records_skipped", BigInteger, nullable=False, server_default=text("0")),
    Column("source_metadata", JSON, nullable=False),
    Column("error_message", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("started_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
)

# Idempotency anchor: one completed job per release
Index(
    "uq_ingestion_jobs_completed_release",
    jobs_table.c.organization_id,
    jobs_table.c.job_type,
    jobs_table.c.external_version,
    unique=True,
    postgresql_where=text("status = 'completed'"),
    sqlite_where=text("status = 'completed'"),
)
Index("idx_ingestion_jobs_status", jobs_table.c.status)


# ============================================================================
# WORK UNITS TABLE
# ============================================================================
work_units_table = Table(
    "ingestion_work_units",
    metadata,
    Column("id", String, primary_key=True),
    Column(
        "job_id", String, ForeignKey("ingestion_jobs.id", ondelete="CASCADE"), nullable=False
    ),
    Column("unit_type", String(64), nullable=False),
    Column("batch_number", Integer, nullable=False),
    Column("start_offset", BigInteger, nullable=False),
    Column("end_offset", BigInteger, nullable=False),  # Inclusive
    Column("record_count", Integer, nullable=True),
    Column("status", String(32), nullable=False),  # WorkUnitStatus as string
    Column("worker_id", String(128), nullable=True),
    Column("worker_hostname", String(255), nullable=True),
    Column("claimed_at", DateTime(timezone=True), nullable=True),
    Column("heartbeat_at", DateTime(timezone=True), nullable=True),
    Column("started_processing_at", DateTime(timezone=True), nullable=True),
    Column("completed_at", DateTime(timezone=True), nullable=True),
    Column("processing_duration_ms", BigInteger, nullable=True),
    Column("retry_count", Integer, nullable=False, server_default=text("0")),
    Column("max_retries", Integer, nullable=False, server_default=text("3")),
    Column("last_error", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("job_id", "unit_type", "batch_number", name="uq_work_unit_batch"),
)

# Claim polling
Index(
    "idx_work_units_claim",
    work_units_table.c.job_id,
    work_units_table.c.status,
    work_units_table.c.batch_number,
    postgresql_where=text("status IN ('pending', 'claimed', 'processing')"),
)

# Lease expiry detection
Index(
    "idx_work_units_heartbeat",
    work_units_table.c.heartbeat_at,
    postgresql_where=text("status IN ('claimed', 'processing')"),
)


# ============================================================================
# STAGED RECORDS TABLE
# ============================================================================
staged_records_table = Table(
    "ingestion_staged_records",
    metadata,
    Column("id", String, primary_key=True),
    Column(
        "job_id", String, ForeignKey("ingestion_jobs.id", ondelete="CASCADE"), nullable=False
    ),
    Column("work_unit_id", String, nullable=True),  # Lookup only, not owned
    Column("record_type", String(64), nullable=False),
    Column("record_identifier", String(255), nullable=False),
    Column("record_name", Text, nullable=True),
    Column("record_data", JSON, nullable=False),
    Column("content_md5", String(32), nullable=False),
    Column("sequence_md5", String(32), nullable=True),
    Column("source_file", Text, nullable=True),
    Column("source_offset", BigInteger, nullable=True),
    Column("status", String(32), nullable=False),  # RecordStatus as string
    Column("error_message", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("stored_at", DateTime(timezone=True), nullable=True),
)

# Storage drain polling
Index(
    "idx_staged_records_drain",
    staged_records_table.c.job_id,
    staged_records_table.c.status,
    staged_records_table.c.created_at,
)
Index("idx_staged_records_content_md5", staged_records_table.c.content_md5)


# ============================================================================
# FILE UPLOADS TABLE
# ============================================================================
file_uploads_table = Table(
    "ingestion_file_uploads",
    metadata,
    Column("id", String, primary_key=True),
    Column(
        "job_id", String, ForeignKey("ingestion_jobs.id", ondelete="CASCADE"), nullable=False
    ),
    Column("staged_record_id", String, nullable=False),
    Column("format", String(32), nullable=False),
    Column("object_key", Text, nullable=False),
    Column("size_bytes", BigInteger, nullable=False),
    Column("content_type", String(128), nullable=False),
    Column("expected_md5", String(32), nullable=False),
    Column("computed_md5", String(32), nullable=False),
    Column("verified_md5", Boolean, nullable=False, server_default=text("false")),
    Column("status", String(32), nullable=False),
    Column("error_message", Text, nullable=True),
    Column("uploaded_at", DateTime(timezone=True), nullable=False),
)

Index("idx_file_uploads_record", file_uploads_table.c.staged_record_id)


# ============================================================================
# RAW FILES TABLE
# ============================================================================
raw_files_table = Table(
    "ingestion_raw_files",
    metadata,
    Column("id", String, primary_key=True),
    Column(
        "job_id", String, ForeignKey("ingestion_jobs.id", ondelete="CASCADE"), nullable=False
    ),
    Column("file_type", String(32), nullable=False),
    Column("file_name", String(255), nullable=False),
    Column("object_key", Text, nullable=False),
    Column("size_bytes", BigInteger, nullable=False),
    Column("expected_md5", String(32), nullable=True),
    Column("computed_md5", String(32), nullable=False),
    Column("verified_md5", Boolean, nullable=False, server_default=text("false")),
    Column("compression", String(32), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("verified_at", DateTime(timezone=True), nullable=True),
)

Index("idx_raw_files_job", raw_files_table.c.job_id)


# ============================================================================
# VERSION MAPPINGS TABLE
# ============================================================================
version_mappings_table = Table(
    "version_mappings",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False),
    Column("job_type", String(64), nullable=False),
    Column("external_version", String(128), nullable=False),
    Column("internal_version", String(32), nullable=False),
    Column("job_id", String, ForeignKey("ingestion_jobs.id"), nullable=False),
    Column("was_current", Boolean, nullable=False, server_default=text("false")),
    Column("release_date", Date, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint(
        "organization_id", "job_type", "external_version", name="uq_version_mapping_external"
    ),
    UniqueConstraint(
        "organization_id", "job_type", "internal_version", name="uq_version_mapping_internal"
    ),
)


# ============================================================================
# DATA RECORDS TABLE (final, versioned records)
# ============================================================================
data_records_table = Table(
    "data_records",
    metadata,
    Column("id", String, primary_key=True),
    Column("organization_id", String, nullable=False),
    Column("record_type", String(64), nullable=False),
    Column("record_identifier", String(255), nullable=False),
    Column("internal_version", String(32), nullable=False),
    Column("record_name", Text, nullable=True),
    Column("record_data", JSON, nullable=False),
    Column("content_md5", String(32), nullable=False),
    Column("sequence_md5", String(32), nullable=True),
    Column("job_id", String, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint(
        "organization_id",
        "record_type",
        "record_identifier",
        "internal_version",
        name="uq_data_record_version",
    ),
)

# Cross-source linking by sequence
Index("idx_data_records_sequence_md5", data_records_table.c.sequence_md5)
