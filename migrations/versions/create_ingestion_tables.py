"""create_ingestion_tables

Jobs, work units, staged records, provenance, version mappings and the final
versioned record table.

Revision ID: create_ingestion_tables
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "create_ingestion_tables"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*names: str, nullable: bool = False) -> list[sa.Column]:
    return [sa.Column(name, sa.DateTime(timezone=True), nullable=nullable) for name in names]


def upgrade() -> None:
    """Create ingestion tables."""
    op.create_table(
        "ingestion_jobs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(64), nullable=False),
        sa.Column("external_version", sa.String(128), nullable=False),
        sa.Column("internal_version", sa.String(32), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("total_records", sa.BigInteger(), nullable=True),
        sa.Column("records_processed", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("records_stored", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("records_failed", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("records_skipped", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("source_metadata", sa.JSON(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        *_timestamps("started_at", "completed_at", nullable=True),
    )
    # One completed job per release
    op.create_index(
        "uq_ingestion_jobs_completed_release",
        "ingestion_jobs",
        ["organization_id", "job_type", "external_version"],
        unique=True,
        postgresql_where=sa.text("status = 'completed'"),
        sqlite_where=sa.text("status = 'completed'"),
    )
    op.create_index("idx_ingestion_jobs_status", "ingestion_jobs", ["status"])

    op.create_table(
        "ingestion_work_units",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "job_id",
            sa.String(),
            sa.ForeignKey("ingestion_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("unit_type", sa.String(64), nullable=False),
        sa.Column("batch_number", sa.Integer(), nullable=False),
        sa.Column("start_offset", sa.BigInteger(), nullable=False),
        sa.Column("end_offset", sa.BigInteger(), nullable=False),
        sa.Column("record_count", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("worker_id", sa.String(128), nullable=True),
        sa.Column("worker_hostname", sa.String(255), nullable=True),
        *_timestamps(
            "claimed_at", "heartbeat_at", "started_processing_at", "completed_at", nullable=True
        ),
        sa.Column("processing_duration_ms", sa.BigInteger(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.UniqueConstraint("job_id", "unit_type", "batch_number", name="uq_work_unit_batch"),
    )
    op.create_index(
        "idx_work_units_claim",
        "ingestion_work_units",
        ["job_id", "status", "batch_number"],
        postgresql_where=sa.text("status IN ('pending', 'claimed', 'processing')"),
    )
    op.create_index(
        "idx_work_units_heartbeat",
        "ingestion_work_units",
        ["heartbeat_at"],
        postgresql_where=sa.text("status IN ('claimed', 'processing')"),
    )

    op.create_table(
        "ingestion_staged_records",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "job_id",
            sa.String(),
            sa.ForeignKey("ingestion_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("work_unit_id", sa.String(), nullable=True),
        sa.Column("record_type", sa.String(64), nullable=False),
        sa.Column("record_identifier", sa.String(255), nullable=False),
        sa.Column("record_name", sa.Text(), nullable=True),
        sa.Column("record_data", sa.JSON(), nullable=False),
        sa.Column("content_md5", sa.String(32), nullable=False),
        sa.Column("sequence_md5", sa.String(32), nullable=True),
        sa.Column("source_file", sa.Text(), nullable=True),
        sa.Column("source_offset", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        *_timestamps("stored_at", nullable=True),
    )
    op.create_index(
        "idx_staged_records_drain",
        "ingestion_staged_records",
        ["job_id", "status", "created_at"],
    )
    op.create_index(
        "idx_staged_records_content_md5", "ingestion_staged_records", ["content_md5"]
    )

    op.create_table(
        "ingestion_file_uploads",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "job_id",
            sa.String(),
            sa.ForeignKey("ingestion_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("staged_record_id", sa.String(), nullable=False),
        sa.Column("format", sa.String(32), nullable=False),
        sa.Column("object_key", sa.Text(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("content_type", sa.String(128), nullable=False),
        sa.Column("expected_md5", sa.String(32), nullable=False),
        sa.Column("computed_md5", sa.String(32), nullable=False),
        sa.Column("verified_md5", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps("uploaded_at"),
    )
    op.create_index("idx_file_uploads_record", "ingestion_file_uploads", ["staged_record_id"])

    op.create_table(
        "ingestion_raw_files",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "job_id",
            sa.String(),
            sa.ForeignKey("ingestion_jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_type", sa.String(32), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("object_key", sa.Text(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("expected_md5", sa.String(32), nullable=True),
        sa.Column("computed_md5", sa.String(32), nullable=False),
        sa.Column("verified_md5", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("compression", sa.String(32), nullable=True),
        *_timestamps("created_at"),
        *_timestamps("verified_at", nullable=True),
    )
    op.create_index("idx_raw_files_job", "ingestion_raw_files", ["job_id"])

    op.create_table(
        "version_mappings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(64), nullable=False),
        sa.Column("external_version", sa.String(128), nullable=False),
        sa.Column("internal_version", sa.String(32), nullable=False),
        sa.Column("job_id", sa.String(), sa.ForeignKey("ingestion_jobs.id"), nullable=False),
        sa.Column("was_current", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("release_date", sa.Date(), nullable=True),
        *_timestamps("created_at"),
        sa.UniqueConstraint(
            "organization_id", "job_type", "external_version", name="uq_version_mapping_external"
        ),
        sa.UniqueConstraint(
            "organization_id", "job_type", "internal_version", name="uq_version_mapping_internal"
        ),
    )

    op.create_table(
        "data_records",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("organization_id", sa.String(), nullable=False),
        sa.Column("record_type", sa.String(64), nullable=False),
        sa.Column("record_identifier", sa.String(255), nullable=False),
        sa.Column("internal_version", sa.String(32), nullable=False),
        sa.Column("record_name", sa.Text(), nullable=True),
        sa.Column("record_data", sa.JSON(), nullable=False),
        sa.Column("content_md5", sa.String(32), nullable=False),
        sa.Column("sequence_md5", sa.String(32), nullable=True),
        sa.Column("job_id", sa.String(), nullable=False),
        *_timestamps("created_at", "updated_at"),
        sa.UniqueConstraint(
            "organization_id",
            "record_type",
            "record_identifier",
            "internal_version",
            name="uq_data_record_version",
        ),
    )
    op.create_index("idx_data_records_sequence_md5", "data_records", ["sequence_md5"])


def downgrade() -> None:
    """Drop ingestion tables."""
    op.drop_table("data_records")
    op.drop_table("version_mappings")
    op.drop_table("ingestion_raw_files")
    op.drop_table("ingestion_file_uploads")
    op.drop_table("ingestion_staged_records")
    op.drop_table("ingestion_work_units")
    op.drop_index("uq_ingestion_jobs_completed_release", table_name="ingestion_jobs")
    op.drop_table("ingestion_jobs")
