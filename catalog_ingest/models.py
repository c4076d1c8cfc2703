"""Catalog Ingest - SQLAlchemy ORM models.

Tables:
1. ingestion_jobs - one row per uploaded archive
2. tracks - normalized catalog entries (one per manifest row)
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


# Job status values. Transitions: queued -> processing -> done | error,
# and error -> processing when a failed job is re-triggered.
JOB_STATUS_QUEUED = "queued"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_DONE = "done"
JOB_STATUS_ERROR = "error"

JOB_STATUSES = (JOB_STATUS_QUEUED, JOB_STATUS_PROCESSING, JOB_STATUS_DONE, JOB_STATUS_ERROR)

# Statuses a run may claim. processing and done are never re-entered.
RUNNABLE_JOB_STATUSES = (JOB_STATUS_QUEUED, JOB_STATUS_ERROR)

MIGRATION_STATUS_PENDING = "pending"


class IngestionJob(Base):
    """One archive awaiting, undergoing or having completed ingestion.

    Mutated only by the orchestrator (plus the progress patch endpoint and
    the stale-job sweep). Never deleted automatically.
    """

    __tablename__ = "ingestion_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    job_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    # Source archive
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_size_mb: Mapped[float | None] = mapped_column(Float, nullable=True)

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=JOB_STATUS_QUEUED, index=True
    )
    # Free-text progress label shown to users
    phase: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Measured upload throughput in Mbit/s
    upload_mbps: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (Index("ix_jobs_status_created", "status", "created_at"),)


class Track(Base):
    """Normalized catalog entry derived from one manifest row.

    Tracks sharing a catalog_no form a release.
    """

    __tablename__ = "tracks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    track_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    original_title: Mapped[str] = mapped_column(Text, nullable=False)
    catalog_no: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    genre: Mapped[str | None] = mapped_column(String(128), nullable=True)
    version_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    isrc: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    composer: Mapped[str | None] = mapped_column(Text, nullable=True)
    product_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    upc: Mapped[str | None] = mapped_column(String(32), nullable=True)
    # Stored as given in the manifest; exports disagree on date format
    release_date: Mapped[str | None] = mapped_column(String(32), nullable=True)

    wav_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    cover_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    migration_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=MIGRATION_STATUS_PENDING
    )
    # Provenance: record was created from an uploaded archive
    archive_derived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_job_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
