"""Catalog Ingest - Database engine, session management and primitives.

SQLAlchemy sync engine/session factory for SQLite, plus the job and catalog
primitives the orchestrator and API build on.

Note:
    Primitives flush but do NOT commit. Commit responsibility stays with the
    caller (the orchestrator commits after every visible state change).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import Engine, create_engine, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from catalog_ingest.config import DB_PATH
from catalog_ingest.errors import JobNotFoundError
from catalog_ingest.models import (
    JOB_STATUS_ERROR,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_QUEUED,
    RUNNABLE_JOB_STATUSES,
    Base,
    IngestionJob,
    Track,
    utc_now,
)

if TYPE_CHECKING:
    from catalog_ingest.utils.field_mapping import TrackRecord


def get_database_url(db_path: str | Path | None = None) -> str:
    """Get SQLite database URL.

    Args:
        db_path: Optional path override. Defaults to config.DB_PATH.

    Returns:
        SQLite connection URL string.
    """
    path = db_path if db_path is not None else DB_PATH
    return f"sqlite:///{path}"


def create_db_engine(db_path: str | Path | None = None, echo: bool = False) -> Engine:
    """Create SQLAlchemy engine.

    Args:
        db_path: Optional path override for the database file.
        echo: If True, log all SQL statements.

    Returns:
        SQLAlchemy Engine instance.
    """
    url = get_database_url(db_path)
    # One session per unit of work, never shared across threads.
    return create_engine(url, echo=echo, connect_args={"check_same_thread": False})


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to the given engine."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(db_path: str | Path | None = None, echo: bool = False) -> tuple[Engine, sessionmaker]:
    """Initialize the database: create engine, session factory, and all tables.

    Idempotent - safe to call multiple times.

    Args:
        db_path: Optional path override for the database file.
        echo: If True, log all SQL statements.

    Returns:
        Tuple of (engine, SessionFactory).
    """
    if db_path is not None:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    else:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    engine = create_db_engine(db_path, echo=echo)
    SessionFactory = create_session_factory(engine)

    Base.metadata.create_all(engine)

    return engine, SessionFactory


def generate_id() -> str:
    """Generate a unique identifier (uuid4 hex, 32 chars)."""
    return uuid.uuid4().hex


# --- Ingestion Job Primitives ---


def create_ingestion_job(
    session: Session,
    file_url: str,
    file_name: str | None = None,
    file_size_mb: float | None = None,
) -> IngestionJob:
    """Create a queued ingestion job (flushed, not committed)."""
    job = IngestionJob(
        job_id=generate_id(),
        file_url=file_url,
        file_name=file_name,
        file_size_mb=file_size_mb,
        status=JOB_STATUS_QUEUED,
        created_at=utc_now(),
    )
    session.add(job)
    session.flush()
    return job


def get_job(session: Session, job_id: str) -> IngestionJob | None:
    """Load a job by its public job_id."""
    stmt = select(IngestionJob).where(IngestionJob.job_id == job_id)
    return session.execute(stmt).scalar_one_or_none()


def list_jobs(
    session: Session,
    status: str | None = None,
    limit: int | None = None,
) -> list[IngestionJob]:
    """List jobs, newest first, optionally filtered by status."""
    stmt = select(IngestionJob).order_by(IngestionJob.created_at.desc(), IngestionJob.id.desc())
    if status is not None:
        stmt = stmt.where(IngestionJob.status == status)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(session.execute(stmt).scalars().all())


def update_job(session: Session, job_id: str, **fields: Any) -> IngestionJob:
    """Apply a merge-patch to a job record.

    Only the given attributes change; everything else is left as-is.

    Raises:
        JobNotFoundError: If no job has this job_id.
    """
    job = get_job(session, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    for name, value in fields.items():
        if not hasattr(IngestionJob, name):
            raise AttributeError(f"IngestionJob has no attribute '{name}'")
        setattr(job, name, value)
    session.flush()
    return job


def claim_job(session: Session, job_id: str, phase: str | None = None) -> bool:
    """Atomically move a runnable (queued or error) job to processing.

    A single conditional UPDATE: of two concurrent invocations that both
    observed the job as runnable, exactly one sees rowcount == 1. Claiming
    an error job clears the outcome of the failed attempt.

    Returns:
        True if this caller now owns the job.
    """
    now = utc_now()
    stmt = (
        update(IngestionJob)
        .where(IngestionJob.job_id == job_id, IngestionJob.status.in_(RUNNABLE_JOB_STATUSES))
        .values(
            status=JOB_STATUS_PROCESSING,
            phase=phase,
            error_message=None,
            upload_mbps=None,
            created_count=0,
            skipped_count=0,
            started_at=now,
            finished_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    result = session.execute(stmt)
    session.flush()
    return result.rowcount == 1


def find_stale_jobs(session: Session, stale_before: datetime) -> list[IngestionJob]:
    """Processing jobs with no update since stale_before, oldest first."""
    stmt = (
        select(IngestionJob)
        .where(
            IngestionJob.status == JOB_STATUS_PROCESSING,
            IngestionJob.updated_at < stale_before,
        )
        .order_by(IngestionJob.updated_at.asc())
    )
    return list(session.execute(stmt).scalars().all())


def fail_stale_job(
    session: Session,
    job_id: str,
    stale_before: datetime,
    message: str,
    phase: str | None = None,
) -> bool:
    """Move a processing job that stopped updating to error.

    Conditional on the job still being processing and still stale, so a
    worker that reports progress in the meantime keeps its claim.

    Returns:
        True if the job was marked failed.
    """
    now = utc_now()
    stmt = (
        update(IngestionJob)
        .where(
            IngestionJob.job_id == job_id,
            IngestionJob.status == JOB_STATUS_PROCESSING,
            IngestionJob.updated_at < stale_before,
        )
        .values(
            status=JOB_STATUS_ERROR,
            phase=phase,
            error_message=message,
            finished_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    result = session.execute(stmt)
    session.flush()
    return result.rowcount == 1


def find_next_queued_job(session: Session) -> IngestionJob | None:
    """Oldest queued job by creation time, or None."""
    stmt = (
        select(IngestionJob)
        .where(IngestionJob.status == JOB_STATUS_QUEUED)
        .order_by(IngestionJob.created_at.asc(), IngestionJob.id.asc())
        .limit(1)
    )
    return session.execute(stmt).scalar_one_or_none()


def count_jobs_in_status(session: Session, status: str) -> int:
    stmt = select(func.count()).select_from(IngestionJob).where(IngestionJob.status == status)
    return session.execute(stmt).scalar() or 0


# --- Catalog Primitives ---


def snapshot_isrcs(session: Session) -> set[str]:
    """All ISRCs already in the catalog, upper-cased.

    One bulk read per job; rows are then checked against this in-memory set.
    """
    stmt = select(Track.isrc).where(Track.isrc.is_not(None))
    return {isrc.strip().upper() for isrc in session.execute(stmt).scalars() if isrc.strip()}


def snapshot_catalog_numbers(session: Session) -> set[str]:
    """All catalog numbers already in the catalog."""
    stmt = select(Track.catalog_no).distinct()
    return {catalog_no for catalog_no in session.execute(stmt).scalars() if catalog_no}


def create_track(
    session: Session,
    record: TrackRecord,
    source_job_id: str | None = None,
) -> Track:
    """Insert a catalog record (flushed, not committed).

    Args:
        session: Active database session.
        record: Mapped record; must have original_title and catalog_no.
        source_job_id: Job that produced the record, if any.

    Returns:
        The created Track.
    """
    track = Track(track_id=generate_id(), source_job_id=source_job_id, **record.to_fields())
    session.add(track)
    session.flush()
    return track
