"""Catalog Ingest - Jobs API service logic.

Business logic behind the HTTP endpoints:
- Job registration (plus best-effort enqueue)
- Progress merge-patch for external reporters
- Operator requeue (re-enqueue of queued, failed or stale jobs)
- Presigned archive upload targets
- Direct-upload linking (CSV + already uploaded WAV/cover URLs, no archive)

NO HTTP concerns here: functions raise ApiError subclasses and main.py maps
them to responses.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import httpx

from catalog_ingest.config import (
    DIRECT_UPLOAD_PRESIGN_EXPIRY_SECONDS,
    ZIP_UPLOAD_PREFIX,
    Settings,
)
from catalog_ingest.db import (
    create_ingestion_job,
    create_track,
    get_job,
    snapshot_catalog_numbers,
    snapshot_isrcs,
    update_job,
)
from catalog_ingest.errors import JobNotFoundError, JobStateError
from catalog_ingest.models import JOB_STATUS_PROCESSING, RUNNABLE_JOB_STATUSES, utc_now
from catalog_ingest.orchestrator import fail_stale_jobs
from catalog_ingest.utils.archive import base_name
from catalog_ingest.utils.field_mapping import decide_row, map_row
from catalog_ingest.utils.object_store import ObjectStoreClient, PresignedUpload
from catalog_ingest.utils.tabular import parse_records

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from catalog_ingest.models import IngestionJob

logger = logging.getLogger(__name__)

# Characters kept verbatim in uploaded archive names; everything else becomes "_"
_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

MANIFEST_FETCH_TIMEOUT = httpx.Timeout(30.0)


# --- Error Codes ---


class ApiErrorCode(StrEnum):
    """Error codes returned in ErrorResponse.error_code."""

    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOTHING_TO_UPDATE = "NOTHING_TO_UPDATE"
    INVALID_MANIFEST = "INVALID_MANIFEST"
    FETCH_FAILED = "FETCH_FAILED"
    JOB_FAILED = "JOB_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ApiError(Exception):
    """Base exception for API-level errors."""

    error_code: ApiErrorCode = ApiErrorCode.INTERNAL_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"{self.error_code}: {message}")


class NothingToUpdateError(ApiError):
    """Progress patch carried no updatable field."""

    error_code = ApiErrorCode.NOTHING_TO_UPDATE

    def __init__(self):
        super().__init__("No data to update")


class InvalidManifestError(ApiError):
    """Direct-upload manifest is unusable."""

    error_code = ApiErrorCode.INVALID_MANIFEST


class ManifestFetchError(ApiError):
    """Direct-upload manifest could not be downloaded."""

    error_code = ApiErrorCode.FETCH_FAILED


# --- Result Types ---


@dataclass
class DirectUploadResult:
    """Outcome of direct-upload linking."""

    created: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


# --- Jobs ---


def create_job(
    session: Session,
    file_url: str,
    file_name: str | None = None,
    file_size_mb: float | None = None,
    enqueue: bool = True,
) -> IngestionJob:
    """Register an archive as a queued job and commit.

    The Huey enqueue is best-effort: if it fails, the periodic sweep picks the
    job up later.
    """
    job = create_ingestion_job(session, file_url, file_name=file_name, file_size_mb=file_size_mb)
    session.commit()
    logger.info("Created ingestion job %s for %s", job.job_id, file_url)

    if enqueue:
        _enqueue_job_safe(job.job_id)
    return job


def _enqueue_job_safe(job_id: str) -> None:
    """Enqueue a job for processing (best-effort, never raises)."""
    try:
        # Import here to avoid circular imports
        from catalog_ingest.huey_app import enqueue_ingestion_job

        enqueue_ingestion_job(job_id)
    except Exception:
        logger.warning("Failed to enqueue job_id=%s (non-fatal)", job_id, exc_info=True)


def apply_progress_update(
    session: Session,
    job_id: str,
    phase: str | None = None,
    upload_mbps: float | None = None,
) -> IngestionJob:
    """Merge-patch phase and/or upload_mbps onto a job and commit.

    Raises:
        NothingToUpdateError: Neither field was given.
        JobNotFoundError: No such job.
    """
    fields = {}
    if phase is not None:
        fields["phase"] = phase
    if upload_mbps is not None:
        fields["upload_mbps"] = upload_mbps
    if not fields:
        raise NothingToUpdateError()

    job = update_job(session, job_id, updated_at=utc_now(), **fields)
    session.commit()
    return job


def requeue(session: Session, settings: Settings, job_id: str) -> IngestionJob:
    """Operator retry: hand a queued or failed job to the work queue again.

    The job keeps its status; the run that picks it up claims it. A
    processing job is only accepted once it has gone stale, in which case it
    is marked error first.

    Raises:
        JobNotFoundError: No such job.
        JobStateError: Job is done, or processing and still alive.
    """
    job = load_job(session, job_id)
    if job.status == JOB_STATUS_PROCESSING:
        fail_stale_jobs(session, settings, job_id=job_id)
    if job.status not in RUNNABLE_JOB_STATUSES:
        raise JobStateError(job_id, job.status, "requeue")

    logger.info("Requeued job %s (status=%s)", job_id, job.status)
    _enqueue_job_safe(job_id)
    return job


def load_job(session: Session, job_id: str) -> IngestionJob:
    """Fetch a job or raise JobNotFoundError."""
    job = get_job(session, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job


# --- Uploads ---


def sanitize_file_name(file_name: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", file_name)


def archive_upload_key(file_name: str, now_ms: int | None = None) -> str:
    """Object key for a client-uploaded archive: zip-uploads/{epoch_ms}_{name}."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{ZIP_UPLOAD_PREFIX}/{now_ms}_{sanitize_file_name(file_name)}"


def presign_archive_upload(
    object_store: ObjectStoreClient,
    file_name: str,
    content_type: str | None = None,
) -> PresignedUpload:
    """Presigned PUT target for a new archive upload.

    Raises:
        SigningError: If the store credentials are incomplete.
    """
    return object_store.presigned_put(
        archive_upload_key(file_name),
        content_type=content_type,
        expires_seconds=DIRECT_UPLOAD_PRESIGN_EXPIRY_SECONDS,
    )


def wav_url_index(wav_urls: list[str]) -> dict[str, str]:
    """Map upper-cased filename stem (the ISRC) to URL. Later duplicates win."""
    index = {}
    for url in wav_urls:
        name = base_name(url.split("?", 1)[0])
        if name.lower().endswith(".wav"):
            name = name[: -len(".wav")]
        if name:
            index[name.upper()] = url
    return index


def link_direct_upload(
    session: Session,
    http_client: httpx.Client,
    settings: Settings,
    csv_url: str,
    wav_urls: list[str],
    cover_urls: list[str] | None = None,
) -> DirectUploadResult:
    """Create catalog records from a CSV manifest and pre-uploaded files.

    Rows go through the same required-field and duplicate rules as archive
    ingestion. A row whose insert fails is reported in errors and the rest
    continue.

    Args:
        session: Database session. Committed after each created record.
        http_client: Client for the manifest download.
        settings: Runtime settings (duplicate policy).
        csv_url: Manifest URL.
        wav_urls: Uploaded WAV URLs, named {ISRC}.wav.
        cover_urls: Uploaded cover URLs; the first is linked to every record.

    Returns:
        DirectUploadResult.

    Raises:
        ManifestFetchError: Manifest download failed.
        InvalidManifestError: Manifest has no data rows.
    """
    try:
        response = http_client.get(csv_url, timeout=MANIFEST_FETCH_TIMEOUT, follow_redirects=True)
    except httpx.HTTPError as e:
        raise ManifestFetchError(f"Failed to download CSV: {e}") from e
    if not response.is_success:
        raise ManifestFetchError(f"Failed to download CSV: {response.status_code}")

    rows = parse_records(response.text)
    if not rows:
        raise InvalidManifestError("CSV is empty")

    wav_index = wav_url_index(wav_urls)
    cover_url = cover_urls[0] if cover_urls else None

    known_isrcs = snapshot_isrcs(session)
    known_catalog_nos = snapshot_catalog_numbers(session) if settings.dedupe_by_catalog_no else None

    result = DirectUploadResult()
    for row in rows:
        record = map_row(row)
        if not decide_row(record, known_isrcs, known_catalog_nos).accepted:
            result.skipped += 1
            continue

        isrc_key = record.isrc_key
        if isrc_key and isrc_key in wav_index:
            record.wav_url = wav_index[isrc_key]
        if cover_url:
            record.cover_url = cover_url

        try:
            create_track(session, record)
            session.commit()
        except Exception as e:
            session.rollback()
            logger.warning("Direct upload: could not create %r", record.original_title, exc_info=True)
            result.errors.append(f"{record.original_title}: {e}")
            continue

        if isrc_key:
            known_isrcs.add(isrc_key)
        result.created += 1

    logger.info(
        "Direct upload from %s: created=%d skipped=%d errors=%d",
        csv_url,
        result.created,
        result.skipped,
        len(result.errors),
    )
    return result
