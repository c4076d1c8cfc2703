"""Catalog Ingest - Job orchestrator.

Drives one ingestion job through its lifecycle:

    queued -> processing -> done | error
    error -> processing (re-trigger)

Entry guard:
- Only queued and error jobs are processed. processing/done jobs are
  reported as skipped and left untouched.
- The transition to processing is a single conditional UPDATE
  (db.claim_job), so two workers racing for the same job cannot both win.

Stale jobs:
- A processing job whose worker died stops updating. fail_stale_jobs()
  moves it to error after settings.stale_job_seconds so the queue moves on
  and the job can be re-triggered.

Progress:
- Every visible state change (claim, phase label, throughput) is committed
  immediately so that pollers see it while the job runs.
- Phase labels are localized (PHASE_LABELS); the audio phase carries
  " - {index}/{total}" while WAVs are uploading.

Failure:
- Any exception from the ingest steps marks the job error with the
  exception message and finish time, then propagates to the caller.

Chaining:
- After a job reaches done, the oldest remaining queued job is enqueued on
  Huey. The enqueue is fire-and-forget; the periodic sweep in huey_app
  covers a lost trigger.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

import httpx

from catalog_ingest.config import Settings, load_settings
from catalog_ingest.db import (
    claim_job,
    fail_stale_job,
    find_stale_jobs,
    get_job,
    init_db,
    update_job,
)
from catalog_ingest.errors import JobNotFoundError
from catalog_ingest.models import (
    JOB_STATUS_DONE,
    JOB_STATUS_ERROR,
    RUNNABLE_JOB_STATUSES,
    utc_now,
)
from catalog_ingest.utils.failpoints import maybe_fail
from catalog_ingest.utils.object_store import ObjectStoreClient

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


# --- Phases ---

PHASE_STARTED = "started"
PHASE_DOWNLOADING = "downloading"
PHASE_UPLOADING_COVER = "uploading_cover"
PHASE_UPLOADING_AUDIO = "uploading_audio"
PHASE_CLEANUP = "cleanup"
PHASE_DONE = "done"
PHASE_ERROR = "error"

PHASE_LABELS: dict[str, dict[str, str]] = {
    "en": {
        PHASE_STARTED: "Archive processing started",
        PHASE_DOWNLOADING: "Downloading and extracting archive",
        PHASE_UPLOADING_COVER: "Uploading cover image",
        PHASE_UPLOADING_AUDIO: "Uploading WAV files",
        PHASE_CLEANUP: "Removing source archive",
        PHASE_DONE: "Done",
        PHASE_ERROR: "Error",
    },
    "hu": {
        PHASE_STARTED: "ZIP feldolgozás kezdődött",
        PHASE_DOWNLOADING: "ZIP letöltése és kicsomagolása",
        PHASE_UPLOADING_COVER: "Borítókép feltöltése",
        PHASE_UPLOADING_AUDIO: "WAV fájlok feltöltése",
        PHASE_CLEANUP: "Forrás ZIP törlése",
        PHASE_DONE: "Kész",
        PHASE_ERROR: "Hiba",
    },
}


def phase_label(phase: str, locale: str = "en", detail: str | None = None) -> str:
    """Human-readable label for a phase code.

    Unknown locales fall back to English, unknown codes to the code itself.

    Args:
        phase: Phase code (PHASE_*).
        locale: Label language.
        detail: Optional suffix, e.g. "3/12".

    Returns:
        The label, with " - {detail}" appended when detail is given.
    """
    labels = PHASE_LABELS.get(locale, PHASE_LABELS["en"])
    label = labels.get(phase, phase)
    if detail:
        label = f"{label} - {detail}"
    return label


# --- Entry Points ---


def process_ingestion_job(job_id: str, settings: Settings | None = None) -> dict:
    """Process one job with freshly built collaborators.

    This is the entry point called by the Huey task and the HTTP process
    endpoint. Opens its own session, HTTP client and object store client.

    Args:
        job_id: Public job identifier.
        settings: Runtime settings. Loaded from the environment if omitted.

    Returns:
        Result dict (see run_ingestion_job).

    Raises:
        JobNotFoundError: If the job does not exist.
        Exception: Whatever aborted the job, after it was marked error.
    """
    if settings is None:
        settings = load_settings()

    _, SessionFactory = init_db(settings.db_path)
    session = SessionFactory()
    try:
        with httpx.Client() as http_client, ObjectStoreClient(
            settings.storage, http_client=http_client
        ) as object_store:
            return run_ingestion_job(
                session,
                job_id,
                settings=settings,
                object_store=object_store,
                http_client=http_client,
            )
    finally:
        session.close()


def run_ingestion_job(
    session: Session,
    job_id: str,
    *,
    settings: Settings,
    object_store: ObjectStoreClient,
    http_client: httpx.Client | None = None,
    chain: bool = True,
) -> dict:
    """Run one job through claim, ingest and terminal state.

    Args:
        session: Database session. Committed after each visible change.
        job_id: Public job identifier.
        settings: Runtime settings.
        object_store: Client for uploads and cleanup.
        http_client: Client for the archive download. Defaults to a
            short-lived private client.
        chain: Enqueue the next queued job after success.

    Returns:
        {"status": "skipped", "job_id", "reason"} when the job was not
        runnable, otherwise
        {"status": "done", "job_id", "created", "skipped", "upload_mbps"}.

    Raises:
        JobNotFoundError: If the job does not exist.
    """
    job = get_job(session, job_id)
    if job is None:
        raise JobNotFoundError(job_id)

    if job.status not in RUNNABLE_JOB_STATUSES:
        logger.info("Job %s is %s, skipping", job_id, job.status)
        return _skipped(job_id, f"already_{job.status}")

    if not claim_job(session, job_id, phase=phase_label(PHASE_STARTED, settings.phase_locale)):
        session.rollback()
        logger.info("Job %s was claimed by another worker, skipping", job_id)
        return _skipped(job_id, "claimed_elsewhere")
    session.commit()
    logger.info("Job %s claimed (file_url=%s)", job_id, job.file_url)

    maybe_fail("INGEST_AFTER_CLAIM")

    if http_client is None:
        with httpx.Client() as private_client:
            result = _run_claimed(session, job_id, settings, object_store, private_client)
    else:
        result = _run_claimed(session, job_id, settings, object_store, http_client)

    if chain:
        _enqueue_next_queued_job_safe(session)
    return result


def _skipped(job_id: str, reason: str) -> dict:
    return {"status": "skipped", "job_id": job_id, "reason": reason}


def _run_claimed(
    session: Session,
    job_id: str,
    settings: Settings,
    object_store: ObjectStoreClient,
    http_client: httpx.Client,
) -> dict:
    """Ingest a claimed job and write its terminal state."""
    # Import here to avoid circular imports
    from services.worker_ingest.run import ingest_archive

    locale = settings.phase_locale

    def report_progress(
        phase: str, detail: str | None = None, upload_mbps: float | None = None
    ) -> None:
        fields = {"phase": phase_label(phase, locale, detail), "updated_at": utc_now()}
        if upload_mbps is not None:
            fields["upload_mbps"] = upload_mbps
        update_job(session, job_id, **fields)
        session.commit()

    try:
        job = get_job(session, job_id)
        result = ingest_archive(
            session,
            job,
            object_store=object_store,
            settings=settings,
            http_client=http_client,
            progress=report_progress,
        )
        maybe_fail("INGEST_BEFORE_DONE")

        upload_mbps = result.metrics.upload_mbps
        now = utc_now()
        update_job(
            session,
            job_id,
            status=JOB_STATUS_DONE,
            phase=phase_label(PHASE_DONE, locale),
            created_count=result.created,
            skipped_count=result.skipped,
            upload_mbps=upload_mbps,
            finished_at=now,
            updated_at=now,
        )
        session.commit()
    except Exception as e:
        session.rollback()
        logger.exception("Job %s failed", job_id)
        _mark_job_failed(session, job_id, str(e) or e.__class__.__name__, locale)
        raise

    logger.info(
        "Job %s done: created=%d skipped=%d upload_mbps=%s",
        job_id,
        result.created,
        result.skipped,
        upload_mbps,
    )
    if result.skip_reasons:
        logger.info("Job %s skip reasons: %s", job_id, dict(result.skip_reasons))

    return {
        "status": "done",
        "job_id": job_id,
        "created": result.created,
        "skipped": result.skipped,
        "upload_mbps": upload_mbps,
    }


def _mark_job_failed(session: Session, job_id: str, message: str, locale: str) -> None:
    """Record the failure on the job. A failure to record is logged, not raised."""
    now = utc_now()
    try:
        update_job(
            session,
            job_id,
            status=JOB_STATUS_ERROR,
            phase=phase_label(PHASE_ERROR, locale),
            error_message=message,
            finished_at=now,
            updated_at=now,
        )
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("Could not mark job %s as failed", job_id, exc_info=True)


def _enqueue_next_queued_job_safe(session: Session) -> None:
    """Chain to the next queued job. Never raises."""
    try:
        # Import here to avoid circular imports
        from catalog_ingest.huey_app import enqueue_next_queued_job

        enqueue_next_queued_job(session)
    except Exception:
        logger.warning("Could not enqueue next queued job", exc_info=True)


# --- Stale Jobs ---

STALE_JOB_MESSAGE = "Worker stopped reporting progress; job presumed dead"


def fail_stale_jobs(session: Session, settings: Settings, job_id: str | None = None) -> list[str]:
    """Mark processing jobs that stopped updating as error.

    A job's updated_at advances with every phase and WAV upload, so a job
    silent for settings.stale_job_seconds lost its worker. The job keeps
    the tracks it created; re-triggering it skips them as duplicates.

    Args:
        session: Database session. Committed when anything changed.
        settings: Runtime settings (threshold and phase locale).
        job_id: Only consider this job. Defaults to every processing job.

    Returns:
        job_ids that were marked failed.
    """
    stale_before = utc_now() - timedelta(seconds=settings.stale_job_seconds)
    if job_id is None:
        candidates = [job.job_id for job in find_stale_jobs(session, stale_before)]
    else:
        candidates = [job_id]

    failed = []
    phase = phase_label(PHASE_ERROR, settings.phase_locale)
    for candidate in candidates:
        if fail_stale_job(session, candidate, stale_before, STALE_JOB_MESSAGE, phase=phase):
            logger.warning(
                "Job %s had no progress for %.0fs, marked error", candidate, settings.stale_job_seconds
            )
            failed.append(candidate)

    if failed:
        session.commit()
    return failed
