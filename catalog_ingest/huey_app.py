"""Catalog Ingest - Huey task queue configuration.

Huey setup with SQLite backend, so queued jobs survive restarts without a
separate broker.

How to run:
1. Start the jobs API:
   uvicorn services.jobs_api.main:app --reload

2. Start the Huey consumer (processes queued tasks and runs the sweep):
   huey_consumer.py catalog_ingest.huey_app.huey

Jobs are processed one at a time in creation order: a finished job enqueues
the next queued one, and sweep_queued_jobs() picks up anything a lost
trigger left behind. The sweep also fails jobs whose worker died, so one
crash does not stall the queue.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from huey import SqliteHuey, crontab

from catalog_ingest.config import HUEY_DB_PATH, QUEUE_DIR, load_settings
from catalog_ingest.db import count_jobs_in_status, find_next_queued_job, init_db
from catalog_ingest.models import JOB_STATUS_PROCESSING

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _ensure_queue_dir() -> None:
    """Ensure the queue directory exists."""
    Path(QUEUE_DIR).mkdir(parents=True, exist_ok=True)


_ensure_queue_dir()

huey = SqliteHuey(
    name="catalog_ingest",
    filename=str(HUEY_DB_PATH),
    immediate=False,
)


@huey.task()
def process_ingestion_job_task(job_id: str) -> dict:
    """Huey task to process one ingestion job.

    Args:
        job_id: Public job identifier.

    Returns:
        Orchestrator result dict.
    """
    # Import here to avoid circular imports
    from catalog_ingest.orchestrator import process_ingestion_job

    logger.info("Ingestion task started for job_id=%s", job_id)
    result = process_ingestion_job(job_id)
    logger.info("Ingestion task completed for job_id=%s: %s", job_id, result)
    return result


@huey.periodic_task(crontab(minute="*"))
def sweep_queued_jobs() -> str | None:
    """Fail stale jobs, then enqueue the oldest queued job when nothing is running.

    A job whose worker died stays processing until it goes stale; after that
    it is marked error and no longer holds up the queue.

    Returns:
        The enqueued job_id, or None.
    """
    # Import here to avoid circular imports
    from catalog_ingest.orchestrator import fail_stale_jobs

    settings = load_settings()
    _, SessionFactory = init_db(settings.db_path)
    session = SessionFactory()
    try:
        fail_stale_jobs(session, settings)
        if count_jobs_in_status(session, JOB_STATUS_PROCESSING) > 0:
            return None
        return enqueue_next_queued_job(session)
    finally:
        session.close()


def enqueue_ingestion_job(job_id: str) -> None:
    """Enqueue a job for processing.

    Non-blocking: returns immediately even if the Huey consumer is not running.
    The task is persisted in SQLite and processed when the consumer starts.
    """
    logger.info("Enqueueing ingestion job_id=%s", job_id)
    process_ingestion_job_task(job_id)


def enqueue_next_queued_job(session: Session) -> str | None:
    """Enqueue the oldest queued job, if any.

    Returns:
        The enqueued job_id, or None when the queue is empty.
    """
    job = find_next_queued_job(session)
    if job is None:
        logger.debug("No queued jobs to chain to")
        return None
    enqueue_ingestion_job(job.job_id)
    return job.job_id
