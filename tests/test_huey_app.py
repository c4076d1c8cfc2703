"""Tests for catalog_ingest.huey_app enqueue helpers and the queue sweep.

Huey tasks are never enqueued for real: the autouse enqueue_spy fixture
replaces enqueue_ingestion_job.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from catalog_ingest.db import create_ingestion_job, get_job, update_job
from catalog_ingest.huey_app import enqueue_next_queued_job, sweep_queued_jobs
from catalog_ingest.models import utc_now
from catalog_ingest.orchestrator import STALE_JOB_MESSAGE


@pytest.fixture
def session(temp_db):
    _, _, SessionFactory = temp_db
    session = SessionFactory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sweep(settings):
    """Run the periodic sweep in-process against the test database."""
    with patch("catalog_ingest.huey_app.load_settings", return_value=settings):
        yield sweep_queued_jobs.call_local


class TestEnqueueNextQueuedJob:
    """Tests for enqueue_next_queued_job."""

    def test_empty_queue(self, session, enqueue_spy):
        assert enqueue_next_queued_job(session) is None
        enqueue_spy.assert_not_called()

    def test_picks_oldest_queued(self, session, enqueue_spy):
        first = create_ingestion_job(session, "http://files.test/1.zip").job_id
        second = create_ingestion_job(session, "http://files.test/2.zip").job_id
        update_job(session, first, status="done")
        create_ingestion_job(session, "http://files.test/3.zip")
        session.commit()

        assert enqueue_next_queued_job(session) == second
        enqueue_spy.assert_called_once_with(second)


class TestSweepQueuedJobs:
    """The sweep only acts when nothing live is being processed."""

    def test_enqueues_when_idle(self, session, sweep, enqueue_spy):
        job_id = create_ingestion_job(session, "http://files.test/1.zip").job_id
        session.commit()

        assert sweep() == job_id
        enqueue_spy.assert_called_once_with(job_id)

    def test_waits_while_a_job_is_processing(self, session, sweep, enqueue_spy):
        running = create_ingestion_job(session, "http://files.test/1.zip").job_id
        create_ingestion_job(session, "http://files.test/2.zip")
        update_job(session, running, status="processing")
        session.commit()

        assert sweep() is None
        enqueue_spy.assert_not_called()

    def test_nothing_queued(self, session, sweep, enqueue_spy):
        assert sweep() is None
        enqueue_spy.assert_not_called()

    def test_crashed_job_does_not_stall_the_queue(self, session, sweep, enqueue_spy):
        crashed = create_ingestion_job(session, "http://files.test/1.zip").job_id
        waiting = create_ingestion_job(session, "http://files.test/2.zip").job_id
        update_job(
            session, crashed, status="processing", updated_at=utc_now() - timedelta(hours=1)
        )
        session.commit()

        assert sweep() == waiting
        enqueue_spy.assert_called_once_with(waiting)

        session.expire_all()
        job = get_job(session, crashed)
        assert job.status == "error"
        assert job.error_message == STALE_JOB_MESSAGE
