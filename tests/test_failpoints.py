"""Tests for failpoint injection and crash behavior of ingestion jobs.

The crash tests run a job in a subprocess with a failpoint armed, then
inspect the database the dead process left behind.
"""

from __future__ import annotations

import os
import subprocess
import sys
import textwrap
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from catalog_ingest.config import REPO_ROOT
from catalog_ingest.db import create_ingestion_job, get_job, update_job
from catalog_ingest.models import Track, utc_now
from catalog_ingest.orchestrator import fail_stale_jobs
from catalog_ingest.utils.failpoints import get_active_failpoint, is_failpoint_enabled, maybe_fail
from conftest import SAMPLE_MANIFEST, SAMPLE_WAV, build_archive

FAILPOINT_ENV = (
    "CATALOG_INGEST_ENABLE_FAILPOINTS",
    "CATALOG_INGEST_FAILPOINT",
    "CATALOG_INGEST_FAILPOINT_EXIT_CODE",
    "CATALOG_INGEST_FAILPOINT_ONCE",
)


@pytest.fixture(autouse=True)
def clean_failpoint_env(monkeypatch):
    for name in FAILPOINT_ENV:
        monkeypatch.delenv(name, raising=False)


class TestMaybeFail:
    """In-process checks with os._exit patched out."""

    def test_disabled_by_default(self):
        with patch("catalog_ingest.utils.failpoints.os._exit") as exit_mock:
            maybe_fail("INGEST_AFTER_CLAIM")
        exit_mock.assert_not_called()
        assert is_failpoint_enabled() is False
        assert get_active_failpoint() is None

    def test_target_without_enable_flag_is_ignored(self, monkeypatch):
        monkeypatch.setenv("CATALOG_INGEST_FAILPOINT", "INGEST_AFTER_CLAIM")
        with patch("catalog_ingest.utils.failpoints.os._exit") as exit_mock:
            maybe_fail("INGEST_AFTER_CLAIM")
        exit_mock.assert_not_called()

    def test_armed_failpoint_exits(self, monkeypatch):
        monkeypatch.setenv("CATALOG_INGEST_ENABLE_FAILPOINTS", "1")
        monkeypatch.setenv("CATALOG_INGEST_FAILPOINT", "failpoint_ingest_after_claim")
        monkeypatch.setenv("CATALOG_INGEST_FAILPOINT_EXIT_CODE", "7")

        assert get_active_failpoint() == "INGEST_AFTER_CLAIM"
        with patch("catalog_ingest.utils.failpoints.os._exit") as exit_mock:
            maybe_fail("INGEST_BEFORE_DONE")
            exit_mock.assert_not_called()
            maybe_fail("INGEST_AFTER_CLAIM")
        exit_mock.assert_called_once_with(7)

    def test_once_clears_target(self, monkeypatch):
        monkeypatch.setenv("CATALOG_INGEST_ENABLE_FAILPOINTS", "1")
        monkeypatch.setenv("CATALOG_INGEST_FAILPOINT", "INGEST_AFTER_CLAIM")
        monkeypatch.setenv("CATALOG_INGEST_FAILPOINT_ONCE", "1")

        with patch("catalog_ingest.utils.failpoints.os._exit") as exit_mock:
            maybe_fail("INGEST_AFTER_CLAIM")
            maybe_fail("INGEST_AFTER_CLAIM")
        assert exit_mock.call_count == 1
        assert "CATALOG_INGEST_FAILPOINT" not in os.environ


# --- Subprocess crash harness ---

# Runs one job against an in-memory store; the archive is served from
# http://files.test so the source is never deleted.
JOB_SCRIPT = textwrap.dedent(
    """
    import sys
    from pathlib import Path

    import httpx

    from catalog_ingest.config import Settings, StorageSettings
    from catalog_ingest.db import init_db
    from catalog_ingest.orchestrator import run_ingestion_job
    from catalog_ingest.utils.object_store import ObjectStoreClient

    db_path, job_id, archive_path = sys.argv[1:4]
    archive = Path(archive_path).read_bytes()

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, content=archive)
        return httpx.Response(200)

    storage = StorageSettings(
        endpoint="http://store.test", access_key="AK", secret_key="SK", bucket="catalog"
    )
    settings = Settings(storage=storage, db_path=Path(db_path))
    _, SessionFactory = init_db(db_path)
    session = SessionFactory()
    with httpx.Client(transport=httpx.MockTransport(handler)) as http_client:
        object_store = ObjectStoreClient(storage, http_client=http_client)
        result = run_ingestion_job(
            session,
            job_id,
            settings=settings,
            object_store=object_store,
            http_client=http_client,
            chain=False,
        )
    print(result["status"])
    """
)


def run_job_subprocess(
    db_path, job_id, archive_path, failpoint: str | None = None, timeout: float = 60.0
) -> subprocess.CompletedProcess:
    """Run JOB_SCRIPT in a subprocess, optionally with a failpoint armed.

    Args:
        db_path: SQLite database path.
        job_id: Job to run.
        archive_path: File holding the archive bytes.
        failpoint: Failpoint name to trigger, or None.
        timeout: Subprocess timeout in seconds.

    Returns:
        CompletedProcess result.
    """
    env = os.environ.copy()
    for name in FAILPOINT_ENV:
        env.pop(name, None)
    if failpoint is not None:
        env["CATALOG_INGEST_ENABLE_FAILPOINTS"] = "1"
        env["CATALOG_INGEST_FAILPOINT"] = failpoint
        env["CATALOG_INGEST_FAILPOINT_EXIT_CODE"] = "42"

    return subprocess.run(
        [sys.executable, "-c", JOB_SCRIPT, str(db_path), job_id, str(archive_path)],
        env=env,
        cwd=str(REPO_ROOT),
        capture_output=True,
        timeout=timeout,
    )


@pytest.fixture
def crash_setup(temp_db, tmp_path):
    """A queued job plus its archive on disk."""
    db_path, _, SessionFactory = temp_db
    archive_path = tmp_path / "release.zip"
    archive_path.write_bytes(
        build_archive({"manifest.csv": SAMPLE_MANIFEST, "AAA000000001.wav": SAMPLE_WAV})
    )

    session = SessionFactory()
    job_id = create_ingestion_job(session, "http://files.test/release.zip").job_id
    session.commit()
    session.close()
    return db_path, SessionFactory, job_id, archive_path


def _state(SessionFactory, job_id):
    session = SessionFactory()
    try:
        job = get_job(session, job_id)
        tracks = session.execute(select(func.count()).select_from(Track)).scalar()
        return job, tracks
    finally:
        session.close()


class TestCrashDuringJob:
    """A killed job leaves its progress visible."""

    def test_crash_after_claim_leaves_processing(self, crash_setup):
        db_path, SessionFactory, job_id, archive_path = crash_setup

        result = run_job_subprocess(db_path, job_id, archive_path, "INGEST_AFTER_CLAIM")

        assert result.returncode == 42, result.stderr.decode()
        job, tracks = _state(SessionFactory, job_id)
        assert job.status == "processing"
        assert job.started_at is not None
        assert tracks == 0

    def test_crash_after_first_track_keeps_it(self, crash_setup):
        db_path, SessionFactory, job_id, archive_path = crash_setup

        result = run_job_subprocess(db_path, job_id, archive_path, "INGEST_AFTER_TRACK_CREATE")

        assert result.returncode == 42, result.stderr.decode()
        job, tracks = _state(SessionFactory, job_id)
        assert job.status == "processing"
        assert job.phase.startswith("Uploading WAV files")
        assert tracks == 1

    def test_rerun_after_crash_does_not_duplicate(self, crash_setup, settings):
        db_path, SessionFactory, job_id, archive_path = crash_setup
        run_job_subprocess(db_path, job_id, archive_path, "INGEST_AFTER_TRACK_CREATE")

        # The dead worker stops reporting; once stale the job is failed
        session = SessionFactory()
        update_job(session, job_id, updated_at=utc_now() - timedelta(hours=1))
        session.commit()
        assert fail_stale_jobs(session, settings) == [job_id]
        session.close()

        result = run_job_subprocess(db_path, job_id, archive_path)

        assert result.returncode == 0, result.stderr.decode()
        job, tracks = _state(SessionFactory, job_id)
        assert job.status == "done"
        assert (job.created_count, job.skipped_count) == (1, 1)
        assert tracks == 2

    def test_crash_before_done_keeps_all_tracks(self, crash_setup):
        db_path, SessionFactory, job_id, archive_path = crash_setup

        result = run_job_subprocess(db_path, job_id, archive_path, "INGEST_BEFORE_DONE")

        assert result.returncode == 42, result.stderr.decode()
        job, tracks = _state(SessionFactory, job_id)
        assert job.status == "processing"
        assert tracks == 2
