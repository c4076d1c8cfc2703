"""Shared pytest fixtures for Catalog Ingest tests.

This module contains common fixtures used across multiple test files:
a temporary database, settings pointing at a fake object store, an httpx
client whose transport is that fake store, archive builders and the FastAPI
test client.
"""

import io
import tempfile
import zipfile
from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from catalog_ingest.config import Settings, StorageSettings
from catalog_ingest.db import init_db
from catalog_ingest.utils.object_store import ObjectStoreClient
from services.jobs_api.main import (
    app,
    get_db_session,
    get_http_client,
    get_settings,
    override_session_factory,
)

STORE_ENDPOINT = "http://store.test"
STORE_BUCKET = "catalog"
WEBHOOK_SECRET = "hook-secret"

SAMPLE_MANIFEST = (
    "Original Title,ISRC,Catalog No.,Genre,Composer\n"
    "Song A,AAA000000001,CAT001,Pop,Someone\n"
    "Song B,AAA000000002,CAT001,Pop,\n"
)

# Minimal RIFF header; content is never decoded
SAMPLE_WAV = b"RIFF\x24\x00\x00\x00WAVEfmt " + b"\x00" * 32

SAMPLE_JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 16


class FakeObjectStore:
    """In-memory S3-compatible store served through httpx.MockTransport.

    Requests to the store host operate on ``objects`` keyed by URL path
    ("/catalog/wav/X.wav"). Requests to any other host are answered from
    ``remote`` keyed by full URL. Every request is recorded.
    """

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.remote: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.fail_puts_with: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host != "store.test":
            body = self.remote.get(str(request.url))
            if body is None:
                return httpx.Response(404, text="not found")
            return httpx.Response(200, content=body)

        path = request.url.path
        if request.method == "PUT":
            if self.fail_puts_with is not None:
                return httpx.Response(self.fail_puts_with, text="store unavailable")
            self.objects[path] = request.read()
            return httpx.Response(200)
        if request.method == "DELETE":
            self.objects.pop(path, None)
            return httpx.Response(204)
        if request.method == "GET":
            if path not in self.objects:
                return httpx.Response(404, text="NoSuchKey")
            return httpx.Response(200, content=self.objects[path])
        return httpx.Response(405)

    def put_object(self, key: str, data: bytes) -> str:
        """Seed an object and return its URL."""
        self.objects[f"/{STORE_BUCKET}/{key}"] = data
        return f"{STORE_ENDPOINT}/{STORE_BUCKET}/{key}"

    def has_object(self, key: str) -> bool:
        return f"/{STORE_BUCKET}/{key}" in self.objects

    def requests_with_method(self, method: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method]


def build_archive(members: dict[str, bytes | str]) -> bytes:
    """Build ZIP bytes from a {member_name: content} mapping, in order."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in members.items():
            zf.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def temp_db():
    """Create a temporary database for testing.

    Creates an isolated SQLite database in a temporary directory.
    The database is cleaned up after the test completes.

    Yields:
        tuple: (db_path, engine, SessionFactory)
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        engine, SessionFactory = init_db(db_path)
        override_session_factory(SessionFactory)
        yield db_path, engine, SessionFactory
        engine.dispose()


@pytest.fixture
def storage_settings():
    """Storage settings for the fake store."""
    return StorageSettings(
        endpoint=STORE_ENDPOINT,
        access_key="AKIDEXAMPLE",
        secret_key="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY",
        bucket=STORE_BUCKET,
    )


@pytest.fixture
def settings(temp_db, storage_settings):
    """Settings bound to the temp database and fake store."""
    db_path, _, _ = temp_db
    return Settings(storage=storage_settings, webhook_secret=WEBHOOK_SECRET, db_path=db_path)


@pytest.fixture
def fake_store():
    return FakeObjectStore()


@pytest.fixture
def http_client(fake_store):
    """httpx client whose every request is answered by the fake store."""
    with httpx.Client(transport=httpx.MockTransport(fake_store.handler)) as client:
        yield client


@pytest.fixture
def object_store(storage_settings, http_client):
    return ObjectStoreClient(storage_settings, http_client=http_client)


@pytest.fixture
def sample_archive():
    """Archive with a manifest, one matching WAV and a cover, under a folder."""
    return build_archive(
        {
            "release/": b"",
            "release/manifest.csv": SAMPLE_MANIFEST,
            "release/AAA000000001.wav": SAMPLE_WAV,
            "release/cover.jpg": SAMPLE_JPEG,
            "release/notes.txt": "ignored",
        }
    )


@pytest.fixture
def client(temp_db, settings, http_client):
    """Create a FastAPI test client with temp database and fake store.

    Overrides the database, settings and outbound HTTP dependencies.
    The dependency overrides are cleared after the test completes.

    Yields:
        tuple: (test_client, SessionFactory)
    """
    db_path, engine, SessionFactory = temp_db

    def get_test_session():
        session = SessionFactory()
        try:
            yield session
        finally:
            session.close()

    def get_test_http_client():
        yield http_client

    app.dependency_overrides[get_db_session] = get_test_session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_http_client] = get_test_http_client

    with TestClient(app) as client:
        yield client, SessionFactory

    # Clean up dependency overrides
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def enqueue_spy():
    """Keep tests off the real Huey queue; records enqueued job ids."""
    with patch("catalog_ingest.huey_app.enqueue_ingestion_job") as spy:
        yield spy


@pytest.fixture
def make_archive():
    return build_archive
