"""Tests for catalog_ingest.config module."""

from pathlib import Path

import pytest

from catalog_ingest.config import (
    DB_PATH,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_STALE_JOB_SECONDS,
    StorageSettings,
    load_settings,
    normalize_endpoint,
)


class TestNormalizeEndpoint:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("minio.example.com:9000", "https://minio.example.com:9000"),
            ("http://localhost:9000/", "http://localhost:9000"),
            ("https://s3.example.com", "https://s3.example.com"),
            ("  ", ""),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_endpoint(raw) == expected

    def test_storage_settings_normalizes_on_creation(self):
        storage = StorageSettings(endpoint="minio.test/", access_key="a", secret_key="s", bucket="b")
        assert storage.endpoint == "https://minio.test"
        assert storage.host == "minio.test"
        assert storage.object_url("/covers/x.jpg") == "https://minio.test/b/covers/x.jpg"


class TestLoadSettings:
    """Tests for load_settings."""

    def test_reads_environment(self):
        settings = load_settings(
            {
                "STORAGE_ENDPOINT": "minio.test:9000",
                "STORAGE_ACCESS_KEY": "AK",
                "STORAGE_SECRET_KEY": "SK",
                "STORAGE_BUCKET": "catalog",
                "STORAGE_REGION": "eu-central-1",
                "ZIP_WEBHOOK_SECRET": "hook",
                "ARCHIVE_FETCH_TIMEOUT_SEC": "12.5",
                "ARCHIVE_EXTRACT_MODE": "EAGER",
                "DEDUPE_BY_CATALOG_NO": "true",
                "PHASE_LOCALE": "hu",
                "JOB_STALE_AFTER_SEC": "120",
                "CATALOG_INGEST_DB_PATH": "/tmp/ingest.db",
            }
        )

        assert settings.storage.endpoint == "https://minio.test:9000"
        assert settings.storage.bucket == "catalog"
        assert settings.storage.region == "eu-central-1"
        assert settings.storage.service == "s3"
        assert settings.webhook_secret == "hook"
        assert settings.fetch_timeout_seconds == 12.5
        assert settings.extract_mode == "eager"
        assert settings.dedupe_by_catalog_no is True
        assert settings.phase_locale == "hu"
        assert settings.stale_job_seconds == 120.0
        assert settings.db_path == Path("/tmp/ingest.db")

    def test_defaults(self):
        settings = load_settings({})

        assert settings.storage.region == "us-east-1"
        assert settings.webhook_secret is None
        assert settings.fetch_timeout_seconds == DEFAULT_FETCH_TIMEOUT_SECONDS
        assert settings.extract_mode == "streaming"
        assert settings.dedupe_by_catalog_no is False
        assert settings.phase_locale == "en"
        assert settings.stale_job_seconds == DEFAULT_STALE_JOB_SECONDS
        assert settings.db_path == DB_PATH

    @pytest.mark.parametrize("value", ["abc", "0", "-3", ""])
    def test_invalid_timeout_falls_back(self, value):
        settings = load_settings({"ARCHIVE_FETCH_TIMEOUT_SEC": value})
        assert settings.fetch_timeout_seconds == DEFAULT_FETCH_TIMEOUT_SECONDS

    def test_invalid_choices_fall_back(self):
        settings = load_settings({"ARCHIVE_EXTRACT_MODE": "lazy", "PHASE_LOCALE": "de"})
        assert settings.extract_mode == "streaming"
        assert settings.phase_locale == "en"

    def test_settings_are_frozen(self):
        settings = load_settings({})
        with pytest.raises(AttributeError):
            settings.phase_locale = "hu"
