"""Catalog Ingest - Configuration.

Filesystem locations are module constants. Storage credentials and runtime
switches are read from the environment exactly once, by load_settings(), and
the resulting Settings object is passed to the components that need it.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote, urlsplit

# Repository root (parent of catalog_ingest/)
REPO_ROOT = Path(__file__).parent.parent.resolve()

DATA_DIR = REPO_ROOT / "data"

# Job + catalog database
DB_PATH = DATA_DIR / "catalog_ingest.db"

# Queue directory and Huey database path
QUEUE_DIR = DATA_DIR / "queue"
HUEY_DB_PATH = QUEUE_DIR / "huey.db"

# Signing scope. Non-AWS stores accept any region string.
DEFAULT_REGION = "us-east-1"
DEFAULT_SERVICE = "s3"

# Archive download timeout. Uploads are unbounded: their duration scales with payload.
DEFAULT_FETCH_TIMEOUT_SECONDS = 30.0

# A processing job whose updated_at is older than this is presumed dead.
# Progress is written at least once per uploaded WAV.
DEFAULT_STALE_JOB_SECONDS = 900.0

# Presigned URL lifetimes
DEFAULT_PRESIGN_EXPIRY_SECONDS = 3600
DIRECT_UPLOAD_PRESIGN_EXPIRY_SECONDS = 7200

# Object key prefixes
ZIP_UPLOAD_PREFIX = "zip-uploads"
COVER_PREFIX = "covers"
WAV_PREFIX = "wav"

EXTRACT_MODE_STREAMING = "streaming"
EXTRACT_MODE_EAGER = "eager"
EXTRACT_MODES = (EXTRACT_MODE_STREAMING, EXTRACT_MODE_EAGER)

PHASE_LOCALES = ("en", "hu")


def _get_float_env(environ: Mapping[str, str], name: str, default: float) -> float:
    """Read a positive float from the environment, falling back to default."""
    env_val = environ.get(name)
    if env_val:
        try:
            value = float(env_val)
            if value > 0:
                return value
        except ValueError:
            pass
    return default


def _get_bool_env(environ: Mapping[str, str], name: str, default: bool = False) -> bool:
    env_val = environ.get(name)
    if env_val is None or env_val.strip() == "":
        return default
    return env_val.strip().lower() in ("1", "true", "yes", "on")


def normalize_endpoint(endpoint: str) -> str:
    """Ensure the endpoint carries a scheme and no trailing slash.

    Bare hosts ("minio.example.com:9000") are assumed to be https.
    """
    endpoint = (endpoint or "").strip()
    if endpoint and not endpoint.startswith(("http://", "https://")):
        endpoint = "https://" + endpoint
    return endpoint.rstrip("/")


@dataclass(frozen=True)
class StorageSettings:
    """Connection details for the S3-compatible object store.

    Path-style addressing only: every object lives at {endpoint}/{bucket}/{key}.
    """

    endpoint: str
    access_key: str
    secret_key: str
    bucket: str
    region: str = DEFAULT_REGION
    service: str = DEFAULT_SERVICE

    def __post_init__(self) -> None:
        object.__setattr__(self, "endpoint", normalize_endpoint(self.endpoint))

    @property
    def host(self) -> str:
        return urlsplit(self.endpoint).netloc

    @property
    def bucket_url(self) -> str:
        return f"{self.endpoint}/{self.bucket}"

    def object_url(self, object_key: str) -> str:
        """Public URL of an object (deterministic, unsigned)."""
        return f"{self.bucket_url}/{object_key.lstrip('/')}"

    def object_key_from_url(self, url: str) -> str | None:
        """Inverse of object_url().

        Returns None when the URL does not point into this bucket, so callers
        never delete objects they do not own.
        """
        try:
            parts = urlsplit(url)
        except ValueError:
            return None
        if parts.netloc != self.host:
            return None
        prefix = f"/{self.bucket}/"
        if not parts.path.startswith(prefix):
            return None
        key = parts.path[len(prefix) :]
        return unquote(key) or None


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, built once at startup."""

    storage: StorageSettings
    webhook_secret: str | None = None
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS
    extract_mode: str = EXTRACT_MODE_STREAMING
    dedupe_by_catalog_no: bool = False
    phase_locale: str = "en"
    stale_job_seconds: float = DEFAULT_STALE_JOB_SECONDS
    db_path: Path = field(default=DB_PATH)


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Args:
        environ: Mapping to read from. Defaults to os.environ.

    Returns:
        Frozen Settings instance.
    """
    env = os.environ if environ is None else environ

    storage = StorageSettings(
        endpoint=env.get("STORAGE_ENDPOINT", ""),
        access_key=env.get("STORAGE_ACCESS_KEY", ""),
        secret_key=env.get("STORAGE_SECRET_KEY", ""),
        bucket=env.get("STORAGE_BUCKET", ""),
        region=env.get("STORAGE_REGION") or DEFAULT_REGION,
    )

    extract_mode = env.get("ARCHIVE_EXTRACT_MODE", EXTRACT_MODE_STREAMING).strip().lower()
    if extract_mode not in EXTRACT_MODES:
        extract_mode = EXTRACT_MODE_STREAMING

    phase_locale = env.get("PHASE_LOCALE", "en").strip().lower()
    if phase_locale not in PHASE_LOCALES:
        phase_locale = "en"

    db_path = env.get("CATALOG_INGEST_DB_PATH")

    return Settings(
        storage=storage,
        webhook_secret=env.get("ZIP_WEBHOOK_SECRET") or None,
        fetch_timeout_seconds=_get_float_env(
            env, "ARCHIVE_FETCH_TIMEOUT_SEC", DEFAULT_FETCH_TIMEOUT_SECONDS
        ),
        extract_mode=extract_mode,
        dedupe_by_catalog_no=_get_bool_env(env, "DEDUPE_BY_CATALOG_NO"),
        phase_locale=phase_locale,
        stale_job_seconds=_get_float_env(env, "JOB_STALE_AFTER_SEC", DEFAULT_STALE_JOB_SECONDS),
        db_path=Path(db_path) if db_path else DB_PATH,
    )
