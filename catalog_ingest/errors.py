"""Catalog Ingest - Job error taxonomy.

Fatal job errors carry a kind tag:
- TRANSPORT: archive fetch or object store failure
- CONTENT: unusable archive or manifest
- SIGNING: request signing failed (misconfigured credentials, not retryable)

Row-level problems (missing required fields, duplicates) are never raised;
they are counted as skips by the row decision logic.
"""

from __future__ import annotations

from enum import StrEnum


class JobErrorKind(StrEnum):
    """Kind tag for fatal job errors."""

    TRANSPORT = "TRANSPORT"
    CONTENT = "CONTENT"
    SIGNING = "SIGNING"


class JobError(Exception):
    """Base exception for errors that abort an ingestion job."""

    kind: JobErrorKind = JobErrorKind.TRANSPORT

    def __init__(self, message: str, kind: JobErrorKind | None = None):
        if kind is not None:
            self.kind = kind
        self.message = message
        super().__init__(message)


# --- Transport ---


class ArchiveFetchError(JobError):
    """Source archive could not be downloaded."""

    kind = JobErrorKind.TRANSPORT

    def __init__(self, url: str, status_code: int | None = None, reason: str | None = None):
        self.url = url
        self.status_code = status_code
        detail = f"HTTP {status_code}" if status_code is not None else (reason or "request failed")
        super().__init__(f"Failed to download archive {url}: {detail}")


class UploadError(JobError):
    """Object store rejected (or never answered) an upload."""

    kind = JobErrorKind.TRANSPORT

    def __init__(self, path: str, status_code: int, body: str):
        self.path = path
        self.status_code = status_code
        self.body = body
        super().__init__(f"Upload failed for {path}: {status_code} {body}".rstrip())


# --- Content ---


class ArchiveFormatError(JobError):
    """Archive bytes are not a readable ZIP container."""

    kind = JobErrorKind.CONTENT

    def __init__(self, reason: str):
        super().__init__(f"Invalid archive: {reason}")


class MissingManifestError(JobError):
    """Archive holds no CSV manifest."""

    kind = JobErrorKind.CONTENT

    def __init__(self):
        super().__init__("No CSV manifest found in archive")


class EmptyManifestError(JobError):
    """Manifest parsed to zero data rows."""

    kind = JobErrorKind.CONTENT

    def __init__(self):
        super().__init__("CSV manifest is empty")


# --- Signing ---


class SigningError(JobError):
    """Request signing failed. Indicates misconfigured storage credentials."""

    kind = JobErrorKind.SIGNING

    def __init__(self, reason: str):
        super().__init__(f"Request signing failed: {reason}")


# --- Lookup ---


class JobNotFoundError(LookupError):
    """No ingestion job with the given id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Ingestion job not found: {job_id}")


class JobStateError(Exception):
    """Requested transition is not allowed from the job's current status."""

    def __init__(self, job_id: str, status: str, action: str):
        self.job_id = job_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} job {job_id} in status '{status}'")
