"""Catalog Ingest - Pydantic models for API validation.

Request/response models for the jobs API. Used by FastAPI for runtime
validation and for the generated OpenAPI document.
"""

from datetime import datetime  # noqa: I001

from pydantic import BaseModel, ConfigDict, Field


# --- Request Models ---


class CreateJobRequest(BaseModel):
    """Register an uploaded archive for ingestion."""

    model_config = ConfigDict(extra="forbid")

    file_url: str = Field(..., min_length=1, description="Location of the uploaded ZIP archive")
    file_name: str | None = Field(default=None, description="Original archive filename")
    file_size_mb: float | None = Field(default=None, ge=0, description="Archive size in MB")


class ProgressUpdateRequest(BaseModel):
    """Merge-patch of a job's progress fields.

    Only fields present in the body are written. Unknown fields are ignored,
    so reporters may send more than this endpoint stores.
    """

    model_config = ConfigDict(extra="ignore")

    job_id: str = Field(..., min_length=1, description="Job to update")
    phase: str | None = Field(default=None, description="Human-readable phase label")
    upload_mbps: float | None = Field(default=None, ge=0, description="Upload throughput, Mbit/s")


class PresignRequest(BaseModel):
    """Ask for a presigned PUT URL for a client-side archive upload."""

    model_config = ConfigDict(extra="forbid")

    file_name: str = Field(..., min_length=1, description="Archive filename (sanitized into the key)")
    content_type: str | None = Field(
        default=None,
        description="Content-Type the client will send; signed into the URL when given",
    )


class DirectUploadRequest(BaseModel):
    """Link already-uploaded files to catalog records without an archive."""

    model_config = ConfigDict(extra="forbid")

    csv_url: str = Field(..., min_length=1, description="URL of the CSV manifest")
    wav_urls: list[str] = Field(
        ...,
        min_length=1,
        description="WAV file URLs; matched to rows by filename stem (ISRC)",
    )
    cover_urls: list[str] = Field(
        default_factory=list,
        description="Cover image URLs; the first one is used for every record",
    )


# --- Response Models ---


class JobResponse(BaseModel):
    """Ingestion job as seen by pollers."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    file_url: str
    file_name: str | None = None
    file_size_mb: float | None = None
    status: str = Field(..., description="queued | processing | done | error")
    phase: str | None = Field(default=None, description="Current phase label")
    upload_mbps: float | None = None
    created_count: int = 0
    skipped_count: int = 0
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    updated_at: datetime | None = None


class ProcessJobResponse(BaseModel):
    """Outcome of a synchronous process call."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(..., description="done | skipped")
    job_id: str
    reason: str | None = Field(default=None, description="Why the job was skipped")
    created: int | None = None
    skipped: int | None = None
    upload_mbps: float | None = None


class ProgressUpdateResponse(BaseModel):
    """Acknowledgement of a progress patch."""

    model_config = ConfigDict(extra="forbid")

    success: bool = True
    job_id: str


class PresignResponse(BaseModel):
    """Presigned upload target."""

    model_config = ConfigDict(extra="forbid")

    upload_url: str = Field(..., description="Presigned PUT URL")
    asset_url: str = Field(..., description="Unsigned URL of the object once uploaded")
    object_key: str = Field(..., description="Object key within the bucket")


class DirectUploadResponse(BaseModel):
    """Result of direct-upload linking."""

    model_config = ConfigDict(extra="forbid")

    created: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list, description="Per-row creation failures")


class ErrorResponse(BaseModel):
    """Response for failed operations."""

    model_config = ConfigDict(extra="forbid")

    status: str = Field(default="error", description="Operation status")
    error_code: str = Field(..., description="Machine-readable error code")
    error_message: str = Field(..., description="Human-readable error description")
