"""Catalog Ingest - Jobs API FastAPI application.

HTTP surface of the ingestion pipeline:
- job registration, listing and polling
- synchronous processing of one job (serverless-handler style)
- operator requeue of failed or stale jobs
- progress webhook for external reporters (bearer shared secret)
- presigned archive uploads and direct-upload linking

Queued jobs are normally processed by the Huey consumer; this module does
NOT contain orchestration logic, it calls catalog_ingest.orchestrator.

Run with:
    uvicorn services.jobs_api.main:app --reload  # dev server only
"""

from __future__ import annotations

import hmac
import logging
from contextlib import asynccontextmanager
from typing import Annotated

import httpx
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from catalog_ingest.config import Settings, load_settings
from catalog_ingest.db import init_db, list_jobs
from catalog_ingest.errors import JobNotFoundError, JobStateError, SigningError
from catalog_ingest.models import JOB_STATUSES
from catalog_ingest.orchestrator import run_ingestion_job
from catalog_ingest.schemas import (
    CreateJobRequest,
    DirectUploadRequest,
    DirectUploadResponse,
    ErrorResponse,
    JobResponse,
    PresignRequest,
    PresignResponse,
    ProcessJobResponse,
    ProgressUpdateRequest,
    ProgressUpdateResponse,
)
from catalog_ingest.utils.object_store import ObjectStoreClient
from services.jobs_api.service import (
    ApiError,
    ApiErrorCode,
    apply_progress_update,
    create_job,
    link_direct_upload,
    load_job,
    presign_archive_upload,
    requeue,
)

logger = logging.getLogger(__name__)

# --- Settings ---

# Module-level settings (loaded on first use, overridable for tests)
_settings: Settings | None = None


def get_settings() -> Settings:
    """Dependency that provides process settings."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


# --- Database Setup ---

# Module-level session factory (initialized on startup)
_session_factory = None


def get_session_factory():
    """Get the session factory.

    Raises:
        RuntimeError: If session factory not initialized (app lifespan not invoked).
    """
    global _session_factory
    if _session_factory is None:
        raise RuntimeError("Session factory not initialized. App lifespan not invoked?")
    return _session_factory


def get_db_session():
    """Dependency that provides a database session."""
    SessionFactory = get_session_factory()
    session = SessionFactory()
    try:
        yield session
    finally:
        session.close()


# --- Outbound HTTP ---


def get_http_client():
    """Dependency that provides a request-scoped httpx client."""
    with httpx.Client() as client:
        yield client


def get_object_store(
    settings: Annotated[Settings, Depends(get_settings)],
    http_client: Annotated[httpx.Client, Depends(get_http_client)],
) -> ObjectStoreClient:
    """Dependency that provides an object store client sharing the request's httpx client."""
    return ObjectStoreClient(settings.storage, http_client=http_client)


# --- Lifespan ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler. Initializes the database on startup."""
    global _session_factory
    if _session_factory is None:
        _, _session_factory = init_db(get_settings().db_path)
    yield


# --- FastAPI App ---


app = FastAPI(
    title="Catalog Ingest - Jobs API",
    description="Archive ingestion jobs, progress reporting and upload helpers.",
    version="0.1.0",
    lifespan=lifespan,
)


# --- Error Handling ---


class UnauthorizedError(ApiError):
    """Missing or wrong bearer token."""

    error_code = ApiErrorCode.UNAUTHORIZED

    def __init__(self):
        super().__init__("Unauthorized")


_STATUS_BY_ERROR_CODE = {
    ApiErrorCode.JOB_NOT_FOUND: 404,
    ApiErrorCode.INVALID_STATE: 409,
    ApiErrorCode.UNAUTHORIZED: 401,
    ApiErrorCode.NOTHING_TO_UPDATE: 400,
    ApiErrorCode.INVALID_MANIFEST: 422,
    ApiErrorCode.FETCH_FAILED: 502,
}


def error_code_to_status(error_code: str) -> int:
    """Map error codes to HTTP status codes. Unlisted codes are server errors."""
    return _STATUS_BY_ERROR_CODE.get(error_code, 500)


def make_error_response(error_code: str, error_message: str) -> JSONResponse:
    """Create a JSON error response."""
    return JSONResponse(
        status_code=error_code_to_status(error_code),
        content=ErrorResponse(
            error_code=error_code,
            error_message=error_message,
        ).model_dump(),
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return make_error_response(exc.error_code, exc.message)


def require_webhook_secret(
    settings: Annotated[Settings, Depends(get_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Dependency that checks the progress webhook's bearer token.

    Rejects everything when no secret is configured.
    """
    token = (authorization or "").removeprefix("Bearer ").strip()
    secret = settings.webhook_secret
    if not token or not secret or not hmac.compare_digest(token.encode(), secret.encode()):
        raise UnauthorizedError()


def _not_found(job_id: str) -> JSONResponse:
    return make_error_response(ApiErrorCode.JOB_NOT_FOUND, f"Job not found: {job_id}")


_ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Job not found"},
}


# --- Endpoints ---


@app.get("/health", summary="Health check")
def health_check():
    """Simple health check endpoint."""
    return {"status": "ok"}


@app.post(
    "/v1/jobs",
    response_model=JobResponse,
    status_code=201,
    summary="Register an uploaded archive",
    description="Create a queued ingestion job and hand it to the work queue.",
)
def create_job_endpoint(
    request: CreateJobRequest,
    session: Annotated[Session, Depends(get_db_session)],
):
    job = create_job(
        session,
        file_url=request.file_url,
        file_name=request.file_name,
        file_size_mb=request.file_size_mb,
    )
    return JobResponse.model_validate(job)


@app.get("/v1/jobs", response_model=list[JobResponse], summary="List jobs, newest first")
def list_jobs_endpoint(
    session: Annotated[Session, Depends(get_db_session)],
    status: Annotated[str | None, Query(description="Filter by job status")] = None,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
):
    if status is not None and status not in JOB_STATUSES:
        return []
    return [JobResponse.model_validate(job) for job in list_jobs(session, status=status, limit=limit)]


@app.post(
    "/v1/jobs/progress",
    response_model=ProgressUpdateResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Nothing to update"},
        401: {"model": ErrorResponse, "description": "Missing or wrong bearer token"},
        **_ERROR_RESPONSES,
    },
    summary="Report job progress",
    description="Merge-patch phase and/or upload throughput onto a job.",
    dependencies=[Depends(require_webhook_secret)],
)
def report_progress(
    request: ProgressUpdateRequest,
    session: Annotated[Session, Depends(get_db_session)],
):
    try:
        apply_progress_update(
            session, request.job_id, phase=request.phase, upload_mbps=request.upload_mbps
        )
    except JobNotFoundError:
        return _not_found(request.job_id)
    except ApiError as e:
        return make_error_response(e.error_code, e.message)
    return ProgressUpdateResponse(job_id=request.job_id)


@app.get(
    "/v1/jobs/{job_id}",
    response_model=JobResponse,
    responses=_ERROR_RESPONSES,
    summary="Get one job",
)
def get_job_endpoint(
    job_id: str,
    session: Annotated[Session, Depends(get_db_session)],
):
    try:
        return JobResponse.model_validate(load_job(session, job_id))
    except JobNotFoundError:
        return _not_found(job_id)


@app.post(
    "/v1/jobs/{job_id}/process",
    response_model=ProcessJobResponse,
    responses={
        **_ERROR_RESPONSES,
        500: {"model": ErrorResponse, "description": "Job failed"},
    },
    summary="Process a job now",
    description=(
        "Run the job synchronously. Queued and failed jobs run; processing and "
        "done jobs are reported as skipped with a 200."
    ),
)
def process_job_endpoint(
    job_id: str,
    session: Annotated[Session, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    http_client: Annotated[httpx.Client, Depends(get_http_client)],
    object_store: Annotated[ObjectStoreClient, Depends(get_object_store)],
):
    try:
        result = run_ingestion_job(
            session,
            job_id,
            settings=settings,
            object_store=object_store,
            http_client=http_client,
        )
    except JobNotFoundError:
        return _not_found(job_id)
    except Exception as e:
        # Already logged and recorded on the job by the orchestrator
        return make_error_response(ApiErrorCode.JOB_FAILED, str(e) or e.__class__.__name__)
    return ProcessJobResponse(**result)


@app.post(
    "/v1/jobs/{job_id}/requeue",
    response_model=JobResponse,
    responses={
        **_ERROR_RESPONSES,
        409: {"model": ErrorResponse, "description": "Job is done or still running"},
    },
    summary="Retry a job",
    description=(
        "Enqueue a queued or failed job again. A processing job is accepted only "
        "after it stopped reporting progress, and is marked error first."
    ),
)
def requeue_job_endpoint(
    job_id: str,
    session: Annotated[Session, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    try:
        job = requeue(session, settings, job_id)
    except JobNotFoundError:
        return _not_found(job_id)
    except JobStateError as e:
        return make_error_response(ApiErrorCode.INVALID_STATE, str(e))
    return JobResponse.model_validate(job)


@app.post(
    "/v1/uploads/presign",
    response_model=PresignResponse,
    responses={500: {"model": ErrorResponse, "description": "Signing failed"}},
    summary="Presigned archive upload",
    description="Mint a presigned PUT URL under zip-uploads/ for a client-side upload.",
)
def presign_upload_endpoint(
    request: PresignRequest,
    object_store: Annotated[ObjectStoreClient, Depends(get_object_store)],
):
    try:
        presigned = presign_archive_upload(
            object_store, request.file_name, content_type=request.content_type
        )
    except SigningError as e:
        logger.exception("Presign failed for %s", request.file_name)
        return make_error_response(ApiErrorCode.INTERNAL_ERROR, e.message)
    return PresignResponse(
        upload_url=presigned.upload_url,
        asset_url=presigned.asset_url,
        object_key=presigned.object_key,
    )


@app.post(
    "/v1/uploads/direct",
    response_model=DirectUploadResponse,
    responses={
        422: {"model": ErrorResponse, "description": "Manifest is empty"},
        502: {"model": ErrorResponse, "description": "Manifest download failed"},
    },
    summary="Link pre-uploaded files",
    description=(
        "Create catalog records from a CSV manifest, linking WAV files by "
        "ISRC filename and the first cover image."
    ),
)
def direct_upload_endpoint(
    request: DirectUploadRequest,
    session: Annotated[Session, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    http_client: Annotated[httpx.Client, Depends(get_http_client)],
):
    try:
        result = link_direct_upload(
            session,
            http_client,
            settings,
            csv_url=request.csv_url,
            wav_urls=request.wav_urls,
            cover_urls=request.cover_urls,
        )
    except ApiError as e:
        return make_error_response(e.error_code, e.message)
    except Exception:
        # Log full exception server-side, return generic message to client
        logger.exception("Unexpected error during direct upload")
        return make_error_response(
            ApiErrorCode.INTERNAL_ERROR,
            "An unexpected error occurred during direct upload",
        )
    return DirectUploadResponse(created=result.created, skipped=result.skipped, errors=result.errors)


# --- For testing: allow overriding session factory and settings ---


def override_session_factory(factory):
    """Override the session factory for testing."""
    global _session_factory
    _session_factory = factory


def override_settings(settings: Settings | None):
    """Override process settings for testing."""
    global _settings
    _settings = settings
