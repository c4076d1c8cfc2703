"""Catalog Ingest - Archive Ingest Worker.

Turns one uploaded ZIP archive into catalog records.

Input: IngestionJob.file_url (ZIP with one CSV manifest, WAVs named by ISRC,
optional cover image)
Output: covers/{catalog_no}.{jpg|png} and wav/{isrc}.wav in the object store,
one Track per accepted manifest row

Steps:
1. Download the archive (bounded timeout) into a spooled temp file
2. Extract manifest, audio and cover
3. Upload the cover under the first row's catalog number
4. Snapshot known ISRCs once, then per row in manifest order: decide,
   upload matching WAV, create the track, commit
5. Best-effort delete of the source archive

Tracks are committed one at a time. A run that dies half way leaves the
created tracks in place and a requeued run skips them as duplicates.

Job status transitions are NOT handled here; see catalog_ingest.orchestrator.
"""

from __future__ import annotations

import logging
import tempfile
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import IO, TYPE_CHECKING

import httpx

from catalog_ingest.config import (
    COVER_PREFIX,
    EXTRACT_MODE_EAGER,
    WAV_PREFIX,
    Settings,
)
from catalog_ingest.db import create_track, snapshot_catalog_numbers, snapshot_isrcs
from catalog_ingest.errors import ArchiveFetchError, EmptyManifestError, MissingManifestError
from catalog_ingest.orchestrator import (
    PHASE_CLEANUP,
    PHASE_DOWNLOADING,
    PHASE_UPLOADING_AUDIO,
    PHASE_UPLOADING_COVER,
)
from catalog_ingest.utils.archive import (
    ExtractedArchiveContents,
    extract_archive,
    extract_archive_stream,
)
from catalog_ingest.utils.failpoints import maybe_fail
from catalog_ingest.utils.field_mapping import (
    FIELD_ALIASES,
    decide_row,
    map_row,
    resolve_field,
)
from catalog_ingest.utils.object_store import ObjectStoreClient, UploadResult, throughput_mbps
from catalog_ingest.utils.tabular import parse_records

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from catalog_ingest.models import IngestionJob

logger = logging.getLogger(__name__)

# --- Constants ---

# Archives up to this size stay in memory while downloading; larger ones spill to disk
ARCHIVE_SPOOL_MAX_BYTES = 16 * 1024 * 1024

DOWNLOAD_CHUNK_BYTES = 1024 * 1024

# Cover object name when the first row has no catalog number
UNKNOWN_CATALOG_NO = "unknown"

WAV_CONTENT_TYPE = "audio/wav"

# progress(phase_code, detail=None, upload_mbps=None)
ProgressCallback = Callable[..., None]


# --- Result Types ---


@dataclass
class IngestMetrics:
    """Cumulative upload telemetry for one job."""

    bytes_uploaded: int = 0
    upload_ms: int = 0
    files_uploaded: int = 0

    def add(self, upload: UploadResult) -> None:
        self.bytes_uploaded += upload.byte_count
        self.upload_ms += upload.duration_ms
        self.files_uploaded += 1

    @property
    def upload_mbps(self) -> float | None:
        return throughput_mbps(self.bytes_uploaded, self.upload_ms)


@dataclass
class IngestResult:
    """Outcome of a successful archive ingest."""

    created: int = 0
    skipped: int = 0
    cover_url: str | None = None
    metrics: IngestMetrics = field(default_factory=IngestMetrics)
    skip_reasons: Counter = field(default_factory=Counter)


def _no_progress(phase: str, detail: str | None = None, upload_mbps: float | None = None) -> None:
    pass


# --- Steps ---


def fetch_archive(url: str, http_client: httpx.Client, timeout_seconds: float) -> IO[bytes]:
    """Download the archive into a spooled temporary file.

    Args:
        url: Archive URL.
        http_client: httpx client.
        timeout_seconds: Per-operation timeout for connect and reads.

    Returns:
        Temp file positioned at 0. Caller closes it.

    Raises:
        ArchiveFetchError: On transport failure or a non-2xx response.
    """
    spool = tempfile.SpooledTemporaryFile(max_size=ARCHIVE_SPOOL_MAX_BYTES)
    try:
        with http_client.stream(
            "GET", url, timeout=httpx.Timeout(timeout_seconds), follow_redirects=True
        ) as response:
            if not response.is_success:
                raise ArchiveFetchError(url, status_code=response.status_code)
            for chunk in response.iter_bytes(DOWNLOAD_CHUNK_BYTES):
                spool.write(chunk)
    except ArchiveFetchError:
        spool.close()
        raise
    except httpx.HTTPError as e:
        spool.close()
        raise ArchiveFetchError(url, reason=str(e) or e.__class__.__name__) from e

    spool.seek(0)
    return spool


def extract_contents(archive_file: IO[bytes], extract_mode: str) -> ExtractedArchiveContents:
    """Extract with the configured strategy."""
    if extract_mode == EXTRACT_MODE_EAGER:
        return extract_archive(archive_file.read())
    return extract_archive_stream(archive_file)


def delete_source_archive(object_store: ObjectStoreClient, file_url: str) -> bool:
    """Delete the uploaded archive if it lives in our bucket. Never raises."""
    object_key = object_store.storage.object_key_from_url(file_url)
    if object_key is None:
        logger.debug("Source archive %s is outside the bucket, not deleting", file_url)
        return False
    return object_store.delete(object_key)


def ingest_archive(
    session: Session,
    job: IngestionJob,
    *,
    object_store: ObjectStoreClient,
    settings: Settings,
    http_client: httpx.Client,
    progress: ProgressCallback = _no_progress,
) -> IngestResult:
    """Run the archive-to-catalog steps for a claimed job.

    Note:
        Commits the session after every created track.

    Args:
        session: Active database session.
        job: The job being processed (already in processing status).
        object_store: Store client for cover/WAV uploads and cleanup.
        settings: Runtime settings.
        http_client: httpx client for the archive download.
        progress: Called with a phase code, optional detail and throughput.

    Returns:
        IngestResult with created/skipped counts and upload metrics.

    Raises:
        ArchiveFetchError: Download failed.
        ArchiveFormatError: Not a readable ZIP.
        MissingManifestError: No CSV in the archive.
        EmptyManifestError: CSV has no data rows.
        UploadError / SigningError: Object store failure.
    """
    # 1-2. Download and extract
    progress(PHASE_DOWNLOADING)
    archive_file = fetch_archive(job.file_url, http_client, settings.fetch_timeout_seconds)
    try:
        contents = extract_contents(archive_file, settings.extract_mode)
    finally:
        archive_file.close()

    if contents.csv_text is None:
        raise MissingManifestError()
    rows = parse_records(contents.csv_text)
    if not rows:
        raise EmptyManifestError()

    logger.info(
        "Job %s: manifest has %d rows, %d audio files, cover=%s",
        job.job_id,
        len(rows),
        len(contents.wav_files),
        contents.cover_type or "none",
    )

    # 3. Cover, named after the release of the first row
    result = IngestResult()
    progress(PHASE_UPLOADING_COVER)
    catalog_no = resolve_field(rows[0], FIELD_ALIASES["catalog_no"]) or UNKNOWN_CATALOG_NO
    if contents.cover_bytes is not None:
        cover_path = f"{COVER_PREFIX}/{catalog_no}.{contents.cover_extension}"
        result.cover_url = object_store.upload(
            contents.cover_bytes, cover_path, contents.cover_content_type
        ).url
        contents.cover_bytes = None

    # 4. Rows, in manifest order
    known_isrcs = snapshot_isrcs(session)
    known_catalog_nos = snapshot_catalog_numbers(session) if settings.dedupe_by_catalog_no else None

    progress(PHASE_UPLOADING_AUDIO)
    total = len(rows)
    for index, row in enumerate(rows, start=1):
        record = map_row(row)
        decision = decide_row(record, known_isrcs, known_catalog_nos)
        if not decision.accepted:
            result.skipped += 1
            result.skip_reasons[decision.reason] += 1
            logger.debug("Job %s: row %d skipped (%s)", job.job_id, index, decision.reason)
            continue

        isrc_key = record.isrc_key
        wav_data = contents.wav_files.pop(isrc_key, None) if isrc_key else None
        if wav_data is not None:
            upload = object_store.upload(
                wav_data, f"{WAV_PREFIX}/{record.isrc.strip()}.wav", WAV_CONTENT_TYPE
            )
            record.wav_url = upload.url
            result.metrics.add(upload)
            progress(
                PHASE_UPLOADING_AUDIO,
                detail=f"{index}/{total}",
                upload_mbps=result.metrics.upload_mbps,
            )

        if result.cover_url:
            record.cover_url = result.cover_url

        create_track(session, record, source_job_id=job.job_id)
        session.commit()
        if isrc_key:
            known_isrcs.add(isrc_key)
        result.created += 1

        maybe_fail("INGEST_AFTER_TRACK_CREATE")

    if contents.wav_files:
        logger.info(
            "Job %s: %d audio files matched no created row", job.job_id, len(contents.wav_files)
        )

    # 5. Cleanup
    progress(PHASE_CLEANUP)
    delete_source_archive(object_store, job.file_url)

    return result
