"""Catalog Ingest - S3-compatible object store client.

Moves bytes to the store with requests signed by RequestSigner:
- upload(): signed PUT, fatal on failure
- delete(): signed DELETE, best-effort (never raises)
- presigned_put(): URL for client-side direct upload
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

import httpx

from catalog_ingest.config import DEFAULT_PRESIGN_EXPIRY_SECONDS, StorageSettings
from catalog_ingest.errors import UploadError
from catalog_ingest.utils.signing import RequestSigner, encode_object_path

logger = logging.getLogger(__name__)

# Upload duration scales with payload size, so no read/write timeout.
UPLOAD_TIMEOUT = httpx.Timeout(None, connect=30.0)

DELETE_TIMEOUT = httpx.Timeout(30.0)


@dataclass
class UploadResult:
    """Outcome of one upload, with transfer telemetry."""

    url: str
    byte_count: int
    duration_ms: int


@dataclass
class PresignedUpload:
    """Presigned PUT for a client-side upload."""

    upload_url: str
    asset_url: str
    object_key: str


def throughput_mbps(total_bytes: int, total_ms: int) -> float | None:
    """Megabits per second for a transfer, rounded to 2 places.

    Returns:
        None if no time was measured.
    """
    if total_ms <= 0:
        return None
    return round((total_bytes * 8 / 1e6) / (total_ms / 1000), 2)


class ObjectStoreClient:
    """Client for one bucket of an S3-compatible store.

    Args:
        storage: Endpoint, bucket and credentials.
        http_client: httpx client to send with. A private one is created if omitted.
        signer: Request signer. Built from storage if omitted.
    """

    def __init__(
        self,
        storage: StorageSettings,
        http_client: httpx.Client | None = None,
        signer: RequestSigner | None = None,
    ):
        self.storage = storage
        self.signer = signer or RequestSigner(storage)
        self._http = http_client or httpx.Client()
        self._owns_http = http_client is None

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> ObjectStoreClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def object_url(self, path: str) -> str:
        return self.storage.object_url(encode_object_path(path))

    def upload(self, data: bytes, path: str, content_type: str) -> UploadResult:
        """Upload bytes to path.

        Args:
            data: Object content.
            path: Object key inside the bucket.
            content_type: MIME type stored with the object.

        Returns:
            UploadResult with the public URL, byte count and wall-clock duration.

        Raises:
            SigningError: If the request cannot be signed (nothing is sent).
            UploadError: On transport failure or a non-2xx response.
        """
        signed = self.signer.sign("PUT", path, data, content_type)

        started = time.monotonic()
        try:
            response = self._http.put(
                signed.url, headers=signed.headers, content=data, timeout=UPLOAD_TIMEOUT
            )
        except httpx.HTTPError as e:
            raise UploadError(path, 0, str(e)) from e
        duration_ms = int((time.monotonic() - started) * 1000)

        if not response.is_success:
            raise UploadError(path, response.status_code, response.text)

        logger.debug("Uploaded %s (%d bytes, %d ms)", path, len(data), duration_ms)
        return UploadResult(
            url=self.object_url(path),
            byte_count=len(data),
            duration_ms=duration_ms,
        )

    def delete(self, path: str) -> bool:
        """Delete an object, best-effort.

        Never raises: deletion is cleanup and must not fail the caller.

        Returns:
            True if the store acknowledged the delete.
        """
        try:
            signed = self.signer.sign("DELETE", path, b"", "application/octet-stream")
            response = self._http.delete(signed.url, headers=signed.headers, timeout=DELETE_TIMEOUT)
        except Exception:
            logger.warning("Delete failed for %s (non-fatal)", path, exc_info=True)
            return False

        if not response.is_success:
            logger.warning(
                "Delete of %s returned HTTP %d (non-fatal)", path, response.status_code
            )
            return False
        return True

    def presigned_put(
        self,
        path: str,
        content_type: str | None = None,
        expires_seconds: int = DEFAULT_PRESIGN_EXPIRY_SECONDS,
    ) -> PresignedUpload:
        """Mint a presigned PUT URL for a client-side upload.

        Raises:
            SigningError: If the URL cannot be signed.
        """
        upload_url = self.signer.presign(path, content_type=content_type, expires_seconds=expires_seconds)
        return PresignedUpload(
            upload_url=upload_url,
            asset_url=self.object_url(path),
            object_key=path,
        )
