"""Catalog Ingest - Object store request signing.

Scoped HMAC chain (AWS Signature Version 4) for S3-compatible stores,
implemented directly on hashlib/hmac so no vendor SDK is needed.

Signing key derivation:
    kDate    = HMAC("AWS4" + secret, date_stamp)
    kRegion  = HMAC(kDate, region)
    kService = HMAC(kRegion, service)
    kSigning = HMAC(kService, "aws4_request")

Two outputs:
- sign(): Authorization header for a request sent by this process
- presign(): X-Amz-* query parameters for a URL handed to someone else

Any failure raises SigningError. Callers must not send the request then.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import quote

from catalog_ingest.config import DEFAULT_PRESIGN_EXPIRY_SECONDS, StorageSettings
from catalog_ingest.errors import SigningError
from catalog_ingest.utils.hashing import hmac_sha256, hmac_sha256_hex, sha256_bytes, sha256_text

ALGORITHM = "AWS4-HMAC-SHA256"
SCOPE_TERMINATOR = "aws4_request"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"

# Header-signed requests always sign this set (lowercase, sorted)
HEADER_SIGNED_HEADERS = "content-type;host;x-amz-content-sha256;x-amz-date"

# Store-side ceiling for presigned URL lifetime (7 days)
MAX_PRESIGN_EXPIRY_SECONDS = 604800


@dataclass
class SignedRequest:
    """A signed request ready to send."""

    url: str
    headers: dict[str, str]


def derive_signing_key(secret: str, date_stamp: str, region: str, service: str) -> bytes:
    """Derive the date/region/service scoped signing key.

    Args:
        secret: Secret access key.
        date_stamp: UTC date as YYYYMMDD.
        region: Region name (any non-empty string for non-AWS stores).
        service: Service name, "s3" for object stores.

    Returns:
        32-byte signing key.
    """
    k_date = hmac_sha256(("AWS4" + secret).encode("utf-8"), date_stamp)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, service)
    return hmac_sha256(k_service, SCOPE_TERMINATOR)


def encode_object_path(object_path: str) -> str:
    """URI-encode an object key for use in the request path ('/' kept)."""
    return quote(object_path.lstrip("/"), safe="/-_.~")


def canonical_query_string(params: Mapping[str, str]) -> str:
    """Encode query parameters sorted by key.

    The store recomputes the signature over the sorted form, so an unsorted
    query string produces a signature mismatch.
    """
    return "&".join(
        f"{quote(key, safe='-_.~')}={quote(str(value), safe='-_.~')}"
        for key, value in sorted(params.items())
    )


def _timestamps(now: datetime) -> tuple[str, str]:
    """Return (amz_date, date_stamp) at second granularity."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    now = now.astimezone(UTC)
    return now.strftime("%Y%m%dT%H%M%SZ"), now.strftime("%Y%m%d")


class RequestSigner:
    """Signs object store requests for one bucket.

    Args:
        storage: Endpoint, bucket and credentials.
        clock: Returns the current time. Defaults to datetime.now(UTC).
    """

    def __init__(
        self,
        storage: StorageSettings,
        clock: Callable[[], datetime] | None = None,
    ):
        self.storage = storage
        self._clock = clock or (lambda: datetime.now(UTC))

    def _check_credentials(self) -> None:
        if not isinstance(self.storage.secret_key, str) or not self.storage.secret_key.strip():
            raise SigningError("storage secret key is not configured")
        if not isinstance(self.storage.access_key, str) or not self.storage.access_key.strip():
            raise SigningError("storage access key is not configured")
        if not self.storage.host:
            raise SigningError("storage endpoint is not configured")

    def _credential_scope(self, date_stamp: str) -> str:
        return f"{date_stamp}/{self.storage.region}/{self.storage.service}/{SCOPE_TERMINATOR}"

    def _signature(self, date_stamp: str, amz_date: str, canonical_request: str) -> str:
        string_to_sign = "\n".join(
            [
                ALGORITHM,
                amz_date,
                self._credential_scope(date_stamp),
                sha256_text(canonical_request),
            ]
        )
        signing_key = derive_signing_key(
            self.storage.secret_key, date_stamp, self.storage.region, self.storage.service
        )
        return hmac_sha256_hex(signing_key, string_to_sign)

    def sign(
        self,
        method: str,
        object_path: str,
        body: bytes | None,
        content_type: str,
        now: datetime | None = None,
    ) -> SignedRequest:
        """Sign a request with an Authorization header.

        Args:
            method: HTTP method ("PUT", "DELETE").
            object_path: Object key inside the bucket.
            body: Request body (None or b"" for an empty body).
            content_type: Content-Type header value (signed).
            now: Signing time override. Defaults to the clock.

        Returns:
            SignedRequest with the object URL and headers to send.

        Raises:
            SigningError: On missing credentials or invalid input.
        """
        try:
            self._check_credentials()
            amz_date, date_stamp = _timestamps(now or self._clock())
            payload = bytes(body) if body is not None else b""
            payload_hash = sha256_bytes(payload)

            canonical_uri = f"/{self.storage.bucket}/{encode_object_path(object_path)}"
            canonical_headers = (
                f"content-type:{content_type}\n"
                f"host:{self.storage.host}\n"
                f"x-amz-content-sha256:{payload_hash}\n"
                f"x-amz-date:{amz_date}\n"
            )
            canonical_request = "\n".join(
                [
                    method.upper(),
                    canonical_uri,
                    "",
                    canonical_headers,
                    HEADER_SIGNED_HEADERS,
                    payload_hash,
                ]
            )
            signature = self._signature(date_stamp, amz_date, canonical_request)
        except SigningError:
            raise
        except (TypeError, ValueError, AttributeError, UnicodeError) as e:
            raise SigningError(str(e)) from e

        credential = f"{self.storage.access_key}/{self._credential_scope(date_stamp)}"
        return SignedRequest(
            url=f"{self.storage.endpoint}{canonical_uri}",
            headers={
                "Content-Type": content_type,
                "x-amz-date": amz_date,
                "x-amz-content-sha256": payload_hash,
                "Authorization": (
                    f"{ALGORITHM} Credential={credential}, "
                    f"SignedHeaders={HEADER_SIGNED_HEADERS}, Signature={signature}"
                ),
            },
        )

    def presign(
        self,
        object_path: str,
        content_type: str | None = None,
        expires_seconds: int = DEFAULT_PRESIGN_EXPIRY_SECONDS,
        method: str = "PUT",
        now: datetime | None = None,
    ) -> str:
        """Build a pre-authorized URL for a single request.

        When content_type is given it is signed too, and the uploader must
        send exactly that Content-Type header.

        Args:
            object_path: Object key inside the bucket.
            content_type: Optional Content-Type to bind into the signature.
            expires_seconds: URL lifetime (1 .. 604800).
            method: HTTP method the URL is valid for.
            now: Signing time override. Defaults to the clock.

        Returns:
            Presigned URL.

        Raises:
            SigningError: On missing credentials or invalid input.
        """
        try:
            self._check_credentials()
            expires = int(expires_seconds)
            if not 1 <= expires <= MAX_PRESIGN_EXPIRY_SECONDS:
                raise SigningError(f"expiry must be 1..{MAX_PRESIGN_EXPIRY_SECONDS}s, got {expires}")

            amz_date, date_stamp = _timestamps(now or self._clock())
            if content_type:
                signed_headers = "content-type;host"
                canonical_headers = f"content-type:{content_type}\nhost:{self.storage.host}\n"
            else:
                signed_headers = "host"
                canonical_headers = f"host:{self.storage.host}\n"

            params = {
                "X-Amz-Algorithm": ALGORITHM,
                "X-Amz-Credential": (
                    f"{self.storage.access_key}/{self._credential_scope(date_stamp)}"
                ),
                "X-Amz-Date": amz_date,
                "X-Amz-Expires": str(expires),
                "X-Amz-SignedHeaders": signed_headers,
            }
            query = canonical_query_string(params)

            canonical_uri = f"/{self.storage.bucket}/{encode_object_path(object_path)}"
            canonical_request = "\n".join(
                [
                    method.upper(),
                    canonical_uri,
                    query,
                    canonical_headers,
                    signed_headers,
                    UNSIGNED_PAYLOAD,
                ]
            )
            signature = self._signature(date_stamp, amz_date, canonical_request)
        except SigningError:
            raise
        except (TypeError, ValueError, AttributeError, UnicodeError) as e:
            raise SigningError(str(e)) from e

        return f"{self.storage.endpoint}{canonical_uri}?{query}&X-Amz-Signature={signature}"
