"""Catalog Ingest - Utility modules."""

from catalog_ingest.utils.archive import (
    ExtractedArchiveContents,
    extract_archive,
    extract_archive_stream,
)
from catalog_ingest.utils.field_mapping import TrackRecord, decide_row, map_row, normalize_row
from catalog_ingest.utils.hashing import hmac_sha256, sha256_bytes, sha256_text
from catalog_ingest.utils.object_store import ObjectStoreClient, UploadResult, throughput_mbps
from catalog_ingest.utils.signing import RequestSigner, derive_signing_key
from catalog_ingest.utils.tabular import parse_records

__all__ = [
    # archive
    "ExtractedArchiveContents",
    "extract_archive",
    "extract_archive_stream",
    # field_mapping
    "TrackRecord",
    "decide_row",
    "map_row",
    "normalize_row",
    # hashing
    "hmac_sha256",
    "sha256_bytes",
    "sha256_text",
    # object_store
    "ObjectStoreClient",
    "UploadResult",
    "throughput_mbps",
    # signing
    "RequestSigner",
    "derive_signing_key",
    # tabular
    "parse_records",
]
