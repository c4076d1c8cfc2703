"""Catalog Ingest - Hashing utilities.

All hex helpers return HEX DIGEST ONLY (no prefix).
"""

import hashlib
import hmac


def sha256_bytes(data: bytes) -> str:
    """Compute SHA256 hash of bytes.

    Args:
        data: Bytes to hash.

    Returns:
        SHA256 hex digest (64 lowercase hex characters, no prefix).
    """
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    """Compute SHA256 hash of UTF-8 encoded text."""
    return sha256_bytes(text.encode("utf-8"))


def hmac_sha256(key: bytes, message: str) -> bytes:
    """HMAC-SHA256 of a UTF-8 message, raw digest bytes.

    Args:
        key: Raw key bytes.
        message: Text message.

    Returns:
        32-byte digest.
    """
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def hmac_sha256_hex(key: bytes, message: str) -> str:
    """HMAC-SHA256 of a UTF-8 message, hex digest."""
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).hexdigest()
