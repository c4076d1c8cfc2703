"""Tests for catalog_ingest.utils.hashing module."""

from catalog_ingest.utils.hashing import hmac_sha256, hmac_sha256_hex, sha256_bytes, sha256_text


class TestSha256:
    """Tests for sha256_bytes and sha256_text."""

    def test_empty_bytes(self):
        """Empty bytes should produce known SHA256 hash."""
        # SHA256 of empty input is a well-known constant
        expected = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        assert sha256_bytes(b"") == expected

    def test_known_input(self):
        expected = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"
        assert sha256_bytes(b"hello") == expected

    def test_text_is_utf8(self):
        assert sha256_text("hello") == sha256_bytes(b"hello")
        assert sha256_text("Kész") == sha256_bytes("Kész".encode())


class TestHmac:
    """Tests for HMAC helpers."""

    def test_rfc4231_case_2(self):
        """Key "Jefe" test case from RFC 4231."""
        expected = "5bdcc146bf60754e6a042426089575c75a003f089d2739839dec58b964ec3843"
        assert hmac_sha256_hex(b"Jefe", "what do ya want for nothing?") == expected

    def test_raw_and_hex_agree(self):
        assert hmac_sha256(b"key", "msg").hex() == hmac_sha256_hex(b"key", "msg")
