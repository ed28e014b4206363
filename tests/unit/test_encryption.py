"""
Unit tests for the URL cipher.
"""

import base64

import pytest

from linkgate.encryption import UrlCipher, seal_url
from linkgate.errors import CipherError, ConfigurationError, DecryptionFailure, MalformedRecord


class TestUrlCipher:
    """Encrypt/decrypt behaviour."""

    def test_decrypt_returns_original_text(self, cipher):
        for text in ["https://example.com/x", "a", "ünïcødé ✓", "x" * 500]:
            assert cipher.decrypt(cipher.encrypt(text)) == text

    def test_encrypt_is_non_deterministic(self, cipher):
        first = cipher.encrypt("https://example.com/x")
        second = cipher.encrypt("https://example.com/x")

        assert first != second
        assert first.split(":")[0] != second.split(":")[0]  # fresh salt
        assert first.split(":")[1] != second.split(":")[1]  # fresh IV

    def test_record_layout(self, cipher):
        salt, iv, body = cipher.encrypt("https://example.com/x").split(":")

        assert len(salt) == 32
        assert len(iv) == 32
        assert len(body) % 32 == 0
        bytes.fromhex(salt + iv + body)

    def test_empty_string_is_passed_through(self, cipher):
        assert cipher.encrypt("") == ""
        assert cipher.decrypt("") == ""

    def test_missing_secret_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            UrlCipher("")
        with pytest.raises(ConfigurationError):
            UrlCipher(None)

    def test_wrong_secret_fails_to_decrypt(self, cipher):
        record = cipher.encrypt("https://example.com/x")
        other = UrlCipher("a-different-secret")

        # A wrong key almost always breaks the padding; on the rare chance it
        # doesn't, the plaintext still must not match.
        try:
            assert other.decrypt(record) != "https://example.com/x"
        except DecryptionFailure:
            pass

    @pytest.mark.parametrize(
        "record",
        [
            "nocolons",
            "only:two",
            "a:b:c:d",
            "::",
            "zz" * 16 + ":" + "00" * 16 + ":" + "00" * 16,
            "00" * 16 + ":" + "00" * 8 + ":" + "00" * 16,
            "00" * 16 + ":" + "00" * 16 + ":" + "00" * 15,
        ],
    )
    def test_malformed_records(self, cipher, record):
        with pytest.raises(MalformedRecord):
            cipher.decrypt(record)

    def test_corrupted_ciphertext(self, cipher):
        salt, iv, body = cipher.encrypt("https://example.com/x").split(":")
        flipped = body[:-2] + ("00" if body[-2:] != "00" else "ff")

        try:
            assert cipher.decrypt(f"{salt}:{iv}:{flipped}") != "https://example.com/x"
        except DecryptionFailure:
            pass

    def test_legacy_base64_ciphertext(self, cipher):
        salt, iv, body = cipher.encrypt("https://legacy.example.com").split(":")
        legacy = f"{salt}:{iv}:{base64.b64encode(bytes.fromhex(body)).decode()}"

        assert cipher.decrypt(legacy) == "https://legacy.example.com"

    def test_iteration_count_is_part_of_the_key(self):
        record = UrlCipher("secret", iterations=1000).encrypt("https://example.com/x")

        assert UrlCipher("secret", iterations=1000).decrypt(record) == "https://example.com/x"
        try:
            assert UrlCipher("secret", iterations=2000).decrypt(record) != "https://example.com/x"
        except DecryptionFailure:
            pass


class TestIsEncrypted:
    """The encryption check is a heuristic for legacy rows, not an access check."""

    def test_plaintext_url_is_not_encrypted(self, cipher):
        assert cipher.is_encrypted("https://example.com/x") is False

    def test_cipher_output_is_encrypted(self, cipher):
        assert cipher.is_encrypted(cipher.encrypt("https://example.com/x")) is True

    def test_empty_and_none(self, cipher):
        assert cipher.is_encrypted("") is False
        assert cipher.is_encrypted(None) is False

    def test_shape_alone_is_not_enough(self, cipher):
        lookalike = "ab" * 16 + ":" + "cd" * 16 + ":" + "ef" * 16
        try:
            decrypted = cipher.decrypt(lookalike)
        except CipherError:
            decrypted = ""

        assert cipher.has_record_shape(lookalike) is True
        assert cipher.is_encrypted(lookalike) is bool(decrypted)

    def test_url_with_two_colons_is_not_a_record(self, cipher):
        assert cipher.has_record_shape("https://example.com:8080/x") is False
        assert cipher.is_encrypted("https://example.com:8080/x") is False


class TestSealUrl:
    """At-rest form chosen by the token-gated flag."""

    def test_gated_url_is_encrypted(self, cipher):
        sealed = seal_url(cipher, "https://example.com/x", token_gated=True)

        assert sealed != "https://example.com/x"
        assert cipher.decrypt(sealed) == "https://example.com/x"

    def test_gated_url_is_not_double_encrypted(self, cipher):
        once = seal_url(cipher, "https://example.com/x", token_gated=True)

        assert seal_url(cipher, once, token_gated=True) == once

    def test_ungated_url_stays_plaintext(self, cipher):
        assert seal_url(cipher, "https://example.com/x", token_gated=False) == "https://example.com/x"

    def test_ungating_decrypts(self, cipher):
        record = cipher.encrypt("https://example.com/x")

        assert seal_url(cipher, record, token_gated=False) == "https://example.com/x"

    def test_missing_url(self, cipher):
        assert seal_url(cipher, None, token_gated=True) is None
        assert seal_url(cipher, "", token_gated=True) == ""
