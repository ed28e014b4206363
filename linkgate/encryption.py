"""
Symmetric encryption for gated link destinations.

Gated URLs are stored as ``salt:iv:ciphertext`` (hex segments). The key is
derived per record from the server secret and a random salt with
PBKDF2-HMAC-SHA256, and the URL is encrypted with AES-256-CBC and PKCS7
padding. Every call to ``encrypt`` draws a fresh salt and IV, so the same URL
never produces the same record twice.

``is_encrypted`` is a heuristic used to tolerate legacy rows whose ``url``
column disagrees with their ``token_gated`` flag. It is not an authorization
check: access is decided by the flag and the balance check, never by what the
stored string looks like.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
from typing import Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from linkgate.errors import CipherError, ConfigurationError, DecryptionFailure, MalformedRecord

logger = logging.getLogger(__name__)

SALT_BYTES = 16
IV_BYTES = 16
KEY_BYTES = 32
DEFAULT_ITERATIONS = 1000

_HEX_BLOCK = re.compile(r"[0-9a-fA-F]{32}")
_HEX = re.compile(r"(?:[0-9a-fA-F]{2})+")


class UrlCipher:
    """Password-based AES-CBC cipher for link URLs."""

    def __init__(self, secret: Optional[str], iterations: int = DEFAULT_ITERATIONS):
        if not secret:
            raise ConfigurationError("ENCRYPTION_KEY environment variable is required")
        if iterations < 1:
            raise ConfigurationError("KDF iteration count must be positive")
        self._secret = secret.encode("utf-8")
        self._iterations = iterations

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_BYTES,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(self._secret)

    def encrypt(self, text: str) -> str:
        """Encrypt ``text`` into a ``salt:iv:ciphertext`` record.

        The empty string is the "no URL" sentinel and is returned unchanged.
        """
        if not text:
            return ""

        salt = os.urandom(SALT_BYTES)
        iv = os.urandom(IV_BYTES)
        key = self._derive_key(salt)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(text.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return f"{salt.hex()}:{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, record: str) -> str:
        """Decrypt a record produced by :meth:`encrypt`.

        Raises:
            MalformedRecord: the record is not three well-formed segments.
            DecryptionFailure: wrong secret or corrupted ciphertext.
        """
        if not record:
            return ""

        parts = record.split(":")
        if len(parts) != 3 or not all(parts):
            raise MalformedRecord("Invalid encrypted data format")

        salt_hex, iv_hex, body = parts
        if not _HEX_BLOCK.fullmatch(salt_hex) or not _HEX_BLOCK.fullmatch(iv_hex):
            raise MalformedRecord("Salt and IV must be 128-bit hex values")

        ciphertext = _decode_ciphertext(body)
        if not ciphertext or len(ciphertext) % IV_BYTES:
            raise MalformedRecord("Ciphertext length is not a multiple of the block size")

        key = self._derive_key(bytes.fromhex(salt_hex))
        decryptor = Cipher(algorithms.AES(key), modes.CBC(bytes.fromhex(iv_hex))).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise DecryptionFailure("Invalid padding (wrong key or corrupted data)") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionFailure("Decrypted data is not valid UTF-8") from exc

    def has_record_shape(self, text: Optional[str]) -> bool:
        """Structural check only: three segments with hex salt and IV."""
        if not text:
            return False
        parts = text.split(":")
        if len(parts) != 3 or not parts[2]:
            return False
        return bool(_HEX_BLOCK.fullmatch(parts[0]) and _HEX_BLOCK.fullmatch(parts[1]))

    def is_encrypted(self, text: Optional[str]) -> bool:
        """Heuristic: looks like a record AND actually decrypts to something.

        A plaintext URL such as ``https://example.com/x`` contains a colon but
        fails the structural check. Do not use this for authorization.
        """
        if not self.has_record_shape(text):
            return False
        try:
            return len(self.decrypt(text)) > 0
        except CipherError:
            return False


def _decode_ciphertext(body: str) -> bytes:
    # Records written before the hex format used base64 for the last segment.
    if _HEX.fullmatch(body):
        return bytes.fromhex(body)
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedRecord("Ciphertext is neither hex nor base64") from exc


def seal_url(cipher: UrlCipher, url: Optional[str], token_gated: bool) -> Optional[str]:
    """Return the at-rest form of a link URL.

    Gated links are stored encrypted, ungated links as plaintext. Values that
    are already in the target form are passed through, so re-saving a page
    never double-encrypts.
    """
    if not url:
        return url

    if token_gated:
        if cipher.is_encrypted(url):
            return url
        return cipher.encrypt(url)

    if cipher.is_encrypted(url):
        logger.info("Decrypting URL of link that is no longer token gated")
        return cipher.decrypt(url)
    return url
