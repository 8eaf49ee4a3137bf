"""
Vault Crypto Core — symmetric encryption of access tokens at rest.

Blob format (text, as stored in the token table):
    "<iv hex>:<ciphertext+tag hex>"

- IV: random 96-bit nonce, fresh for every encryption.
- Ciphertext: AEAD output (AES-256-GCM by default, ChaCha20-Poly1305
  optionally), so any modification fails authentication.

Security Note:
    Never log plaintext, ciphertext or key values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import re
import logging
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import ConfigurationError, CryptoError
from .config import HEX_KEY, KeyMaterial

logger = logging.getLogger("ledger.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256
DELIMITER = ":"

CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}

_LOWER_HEX = re.compile(r"^[0-9a-f]+$")


def normalize_key(key: str | bytes) -> bytes:
    """Return the raw 32-byte key.

    Args:
        key: 64 hexadecimal characters, or exactly 32 raw bytes.

    Raises:
        ConfigurationError: For any other shape. Keys are never truncated
            or padded.
    """
    if isinstance(key, (bytes, bytearray)):
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(
                f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}"
            )
        return bytes(key)
    if isinstance(key, str) and HEX_KEY.match(key.strip()):
        return bytes.fromhex(key.strip())
    raise ConfigurationError(
        "Encryption key must be exactly 64 hexadecimal characters"
    )


@dataclass(frozen=True)
class EncryptedBlob:
    """An ``(iv, ciphertext)`` pair. ``str(blob)`` is the stored form."""

    iv: bytes
    ciphertext: bytes

    def __str__(self) -> str:
        return f"{self.iv.hex()}{DELIMITER}{self.ciphertext.hex()}"

    def __repr__(self) -> str:
        return f"<EncryptedBlob iv={len(self.iv)}B ciphertext={len(self.ciphertext)}B>"

    @classmethod
    def parse(cls, text: str) -> "EncryptedBlob":
        """Parse the stored ``ivHex:cipherHex`` form.

        Raises:
            CryptoError: If the text is not a well-formed blob.
        """
        if not isinstance(text, str):
            raise CryptoError("Encrypted blob must be a string")
        parts = text.split(DELIMITER)
        if len(parts) != 2:
            raise CryptoError("Malformed encrypted blob: expected one delimiter")
        iv_hex, ct_hex = parts
        for name, value in (("iv", iv_hex), ("ciphertext", ct_hex)):
            if not value or not _LOWER_HEX.match(value):
                raise CryptoError(f"Malformed encrypted blob: {name} is not hex")
            if len(value) % 2:
                raise CryptoError(f"Malformed encrypted blob: odd-length {name}")
        iv = bytes.fromhex(iv_hex)
        ciphertext = bytes.fromhex(ct_hex)
        if len(iv) != NONCE_SIZE:
            raise CryptoError(
                f"Malformed encrypted blob: iv must be {NONCE_SIZE} bytes, "
                f"got {len(iv)}"
            )
        if len(ciphertext) < TAG_SIZE:
            raise CryptoError(
                f"Malformed encrypted blob: ciphertext too short "
                f"({len(ciphertext)} bytes, minimum {TAG_SIZE})"
            )
        return cls(iv=iv, ciphertext=ciphertext)


class CipherService:
    """Encrypts and decrypts opaque secret strings with one process-wide key.

    Stateless apart from the key, so one instance can be shared across
    tasks and threads.
    """

    def __init__(self, key: str | bytes, backend: str = "aesgcm"):
        try:
            self._cipher_cls = CIPHERS[backend]
        except KeyError:
            raise ConfigurationError(f"Unsupported cipher backend: {backend}") from None
        self._key = normalize_key(key)
        self.backend = backend

    def __repr__(self) -> str:
        return f"<CipherService backend={self.backend}>"

    @classmethod
    def from_keys(cls, keys: KeyMaterial, backend: str = "aesgcm") -> "CipherService":
        return cls(keys.encryption_key_bytes, backend=backend)

    def encrypt(self, plaintext: str) -> EncryptedBlob:
        """Encrypt ``plaintext`` under a fresh random IV.

        Args:
            plaintext: Secret string (e.g. a provider access token).

        Returns:
            EncryptedBlob; identical plaintexts never share a blob.
        """
        if not isinstance(plaintext, str):
            raise TypeError("plaintext must be a str")
        nonce = os.urandom(NONCE_SIZE)
        ct = self._cipher_cls(self._key).encrypt(
            nonce, plaintext.encode("utf-8"), None,
        )
        return EncryptedBlob(iv=nonce, ciphertext=ct)

    def decrypt(self, blob: EncryptedBlob | str) -> str:
        """Decrypt a blob produced by ``encrypt``.

        Args:
            blob: EncryptedBlob or its stored string form.

        Returns:
            The original plaintext.

        Raises:
            CryptoError: If the blob is malformed, was encrypted under another
                key, or was modified.
        """
        if not isinstance(blob, EncryptedBlob):
            blob = EncryptedBlob.parse(blob)
        try:
            data = self._cipher_cls(self._key).decrypt(blob.iv, blob.ciphertext, None)
        except InvalidTag:
            raise CryptoError(
                "Decryption failed: wrong key or tampered data"
            ) from None
        except ValueError as err:
            raise CryptoError(f"Decryption failed: {err}") from None
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            raise CryptoError("Decryption failed: plaintext is not UTF-8") from None
