"""
Vault Configuration — key material model and key generation.

The process uses two independent secrets:
    JWT_SECRET      = <signing key, >= 64 random bytes as hex>
    ENCRYPTION_KEY  = <32-byte AES key as 64 hex characters>

Security Note:
    Never log key material. Only log key names and whether the keys
    are persisted or ephemeral.
"""
import re
import secrets
import logging

from pydantic import BaseModel, SecretStr, field_validator

from ..conf import SIGNING_KEY_NAME, ENCRYPTION_KEY_NAME
from ..utils import redact

logger = logging.getLogger("ledger.vault")

SIGNING_KEY_BYTES = 64
ENCRYPTION_KEY_BYTES = 32
MIN_SIGNING_KEY_LENGTH = 32

HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")

# Values shipped in env templates and docs; never treated as real keys.
PLACEHOLDERS = frozenset({
    "your_jwt_secret_key_here",
    "your_encryption_key_here",
    "your_secret_key_here",
    "insecure_dev_key_change_in_production",
    "changeme",
    "change_me",
    "change-me",
    "secret",
    "placeholder",
})


def is_placeholder(value: str | None) -> bool:
    """True if ``value`` is absent, blank, or a known placeholder."""
    if value is None:
        return True
    stripped = value.strip()
    return not stripped or stripped.lower() in PLACEHOLDERS


def generate_signing_key() -> str:
    """Generate a random signing key (64 bytes of entropy, hex-encoded).

    This is a utility for operators and for first-run provisioning.
    """
    return secrets.token_hex(SIGNING_KEY_BYTES)


def generate_encryption_key() -> str:
    """Generate a random 32-byte encryption key, hex-encoded (64 chars)."""
    return secrets.token_hex(ENCRYPTION_KEY_BYTES)


class KeyMaterial(BaseModel):
    """Validated, immutable key material for one process.

    Built once by ``KeyProvisioner`` and passed by reference to every
    component that needs a key.
    """

    signing_key: SecretStr
    encryption_key: SecretStr
    persisted: bool = True

    model_config = {"frozen": True}

    @field_validator("signing_key")
    @classmethod
    def validate_signing_key(cls, v: SecretStr) -> SecretStr:
        """Reject placeholders; warn on short keys."""
        value = v.get_secret_value().strip()
        if is_placeholder(value):
            raise ValueError(f"{SIGNING_KEY_NAME} is empty or a placeholder")
        if len(value) < MIN_SIGNING_KEY_LENGTH:
            logger.warning(
                "%s is shorter than %d characters; consider regenerating it",
                SIGNING_KEY_NAME, MIN_SIGNING_KEY_LENGTH,
            )
        return SecretStr(value)

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key(cls, v: SecretStr) -> SecretStr:
        """Only the canonical 64-hex-character form is accepted."""
        value = v.get_secret_value().strip()
        if not HEX_KEY.match(value):
            raise ValueError(
                f"{ENCRYPTION_KEY_NAME} must be exactly 64 hexadecimal "
                f"characters (got {redact(value)})"
            )
        return SecretStr(value.lower())

    @property
    def encryption_key_bytes(self) -> bytes:
        return bytes.fromhex(self.encryption_key.get_secret_value())

    @classmethod
    def generate(cls, persisted: bool = False) -> "KeyMaterial":
        """Fresh random key material, ephemeral unless told otherwise."""
        return cls(
            signing_key=SecretStr(generate_signing_key()),
            encryption_key=SecretStr(generate_encryption_key()),
            persisted=persisted,
        )
