"""
Keyring Exceptions.

Every error raised by the package derives from ``KeyringError``.

Security Note:
    Messages never carry passwords, access tokens or key material.
    Callers may log them as-is.
"""


class KeyringError(Exception):
    """Base exception for the credential core."""


class ConfigurationError(KeyringError):
    """Missing, malformed or unusable configuration (including key material)."""


class ValidationError(KeyringError):
    """Caller-supplied input failed validation."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConflictError(KeyringError):
    """A unique value (e.g. an email address) is already registered."""


class CryptoError(KeyringError):
    """A blob could not be decrypted: malformed, tampered or wrong key."""


class StorageError(KeyringError):
    """Durable storage could not be read or written."""


class AuthenticationError(KeyringError):
    """Base for rejected credentials. ``status`` is the HTTP equivalent."""
    status: int = 401


class MissingCredential(AuthenticationError):
    """No bearer credential was presented."""
    status = 401


class InvalidCredential(AuthenticationError):
    """Bearer credential has a bad signature, is malformed or expired."""
    status = 403


class LoginFailed(AuthenticationError):
    """Email and password did not match a registered user."""
    status = 401
