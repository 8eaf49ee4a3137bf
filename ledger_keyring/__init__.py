"""Ledger Keyring.

Credential and token lifecycle core of the budget tracker: key
provisioning, encrypted access-token storage, user accounts and
stateless session authentication.
"""
from .version import (
    __title__, __description__, __version__, __author__, __author_email__
)
from .conf import CoreConfig, AuthenticationPolicy, SESSION_IDENTITY
from .exceptions import (
    KeyringError,
    ConfigurationError,
    ValidationError,
    ConflictError,
    CryptoError,
    StorageError,
    AuthenticationError,
    MissingCredential,
    InvalidCredential,
    LoginFailed,
)
from .storage import StorageBackend, JSONFileStorage, MemoryStorage, resolve_within
from .users import UserRecord, UserStore
from .auth import SessionAuthenticator, SessionIdentity
from .vault import CipherService, EncryptedBlob, KeyMaterial, KeyProvisioner, TokenStore
from .core import CredentialCore

__all__ = (
    "CoreConfig",
    "AuthenticationPolicy",
    "SESSION_IDENTITY",
    "KeyringError",
    "ConfigurationError",
    "ValidationError",
    "ConflictError",
    "CryptoError",
    "StorageError",
    "AuthenticationError",
    "MissingCredential",
    "InvalidCredential",
    "LoginFailed",
    "StorageBackend",
    "JSONFileStorage",
    "MemoryStorage",
    "resolve_within",
    "UserRecord",
    "UserStore",
    "SessionAuthenticator",
    "SessionIdentity",
    "CipherService",
    "EncryptedBlob",
    "KeyMaterial",
    "KeyProvisioner",
    "TokenStore",
    "CredentialCore",
)
