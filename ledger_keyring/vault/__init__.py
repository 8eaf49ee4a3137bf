"""Vault — key material, token encryption and encrypted token storage.

Security Note (Threat Model):
    Decrypted access tokens exist in process memory while a caller uses
    them. A memory dump of the application process could expose them,
    as well as the encryption key. This is an accepted limitation;
    mitigation requires HSM/secure enclave integration which is out of scope.
"""

from .config import KeyMaterial, generate_signing_key, generate_encryption_key
from .crypto import CipherService, EncryptedBlob, normalize_key
from .provisioning import KeyProvisioner, ensure_keys
from .token_store import TokenStore

__all__ = [
    "KeyMaterial",
    "generate_signing_key",
    "generate_encryption_key",
    "CipherService",
    "EncryptedBlob",
    "normalize_key",
    "KeyProvisioner",
    "ensure_keys",
    "TokenStore",
]
