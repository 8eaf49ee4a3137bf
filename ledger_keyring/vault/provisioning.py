"""
Vault Key Provisioning — make sure signing and encryption keys exist.

Runs once at process start, before any store or authenticator is built.
Missing or placeholder keys are generated and merged into the dotenv
configuration file; valid keys are never regenerated (that would make every
stored token and outstanding session unrecoverable).

If the configuration file cannot be read or written the process falls back
to ephemeral keys for this run (single-user local deployments). Anything
encrypted under an ephemeral key is lost on restart. Multi-instance
deployments must set ``allow_ephemeral_keys=False`` to fail instead.

Security Note:
    Key values are never logged. Only key names and file paths are.
"""
import os
import logging
from pathlib import Path
from collections.abc import Mapping

from dotenv import dotenv_values, set_key
from pydantic import SecretStr, ValidationError

from ..conf import SIGNING_KEY_NAME, ENCRYPTION_KEY_NAME
from ..exceptions import ConfigurationError
from ..storage import FILE_MODE
from .config import (
    KeyMaterial,
    is_placeholder,
    generate_signing_key,
    generate_encryption_key,
)

logger = logging.getLogger("ledger.vault")

_KEY_NAMES = (SIGNING_KEY_NAME, ENCRYPTION_KEY_NAME)
_GENERATORS = {
    SIGNING_KEY_NAME: generate_signing_key,
    ENCRYPTION_KEY_NAME: generate_encryption_key,
}


class KeyProvisioner:
    """One-shot provisioning of the process key material."""

    def __init__(
        self,
        config_path: str | Path,
        allow_ephemeral: bool = True,
        environ: Mapping[str, str] | None = None,
    ):
        self.config_path = Path(config_path)
        self.allow_ephemeral = allow_ephemeral
        self._environ = os.environ if environ is None else environ
        self._material: KeyMaterial | None = None

    @property
    def provisioned(self) -> bool:
        return self._material is not None

    # ------------------------------------------------------------------
    # Configuration store
    # ------------------------------------------------------------------

    def _read_store(self) -> dict[str, str]:
        """Read the dotenv file; a missing file is an empty store."""
        if not self.config_path.exists():
            return {}
        if not self.config_path.is_file():
            raise IsADirectoryError(f"{self.config_path} is not a regular file")
        # read once up-front so permission errors surface as OSError
        with open(self.config_path, encoding="utf-8") as fp:
            values = dotenv_values(stream=fp)
        return {k: v for k, v in values.items() if v is not None}

    def _write_store(self, generated: dict[str, str]) -> None:
        """Merge generated keys into the dotenv file, owner-only."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.config_path.exists():
            fd = os.open(self.config_path, os.O_WRONLY | os.O_CREAT, FILE_MODE)
            os.close(fd)
        os.chmod(self.config_path, FILE_MODE)
        for name, value in generated.items():
            success, _, _ = set_key(
                self.config_path, name, value, quote_mode="never",
            )
            if not success:
                raise OSError(f"could not update {name} in {self.config_path}")
        # set_key rewrites the file; re-apply the mode on the new inode
        os.chmod(self.config_path, FILE_MODE)

    def _fallback(self, action: str, err: Exception) -> None:
        if not self.allow_ephemeral:
            raise ConfigurationError(
                f"Cannot {action} configuration store {self.config_path}: "
                f"{type(err).__name__}"
            ) from err
        logger.warning(
            "Cannot %s configuration store %s (%s); using EPHEMERAL keys for "
            "this run. Tokens encrypted now will be unreadable after restart.",
            action, self.config_path, type(err).__name__,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def ensure_keys(self) -> KeyMaterial:
        """Return valid key material, generating and persisting it if needed.

        Idempotent: after the first success the same object is returned
        without touching the file again, and a later process finds the
        persisted keys valid and writes nothing.

        Returns:
            KeyMaterial (``persisted=False`` on ephemeral fallback).

        Raises:
            ConfigurationError: If a configured encryption key is malformed,
                or the store is unusable and ephemeral keys are not allowed.
        """
        if self._material is not None:
            return self._material

        read_error: Exception | None = None
        try:
            values = self._read_store()
        except (OSError, UnicodeDecodeError) as err:
            read_error = err
            values = {}

        for name in _KEY_NAMES:
            env_value = self._environ.get(name)
            if not is_placeholder(env_value):
                values[name] = env_value

        generated: dict[str, str] = {}
        for name in _KEY_NAMES:
            if is_placeholder(values.get(name)):
                generated[name] = _GENERATORS[name]()
                values[name] = generated[name]

        persisted = True
        if not generated:
            logger.debug("Key material present for %s", ", ".join(_KEY_NAMES))
        elif read_error is not None:
            # never rewrite a store we could not read
            self._fallback("read", read_error)
            persisted = False
        else:
            try:
                self._write_store(generated)
                logger.info(
                    "Provisioned %s in %s",
                    ", ".join(sorted(generated)), self.config_path,
                )
            except OSError as err:
                self._fallback("write", err)
                persisted = False

        try:
            material = KeyMaterial(
                signing_key=SecretStr(values[SIGNING_KEY_NAME]),
                encryption_key=SecretStr(values[ENCRYPTION_KEY_NAME]),
                persisted=persisted,
            )
        except ValidationError as err:
            raise ConfigurationError(
                "Invalid key material: " + "; ".join(e["msg"] for e in err.errors())
            ) from err

        self._material = material
        return material


def ensure_keys(
    config_path: str | Path,
    allow_ephemeral: bool = True,
    environ: Mapping[str, str] | None = None,
) -> KeyMaterial:
    """Convenience wrapper: provision keys from ``config_path``."""
    return KeyProvisioner(
        config_path, allow_ephemeral=allow_ephemeral, environ=environ,
    ).ensure_keys()
