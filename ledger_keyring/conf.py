"""
Keyring Configuration — validated settings for the credential core.

Reads settings from environment variables:
    ENVIRONMENT (or NODE_ENV) = development | production | test
    AUTH_REQUIRED = true | false | 1 | 0
    KEYRING_BASE_DIR, KEYRING_CONFIG_FILE, KEYRING_DATA_DIR
    KEYRING_CIPHER_BACKEND = aesgcm | chacha20
    SESSION_TTL, BCRYPT_ROUNDS, ALLOW_EPHEMERAL_KEYS

Security Note:
    Never log key material. ``validate_environment`` reports key problems
    by name and length only.
"""
import os
import logging
from enum import Enum
from pathlib import Path
from collections.abc import Mapping
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import ConfigurationError
from .utils import redact

logger = logging.getLogger("ledger.keyring")

# request key holding the authenticated SessionIdentity
SESSION_IDENTITY = "ledger_identity"

SIGNING_KEY_NAME = "JWT_SECRET"
ENCRYPTION_KEY_NAME = "ENCRYPTION_KEY"

ENVIRONMENTS = ("development", "production", "test")
CIPHER_BACKENDS = ("aesgcm", "chacha20")

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")


class AuthenticationPolicy(str, Enum):
    """How bearer credentials are treated, fixed at construction time."""

    ENFORCED = "enforced"
    DEVELOPMENT_BYPASS = "development_bypass"


def parse_bool(value: str | None, default: bool) -> bool:
    """Parse a boolean flag from an environment string.

    An empty or missing value yields ``default``.

    Raises:
        ConfigurationError: If the value is not a recognised boolean.
    """
    if value is None or not value.strip():
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(f"Invalid boolean value: {value!r}")


class CoreConfig(BaseModel):
    """Validated configuration of the credential core."""

    environment: str = Field(default="development")
    auth_required: bool = True
    base_dir: Path = Field(default_factory=Path.cwd)
    config_file: str = ".env"
    data_dir: str = "data"
    users_file: str = "users.json"
    tokens_file: str = "tokens.json"
    cipher_backend: str = Field(default="aesgcm")
    session_ttl: int = Field(default=7 * 24 * 3600, ge=60)
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)
    allow_ephemeral_keys: bool = True

    model_config = {"frozen": True}

    @field_validator("environment")
    @classmethod
    def validate_environment_name(cls, v: str) -> str:
        """Normalise and check the deployment environment."""
        v = v.strip().lower()
        if v not in ENVIRONMENTS:
            raise ValueError(
                f"environment must be one of {', '.join(ENVIRONMENTS)}, got {v!r}"
            )
        return v

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.strip().lower()
        if v not in CIPHER_BACKENDS:
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @model_validator(mode="after")
    def refuse_bypass_in_production(self) -> "CoreConfig":
        """Authentication can never be disabled in production."""
        if self.is_production and not self.auth_required:
            raise ValueError(
                "AUTH_REQUIRED must be true in production environment"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def policy(self) -> AuthenticationPolicy:
        if self.auth_required:
            return AuthenticationPolicy.ENFORCED
        return AuthenticationPolicy.DEVELOPMENT_BYPASS

    @classmethod
    def build(cls, **values) -> "CoreConfig":
        """Construct a config, converting pydantic errors to ConfigurationError."""
        try:
            return cls(**values)
        except ValidationError as err:
            raise ConfigurationError(
                f"Invalid keyring configuration: {err.error_count()} error(s): "
                + "; ".join(e["msg"] for e in err.errors())
            ) from err

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CoreConfig":
        """Create CoreConfig by loading values from environment.

        Args:
            environ: Mapping to read instead of ``os.environ`` (tests).

        Returns:
            Populated CoreConfig instance.

        Raises:
            ConfigurationError: If any value is invalid.
        """
        env = os.environ if environ is None else environ
        values: dict = {
            "environment": env.get("ENVIRONMENT") or env.get("NODE_ENV") or "development",
            "auth_required": parse_bool(env.get("AUTH_REQUIRED"), True),
            "allow_ephemeral_keys": parse_bool(env.get("ALLOW_EPHEMERAL_KEYS"), True),
        }
        if env.get("KEYRING_BASE_DIR"):
            values["base_dir"] = Path(env["KEYRING_BASE_DIR"])
        if env.get("KEYRING_CONFIG_FILE"):
            values["config_file"] = env["KEYRING_CONFIG_FILE"]
        if env.get("KEYRING_DATA_DIR"):
            values["data_dir"] = env["KEYRING_DATA_DIR"]
        if env.get("KEYRING_CIPHER_BACKEND"):
            values["cipher_backend"] = env["KEYRING_CIPHER_BACKEND"]
        for name, key in (("SESSION_TTL", "session_ttl"), ("BCRYPT_ROUNDS", "bcrypt_rounds")):
            raw = env.get(name)
            if raw:
                try:
                    values[key] = int(raw)
                except ValueError as err:
                    raise ConfigurationError(f"{name} must be an integer") from err
        return cls.build(**values)


# ---------------------------------------------------------------------------
# Environment validation
# ---------------------------------------------------------------------------

@dataclass
class EnvironmentReport:
    """Outcome of ``validate_environment``."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def validate_environment(environ: Mapping[str, str] | None = None) -> EnvironmentReport:
    """Check the keyring-related environment variables.

    Key problems are warnings because missing keys are provisioned at
    startup; malformed flags and unsafe production settings are errors.
    """
    # imported here: vault.config imports this module
    from .vault.config import HEX_KEY, is_placeholder

    env = os.environ if environ is None else environ
    report = EnvironmentReport()

    signing = env.get(SIGNING_KEY_NAME)
    if is_placeholder(signing):
        report.warnings.append(
            f"{SIGNING_KEY_NAME}: should be set (auto-generated if missing)"
        )
    elif len(signing.strip()) < 32:
        report.warnings.append(
            f"{SIGNING_KEY_NAME}: should be at least 32 characters long "
            f"(got {redact(signing.strip())})"
        )

    encryption = env.get(ENCRYPTION_KEY_NAME)
    if is_placeholder(encryption):
        report.warnings.append(
            f"{ENCRYPTION_KEY_NAME}: should be set (auto-generated if missing)"
        )
    elif not HEX_KEY.match(encryption.strip()):
        report.errors.append(
            f"{ENCRYPTION_KEY_NAME}: must be exactly 64 hexadecimal characters "
            f"(got {redact(encryption.strip())})"
        )

    environment = (env.get("ENVIRONMENT") or env.get("NODE_ENV") or "").strip().lower()
    if environment and environment not in ENVIRONMENTS:
        report.warnings.append(
            f"ENVIRONMENT: should be one of {', '.join(ENVIRONMENTS)}"
        )

    auth_required = True
    try:
        auth_required = parse_bool(env.get("AUTH_REQUIRED"), True)
    except ConfigurationError:
        report.errors.append(
            "AUTH_REQUIRED: must be 'true', 'false', '1', '0', or empty"
        )

    if environment == "production" and not auth_required:
        report.errors.append(
            "AUTH_REQUIRED: must be true in production environment for security"
        )

    backend = env.get("KEYRING_CIPHER_BACKEND")
    if backend and backend.strip().lower() not in CIPHER_BACKENDS:
        report.errors.append(
            f"KEYRING_CIPHER_BACKEND: must be one of {', '.join(CIPHER_BACKENDS)}"
        )
    return report


def validate_and_log(environ: Mapping[str, str] | None = None) -> bool:
    """Validate the environment and log the findings.

    Returns:
        True if there were no errors.

    Raises:
        ConfigurationError: On errors when running in production.
    """
    env = os.environ if environ is None else environ
    report = validate_environment(env)
    for warning in report.warnings:
        logger.warning("Environment: %s", warning)
    for error in report.errors:
        logger.error("Environment: %s", error)
    if report.errors:
        environment = (env.get("ENVIRONMENT") or env.get("NODE_ENV") or "").lower()
        if environment == "production":
            raise ConfigurationError(
                "Environment validation failed in production: "
                + "; ".join(report.errors)
            )
        return False
    if not report.warnings:
        logger.info("Environment variables validated successfully.")
    return True
