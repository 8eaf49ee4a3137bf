"""
Tests for keyring configuration and environment validation.
"""
import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from ledger_keyring.conf import (
    AuthenticationPolicy,
    CoreConfig,
    parse_bool,
    validate_and_log,
    validate_environment,
)
from ledger_keyring.exceptions import ConfigurationError
from ledger_keyring.vault.config import generate_encryption_key, generate_signing_key


class TestParseBool:

    @pytest.mark.parametrize("value, expected", [
        ("true", True), ("1", True), ("YES", True), ("false", False), ("0", False),
        (None, True), ("", True), ("  ", True),
    ])
    def test_values(self, value, expected):
        assert parse_bool(value, True) is expected

    def test_invalid(self):
        with pytest.raises(ConfigurationError):
            parse_bool("maybe", True)


class TestCoreConfig:
    """Defaults and validation."""

    def test_defaults(self):
        """Secure defaults: auth on, AES-GCM, 7 day sessions."""
        config = CoreConfig.build()
        assert config.environment == "development"
        assert config.auth_required is True
        assert config.cipher_backend == "aesgcm"
        assert config.session_ttl == 7 * 24 * 3600
        assert config.bcrypt_rounds == 10
        assert config.policy is AuthenticationPolicy.ENFORCED

    def test_from_env(self, tmp_path):
        """Environment variables populate the config."""
        config = CoreConfig.from_env({
            "NODE_ENV": "Test",
            "AUTH_REQUIRED": "false",
            "KEYRING_BASE_DIR": str(tmp_path),
            "KEYRING_DATA_DIR": "store",
            "KEYRING_CIPHER_BACKEND": "ChaCha20",
            "SESSION_TTL": "3600",
            "BCRYPT_ROUNDS": "12",
        })
        assert config.environment == "test"
        assert config.policy is AuthenticationPolicy.DEVELOPMENT_BYPASS
        assert config.base_dir == Path(tmp_path)
        assert config.data_dir == "store"
        assert config.cipher_backend == "chacha20"
        assert config.session_ttl == 3600
        assert config.bcrypt_rounds == 12

    def test_environment_takes_precedence(self):
        """ENVIRONMENT wins over NODE_ENV."""
        config = CoreConfig.from_env({"ENVIRONMENT": "test", "NODE_ENV": "development"})
        assert config.environment == "test"

    def test_production_without_auth(self):
        """Disabling auth in production is refused."""
        with pytest.raises(ConfigurationError):
            CoreConfig.from_env({"ENVIRONMENT": "production", "AUTH_REQUIRED": "false"})

    def test_production_with_auth(self):
        config = CoreConfig.from_env({"ENVIRONMENT": "production"})
        assert config.is_production
        assert config.policy is AuthenticationPolicy.ENFORCED

    @pytest.mark.parametrize("environ", [
        {"KEYRING_CIPHER_BACKEND": "des"},
        {"AUTH_REQUIRED": "sometimes"},
        {"SESSION_TTL": "a week"},
        {"SESSION_TTL": "5"},
        {"BCRYPT_ROUNDS": "2"},
        {"ENVIRONMENT": "staging"},
    ])
    def test_invalid_values(self, environ):
        """Malformed settings raise ConfigurationError."""
        with pytest.raises(ConfigurationError):
            CoreConfig.from_env(environ)

    def test_frozen(self):
        config = CoreConfig.build()
        with pytest.raises(ValidationError):
            config.auth_required = False


class TestValidateEnvironment:
    """Startup environment report."""

    def test_missing_keys_are_warnings(self):
        """Keys are provisioned later, so absence only warns."""
        report = validate_environment({})
        assert report.is_valid
        assert any("JWT_SECRET" in w for w in report.warnings)
        assert any("ENCRYPTION_KEY" in w for w in report.warnings)

    def test_valid_environment(self):
        report = validate_environment({
            "JWT_SECRET": generate_signing_key(),
            "ENCRYPTION_KEY": generate_encryption_key(),
            "ENVIRONMENT": "production",
            "AUTH_REQUIRED": "true",
        })
        assert report.is_valid
        assert report.warnings == []

    def test_short_signing_key(self):
        report = validate_environment({"JWT_SECRET": "tooshort"})
        assert any("at least 32" in w for w in report.warnings)
        assert any("[REDACTED:8]" in w for w in report.warnings)
        assert all("tooshort" not in w for w in report.warnings)

    def test_malformed_encryption_key(self):
        """A non-hex encryption key is an error and is not echoed."""
        report = validate_environment({"ENCRYPTION_KEY": "zz" * 32})
        assert not report.is_valid
        assert all("zz" * 32 not in e for e in report.errors)
        assert any("[REDACTED:64]" in e for e in report.errors)

    def test_bad_auth_flag(self):
        report = validate_environment({"AUTH_REQUIRED": "perhaps"})
        assert any("AUTH_REQUIRED" in e for e in report.errors)

    def test_production_bypass(self):
        report = validate_environment({"NODE_ENV": "production", "AUTH_REQUIRED": "0"})
        assert any("production" in e for e in report.errors)

    def test_validate_and_log_development(self, caplog):
        """Outside production errors are logged, not raised."""
        with caplog.at_level(logging.WARNING, logger="ledger.keyring"):
            assert validate_and_log({"AUTH_REQUIRED": "perhaps"}) is False
        assert "AUTH_REQUIRED" in caplog.text

    def test_validate_and_log_production(self):
        """In production errors are fatal."""
        with pytest.raises(ConfigurationError):
            validate_and_log({
                "ENVIRONMENT": "production",
                "ENCRYPTION_KEY": "not-hex",
            })
