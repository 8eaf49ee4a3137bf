"""
Credential Core — startup wiring of keys, stores and authenticator.

``CredentialCore.setup()`` provisions keys before anything that depends on
them is constructed, then opens the user and token stores and builds the
session authenticator.
"""
import logging
from pathlib import Path

from .auth import LOGIN_FAILED_MESSAGE, SessionAuthenticator
from .conf import CoreConfig
from .exceptions import LoginFailed
from .storage import JSONFileStorage, resolve_within
from .users import UserRecord, UserStore
from .vault.config import KeyMaterial
from .vault.crypto import CipherService
from .vault.provisioning import KeyProvisioner
from .vault.token_store import TokenStore

logger = logging.getLogger("ledger.keyring")


class CredentialCore:
    """The running credential subsystem of one process."""

    def __init__(
        self,
        config: CoreConfig,
        keys: KeyMaterial,
        cipher: CipherService,
        users: UserStore,
        tokens: TokenStore,
        authenticator: SessionAuthenticator,
        data_dir: Path,
    ):
        self.config = config
        self.keys = keys
        self.cipher = cipher
        self.users = users
        self.tokens = tokens
        self.authenticator = authenticator
        self.data_dir = data_dir

    def __repr__(self) -> str:
        return (
            f"<CredentialCore env={self.config.environment} "
            f"users={len(self.users)} tokens={self.tokens.count()}>"
        )

    @classmethod
    async def setup(cls, config: CoreConfig | None = None) -> "CredentialCore":
        """Provision keys, then build and load every component.

        Args:
            config: Settings; read from the environment when omitted.

        Raises:
            ConfigurationError: On invalid settings, unsafe paths or unusable
                key material.
        """
        config = config or CoreConfig.from_env()
        base_dir = Path(config.base_dir)
        config_path = resolve_within(base_dir, config.config_file)
        data_dir = resolve_within(base_dir, config.data_dir)
        users_path = resolve_within(data_dir, config.users_file)
        tokens_path = resolve_within(data_dir, config.tokens_file)

        keys = KeyProvisioner(
            config_path, allow_ephemeral=config.allow_ephemeral_keys,
        ).ensure_keys()

        cipher = CipherService.from_keys(keys, backend=config.cipher_backend)
        users = await UserStore.open(
            JSONFileStorage(users_path), rounds=config.bcrypt_rounds,
        )
        tokens = await TokenStore.open(cipher, JSONFileStorage(tokens_path))
        authenticator = SessionAuthenticator.from_config(keys, config)
        logger.info(
            "Credential core ready (env=%s, keys %s, auth %s)",
            config.environment,
            "persisted" if keys.persisted else "EPHEMERAL",
            authenticator.policy.value,
        )
        return cls(config, keys, cipher, users, tokens, authenticator, data_dir)

    async def register(self, email: str, password: str) -> tuple[UserRecord, str]:
        """Create a user and issue their first bearer token."""
        user = await self.users.create_user(email, password)
        return user, self.authenticator.issue(user)

    async def login(self, email: str, password: str) -> tuple[UserRecord, str]:
        """Verify credentials and issue a bearer token.

        Raises:
            LoginFailed: With the same message for unknown users and
                wrong passwords.
        """
        user = await self.users.verify_password(email, password)
        if user is None:
            raise LoginFailed(LOGIN_FAILED_MESSAGE)
        return user, self.authenticator.issue(user)
