"""Shared fixtures for the ledger_keyring test-suite."""
import pytest

from ledger_keyring.storage import JSONFileStorage
from ledger_keyring.users import UserStore
from ledger_keyring.vault.config import KeyMaterial, generate_encryption_key
from ledger_keyring.vault.crypto import CipherService
from ledger_keyring.vault.token_store import TokenStore

# bcrypt minimum cost keeps the suite fast
TEST_ROUNDS = 4


@pytest.fixture(autouse=True)
def clean_key_environment(monkeypatch):
    """Keys from the developer's shell must not leak into tests."""
    for name in ("JWT_SECRET", "ENCRYPTION_KEY", "ENVIRONMENT", "NODE_ENV", "AUTH_REQUIRED"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def encryption_key():
    return generate_encryption_key()


@pytest.fixture
def cipher(encryption_key):
    return CipherService(encryption_key)


@pytest.fixture
def keys():
    return KeyMaterial.generate(persisted=True)


@pytest.fixture
def tokens_path(tmp_path):
    return tmp_path / "data" / "tokens.json"


@pytest.fixture
def users_path(tmp_path):
    return tmp_path / "data" / "users.json"


@pytest.fixture
async def token_store(cipher, tokens_path):
    return await TokenStore.open(cipher, JSONFileStorage(tokens_path))


@pytest.fixture
async def user_store(users_path):
    return await UserStore.open(JSONFileStorage(users_path), rounds=TEST_ROUNDS)
