"""
Tests for the encrypted token store.

Tests cover:
- Token lifecycle (store, get, get all, delete)
- Durable persistence and cold-start loading
- Concurrent writers (no lost updates)
- Readers never seeing an unpersisted write
- Decryption failures surfacing as CryptoError
- Write failures leaving memory unchanged
"""
import asyncio
import os
import re
import stat

import orjson
import pytest

from ledger_keyring.exceptions import CryptoError, StorageError, ValidationError
from ledger_keyring.storage import JSONFileStorage, MemoryStorage, StorageBackend
from ledger_keyring.vault.config import generate_encryption_key
from ledger_keyring.vault.crypto import CipherService
from ledger_keyring.vault.token_store import TokenStore


class FailingStorage(MemoryStorage):
    """Backend whose writes always fail."""

    async def save(self, data):
        raise StorageError("disk full")


class GatedStorage(MemoryStorage):
    """Backend whose writes block until released."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def save(self, data):
        self.started.set()
        await self.release.wait()
        await super().save(data)


class TestLifecycle:
    """store → get → delete."""

    async def test_store_and_get(self, token_store):
        """A stored token is returned decrypted."""
        await token_store.store_token("user-1", "item-1", "secret")
        assert await token_store.get_token("user-1", "item-1") == "secret"

    async def test_delete(self, token_store):
        """A deleted token is gone."""
        await token_store.store_token("user-1", "item-1", "secret")
        await token_store.delete_token("user-1", "item-1")
        assert await token_store.get_token("user-1", "item-1") is None

    async def test_unknown_token(self, token_store):
        """Unknown user or item yields None."""
        assert await token_store.get_token("nobody", "nothing") is None

    async def test_update_replaces(self, token_store):
        """Storing again for the same item replaces the token."""
        await token_store.store_token("user-1", "item-1", "old")
        await token_store.store_token("user-1", "item-1", "new")
        assert await token_store.get_token("user-1", "item-1") == "new"
        assert token_store.count() == 1

    async def test_get_all_tokens(self, token_store):
        """All of a user's tokens are decrypted, others excluded."""
        await token_store.store_token("user-1", "item-a", "token-a")
        await token_store.store_token("user-1", "item-b", "token-b")
        await token_store.store_token("user-2", "item-a", "token-c")
        assert await token_store.get_all_tokens("user-1") == {
            "item-a": "token-a",
            "item-b": "token-b",
        }
        assert await token_store.get_all_tokens("user-3") == {}

    async def test_item_ids_per_user(self, token_store):
        """item_id is unique per user, not globally."""
        await token_store.store_token("user-1", "shared", "t1")
        await token_store.store_token("user-2", "shared", "t2")
        assert token_store.item_ids("user-1") == ["shared"]
        assert await token_store.get_token("user-2", "shared") == "t2"

    async def test_has_token(self, token_store):
        """has_token reflects the table without decrypting."""
        await token_store.store_token("user-1", "item-1", "secret")
        assert token_store.has_token("user-1", "item-1")
        assert not token_store.has_token("user-1", "item-2")


class TestValidation:
    """Identifiers and tokens are checked before any write."""

    @pytest.mark.parametrize("user_id, item_id", [
        ("", "item"),
        ("user", ""),
        ("   ", "item"),
        ("user", "x" * 256),
        (None, "item"),
    ])
    async def test_invalid_ids(self, token_store, user_id, item_id):
        """Empty, blank, overlong or non-string ids are rejected."""
        with pytest.raises(ValidationError):
            await token_store.store_token(user_id, item_id, "secret")

    async def test_empty_token(self, token_store):
        """An empty access token is rejected."""
        with pytest.raises(ValidationError):
            await token_store.store_token("user", "item", "")


class TestPersistence:
    """Durable file representation."""

    async def test_survives_reopen(self, cipher, tokens_path, token_store):
        """A new store over the same file reads the token back."""
        await token_store.store_token("user-1", "item-1", "secret")
        reopened = await TokenStore.open(cipher, JSONFileStorage(tokens_path))
        assert await reopened.get_token("user-1", "item-1") == "secret"

    async def test_file_layout(self, tokens_path, token_store):
        """File is {user: {item: 'ivHex:cipherHex'}} without plaintext."""
        await token_store.store_token("user-1", "item-1", "plain-access-token")
        raw = tokens_path.read_bytes()
        data = orjson.loads(raw)
        assert list(data) == ["user-1"]
        assert re.fullmatch(r"[0-9a-f]{24}:[0-9a-f]+", data["user-1"]["item-1"])
        assert b"plain-access-token" not in raw

    async def test_file_mode(self, tokens_path, token_store):
        """Token file is owner read/write only."""
        await token_store.store_token("user-1", "item-1", "secret")
        assert stat.S_IMODE(os.stat(tokens_path).st_mode) == 0o600

    async def test_delete_persists(self, cipher, tokens_path, token_store):
        """Deletion reaches the file and drops empty users."""
        await token_store.store_token("user-1", "item-1", "secret")
        await token_store.delete_token("user-1", "item-1")
        assert orjson.loads(tokens_path.read_bytes()) == {}
        reopened = await TokenStore.open(cipher, JSONFileStorage(tokens_path))
        assert await reopened.get_token("user-1", "item-1") is None

    async def test_delete_unknown_does_not_write(self, cipher):
        """Removing an absent item is a no-op."""
        storage = MemoryStorage()
        store = await TokenStore.open(cipher, storage)
        await store.delete_token("user-1", "missing")
        assert storage.saves == 0

    async def test_corrupt_file_starts_empty(self, cipher, tokens_path):
        """An unreadable snapshot degrades to an empty store."""
        tokens_path.parent.mkdir(parents=True)
        tokens_path.write_text("{not json")
        store = await TokenStore.open(cipher, JSONFileStorage(tokens_path))
        assert store.count() == 0


class TestIntegrity:
    """Decryption failures surface."""

    async def test_tampered_file(self, cipher, tokens_path, token_store):
        """A modified blob on disk raises CryptoError on read."""
        await token_store.store_token("user-1", "item-1", "secret")
        data = orjson.loads(tokens_path.read_bytes())
        iv_hex, ct_hex = data["user-1"]["item-1"].split(":")
        data["user-1"]["item-1"] = f"{iv_hex}:{'0' if ct_hex[0] != '0' else '1'}{ct_hex[1:]}"
        tokens_path.write_bytes(orjson.dumps(data))
        reopened = await TokenStore.open(cipher, JSONFileStorage(tokens_path))
        with pytest.raises(CryptoError):
            await reopened.get_token("user-1", "item-1")
        with pytest.raises(CryptoError):
            await reopened.get_all_tokens("user-1")

    async def test_rotated_key(self, tokens_path, token_store):
        """Reading with a different key raises instead of returning garbage."""
        await token_store.store_token("user-1", "item-1", "secret")
        other = CipherService(generate_encryption_key())
        reopened = await TokenStore.open(other, JSONFileStorage(tokens_path))
        with pytest.raises(CryptoError):
            await reopened.get_token("user-1", "item-1")


class TestConcurrency:
    """Serialized mutations, consistent reads."""

    async def test_concurrent_writers_same_user(self, cipher, tokens_path, token_store):
        """Two concurrent writes for one user both reach the file."""
        await asyncio.gather(
            token_store.store_token("user-1", "item-a", "token-a"),
            token_store.store_token("user-1", "item-b", "token-b"),
        )
        reopened = await TokenStore.open(cipher, JSONFileStorage(tokens_path))
        assert await reopened.get_all_tokens("user-1") == {
            "item-a": "token-a",
            "item-b": "token-b",
        }

    async def test_many_concurrent_writers(self, cipher, tokens_path, token_store):
        """No update is lost under heavier contention."""
        await asyncio.gather(*(
            token_store.store_token(f"user-{i % 3}", f"item-{i}", f"token-{i}")
            for i in range(30)
        ))
        reopened = await TokenStore.open(cipher, JSONFileStorage(tokens_path))
        assert reopened.count() == 30
        assert await reopened.get_token("user-2", "item-29") == "token-29"

    async def test_reader_sees_only_durable_state(self, cipher):
        """While a write is in flight readers see the previous snapshot."""
        storage = GatedStorage()
        store = TokenStore(cipher, storage)
        task = asyncio.create_task(store.store_token("user-1", "item-1", "secret"))
        await storage.started.wait()
        assert await store.get_token("user-1", "item-1") is None
        storage.release.set()
        await task
        assert await store.get_token("user-1", "item-1") == "secret"

    async def test_failed_write_leaves_memory_unchanged(self, cipher):
        """A write failure is surfaced and nothing is published."""
        store = TokenStore(cipher, FailingStorage())
        with pytest.raises(StorageError):
            await store.store_token("user-1", "item-1", "secret")
        assert await store.get_token("user-1", "item-1") is None
        assert store.count() == 0


class TestStorageInterface:
    """Any StorageBackend can back the store."""

    async def test_memory_backend(self, cipher):
        """MemoryStorage round-trips through the store."""
        storage = MemoryStorage()
        store = await TokenStore.open(cipher, storage)
        await store.store_token("u", "i", "t")
        reopened = await TokenStore.open(cipher, storage)
        assert await reopened.get_token("u", "i") == "t"
        assert isinstance(storage, StorageBackend)
