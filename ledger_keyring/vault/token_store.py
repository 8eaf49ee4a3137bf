"""
TokenStore — encrypted access tokens per (user, item).

Provides the public API used by the provider-integration layer:
- ``store_token(user_id, item_id, token)`` — encrypt, upsert and persist
- ``get_token(user_id, item_id)`` — decrypt one token (or None)
- ``get_all_tokens(user_id)`` — decrypt every token of a user
- ``delete_token(user_id, item_id)`` — remove and persist
- ``item_ids(user_id)`` — list linked items without decrypting
- ``open()`` — factory that loads the durable snapshot at startup

Persisted table:
    {user_id: {item_id: "ivHex:cipherHex"}}

Security Note:
    Never log plaintext tokens or blobs. Only log user and item ids.
    Decrypted tokens are returned to the caller and not kept by the store.
"""
import asyncio
import logging

from ..exceptions import StorageError, ValidationError
from ..storage import StorageBackend
from .crypto import CipherService

logger = logging.getLogger("ledger.vault")

MAX_ID_LENGTH = 255


class TokenStore:
    """Durable, encrypted mapping of (user, item) to provider access tokens.

    The in-memory table is the source of truth for reads. Every mutation
    builds the next table, persists it through the storage backend and only
    then publishes it, all under one lock; readers never observe a write
    that has not reached storage.
    """

    def __init__(self, cipher: CipherService, storage: StorageBackend):
        self._cipher = cipher
        self._storage = storage
        self._tokens: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<TokenStore users={len(self._tokens)} items={self.count()}>"

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_id(value: str, field: str) -> None:
        """Validate a user or item identifier.

        Raises:
            ValidationError: If empty, not a string or too long.
        """
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{field} cannot be empty", field=field)
        if len(value) > MAX_ID_LENGTH:
            raise ValidationError(
                f"{field} cannot exceed {MAX_ID_LENGTH} characters", field=field,
            )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _snapshot(self) -> dict[str, dict[str, str]]:
        return {user: dict(items) for user, items in self._tokens.items()}

    async def _commit(self, table: dict[str, dict[str, str]]) -> None:
        """Persist ``table`` and publish it. Caller holds the lock."""
        await self._storage.save(table)
        self._tokens = table

    async def load(self) -> None:
        """Load the durable snapshot, degrading to empty on read failure."""
        try:
            data = await self._storage.load()
        except StorageError as err:
            logger.warning("Token table unreadable, starting empty: %s", err)
            data = {}
        table: dict[str, dict[str, str]] = {}
        for user_id, items in data.items():
            if not isinstance(items, dict):
                logger.warning("Skipping malformed token entry for user=%s", user_id)
                continue
            table[user_id] = {
                item_id: blob for item_id, blob in items.items()
                if isinstance(blob, str)
            }
        async with self._lock:
            self._tokens = table
        logger.info(
            "Token store loaded: %d user(s), %d item(s)", len(table), self.count(),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def store_token(self, user_id: str, item_id: str, raw_token: str) -> None:
        """Encrypt and persist an access token, replacing any previous one.

        Args:
            user_id: Owner of the linked item.
            item_id: Provider item identifier (unique per user).
            raw_token: Plaintext access token.

        Raises:
            ValidationError: If an id or the token is invalid.
            StorageError: If the table cannot be written; the store is
                left unchanged.
        """
        self._validate_id(user_id, "user_id")
        self._validate_id(item_id, "item_id")
        if not isinstance(raw_token, str) or not raw_token:
            raise ValidationError("access token cannot be empty", field="token")
        blob = str(self._cipher.encrypt(raw_token))
        async with self._lock:
            table = self._snapshot()
            table.setdefault(user_id, {})[item_id] = blob
            await self._commit(table)
        logger.debug("Token stored: user=%s item=%s", user_id, item_id)

    async def get_token(self, user_id: str, item_id: str) -> str | None:
        """Decrypt and return one access token.

        Returns:
            The plaintext token, or None if no token is stored.

        Raises:
            CryptoError: If the stored blob cannot be decrypted.
        """
        self._validate_id(user_id, "user_id")
        self._validate_id(item_id, "item_id")
        blob = self._tokens.get(user_id, {}).get(item_id)
        if blob is None:
            return None
        return self._cipher.decrypt(blob)

    async def get_all_tokens(self, user_id: str) -> dict[str, str]:
        """Decrypt every access token of a user.

        Returns:
            Mapping of item_id to plaintext token (empty if none).

        Raises:
            CryptoError: If any stored blob cannot be decrypted.
        """
        self._validate_id(user_id, "user_id")
        items = self._tokens.get(user_id, {})
        return {
            item_id: self._cipher.decrypt(blob) for item_id, blob in items.items()
        }

    async def delete_token(self, user_id: str, item_id: str) -> None:
        """Remove a token and persist. Unknown items are ignored."""
        self._validate_id(user_id, "user_id")
        self._validate_id(item_id, "item_id")
        async with self._lock:
            if item_id not in self._tokens.get(user_id, {}):
                return
            table = self._snapshot()
            del table[user_id][item_id]
            if not table[user_id]:
                del table[user_id]
            await self._commit(table)
        logger.debug("Token deleted: user=%s item=%s", user_id, item_id)

    def item_ids(self, user_id: str) -> list[str]:
        """List the items linked by a user, without decrypting."""
        self._validate_id(user_id, "user_id")
        return sorted(self._tokens.get(user_id, {}))

    def has_token(self, user_id: str, item_id: str) -> bool:
        return item_id in self._tokens.get(user_id, {})

    def count(self) -> int:
        """Total number of stored tokens."""
        return sum(len(items) for items in self._tokens.values())

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    async def open(cls, cipher: CipherService, storage: StorageBackend) -> "TokenStore":
        """Build a store and load its durable snapshot.

        This is the primary constructor used at startup.
        """
        store = cls(cipher, storage)
        await store.load()
        return store
