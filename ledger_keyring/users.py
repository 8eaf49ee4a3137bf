"""
UserStore — user accounts with salted, slow password hashes.

Persisted table:
    {user_id: {email, password_hash, created_at}}

Emails are trimmed and lower-cased before storage and lookup, so
``Alice@Example.com`` and ``alice@example.com`` are the same account.

Passwords are pre-hashed with SHA-256 (base64) and then hashed with bcrypt,
so all 128 permitted characters count despite bcrypt's 72-byte limit.

Security Note:
    Raw passwords are never stored, logged or put in error messages.
    Records returned to callers never carry the password hash.
"""
import re
import base64
import asyncio
import hashlib
import logging
import secrets
from datetime import datetime, timezone

import bcrypt
from pydantic import BaseModel, Field

from .exceptions import ConflictError, StorageError, ValidationError
from .storage import StorageBackend
from .utils import sanitize_data

logger = logging.getLogger("ledger.users")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128
MAX_EMAIL_LENGTH = 254
DEFAULT_ROUNDS = 10

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_BCRYPT_COST = re.compile(r"^\$2[abxy]?\$(\d{2})\$")


class UserRecord(BaseModel):
    """A registered user."""

    id: str
    email: str
    created_at: datetime
    password_hash: str | None = Field(default=None, repr=False)

    model_config = {"frozen": True}

    def public(self) -> "UserRecord":
        """Copy without the password hash."""
        return self.model_copy(update={"password_hash": None})

    def to_storage(self) -> dict:
        return {
            "email": self.email,
            "password_hash": self.password_hash,
            "created_at": self.created_at.isoformat(),
        }


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_email(email: str) -> str:
    """Check email shape and return its normalised form.

    Raises:
        ValidationError: If the address is missing or malformed.
    """
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("Email is required", field="email")
    normalized = normalize_email(email)
    if len(normalized) > MAX_EMAIL_LENGTH or not _EMAIL.match(normalized):
        raise ValidationError("Email address is not valid", field="email")
    return normalized


def validate_password(password: str) -> None:
    """Enforce the password policy.

    8 to 128 characters, with at least one letter and one digit.

    Raises:
        ValidationError: Describing the violated rule, never the password.
    """
    if not isinstance(password, str) or not password:
        raise ValidationError("Password is required", field="password")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            field="password",
        )
    if len(password) > MAX_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password cannot exceed {MAX_PASSWORD_LENGTH} characters",
            field="password",
        )
    if not any(c.isalpha() for c in password):
        raise ValidationError(
            "Password must contain at least one letter", field="password",
        )
    if not any(c.isdigit() for c in password):
        raise ValidationError(
            "Password must contain at least one digit", field="password",
        )


def _prepare(password: str) -> bytes:
    return base64.b64encode(hashlib.sha256(password.encode("utf-8")).digest())


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """bcrypt hash of the pre-hashed password."""
    return bcrypt.hashpw(_prepare(password), bcrypt.gensalt(rounds)).decode("ascii")


def hash_cost(password_hash: str) -> int | None:
    """Work factor encoded in a bcrypt hash, or None if it is not one."""
    match = _BCRYPT_COST.match(password_hash) if isinstance(password_hash, str) else None
    return int(match.group(1)) if match else None


def check_password(password: str, password_hash: str) -> bool:
    """Constant-time comparison of ``password`` against a stored hash.

    Raises:
        ValueError: If ``password_hash`` is not a bcrypt hash.
    """
    return bcrypt.checkpw(_prepare(password), password_hash.encode("ascii"))


class UserStore:
    """Durable user table with an email index.

    Mutations are serialized by one lock and persisted (whole table)
    before they become visible.
    """

    def __init__(self, storage: StorageBackend, rounds: int = DEFAULT_ROUNDS):
        self._storage = storage
        self._rounds = rounds
        self._users: dict[str, UserRecord] = {}
        self._by_email: dict[str, str] = {}
        self._lock = asyncio.Lock()
        # compared against when the email is unknown; its cost tracks the
        # highest cost among stored hashes, not the current rounds setting
        self._dummy_hash: str | None = None
        self._dummy_cost = 0
        self._stored_cost = rounds

    def __len__(self) -> int:
        return len(self._users)

    def __repr__(self) -> str:
        return f"<UserStore users={len(self._users)}>"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def _commit(self, users: dict[str, UserRecord]) -> None:
        """Persist ``users`` and publish them. Caller holds the lock."""
        await self._storage.save(
            {user_id: record.to_storage() for user_id, record in users.items()}
        )
        self._users = users
        self._by_email = {record.email: user_id for user_id, record in users.items()}
        self._stored_cost = self._max_cost(users)

    def _max_cost(self, users: dict[str, UserRecord]) -> int:
        costs = (hash_cost(record.password_hash) for record in users.values())
        return max((cost for cost in costs if cost), default=self._rounds)

    async def _unknown_user_hash(self) -> str:
        """Dummy hash at the stored cost, rebuilt in a thread when it changes."""
        cost = self._stored_cost
        if self._dummy_hash is None or self._dummy_cost != cost:
            self._dummy_hash = await asyncio.to_thread(
                hash_password, secrets.token_urlsafe(16), cost,
            )
            self._dummy_cost = cost
            logger.debug("Unknown-user hash prepared at cost %d", cost)
        return self._dummy_hash

    async def load(self) -> None:
        """Load the durable snapshot, degrading to empty on read failure."""
        try:
            data = await self._storage.load()
        except StorageError as err:
            logger.warning("User table unreadable, starting empty: %s", err)
            data = {}
        users: dict[str, UserRecord] = {}
        for user_id, entry in data.items():
            try:
                if not isinstance(entry.get("password_hash"), str):
                    raise ValueError("password_hash missing")
                users[user_id] = UserRecord(
                    id=user_id,
                    email=normalize_email(entry["email"]),
                    password_hash=entry["password_hash"],
                    created_at=entry["created_at"],
                )
            except (KeyError, TypeError, AttributeError, ValueError):
                logger.warning(
                    "Skipping malformed user record id=%s: %s",
                    user_id,
                    sanitize_data(entry) if isinstance(entry, dict) else type(entry).__name__,
                )
        async with self._lock:
            self._users = users
            self._by_email = {r.email: uid for uid, r in users.items()}
            self._stored_cost = self._max_cost(users)
        await self._unknown_user_hash()
        logger.info("User store loaded: %d user(s)", len(users))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_user(self, email: str, password: str) -> UserRecord:
        """Register a new user.

        Args:
            email: Address, unique across users (case-insensitive).
            password: Raw password; hashed, never stored.

        Returns:
            The new UserRecord, without the hash.

        Raises:
            ValidationError: If email or password violate the policy.
            ConflictError: If the email is already registered.
            StorageError: If the table cannot be written.
        """
        email = validate_email(email)
        validate_password(password)
        if email in self._by_email:
            raise ConflictError("User already exists")
        password_hash = await asyncio.to_thread(hash_password, password, self._rounds)
        record = UserRecord(
            id=secrets.token_hex(16),
            email=email,
            password_hash=password_hash,
            created_at=datetime.now(timezone.utc),
        )
        async with self._lock:
            # re-check: another registration may have won while hashing
            if email in self._by_email:
                raise ConflictError("User already exists")
            users = dict(self._users)
            users[record.id] = record
            await self._commit(users)
        logger.info("User created: id=%s", record.id)
        return record.public()

    async def verify_password(self, email: str, password: str) -> UserRecord | None:
        """Check credentials.

        Unknown emails are compared against a dummy hash made at the highest
        stored cost, so both failure cases cost one comparable bcrypt check
        even after the rounds setting changed.

        Returns:
            The matching UserRecord (without hash), or None.

        Raises:
            StorageError: If the stored hash is corrupt.
        """
        if not isinstance(email, str) or not isinstance(password, str):
            return None
        user_id = self._by_email.get(normalize_email(email))
        record = self._users.get(user_id) if user_id else None
        if record is not None:
            stored_hash = record.password_hash
        else:
            stored_hash = await self._unknown_user_hash()
        try:
            matched = await asyncio.to_thread(check_password, password, stored_hash)
        except ValueError as err:
            raise StorageError(
                f"Stored password hash is malformed for user id={user_id}"
            ) from err
        if record is None or not matched:
            return None
        return record.public()

    async def find_by_id(self, user_id: str) -> UserRecord | None:
        record = self._users.get(user_id)
        return record.public() if record else None

    async def find_by_email(self, email: str) -> UserRecord | None:
        if not isinstance(email, str):
            return None
        user_id = self._by_email.get(normalize_email(email))
        return await self.find_by_id(user_id) if user_id else None

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    async def open(cls, storage: StorageBackend, rounds: int = DEFAULT_ROUNDS) -> "UserStore":
        """Build a store and load its durable snapshot."""
        store = cls(storage, rounds=rounds)
        await store.load()
        return store
