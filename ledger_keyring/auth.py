"""
Session Authentication — stateless bearer tokens signed with the process key.

Tokens are HS256 JWTs carrying ``sub`` (user id), ``email``, ``iat`` and
``exp``. The server keeps no session table: a token is valid exactly when
its signature verifies against the signing key and it has not expired.

The authentication policy is fixed when the authenticator is built:
``ENFORCED`` verifies every request, ``DEVELOPMENT_BYPASS`` attaches a fixed
development identity and is refused in production.
"""
import logging
from datetime import datetime, timedelta, timezone

import orjson
from aiohttp import web
from jose import JWTError, jwt
from pydantic import BaseModel, SecretStr

from .conf import SESSION_IDENTITY, AuthenticationPolicy, CoreConfig
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    InvalidCredential,
    LoginFailed,
    MissingCredential,
)
from .users import UserRecord
from .vault.config import KeyMaterial

logger = logging.getLogger("ledger.auth")

ALGORITHM = "HS256"
DEFAULT_TTL = 7 * 24 * 3600
BEARER = "bearer"
DEV_USER_ID = "dev_user"
DEV_EMAIL = "dev@example.com"
LOGIN_FAILED_MESSAGE = "Invalid email or password"


class SessionIdentity(BaseModel):
    """Identity carried by a verified bearer token."""

    user_id: str
    email: str
    issued_at: datetime
    expires_at: datetime

    model_config = {"frozen": True}

    @property
    def is_development(self) -> bool:
        return self.user_id == DEV_USER_ID


class SessionAuthenticator:
    """Issues and verifies session bearer tokens."""

    def __init__(
        self,
        signing_key: str | SecretStr,
        policy: AuthenticationPolicy = AuthenticationPolicy.ENFORCED,
        ttl: int = DEFAULT_TTL,
        production: bool = False,
        algorithm: str = ALGORITHM,
    ):
        if policy is AuthenticationPolicy.DEVELOPMENT_BYPASS and production:
            raise ConfigurationError(
                "Authentication bypass is not allowed in production"
            )
        if isinstance(signing_key, SecretStr):
            signing_key = signing_key.get_secret_value()
        if not signing_key:
            raise ConfigurationError("Signing key is required")
        self._key = signing_key
        self.policy = policy
        self.ttl = ttl
        self.algorithm = algorithm
        if policy is AuthenticationPolicy.DEVELOPMENT_BYPASS:
            logger.warning(
                "Session authentication is DISABLED (development bypass)"
            )

    def __repr__(self) -> str:
        return f"<SessionAuthenticator policy={self.policy.value} ttl={self.ttl}>"

    @classmethod
    def from_config(cls, keys: KeyMaterial, config: CoreConfig) -> "SessionAuthenticator":
        return cls(
            keys.signing_key,
            policy=config.policy,
            ttl=config.session_ttl,
            production=config.is_production,
        )

    # ------------------------------------------------------------------
    # Issue / verify
    # ------------------------------------------------------------------

    def issue(self, user: UserRecord, now: datetime | None = None) -> str:
        """Sign a bearer token for ``user``.

        Args:
            user: Authenticated user.
            now: Issue time (defaults to the current UTC time).

        Returns:
            Compact JWT string.
        """
        issued = (now or datetime.now(timezone.utc)).replace(microsecond=0)
        claims = {
            "sub": user.id,
            "email": user.email,
            "iat": int(issued.timestamp()),
            "exp": int((issued + timedelta(seconds=self.ttl)).timestamp()),
        }
        return jwt.encode(claims, self._key, algorithm=self.algorithm)

    def verify(self, token: str) -> SessionIdentity:
        """Verify signature and expiry of a bearer token.

        Raises:
            InvalidCredential: If the token is malformed, signed with another
                key, expired or missing required claims.
        """
        try:
            claims = jwt.decode(token, self._key, algorithms=[self.algorithm])
        except JWTError as err:
            logger.debug("Rejected bearer token: %s", type(err).__name__)
            raise InvalidCredential("Invalid or expired token") from None
        try:
            return SessionIdentity(
                user_id=claims["sub"],
                email=claims["email"],
                issued_at=datetime.fromtimestamp(claims["iat"], timezone.utc),
                expires_at=datetime.fromtimestamp(claims["exp"], timezone.utc),
            )
        except (KeyError, TypeError, ValueError):
            raise InvalidCredential("Invalid or expired token") from None

    def development_identity(self) -> SessionIdentity:
        now = datetime.now(timezone.utc).replace(microsecond=0)
        return SessionIdentity(
            user_id=DEV_USER_ID,
            email=DEV_EMAIL,
            issued_at=now,
            expires_at=now + timedelta(seconds=self.ttl),
        )

    # ------------------------------------------------------------------
    # Request authentication
    # ------------------------------------------------------------------

    def authenticate_header(self, authorization: str | None) -> SessionIdentity:
        """Authenticate the value of an ``Authorization`` header.

        Raises:
            MissingCredential: No header or no token in it.
            InvalidCredential: Not a Bearer credential, or it fails
                verification.
        """
        if self.policy is AuthenticationPolicy.DEVELOPMENT_BYPASS:
            return self.development_identity()
        if not authorization or not authorization.strip():
            raise MissingCredential("Access token required")
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != BEARER:
            raise InvalidCredential("Unsupported authorization scheme")
        token = token.strip()
        if not token:
            raise MissingCredential("Access token required")
        return self.verify(token)

    def authenticate(self, request: web.Request) -> SessionIdentity:
        """Authenticate a request and attach its identity.

        The identity is stored as ``request[SESSION_IDENTITY]``.
        """
        identity = self.authenticate_header(request.headers.get("Authorization"))
        request[SESSION_IDENTITY] = identity
        return identity


def _error_body(message: str) -> bytes:
    return orjson.dumps({"error": message})


def http_error(err: AuthenticationError) -> web.HTTPException:
    """Map an authentication failure to a generic aiohttp error response.

    The body never carries the failure detail: a wrong password and an
    unknown email produce the same response.
    """
    if isinstance(err, MissingCredential):
        return web.HTTPUnauthorized(
            body=_error_body("Access token required"),
            content_type="application/json",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(err, LoginFailed):
        return web.HTTPUnauthorized(
            body=_error_body(LOGIN_FAILED_MESSAGE),
            content_type="application/json",
        )
    return web.HTTPForbidden(
        body=_error_body("Invalid or expired token"),
        content_type="application/json",
    )
