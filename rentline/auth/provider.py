"""Password authentication with a signed, persisted session token."""

from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol

import structlog
from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from rentline.config.settings import AUTH_TOKEN_KEY
from rentline.exceptions import AuthFailure, BackendError
from rentline.models.database import AuthCredential, UserProfile
from rentline.models.domain import AuthEvent
from rentline.types import AuthEventType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from rentline.storage.kv import KeyValueStore

logger = structlog.get_logger(__name__)

AuthListener = Callable[[AuthEvent], Awaitable[None]]

_password_hasher = PasswordHasher(type=Type.ID)


class AuthProvider(Protocol):
    async def get_current_user_id(self) -> str | None: ...

    async def sign_in(self, email: str, secret: str) -> str: ...

    async def sign_up(
        self,
        email: str,
        secret: str,
        first_name: str = "",
        last_name: str = "",
        tier_slug: str | None = None,
    ) -> str: ...

    async def sign_out(self) -> None: ...

    def subscribe(self, listener: AuthListener) -> Callable[[], None]: ...


def hash_secret(secret: str) -> str:
    return _password_hasher.hash(secret)


def verify_secret(secret: str, encoded: str) -> bool:
    try:
        return _password_hasher.verify(encoded, secret)
    except VerifyMismatchError:
        return False
    except (InvalidHash, VerificationError):
        logger.warning("password_hash_unusable")
        return False


class LocalAuthProvider:
    """Credentials in the backend DB; session token kept in the persisted store.

    The token is ``user_id.issued_at.signature`` so a restarted process can
    restore the credential, and a tampered or expired token is ignored.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        secret_key: str,
        persisted: KeyValueStore,
        max_age: int = 7 * 86400,
    ) -> None:
        self._engine = engine
        self._secret = secret_key.encode()
        self._persisted = persisted
        self._max_age = max_age
        self._listeners: list[AuthListener] = []

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def get_current_user_id(self) -> str | None:
        token = self._persisted.get(AUTH_TOKEN_KEY)
        if not token:
            return None
        user_id = self._validate_token(token)
        if user_id is None:
            logger.warning("auth_token_rejected")
            self._persisted.clear(AUTH_TOKEN_KEY)
        return user_id

    async def sign_in(self, email: str, secret: str) -> str:
        try:
            async with AsyncSession(self._engine) as session:
                stmt = select(AuthCredential).where(col(AuthCredential.email) == email.lower())
                credential = (await session.execute(stmt)).scalars().first()
        except SQLAlchemyError as exc:
            raise BackendError(f"credential lookup failed: {exc}") from exc

        if credential is None or not verify_secret(secret, credential.password_hash):
            logger.info("sign_in_rejected", email=email)
            raise AuthFailure("Invalid login credentials")

        await self._establish(credential.user_id)
        return credential.user_id

    async def sign_up(
        self,
        email: str,
        secret: str,
        first_name: str = "",
        last_name: str = "",
        tier_slug: str | None = None,
    ) -> str:
        if not email or not secret:
            raise AuthFailure("Email and password are required")
        credential = AuthCredential(email=email.lower(), password_hash=hash_secret(secret))
        profile = UserProfile(
            user_id=credential.user_id,
            email=email.lower(),
            first_name=first_name or None,
            last_name=last_name or None,
            selected_tier=tier_slug,
        )
        try:
            async with AsyncSession(self._engine) as session:
                session.add(credential)
                session.add(profile)
                await session.commit()
        except IntegrityError as exc:
            raise AuthFailure("User already registered") from exc
        except SQLAlchemyError as exc:
            raise BackendError(f"registration failed: {exc}") from exc

        logger.info("user_registered", user_id=credential.user_id, tier=tier_slug)
        await self._establish(credential.user_id)
        return credential.user_id

    async def sign_out(self) -> None:
        token = self._persisted.get(AUTH_TOKEN_KEY)
        self._persisted.clear(AUTH_TOKEN_KEY)
        if token is None:
            return
        logger.info("signed_out")
        await self._notify(AuthEvent(type=AuthEventType.SIGNED_OUT))

    async def _establish(self, user_id: str) -> None:
        self._persisted.set(AUTH_TOKEN_KEY, self._issue_token(user_id))
        logger.info("signed_in", user_id=user_id)
        await self._notify(AuthEvent(type=AuthEventType.SIGNED_IN, identity_id=user_id))

    async def _notify(self, event: AuthEvent) -> None:
        for listener in list(self._listeners):
            await listener(event)

    def _issue_token(self, user_id: str) -> str:
        payload = f"{user_id}.{int(time.time())}"
        return f"{payload}.{self._sign(payload)}"

    def _validate_token(self, token: str) -> str | None:
        parts = token.split(".")
        if len(parts) != 3:
            return None
        user_id, issued_raw, signature = parts
        if not hmac.compare_digest(signature, self._sign(f"{user_id}.{issued_raw}")):
            return None
        try:
            issued_at = int(issued_raw)
        except ValueError:
            return None
        if time.time() - issued_at > self._max_age:
            return None
        return user_id

    def _sign(self, data: str) -> str:
        """Create HMAC signature for a token."""
        return hmac.new(self._secret, data.encode(), hashlib.sha256).hexdigest()[:32]
