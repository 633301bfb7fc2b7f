"""Session lifecycle on top of the remote auth endpoints."""

from __future__ import annotations

import logging
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime

from invsync.errors import Unauthenticated, ValidationFailed
from invsync.models import User, utcnow
from invsync.remote import RemoteInventoryClient

logger = logging.getLogger(__name__)

#: User label of the active session, read by the log formatter.
current_session_user: ContextVar[str] = ContextVar("current_session_user", default="-")


@dataclass
class SessionContext:
    """Scope of everything the ledger loads for one signed-in user."""

    user: User
    auth_mode: str = "cookie"
    started_at: datetime = field(default_factory=utcnow)
    expired: bool = False
    expired_reason: str | None = None

    def __post_init__(self) -> None:
        current_session_user.set(self.user.email or self.user.id)

    @property
    def active(self) -> bool:
        return not self.expired

    def expire(self, reason: str | None = None) -> None:
        if self.expired:
            return
        self.expired = True
        self.expired_reason = reason
        current_session_user.set("-")
        logger.warning("Session for %s expired: %s", self.user.email, reason or "logged out")

    def ensure_active(self) -> None:
        if self.expired:
            raise Unauthenticated()


class AuthManager:
    def __init__(self, remote: RemoteInventoryClient) -> None:
        self.remote = remote

    async def login(self, email: str, password: str) -> SessionContext:
        email = (email or "").strip()
        if not email or not password:
            raise ValidationFailed("Email and password are required.")
        try:
            user = await self.remote.login(email, password)
        except Unauthenticated as exc:
            raise Unauthenticated("Invalid email or password.") from exc
        logger.info("Signed in as %s", user.email)
        return SessionContext(user=user, auth_mode=self.remote.auth_mode)

    async def register(self, email: str, password: str, name: str) -> SessionContext:
        missing = [
            label
            for label, value in (("email", email), ("password", password), ("name", name))
            if not (value or "").strip()
        ]
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")
        user = await self.remote.register(email.strip(), password, name.strip())
        logger.info("Registered account %s", user.email)
        return SessionContext(user=user, auth_mode=self.remote.auth_mode)

    async def logout(self, session: SessionContext) -> None:
        try:
            await self.remote.logout()
        except Unauthenticated:
            logger.info("Server session was already closed")
        finally:
            session.expire("logged out")

    async def check_session(self) -> bool:
        return await self.remote.check_session()

    async def get_profile(self) -> User:
        return await self.remote.get_profile()

    async def resume(self) -> SessionContext | None:
        """Rebuild a session from an existing cookie or token, if still valid."""

        if not await self.remote.check_session():
            return None
        user = await self.remote.get_profile()
        return SessionContext(user=user, auth_mode=self.remote.auth_mode)
