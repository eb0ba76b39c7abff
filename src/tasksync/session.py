"""Session management: who is signed in, and telling listeners when that changes.

``SessionManager`` wraps the auth calls of ``TaskStoreClient``. It installs
the access token on the client after a successful sign-in, clears it on
sign-out, and notifies registered listeners (such as the task view model)
with an ``AuthEvent`` and the new identity.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tasksync.api.exceptions import RemoteError
from tasksync.api.models import AuthEvent, AuthSession, UserIdentity
from tasksync.notifications import LoggingNotifier, Notifier

if TYPE_CHECKING:
    from tasksync.api.client import TaskStoreClient
    from tasksync.api.protocols import IdentityListener

logger = logging.getLogger(__name__)

MSG_SIGNED_IN = "Signed in successfully!"
MSG_SIGNED_UP = "Account created successfully!"
MSG_SIGNED_OUT = "Signed out successfully!"


@dataclass(frozen=True, slots=True)
class AuthResult:
    """Outcome of a session operation."""

    ok: bool
    user: UserIdentity | None = None
    error: Exception | None = None

    def __bool__(self) -> bool:
        return self.ok


class SessionManager:
    """Owns the current auth session and broadcasts identity changes.

    Args:
        client: Backend client used for auth calls and for the access token
        notifier: Sink for user-visible messages (logs them by default)
    """

    def __init__(self, client: TaskStoreClient, notifier: Notifier | None = None) -> None:
        self._client = client
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._session: AuthSession | None = None
        self._listeners: list[IdentityListener] = []

    def __repr__(self) -> str:
        user_id = self.current_user.id if self.current_user else None
        return f"SessionManager(user_id={user_id!r})"

    @property
    def current_user(self) -> UserIdentity | None:
        return self._session.user if self._session else None

    @property
    def session(self) -> AuthSession | None:
        return self._session

    def add_listener(self, listener: IdentityListener) -> Callable[[], None]:
        """Register ``listener`` for identity changes; returns a remover."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def _emit(self, event: AuthEvent, user: UserIdentity | None) -> None:
        logger.debug("Auth event %s (user=%s)", event, user.id if user else None)
        for listener in list(self._listeners):
            try:
                result = listener(event, user)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Identity listener failed for %s", event)

    async def _install(self, session: AuthSession, event: AuthEvent) -> None:
        self._session = session
        self._client.set_access_token(session.access_token)
        await self._emit(event, session.user)

    def _fail(self, action: str, error: Exception) -> AuthResult:
        logger.error("%s failed: %s", action, error)
        self._notifier.error(str(error))
        return AuthResult(ok=False, error=error)

    async def sign_up(self, email: str, password: str, full_name: str | None = None) -> AuthResult:
        """Create an account and its profile row.

        If the backend returns a session right away (no email confirmation),
        the new user is also signed in.
        """
        try:
            user, session = await self._client.sign_up(email, password, full_name)
            if session is not None:
                self._session = session
                self._client.set_access_token(session.access_token)
            await self._client.create_profile(user.id, user.email or email, full_name)
        except RemoteError as e:
            return self._fail("Sign-up", e)

        if session is not None:
            await self._emit(AuthEvent.SIGNED_IN, session.user)
        self._notifier.success(MSG_SIGNED_UP)
        return AuthResult(ok=True, user=user)

    async def sign_in(self, email: str, password: str) -> AuthResult:
        """Sign in with email and password."""
        try:
            session = await self._client.sign_in_with_password(email, password)
        except RemoteError as e:
            return self._fail("Sign-in", e)

        await self._install(session, AuthEvent.SIGNED_IN)
        self._notifier.success(MSG_SIGNED_IN)
        return AuthResult(ok=True, user=session.user)

    async def refresh(self) -> AuthResult:
        """Renew the access token; the identity stays the same."""
        if self._session is None or not self._session.refresh_token:
            return AuthResult(ok=False)

        try:
            session = await self._client.refresh_session(self._session.refresh_token)
        except RemoteError as e:
            logger.warning("Session refresh failed: %s", e)
            return AuthResult(ok=False, error=e)

        await self._install(session, AuthEvent.TOKEN_REFRESHED)
        return AuthResult(ok=True, user=session.user)

    async def sign_out(self) -> AuthResult:
        """Sign out remotely and locally.

        The local session is always cleared, even when the backend call
        fails, so no further request is made on behalf of the old identity.
        """
        if self._session is None:
            return AuthResult(ok=True)

        error: RemoteError | None = None
        try:
            await self._client.sign_out()
        except RemoteError as e:
            error = e

        self._session = None
        self._client.set_access_token(None)
        await self._emit(AuthEvent.SIGNED_OUT, None)

        if error is not None:
            return self._fail("Sign-out", error)
        self._notifier.success(MSG_SIGNED_OUT)
        return AuthResult(ok=True)
