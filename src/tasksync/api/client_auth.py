"""Auth mixin for the backend client.

Provides sign-up, password sign-in, token refresh, sign-out, and profile
creation. Session state (which token is current, who is signed in) lives in
``tasksync.session.SessionManager``; this mixin only performs the calls.
"""

import logging
from typing import TYPE_CHECKING, Any, cast

from tasksync.api.exceptions import RemoteError
from tasksync.api.models import AuthSession, UserIdentity

if TYPE_CHECKING:
    from tasksync.api.protocols import BaseClientProtocol

logger = logging.getLogger(__name__)

_TOKEN_ENDPOINT = "auth/v1/token"
_SIGNUP_ENDPOINT = "auth/v1/signup"
_LOGOUT_ENDPOINT = "auth/v1/logout"
_PROFILES_ENDPOINT = "rest/v1/profiles"


def _parse_session(response_data: Any, endpoint: str) -> AuthSession:
    try:
        return AuthSession.model_validate(response_data)
    except Exception as e:
        logger.exception("Failed to parse auth session response")
        raise RemoteError.create_parse_error(endpoint) from e


class AuthClientMixin:
    """Mixin providing auth endpoint calls for the backend client."""

    def _get_auth_base_client(self) -> "BaseClientProtocol":
        return cast("BaseClientProtocol", self)

    async def sign_up(
        self, email: str, password: str, full_name: str | None = None
    ) -> tuple[UserIdentity, AuthSession | None]:
        """Register a new account.

        When the project requires email confirmation the backend answers with
        the user only; otherwise it also returns a ready session.

        Args:
            email: Account email
            password: Account password
            full_name: Optional display name stored in user metadata

        Returns:
            tuple[UserIdentity, AuthSession | None]: The new user and its session, if any

        Raises:
            RemoteError: Any backend failure (e.g. 422 for a weak password)
        """
        body: dict[str, Any] = {"email": email, "password": password}
        if full_name:
            body["data"] = {"full_name": full_name}

        response_data = await self._get_auth_base_client().make_request(
            "POST", _SIGNUP_ENDPOINT, data=body
        )
        if isinstance(response_data, dict) and "access_token" in response_data:
            session = _parse_session(response_data, _SIGNUP_ENDPOINT)
            logger.debug("Signed up user %s with an active session", session.user.id)
            return session.user, session

        try:
            user = UserIdentity.model_validate(response_data)
        except Exception as e:
            logger.exception("Failed to parse sign-up response")
            raise RemoteError.create_parse_error(_SIGNUP_ENDPOINT) from e
        logger.debug("Signed up user %s pending confirmation", user.id)
        return user, None

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Exchange email and password for a session.

        Raises:
            RemoteError: Any backend failure (400 for invalid credentials)
        """
        response_data = await self._get_auth_base_client().make_request(
            "POST",
            _TOKEN_ENDPOINT,
            data={"email": email, "password": password},
            params={"grant_type": "password"},
        )
        session = _parse_session(response_data, _TOKEN_ENDPOINT)
        logger.debug("Signed in user %s", session.user.id)
        return session

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        """Exchange a refresh token for a new session.

        Raises:
            RemoteError: Any backend failure
        """
        response_data = await self._get_auth_base_client().make_request(
            "POST",
            _TOKEN_ENDPOINT,
            data={"refresh_token": refresh_token},
            params={"grant_type": "refresh_token"},
        )
        session = _parse_session(response_data, _TOKEN_ENDPOINT)
        logger.debug("Refreshed session for user %s", session.user.id)
        return session

    async def sign_out(self) -> bool:
        """Revoke the current access token on the backend.

        Returns:
            bool: True on success
        """
        await self._get_auth_base_client().make_request("POST", _LOGOUT_ENDPOINT)
        logger.debug("Signed out")
        return True

    async def create_profile(self, user_id: str, email: str, full_name: str | None) -> bool:
        """Insert the profile row that accompanies a new account.

        Returns:
            bool: True on success
        """
        await self._get_auth_base_client().make_request(
            "POST",
            _PROFILES_ENDPOINT,
            data={"id": user_id, "email": email, "full_name": full_name},
            headers={"Prefer": "return=minimal"},
        )
        logger.debug("Created profile for user %s", user_id)
        return True
