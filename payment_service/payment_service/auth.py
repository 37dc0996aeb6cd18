"""Session-based authentication guard."""

import secrets
from typing import Callable

import pydantic
import requests
from fastapi import Request
from logging_utils.config import get_component_logger

from .config import PaymentSettings
from .exceptions import AuthenticationError, AuthServiceUnavailableError
from .schemas import User

logger = get_component_logger("payment-service", "auth")

SessionResolver = Callable[[str], User | None]


class RemoteSessionResolver:
    """Looks sessions up in the storefront auth service that owns sign-in.

    The token is forwarded as the session cookie and as a bearer token to the
    service's status endpoint, which answers ``{"authenticated": bool, "user": {...}}``.
    """

    def __init__(self, settings: PaymentSettings):
        """Initialize the resolver.

        Args:
            settings: Service settings; ``auth_service_url`` must be set
        """
        if not settings.auth_service_url:
            raise ValueError("auth_service_url is required for remote session lookup")
        self.url = f"{settings.auth_service_url.rstrip('/')}/api/auth/status"
        self.timeout = settings.auth_timeout_seconds
        self.cookie_name = settings.session_cookie

    def __call__(self, token: str) -> User | None:
        """Get the user behind a session token, or None when it is not signed in.

        Raises:
            AuthServiceUnavailableError: If the auth service cannot be reached or answers garbage
        """
        try:
            response = requests.get(
                self.url,
                cookies={self.cookie_name: token},
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Session lookup failed: {e}")
            raise AuthServiceUnavailableError(str(e)) from e

        if response.status_code == 401:
            return None
        if response.status_code >= 400:
            logger.error(f"Session lookup returned {response.status_code}")
            raise AuthServiceUnavailableError(f"HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as e:
            raise AuthServiceUnavailableError("malformed response") from e

        user = data.get("user") if isinstance(data, dict) else None
        if not data.get("authenticated") or not isinstance(user, dict):
            return None
        try:
            return User(
                id=str(user.get("_id") or user.get("id") or ""),
                email=user.get("email"),
                name=user.get("name") or "",
            )
        except pydantic.ValidationError as e:
            logger.error(f"Malformed user in session lookup: {e}")
            raise AuthServiceUnavailableError("malformed response") from e


class SessionAuthGuard:
    """Resolves requests to users from session tokens.

    Tokens are presented either as the session cookie or as an
    ``Authorization: Bearer`` header. Sessions opened locally are checked
    first, then the optional resolver backed by the shared session store.
    """

    def __init__(self, resolver: SessionResolver | None = None, cookie_name: str = "session"):
        """Initialize an empty session table.

        Args:
            resolver: Lookup for sessions opened elsewhere
            cookie_name: Name of the session cookie
        """
        self._sessions: dict[str, User] = {}
        self.resolver = resolver
        self.cookie_name = cookie_name

    @classmethod
    def from_settings(cls, settings: PaymentSettings) -> "SessionAuthGuard":
        """Build a guard that uses the auth service when one is configured."""
        resolver = RemoteSessionResolver(settings) if settings.auth_service_url else None
        if resolver is None:
            logger.warning("No auth service configured, only locally opened sessions resolve")
        return cls(resolver, settings.session_cookie)

    def open_session(self, user: User) -> str:
        """Open a session for a user.

        Args:
            user: The signed-in user

        Returns:
            str: The session token
        """
        token = secrets.token_urlsafe(32)
        self._sessions[token] = user
        logger.info(f"Session opened for user {user.id}")
        return token

    def close_session(self, token: str) -> None:
        user = self._sessions.pop(token, None)
        if user:
            logger.info(f"Session closed for user {user.id}")

    def resolve(self, token: str | None) -> User:
        """Get the user behind a token.

        Raises:
            AuthenticationError: If the token is missing or unknown
            AuthServiceUnavailableError: If the shared session store cannot be reached
        """
        if not token:
            raise AuthenticationError()
        user = self._sessions.get(token)
        if user is None and self.resolver is not None:
            user = self.resolver(token)
        if user is None:
            raise AuthenticationError()
        return user

    def resolve_request(self, request: Request) -> User:
        """Get the user of a request from its bearer token or session cookie."""
        header = request.headers.get("Authorization", "")
        scheme, _, credentials = header.partition(" ")
        if scheme.lower() == "bearer" and credentials:
            return self.resolve(credentials.strip())
        return self.resolve(request.cookies.get(self.cookie_name))
