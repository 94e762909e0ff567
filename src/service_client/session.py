"""
Session state and the authenticated request primitive.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

import httpx

from .config import DEFAULT_TIMEOUT_S
from .errors import ConfigurationError, ProtocolError, ServiceApiError
from .headers import bearer_header, merge_headers, redact_headers, refresh_token_cookie
from .models import AuthToken, RefreshTokenUpdatedHandler

logger = logging.getLogger(__name__)

TOKEN_PATH = "/auth/token"

# Statuses that trigger the single refresh-and-retry
AUTH_RETRY_STATUSES = frozenset({401, 403})


class SessionManager:
    """
    Holds the credentials of one client and signs requests with them.

    The manager keeps at most one access token. Requests that take part in
    authentication refresh an expired token first and, if the backend still
    answers 401/403, refresh and retry exactly once.

    Args:
        base_url: Backend origin, e.g. https://superface.ai
        refresh_token: Long-lived credential used to mint access tokens
        common_headers: Headers sent with every request (lowest precedence)
        refresh_token_updated_handler: Awaited with (base_url, refresh_token)
            when login rotates the refresh token and (base_url, None) on logout
        timeout_s: Request timeout in seconds. Default: 10.0
        http_client: Shared httpx.AsyncClient. When omitted a short-lived
            client is opened for every request.
        clock: Returns the current unix time in seconds. Default: time.time

    Example:
        >>> session = SessionManager(base_url="https://superface.ai", refresh_token="RT")
        >>> response = await session.authenticated_request("/id/user")
    """

    def __init__(
        self,
        base_url: str | None = None,
        refresh_token: str | None = None,
        common_headers: Mapping[str, str] | None = None,
        refresh_token_updated_handler: RefreshTokenUpdatedHandler | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url: str | None = None
        self.common_headers: dict[str, str] | None = None
        self.timeout_s = timeout_s

        self._auth_token: AuthToken | None = None
        self._auth_token_expires_at: int | None = None
        self._refresh_token: str | None = None
        self._refresh_token_updated_handler: RefreshTokenUpdatedHandler | None = None
        self._http_client = http_client
        self._clock = clock

        self.configure(
            base_url=base_url,
            refresh_token=refresh_token,
            common_headers=common_headers,
            refresh_token_updated_handler=refresh_token_updated_handler,
        )

    @property
    def auth_token(self) -> AuthToken | None:
        return self._auth_token

    @property
    def access_token_expires_at(self) -> int | None:
        return self._auth_token_expires_at

    @property
    def refresh_token(self) -> str | None:
        return self._refresh_token

    def configure(
        self,
        base_url: str | None = None,
        refresh_token: str | None = None,
        common_headers: Mapping[str, str] | None = None,
        refresh_token_updated_handler: RefreshTokenUpdatedHandler | None = None,
    ) -> None:
        """Merge options into the session. Only given values overwrite."""
        if base_url:
            self.base_url = base_url.rstrip("/")
        if refresh_token:
            self._refresh_token = refresh_token
        if common_headers:
            self.common_headers = dict(common_headers)
        if refresh_token_updated_handler is not None:
            self._refresh_token_updated_handler = refresh_token_updated_handler

    def _now(self) -> int:
        return int(self._clock())

    def _require_base_url(self) -> str:
        if not self.base_url:
            raise ConfigurationError("Client is not initialized, base_url not configured")
        return self.base_url

    async def login(self, auth_token: AuthToken) -> None:
        """
        Store a freshly issued token and compute its expiry.

        The refresh token handler is notified when the token carries a refresh
        token different from the one known before.
        """
        previous_refresh_token = self._refresh_token
        new_refresh_token = auth_token.refresh_token

        self._auth_token = auth_token
        self._auth_token_expires_at = self._now() + auth_token.expires_in
        if new_refresh_token:
            self._refresh_token = new_refresh_token

        logger.info("Logged in, access token expires at %s", self._auth_token_expires_at)

        if (
            self._refresh_token_updated_handler is not None
            and self.base_url
            and new_refresh_token
            and new_refresh_token != previous_refresh_token
        ):
            await self._refresh_token_updated_handler(self.base_url, new_refresh_token)

    async def logout(self) -> None:
        """Forget all credentials and notify the refresh token handler."""
        self._auth_token = None
        self._auth_token_expires_at = None
        self._refresh_token = None

        logger.info("Logged out")

        if self._refresh_token_updated_handler is not None and self.base_url:
            await self._refresh_token_updated_handler(self.base_url, None)

    def is_access_token_expired(self) -> bool:
        if self._auth_token is None:
            return True
        if self._auth_token_expires_at is not None and self._now() >= self._auth_token_expires_at:
            return True
        return False

    async def refresh_access_token(self, cookie: str | None = None) -> AuthToken | None:
        """
        Exchange the refresh token for a new access token.

        Args:
            cookie: Cookie header to send instead of the one built from the
                current refresh token

        Returns:
            The new token, or None if the backend did not issue one

        Raises:
            ConfigurationError: If base_url is not configured
            ProtocolError: If the backend issued a body that is not a token
            httpx.HTTPError: On network errors
        """
        base_url = self._require_base_url()
        headers = merge_headers(
            self.common_headers,
            {"cookie": cookie or refresh_token_cookie(self._refresh_token)},
        )

        response = await self.send("POST", f"{base_url}{TOKEN_PATH}", headers=headers)

        if response.status_code != 201:
            logger.warning("Access token refresh failed with status %s", response.status_code)
            return None

        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError(
                f"Cannot deserialize token response: {e}",
                status_code=response.status_code,
            ) from e

        auth_token = AuthToken.from_dict(data)
        await self.login(auth_token)
        logger.debug("Access token refreshed")

        return auth_token

    async def authenticated_request(
        self,
        path: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        content: str | bytes | None = None,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        authenticate: bool = True,
    ) -> httpx.Response:
        """
        Send a request to ``{base_url}{path}``.

        With ``authenticate`` (default) an expired token is refreshed first,
        the bearer header overrides any caller or common Authorization header,
        and a 401/403 answer leads to one refresh and one retry. Without it
        the request carries only common and caller headers.

        Raises:
            ConfigurationError: If base_url is not configured
            httpx.HTTPError: On network errors, never retried
        """
        url = f"{self._require_base_url()}{path}"

        if not authenticate:
            return await self.send(
                method,
                url,
                headers=merge_headers(self.common_headers, headers),
                content=content,
                json=json,
                params=params,
            )

        if self.is_access_token_expired():
            logger.debug("Access token expired, refreshing before %s %s", method, path)
            await self.refresh_access_token()

        response = await self.send(
            method,
            url,
            headers=self._authenticated_headers(headers),
            content=content,
            json=json,
            params=params,
        )

        if response.status_code in AUTH_RETRY_STATUSES:
            logger.warning(
                "%s %s returned %s, refreshing access token and retrying once",
                method,
                path,
                response.status_code,
            )
            await self.refresh_access_token()
            response = await self.send(
                method,
                url,
                headers=self._authenticated_headers(headers),
                content=content,
                json=json,
                params=params,
            )

        return response

    def _authenticated_headers(self, headers: Mapping[str, str] | None) -> dict[str, str]:
        auth = bearer_header(self._auth_token.access_token) if self._auth_token else None
        return merge_headers(self.common_headers, headers, auth)

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        content: str | bytes | None = None,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a bare request to an absolute URL. No session headers are added."""
        logger.debug("%s %s headers=%s", method, url, redact_headers(headers or {}))

        if self._http_client is not None:
            return await self._http_client.request(
                method, url, headers=headers, content=content, json=json, params=params
            )

        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            return await client.request(
                method, url, headers=headers, content=content, json=json, params=params
            )

    def unwrap(self, response: httpx.Response) -> httpx.Response:
        """
        Return the response if it is a success, raise otherwise.

        Raises:
            ServiceApiError: Built from the problem details body
        """
        if response.is_success:
            return response

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, Mapping):
            data = {
                "status": response.status_code,
                "instance": str(response.request.url.path),
                "title": response.reason_phrase,
                "detail": response.text,
            }

        raise ServiceApiError(data)
