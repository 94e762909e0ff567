"""
Client for the backend's REST API.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Mapping
from urllib.parse import urlencode

import httpx

from .config import DEFAULT_BASE_URL, DEFAULT_TIMEOUT_S, ClientSettings, get_settings
from .errors import ServiceClientError
from .login import CLILoginFlow, PasswordlessLoginFlow
from .models import (
    DEFAULT_POLLING_INTERVAL_SECONDS,
    DEFAULT_POLLING_TIMEOUT_SECONDS,
    AuthToken,
    CancellationToken,
    CLILoginResponse,
    LoginConfirmResponse,
    PasswordlessLoginResponse,
    RefreshTokenUpdatedHandler,
    UserResponse,
    VerifyResponse,
)
from .session import AUTH_RETRY_STATUSES, SessionManager

logger = logging.getLogger(__name__)

SIGNOUT_PATH = "/auth/signout"
GITHUB_LOGIN_PATH = "/auth/github"
USER_INFO_PATH = "/id/user"


class ServiceClient:
    """
    Client for the backend service.

    Owns one SessionManager and the login flows built on it. Resource calls
    go through ``fetch``, which refreshes the access token as needed.

    Args:
        base_url: Backend origin. Default: https://superface.ai
        refresh_token: Long-lived credential, e.g. loaded from a cookie store
        common_headers: Headers sent with every request
        refresh_token_updated_handler: Awaited with (base_url, refresh_token)
            whenever the refresh token changes, (base_url, None) on logout
        timeout_s: Request timeout in seconds. Default: 10.0
        http_client: Shared httpx.AsyncClient (optional)
        polling_timeout_seconds: Default login verification timeout
        polling_interval_seconds: Default pause between verification polls

    Example:
        >>> client = ServiceClient(refresh_token=stored_refresh_token)
        >>> login = await client.passwordless_login("user@example.com")
        >>> if login.success:
        ...     result = await client.verify_passwordless_login(login.verify_url)
        ...     if result.status is VerificationStatus.CONFIRMED:
        ...         user = await client.get_user_info()
    """

    def __init__(
        self,
        base_url: str | None = None,
        refresh_token: str | None = None,
        common_headers: Mapping[str, str] | None = None,
        refresh_token_updated_handler: RefreshTokenUpdatedHandler | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        http_client: httpx.AsyncClient | None = None,
        polling_timeout_seconds: float = DEFAULT_POLLING_TIMEOUT_SECONDS,
        polling_interval_seconds: float = DEFAULT_POLLING_INTERVAL_SECONDS,
    ):
        self.session = SessionManager(
            base_url=base_url or DEFAULT_BASE_URL,
            refresh_token=refresh_token,
            common_headers=common_headers,
            refresh_token_updated_handler=refresh_token_updated_handler,
            timeout_s=timeout_s,
            http_client=http_client,
        )
        self.passwordless = PasswordlessLoginFlow(
            self.session,
            polling_timeout_seconds=polling_timeout_seconds,
            polling_interval_seconds=polling_interval_seconds,
        )
        self.cli = CLILoginFlow(
            self.session,
            polling_timeout_seconds=polling_timeout_seconds,
            polling_interval_seconds=polling_interval_seconds,
        )

    @classmethod
    def from_env(
        cls,
        settings: ClientSettings | None = None,
        **kwargs: Any,
    ) -> "ServiceClient":
        """
        Create a client from SERVICE_CLIENT_* environment settings.

        Keyword arguments override the loaded settings.
        """
        settings = settings or get_settings()
        options: dict[str, Any] = {
            "base_url": settings.base_url,
            "refresh_token": settings.refresh_token,
            "timeout_s": settings.timeout_s,
            "polling_timeout_seconds": settings.polling_timeout_seconds,
            "polling_interval_seconds": settings.polling_interval_seconds,
        }
        options.update(kwargs)
        return cls(**options)

    def set_options(
        self,
        base_url: str | None = None,
        refresh_token: str | None = None,
        common_headers: Mapping[str, str] | None = None,
        refresh_token_updated_handler: RefreshTokenUpdatedHandler | None = None,
    ) -> None:
        self.session.configure(
            base_url=base_url,
            refresh_token=refresh_token,
            common_headers=common_headers,
            refresh_token_updated_handler=refresh_token_updated_handler,
        )

    async def login(self, auth_token: AuthToken) -> None:
        await self.session.login(auth_token)

    async def logout(self) -> None:
        await self.session.logout()

    def is_access_token_expired(self) -> bool:
        return self.session.is_access_token_expired()

    async def refresh_access_token(self, cookie: str | None = None) -> AuthToken | None:
        return await self.session.refresh_access_token(cookie=cookie)

    async def fetch(
        self,
        path: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        content: str | bytes | None = None,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        authenticate: bool = True,
    ) -> httpx.Response:
        """Send a request relative to base_url. See SessionManager.authenticated_request."""
        return await self.session.authenticated_request(
            path,
            method=method,
            headers=headers,
            content=content,
            json=json,
            params=params,
            authenticate=authenticate,
        )

    async def passwordless_login(
        self,
        email: str,
        mode: Literal["login", "register"] = "login",
    ) -> PasswordlessLoginResponse:
        return await self.passwordless.initiate(email, mode=mode)

    async def verify_passwordless_login(
        self,
        verify_url: str,
        polling_timeout_seconds: float | None = None,
        polling_interval_seconds: float | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> VerifyResponse:
        return await self.passwordless.verify(
            verify_url,
            polling_timeout_seconds=polling_timeout_seconds,
            polling_interval_seconds=polling_interval_seconds,
            cancellation_token=cancellation_token,
        )

    async def confirm_passwordless_login(self, email: str, code: str) -> LoginConfirmResponse:
        return await self.passwordless.confirm(email, code)

    async def cli_login(self) -> CLILoginResponse:
        return await self.cli.initiate()

    async def verify_cli_login(
        self,
        verify_url: str,
        polling_timeout_seconds: float | None = None,
        polling_interval_seconds: float | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> VerifyResponse:
        return await self.cli.verify(
            verify_url,
            polling_timeout_seconds=polling_timeout_seconds,
            polling_interval_seconds=polling_interval_seconds,
            cancellation_token=cancellation_token,
        )

    async def confirm_cli_login(self, code: str) -> LoginConfirmResponse:
        return await self.cli.confirm(code)

    async def sign_out(self, from_all_devices: bool = False) -> None:
        """
        End the session on the backend and forget local credentials.

        Raises:
            ServiceClientError: If there was no session, or the backend
                refused for another reason
            httpx.HTTPError: On network errors
        """
        response = await self.session.authenticated_request(
            SIGNOUT_PATH,
            method="DELETE",
            json={"all": from_all_devices},
            authenticate=False,
        )

        if response.is_success:
            await self.session.logout()
            return None

        logger.warning("Sign out failed with status %s", response.status_code)
        if response.status_code in AUTH_RETRY_STATUSES:
            raise ServiceClientError("No session found, couldn't log out")
        raise ServiceClientError("Couldn't log out due to unknown reasons")

    def get_github_login_url(
        self,
        return_to: str | None = None,
        mode: Literal["register"] | None = None,
    ) -> str:
        """
        Build the URL that starts a GitHub OAuth login in the browser.

        Examples:
            >>> ServiceClient(base_url="http://baseurl").get_github_login_url(return_to="/x?y=1")
            'http://baseurl/auth/github?return_to=%2Fx%3Fy%3D1'
        """
        url = f"{self.session.base_url}{GITHUB_LOGIN_PATH}"

        params: dict[str, str] = {}
        if return_to:
            params["return_to"] = return_to
        if mode:
            params["mode"] = mode

        if params:
            return f"{url}?{urlencode(params)}"
        return url

    async def get_user_info(self) -> UserResponse:
        """
        Fetch the identity of the logged in user.

        Raises:
            ServiceApiError: If the backend answers with an error
        """
        response = await self.fetch(USER_INFO_PATH, headers={"Accept": "application/json"})
        self.session.unwrap(response)
        return UserResponse.from_dict(response.json())
