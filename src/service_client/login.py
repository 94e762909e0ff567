"""
Passwordless (magic link) and CLI login flows.

Both flows hand out a verify URL which is polled until the user confirms the
login, the login token expires or was already used, polling times out or the
caller cancels. A confirmed login is fed back into the session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Literal, Mapping

import httpx

from .errors import ProtocolError
from .models import (
    DEFAULT_POLLING_INTERVAL_SECONDS,
    DEFAULT_POLLING_TIMEOUT_SECONDS,
    SERVER_VERIFICATION_STATUSES,
    AuthToken,
    CancellationToken,
    CLILoginResponse,
    LoginConfirmationErrorCode,
    LoginConfirmResponse,
    PasswordlessLoginResponse,
    SuccessfulCLILogin,
    SuccessfulConfirm,
    SuccessfulLogin,
    UnsuccessfulConfirm,
    UnsuccessfulLogin,
    VerificationStatus,
    VerifyResponse,
    parse_timestamp,
)
from .session import SessionManager

logger = logging.getLogger(__name__)

PASSWORDLESS_PATH = "/auth/passwordless"
PASSWORDLESS_CONFIRM_PATH = "/auth/passwordless/confirm"
CLI_LOGIN_PATH = "/auth/cli"
CLI_CONFIRM_PATH = "/auth/cli/confirm"

UNEXPECTED_API_RESPONSE = "Unexpected API response"

JSON_ACCEPT = {"Accept": "application/json"}


def confirmation_error_code(title: Any) -> LoginConfirmationErrorCode:
    """
    Classify a failed confirmation by its problem title.

    The title is the only failure signal the confirm endpoints send, so the
    match is a case-insensitive substring test, checked in this order.

    Examples:
        >>> confirmation_error_code("Code is expired")
        <LoginConfirmationErrorCode.EXPIRED: 'EXPIRED'>
        >>> confirmation_error_code("Login was already confirmed")
        <LoginConfirmationErrorCode.USED: 'USED'>
        >>> confirmation_error_code("Bad code")
        <LoginConfirmationErrorCode.INVALID: 'INVALID'>
    """
    lowered = title.lower() if isinstance(title, str) else ""
    if "expir" in lowered:
        return LoginConfirmationErrorCode.EXPIRED
    if "already confirm" in lowered or "used" in lowered:
        return LoginConfirmationErrorCode.USED
    return LoginConfirmationErrorCode.INVALID


def _try_parse_login_json(response: httpx.Response) -> tuple[Any, UnsuccessfulLogin | None]:
    """Decode a login response body, turning parse errors into a result."""
    try:
        return response.json(), None
    except ValueError as e:
        return None, UnsuccessfulLogin(title=f"Cannot deserialize login API response: {e}")


def _problem(data: Any) -> UnsuccessfulLogin | None:
    """Build a failure from a problem details body, if it carries a title."""
    if isinstance(data, Mapping) and data.get("title"):
        return UnsuccessfulLogin(title=data["title"], detail=data.get("detail"))
    return None


def _parse_confirmation(response: httpx.Response) -> LoginConfirmResponse:
    try:
        data = response.json()
    except ValueError as e:
        raise ProtocolError(
            f"Cannot deserialize confirmation API response: {e}",
            status_code=response.status_code,
        ) from e

    if not isinstance(data, Mapping):
        data = {}

    if data.get("status") == VerificationStatus.CONFIRMED.value:
        return SuccessfulConfirm()

    return UnsuccessfulConfirm(code=confirmation_error_code(data.get("title")))


class _VerifyingLoginFlow:
    """Verify URL polling shared by the login flows."""

    def __init__(
        self,
        session: SessionManager,
        polling_timeout_seconds: float = DEFAULT_POLLING_TIMEOUT_SECONDS,
        polling_interval_seconds: float = DEFAULT_POLLING_INTERVAL_SECONDS,
    ):
        self.session = session
        self.polling_timeout_seconds = polling_timeout_seconds
        self.polling_interval_seconds = polling_interval_seconds

    async def verify(
        self,
        verify_url: str,
        polling_timeout_seconds: float | None = None,
        polling_interval_seconds: float | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> VerifyResponse:
        """
        Poll the verify URL until the login reaches a terminal status.

        Cancellation is checked right after every pending answer, before the
        timeout and before sleeping. The timeout is measured in elapsed time,
        so at least one poll is always made.

        Args:
            verify_url: URL returned when the login was initiated
            polling_timeout_seconds: Give up after this many seconds.
                Default: 60
            polling_interval_seconds: Pause between polls. Default: 1
            cancellation_token: Stops polling once cancellation is requested

        Returns:
            VerifyResponse; CONFIRMED carries the token, which is also logged
            into the session

        Raises:
            ProtocolError: If the verify endpoint answers outside the protocol
            httpx.HTTPError: On network errors
        """
        timeout = (
            self.polling_timeout_seconds
            if polling_timeout_seconds is None
            else polling_timeout_seconds
        )
        interval = (
            self.polling_interval_seconds
            if polling_interval_seconds is None
            else polling_interval_seconds
        )
        started = time.monotonic()

        while True:
            result = await self._fetch_verification(verify_url)

            if result.status is not VerificationStatus.PENDING:
                logger.info("Login verification finished with %s", result.status.value)
                return result

            if cancellation_token is not None and cancellation_token.is_cancellation_requested:
                cancellation_token.cancellation_finished()
                logger.info("Login verification polling cancelled")
                return VerifyResponse(status=VerificationStatus.POLLING_CANCELLED)

            if time.monotonic() - started >= timeout:
                logger.info("Login verification polling timed out after %ss", timeout)
                return VerifyResponse(status=VerificationStatus.POLLING_TIMEOUT)

            await asyncio.sleep(interval)

    async def _fetch_verification(self, verify_url: str) -> VerifyResponse:
        response = await self.session.send("GET", verify_url)
        logger.debug("Verify URL answered %s", response.status_code)

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError as e:
                raise ProtocolError(
                    f"Cannot deserialize verification API response: {e}",
                    status_code=200,
                ) from e
            auth_token = AuthToken.from_dict(data)
            await self.session.login(auth_token)
            return VerifyResponse(status=VerificationStatus.CONFIRMED, auth_token=auth_token)

        try:
            data = response.json()
        except ValueError:
            data = None
        title = data.get("title") if isinstance(data, Mapping) else None

        if response.status_code == 400:
            status = data.get("status") if isinstance(data, Mapping) else None
            try:
                verification_status = VerificationStatus(status)
            except ValueError:
                verification_status = None

            if verification_status in SERVER_VERIFICATION_STATUSES:
                return VerifyResponse(status=verification_status)

            raise ProtocolError(
                f"Token verification failed with error: {title}",
                title=title,
                status_code=400,
            )

        raise ProtocolError(
            f"Unexpected status code {response.status_code} received",
            title=title,
            status_code=response.status_code,
        )


class PasswordlessLoginFlow(_VerifyingLoginFlow):
    """
    Magic link login: an e-mail with a confirmation link is sent to the user
    while the client polls the returned verify URL.

    Example:
        >>> flow = PasswordlessLoginFlow(session)
        >>> login = await flow.initiate("user@example.com")
        >>> if login.success:
        ...     result = await flow.verify(login.verify_url)
    """

    async def initiate(
        self,
        email: str,
        mode: Literal["login", "register"] = "login",
    ) -> PasswordlessLoginResponse:
        """
        Ask the backend to send a login e-mail.

        Never raises for negative outcomes; an unknown e-mail or an
        unexpected answer comes back as UnsuccessfulLogin.

        Raises:
            ConfigurationError: If base_url is not configured
            httpx.HTTPError: On network errors
        """
        response = await self.session.authenticated_request(
            PASSWORDLESS_PATH,
            method="POST",
            params={"mode": mode},
            json={"email": email},
            authenticate=False,
        )

        if response.status_code == 200:
            data, error = _try_parse_login_json(response)
            if error is not None:
                return error

            if isinstance(data, Mapping):
                verify_url = data.get("verify_url")
                expires_at = parse_timestamp(data.get("expires_at"))
                if isinstance(verify_url, str) and verify_url and expires_at is not None:
                    return SuccessfulLogin(verify_url=verify_url, expires_at=expires_at)

            return UnsuccessfulLogin(title=UNEXPECTED_API_RESPONSE)

        if response.status_code == 400:
            data, error = _try_parse_login_json(response)
            if error is not None:
                return error

            return _problem(data) or UnsuccessfulLogin(title=UNEXPECTED_API_RESPONSE)

        return UnsuccessfulLogin(
            title=f"Unexpected status code {response.status_code} received"
        )

    async def confirm(self, email: str, code: str) -> LoginConfirmResponse:
        """
        Confirm a login with the code from the e-mail.

        Raises:
            ProtocolError: If the response body is not JSON
            httpx.HTTPError: On network errors
        """
        response = await self.session.authenticated_request(
            PASSWORDLESS_CONFIRM_PATH,
            params={"email": email, "code": code},
            headers=JSON_ACCEPT,
            authenticate=False,
        )
        return _parse_confirmation(response)


class CLILoginFlow(_VerifyingLoginFlow):
    """
    Browser confirmed login for command line tools: the user opens
    ``browser_url`` in a logged in browser while the CLI polls the verify URL.
    """

    async def initiate(self) -> CLILoginResponse:
        response = await self.session.authenticated_request(
            CLI_LOGIN_PATH,
            method="POST",
            authenticate=False,
        )

        data, error = _try_parse_login_json(response)
        if error is not None:
            return error

        if response.status_code == 201:
            if isinstance(data, Mapping):
                verify_url = data.get("verify_url")
                browser_url = data.get("browser_url")
                expires_at = parse_timestamp(data.get("expires_at"))
                if (
                    isinstance(verify_url, str)
                    and isinstance(browser_url, str)
                    and verify_url
                    and browser_url
                    and expires_at is not None
                ):
                    return SuccessfulCLILogin(
                        verify_url=verify_url,
                        browser_url=browser_url,
                        expires_at=expires_at,
                    )

            return UnsuccessfulLogin(title=UNEXPECTED_API_RESPONSE)

        return _problem(data) or UnsuccessfulLogin(
            title=f"Unexpected status code {response.status_code} received"
        )

    async def confirm(self, code: str) -> LoginConfirmResponse:
        """Confirm a CLI login from an already authenticated session."""
        response = await self.session.authenticated_request(
            CLI_CONFIRM_PATH,
            method="POST",
            params={"code": code},
            headers=JSON_ACCEPT,
        )
        return _parse_confirmation(response)
