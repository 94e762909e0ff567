"""
Data models for the service client.

Login and confirmation outcomes are tagged results: every variant carries a
``success`` discriminant so callers can branch without try/except.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Literal, Mapping, Optional, Union

from .errors import ProtocolError


DEFAULT_POLLING_TIMEOUT_SECONDS = 60
DEFAULT_POLLING_INTERVAL_SECONDS = 1

# Invoked with (base_url, refresh_token) on login and (base_url, None) on logout
RefreshTokenUpdatedHandler = Callable[[str, Optional[str]], Awaitable[None]]


@dataclass(frozen=True)
class AuthToken:
    """
    Access token issued by the backend.

    Attributes:
        access_token: Bearer credential
        token_type: Token type, normally "Bearer"
        expires_in: Lifetime in seconds, relative to the moment of login
        refresh_token: Long-lived credential, if the backend rotated it
    """
    access_token: str
    token_type: str
    expires_in: int
    refresh_token: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> AuthToken:
        """
        Build a token from a decoded JSON body.

        Raises:
            ProtocolError: If the body is not a token
        """
        if not isinstance(data, Mapping):
            raise ProtocolError("Invalid token response: not an object")

        access_token = data.get("access_token")
        token_type = data.get("token_type")
        expires_in = data.get("expires_in")
        refresh_token = data.get("refresh_token")

        if not isinstance(access_token, str) or not isinstance(token_type, str):
            raise ProtocolError(
                "Invalid token response: missing access_token or token_type"
            )
        if isinstance(expires_in, bool) or not isinstance(expires_in, int):
            raise ProtocolError("Invalid token response: missing expires_in")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ProtocolError("Invalid token response: bad refresh_token")

        return cls(
            access_token=access_token,
            token_type=token_type,
            expires_in=expires_in,
            refresh_token=refresh_token,
        )


class VerificationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    EXPIRED = "EXPIRED"
    USED = "USED"
    POLLING_TIMEOUT = "POLLING_TIMEOUT"
    POLLING_CANCELLED = "POLLING_CANCELLED"


# Statuses the verify endpoint itself reports with HTTP 400
SERVER_VERIFICATION_STATUSES = frozenset({
    VerificationStatus.PENDING,
    VerificationStatus.USED,
    VerificationStatus.EXPIRED,
})


@dataclass(frozen=True)
class VerifyResponse:
    """Outcome of one verify call. Only CONFIRMED carries a token."""
    status: VerificationStatus
    auth_token: AuthToken | None = None


class CancellationToken:
    """
    Cooperative cancellation handle for login verification polling.

    The polling loop samples ``is_cancellation_requested`` after every round
    trip and calls ``cancellation_finished`` once it has stopped.

    Example:
        >>> token = CancellationToken(on_cancelled=lambda: print("stopped"))
        >>> task = asyncio.create_task(client.verify_passwordless_login(url, cancellation_token=token))
        >>> token.cancel()
    """

    def __init__(self, on_cancelled: Callable[[], None] | None = None):
        self.is_cancellation_requested = False
        self._on_cancelled = on_cancelled

    def cancel(self) -> None:
        self.is_cancellation_requested = True

    def cancellation_finished(self) -> None:
        if self._on_cancelled is not None:
            self._on_cancelled()


@dataclass(frozen=True)
class SuccessfulLogin:
    """Login e-mail was sent; poll ``verify_url`` until ``expires_at``."""
    verify_url: str
    expires_at: datetime
    success: Literal[True] = True


@dataclass(frozen=True)
class SuccessfulCLILogin:
    """CLI login started; the user confirms it at ``browser_url``."""
    verify_url: str
    browser_url: str
    expires_at: datetime
    success: Literal[True] = True


@dataclass(frozen=True)
class UnsuccessfulLogin:
    title: str
    detail: str | None = None
    success: Literal[False] = False


PasswordlessLoginResponse = Union[SuccessfulLogin, UnsuccessfulLogin]
CLILoginResponse = Union[SuccessfulCLILogin, UnsuccessfulLogin]


class LoginConfirmationErrorCode(str, Enum):
    EXPIRED = "EXPIRED"
    USED = "USED"
    INVALID = "INVALID"


@dataclass(frozen=True)
class SuccessfulConfirm:
    success: Literal[True] = True


@dataclass(frozen=True)
class UnsuccessfulConfirm:
    code: LoginConfirmationErrorCode
    success: Literal[False] = False


LoginConfirmResponse = Union[SuccessfulConfirm, UnsuccessfulConfirm]


@dataclass(frozen=True)
class UserAccount:
    handle: str
    type: str


@dataclass(frozen=True)
class UserResponse:
    """
    Identity of the logged in user.

    Attributes:
        name: Display name
        email: Primary e-mail address
        accounts: Accounts the user can act as
    """
    name: str
    email: str
    accounts: list[UserAccount] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> UserResponse:
        accounts = []
        for account in data.get("accounts") or []:
            handle = account.get("handle") if isinstance(account, Mapping) else None
            account_type = account.get("type") if isinstance(account, Mapping) else None
            if not isinstance(handle, str) or not isinstance(account_type, str):
                raise ProtocolError("Invalid user response: account without handle or type")
            accounts.append(UserAccount(handle=handle, type=account_type))

        return cls(
            name=data.get("name", ""),
            email=data.get("email", ""),
            accounts=accounts,
        )


_FRACTION_RE = re.compile(r"\.(\d+)(?=[+-]\d{2}:?\d{2}$|$)")


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse an ISO 8601 timestamp as sent by the backend.

    Returns None if the value is missing or not a valid timestamp.

    Examples:
        >>> parse_timestamp("2021-04-13T12:08:27.103Z")
        datetime.datetime(2021, 4, 13, 12, 8, 27, 103000, tzinfo=datetime.timezone.utc)
    """
    if not isinstance(value, str) or not value:
        return None
    # fromisoformat only accepts a trailing "Z" from Python 3.11
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    # Before 3.11 the fraction must have exactly 3 or 6 digits
    value = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
