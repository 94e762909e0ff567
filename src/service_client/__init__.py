"""
Service client SDK for Python

Async client for the backend REST API: session and token refresh handling,
passwordless and CLI login flows.
"""

from .models import (
    AuthToken,
    CancellationToken,
    LoginConfirmationErrorCode,
    SuccessfulCLILogin,
    SuccessfulConfirm,
    SuccessfulLogin,
    UnsuccessfulConfirm,
    UnsuccessfulLogin,
    UserAccount,
    UserResponse,
    VerificationStatus,
    VerifyResponse,
)
from .errors import ConfigurationError, ProtocolError, ServiceApiError, ServiceClientError
from .config import ClientSettings, get_settings
from .session import SessionManager
from .login import CLILoginFlow, PasswordlessLoginFlow
from .client import ServiceClient

__version__ = "0.1.0"

__all__ = [
    "AuthToken",
    "CancellationToken",
    "LoginConfirmationErrorCode",
    "SuccessfulCLILogin",
    "SuccessfulConfirm",
    "SuccessfulLogin",
    "UnsuccessfulConfirm",
    "UnsuccessfulLogin",
    "UserAccount",
    "UserResponse",
    "VerificationStatus",
    "VerifyResponse",
    "ConfigurationError",
    "ProtocolError",
    "ServiceApiError",
    "ServiceClientError",
    "ClientSettings",
    "get_settings",
    "SessionManager",
    "CLILoginFlow",
    "PasswordlessLoginFlow",
    "ServiceClient",
]
