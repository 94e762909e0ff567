"""
Exceptions raised by the service client.

Expected negative outcomes (unknown e-mail, pending or expired login token)
are returned as result objects from :mod:`service_client.models`; only the
conditions below are raised.
"""

from __future__ import annotations

from typing import Any, Mapping


class ServiceClientError(Exception):
    """Base class for all errors raised by the service client."""


class ConfigurationError(ServiceClientError):
    """Required client setup (e.g. ``base_url``) is missing."""


class ProtocolError(ServiceClientError):
    """
    The backend answered with a status/body combination the client has no
    defined handling for.

    Attributes:
        title: Server supplied problem title, if any
        status_code: HTTP status of the offending response, if known
    """

    def __init__(
        self,
        message: str,
        title: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.title = title
        self.status_code = status_code


class ServiceApiError(ServiceClientError):
    """
    Non-success response from a resource endpoint.

    Built from a problem details body (``status``, ``instance``, ``title``,
    ``detail``).
    """

    def __init__(self, error_response: Mapping[str, Any]):
        self.status = error_response.get("status")
        self.instance = error_response.get("instance")
        self.title = error_response.get("title")
        self.detail = error_response.get("detail")
        super().__init__(
            f"Store responded with status: {self.status} on: {self.instance} "
            f"{self.title}: {self.detail}"
        )
