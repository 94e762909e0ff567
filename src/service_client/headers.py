"""
Header merging, refresh cookie construction and log-safe header redaction.
"""

from typing import Mapping


# Sensitive headers that must never be written to logs
SENSITIVE_HEADERS = frozenset({
    "cookie",
    "set-cookie",
    "authorization",
    "proxy-authorization",
})

REFRESH_TOKEN_COOKIE_NAME = "user_session"

REDACTED = "[redacted]"


def merge_headers(*layers: Mapping[str, str] | None) -> dict[str, str]:
    """
    Merge header mappings, later layers overriding earlier ones.

    Header names are compared case-insensitively, so an ``authorization``
    header in a later layer replaces an ``Authorization`` header from an
    earlier one. The spelling of the winning layer is kept.

    Args:
        *layers: Header mappings in increasing precedence. ``None`` is skipped.

    Returns:
        Merged headers as a plain dict

    Examples:
        >>> merge_headers({"Accept": "text/plain"}, {"accept": "application/json"})
        {'accept': 'application/json'}
        >>> merge_headers({"X-A": "1"}, None, {"X-B": "2"})
        {'X-A': '1', 'X-B': '2'}
    """
    # lowercase name -> (original name, value)
    merged: dict[str, tuple[str, str]] = {}
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            merged[key.lower()] = (key, value)

    return {key: value for key, value in merged.values()}


def bearer_header(access_token: str) -> dict[str, str]:
    """Build the Authorization header for a bearer access token."""
    return {"Authorization": f"Bearer {access_token}"}


def refresh_token_cookie(refresh_token: str | None) -> str:
    """
    Build the cookie the token endpoint expects.

    An absent refresh token still produces the cookie with an empty value;
    the backend answers that with a non-201 status.

    Examples:
        >>> refresh_token_cookie("RT")
        'user_session=RT'
        >>> refresh_token_cookie(None)
        'user_session='
    """
    return f"{REFRESH_TOKEN_COOKIE_NAME}={refresh_token or ''}"


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """
    Return a copy of headers that is safe to log.

    Values of sensitive headers are replaced, everything else is kept.
    """
    return {
        key: REDACTED if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }
