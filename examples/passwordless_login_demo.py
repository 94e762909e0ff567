"""
Passwordless login demo.

Usage:
    # Install the package
    pip install -e .

    # Log in with a magic link sent to your inbox
    python examples/passwordless_login_demo.py you@example.com

    # Press Ctrl+C while waiting to cancel polling

Environment variables:
    SERVICE_CLIENT_BASE_URL - Override backend URL (default: https://superface.ai)
    SERVICE_CLIENT_POLLING_TIMEOUT_SECONDS - How long to wait for the link click (default: 60)
    DEMO_DEBUG - Set to "true" to log requests (credentials are redacted)
"""

import asyncio
import logging
import os
import signal
import sys

from service_client import CancellationToken, ServiceClient, VerificationStatus

DEBUG = os.getenv("DEMO_DEBUG", "false").lower() == "true"


async def save_refresh_token(base_url: str, refresh_token: str | None) -> None:
    """Stand-in for a credential store."""
    if refresh_token is None:
        print(f"Forgot refresh token for {base_url}")
    else:
        print(f"Would persist rotated refresh token for {base_url}")


async def main(email: str) -> int:
    client = ServiceClient.from_env(refresh_token_updated_handler=save_refresh_token)

    login = await client.passwordless_login(email)
    if not login.success:
        print(f"Login failed: {login.title}")
        if login.detail:
            print(login.detail)
        return 1

    print(f"Check your inbox, the link is valid until {login.expires_at:%H:%M:%S %Z}")

    cancellation_token = CancellationToken(on_cancelled=lambda: print("Polling stopped"))
    asyncio.get_running_loop().add_signal_handler(signal.SIGINT, cancellation_token.cancel)

    result = await client.verify_passwordless_login(
        login.verify_url, cancellation_token=cancellation_token
    )

    if result.status is not VerificationStatus.CONFIRMED:
        print(f"Login not confirmed: {result.status.value}")
        return 1

    user = await client.get_user_info()
    print(f"Logged in as {user.name} <{user.email}>")

    await client.sign_out()
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print(__doc__)
        sys.exit(2)

    logging.basicConfig(level=logging.DEBUG if DEBUG else logging.WARNING)
    sys.exit(asyncio.run(main(sys.argv[1])))
