"""Tests for SessionManager."""

from unittest.mock import AsyncMock

import httpx
import pytest
import respx

from service_client import AuthToken, ConfigurationError, ProtocolError, ServiceApiError, SessionManager

BASE_URL = "http://baseurl"

TOKEN_BODY = {
    "access_token": "AT",
    "token_type": "Bearer",
    "expires_in": 3600,
}


class FakeClock:
    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def mock_api():
    """Create a respx mock for the backend."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session(clock):
    return SessionManager(base_url=BASE_URL, clock=clock)


class TestAccessTokenExpiry:
    """Tests for is_access_token_expired."""

    def test_expired_without_token(self, session):
        """A session without token is expired."""
        assert session.auth_token is None
        assert session.is_access_token_expired() is True

    @pytest.mark.asyncio
    async def test_not_expired_after_login(self, session):
        """Login makes the session valid."""
        await session.login(AuthToken(**TOKEN_BODY))

        assert session.is_access_token_expired() is False
        assert session.access_token_expires_at == 1_700_000_000 + 3600

    @pytest.mark.asyncio
    async def test_expired_at_expiry_time(self, session, clock):
        """Token is expired once now reaches the expiry time."""
        await session.login(AuthToken(**TOKEN_BODY))

        clock.now += 3599
        assert session.is_access_token_expired() is False

        clock.now += 1
        assert session.is_access_token_expired() is True

        clock.now += 100
        assert session.is_access_token_expired() is True

    @pytest.mark.asyncio
    async def test_new_login_overwrites_token(self, session):
        """Only the latest token is kept."""
        await session.login(AuthToken(**TOKEN_BODY))
        await session.login(AuthToken(access_token="AT2", token_type="Bearer", expires_in=60))

        assert session.auth_token.access_token == "AT2"
        assert session.access_token_expires_at == 1_700_000_000 + 60


class TestLoginLogout:
    """Tests for login, logout and the refresh token handler."""

    @pytest.mark.asyncio
    async def test_login_notifies_new_refresh_token(self, clock):
        """Handler receives a rotated refresh token."""
        handler = AsyncMock()
        session = SessionManager(
            base_url=BASE_URL,
            refresh_token="RT",
            refresh_token_updated_handler=handler,
            clock=clock,
        )

        await session.login(AuthToken(**TOKEN_BODY, refresh_token="RT2"))

        handler.assert_awaited_once_with(BASE_URL, "RT2")
        assert session.refresh_token == "RT2"

    @pytest.mark.asyncio
    async def test_login_same_refresh_token_not_notified(self, clock):
        """Handler is not called when the refresh token did not change."""
        handler = AsyncMock()
        session = SessionManager(
            base_url=BASE_URL,
            refresh_token="RT",
            refresh_token_updated_handler=handler,
            clock=clock,
        )

        await session.login(AuthToken(**TOKEN_BODY, refresh_token="RT"))
        await session.login(AuthToken(**TOKEN_BODY))

        handler.assert_not_awaited()
        assert session.refresh_token == "RT"

    @pytest.mark.asyncio
    async def test_logout_clears_session(self, clock):
        """Logout forgets everything and notifies with None."""
        handler = AsyncMock()
        session = SessionManager(
            base_url=BASE_URL,
            refresh_token_updated_handler=handler,
            clock=clock,
        )
        await session.login(AuthToken(**TOKEN_BODY, refresh_token="RT"))
        handler.reset_mock()

        await session.logout()

        assert session.auth_token is None
        assert session.access_token_expires_at is None
        assert session.refresh_token is None
        assert session.is_access_token_expired() is True
        handler.assert_awaited_once_with(BASE_URL, None)

    def test_configure_only_overwrites_given_values(self, session):
        """Omitted options keep their current value."""
        session.configure(refresh_token="RT", common_headers={"X-Client": "test"})
        session.configure(base_url="http://other/")

        assert session.base_url == "http://other"
        assert session.refresh_token == "RT"
        assert session.common_headers == {"X-Client": "test"}


class TestRefreshAccessToken:
    """Tests for refresh_access_token."""

    @pytest.mark.asyncio
    async def test_refresh_success(self, mock_api, session):
        """201 response logs the new token in."""
        mock_api.post(f"{BASE_URL}/auth/token").respond(201, json=TOKEN_BODY)

        token = await session.refresh_access_token()

        assert token == AuthToken(**TOKEN_BODY)
        assert session.is_access_token_expired() is False

    @pytest.mark.asyncio
    async def test_refresh_sends_refresh_token_cookie(self, mock_api, clock):
        """Refresh token is sent as the user_session cookie."""
        route = mock_api.post(f"{BASE_URL}/auth/token").respond(201, json=TOKEN_BODY)
        session = SessionManager(
            base_url=BASE_URL,
            refresh_token="RT",
            common_headers={"X-Client": "test"},
            clock=clock,
        )

        await session.refresh_access_token()

        request = route.calls.last.request
        assert request.headers["cookie"] == "user_session=RT"
        assert request.headers["x-client"] == "test"

    @pytest.mark.asyncio
    async def test_refresh_with_explicit_cookie(self, mock_api, session):
        """An explicit cookie replaces the built one."""
        route = mock_api.post(f"{BASE_URL}/auth/token").respond(201, json=TOKEN_BODY)

        await session.refresh_access_token(cookie="user_session=OTHER")

        assert route.calls.last.request.headers["cookie"] == "user_session=OTHER"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [200, 400, 401, 500])
    async def test_refresh_non_created_returns_none(self, mock_api, session, status_code):
        """Anything but 201 means no token."""
        mock_api.post(f"{BASE_URL}/auth/token").respond(status_code, json=TOKEN_BODY)

        token = await session.refresh_access_token()

        assert token is None
        assert session.is_access_token_expired() is True

    @pytest.mark.asyncio
    async def test_refresh_invalid_token_body_raises(self, mock_api, session):
        """201 with a body that is not a token is a protocol error."""
        mock_api.post(f"{BASE_URL}/auth/token").respond(201, json={"foo": "bar"})

        with pytest.raises(ProtocolError):
            await session.refresh_access_token()

    @pytest.mark.asyncio
    async def test_refresh_without_base_url_raises(self):
        """Missing base_url is a configuration error."""
        session = SessionManager()

        with pytest.raises(ConfigurationError, match="base_url"):
            await session.refresh_access_token()


class TestAuthenticatedRequest:
    """Tests for authenticated_request."""

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_before_request(self, mock_api, session):
        """Refresh happens before the primary request."""
        mock_api.post(f"{BASE_URL}/auth/token").respond(201, json=TOKEN_BODY)
        mock_api.get(f"{BASE_URL}/test").respond(200, json={})

        await session.authenticated_request("/test")

        assert [call.request.url.path for call in mock_api.calls] == ["/auth/token", "/test"]

    @pytest.mark.asyncio
    async def test_refreshed_token_in_authorization_header(self, mock_api, session):
        """Request carries the freshly obtained bearer token."""
        mock_api.post(f"{BASE_URL}/auth/token").respond(201, json=TOKEN_BODY)
        route = mock_api.get(f"{BASE_URL}/test").respond(200, json={})

        await session.authenticated_request("/test")

        request = route.calls.last.request
        assert request.url == f"{BASE_URL}/test"
        assert request.headers["Authorization"] == "Bearer AT"

    @pytest.mark.asyncio
    async def test_valid_token_not_refreshed(self, mock_api, session):
        """A valid token is used as is."""
        await session.login(AuthToken(**TOKEN_BODY))
        token_route = mock_api.post(f"{BASE_URL}/auth/token").respond(201, json=TOKEN_BODY)
        mock_api.get(f"{BASE_URL}/test").respond(200, json={})

        response = await session.authenticated_request("/test")

        assert response.status_code == 200
        assert token_route.call_count == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_auth_failure_retried_once(self, mock_api, session, status_code):
        """401/403 leads to exactly one refresh and one retry."""
        await session.login(AuthToken(**TOKEN_BODY))
        token_route = mock_api.post(f"{BASE_URL}/auth/token").respond(
            201, json={**TOKEN_BODY, "access_token": "AT2"}
        )
        route = mock_api.get(f"{BASE_URL}/test").mock(
            side_effect=[httpx.Response(status_code), httpx.Response(200, json={})]
        )

        response = await session.authenticated_request("/test")

        assert response.status_code == 200
        assert token_route.call_count == 1
        assert route.call_count == 2
        assert route.calls.last.request.headers["Authorization"] == "Bearer AT2"

    @pytest.mark.asyncio
    async def test_second_auth_failure_not_retried(self, mock_api, session):
        """A 401 on the retry is returned, no third request."""
        await session.login(AuthToken(**TOKEN_BODY))
        token_route = mock_api.post(f"{BASE_URL}/auth/token").respond(401)
        route = mock_api.get(f"{BASE_URL}/test").respond(401, text="Unauthorized")

        response = await session.authenticated_request("/test")

        assert response.status_code == 401
        assert token_route.call_count == 1
        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_without_authentication(self, mock_api, session):
        """authenticate=False never refreshes and never adds a bearer header."""
        session.configure(common_headers={"X-Client": "test"})
        token_route = mock_api.post(f"{BASE_URL}/auth/token").respond(201, json=TOKEN_BODY)
        route = mock_api.get(f"{BASE_URL}/test").respond(401)

        response = await session.authenticated_request("/test", authenticate=False)

        assert response.status_code == 401
        assert token_route.call_count == 0
        assert route.call_count == 1
        request = route.calls.last.request
        assert "authorization" not in request.headers
        assert request.headers["x-client"] == "test"

    @pytest.mark.asyncio
    async def test_without_authentication_ignores_valid_token(self, mock_api, session):
        """A held token is not sent when authentication is off."""
        await session.login(AuthToken(**TOKEN_BODY))
        token_route = mock_api.post(f"{BASE_URL}/auth/token").respond(201, json=TOKEN_BODY)
        route = mock_api.get(f"{BASE_URL}/test").respond(403)

        response = await session.authenticated_request("/test", authenticate=False)

        assert response.status_code == 403
        assert token_route.call_count == 0
        assert route.call_count == 1
        assert "authorization" not in route.calls.last.request.headers

    @pytest.mark.asyncio
    async def test_bearer_header_wins(self, mock_api, session):
        """Bearer header overrides caller and common Authorization headers."""
        await session.login(AuthToken(**TOKEN_BODY))
        session.configure(common_headers={"Authorization": "Basic common", "X-Common": "1"})
        route = mock_api.post(f"{BASE_URL}/test").respond(200)

        await session.authenticated_request(
            "/test",
            method="POST",
            headers={"authorization": "Basic caller", "X-Common": "2"},
            content="payload",
        )

        request = route.calls.last.request
        assert request.headers.get_list("authorization") == ["Bearer AT"]
        assert request.headers["x-common"] == "2"
        assert request.content == b"payload"

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, mock_api, session):
        """Transport errors reach the caller and are not retried."""
        await session.login(AuthToken(**TOKEN_BODY))
        route = mock_api.get(f"{BASE_URL}/test").mock(side_effect=httpx.ConnectError)

        with pytest.raises(httpx.ConnectError):
            await session.authenticated_request("/test")

        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_without_base_url_raises(self):
        """Missing base_url is fatal."""
        session = SessionManager()

        with pytest.raises(ConfigurationError):
            await session.authenticated_request("/test", authenticate=False)


class TestUnwrap:
    """Tests for unwrap."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self, mock_api, session):
        mock_api.get(f"{BASE_URL}/test").respond(200, json={"ok": True})

        response = await session.authenticated_request("/test", authenticate=False)

        assert session.unwrap(response) is response

    @pytest.mark.asyncio
    async def test_error_raises_service_api_error(self, mock_api, session):
        """Problem details are carried by the exception."""
        mock_api.get(f"{BASE_URL}/test").respond(
            404,
            json={
                "status": 404,
                "instance": "/test",
                "title": "Not Found",
                "detail": "No such thing",
            },
        )

        response = await session.authenticated_request("/test", authenticate=False)

        with pytest.raises(ServiceApiError) as exc_info:
            session.unwrap(response)

        error = exc_info.value
        assert error.status == 404
        assert error.title == "Not Found"
        assert str(error) == "Store responded with status: 404 on: /test Not Found: No such thing"

    @pytest.mark.asyncio
    async def test_error_without_json_body(self, mock_api, session):
        mock_api.get(f"{BASE_URL}/test").respond(502, text="Bad Gateway")

        response = await session.authenticated_request("/test", authenticate=False)

        with pytest.raises(ServiceApiError) as exc_info:
            session.unwrap(response)

        assert exc_info.value.status == 502
        assert exc_info.value.instance == "/test"
