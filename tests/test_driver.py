"""Tests for the tick-driven authorization state machine."""

import httpx
import pytest
import respx
from httpx import Response

from oauth1_mcp.driver import OAuth1Driver
from oauth1_mcp.exceptions import ConfigurationError, MismatchError
from oauth1_mcp.models import AuthState, StoredCredentials

API_BASE_URL = "https://api.example.com"
REQUEST_TOKEN_URL = f"{API_BASE_URL}/oauth/request_token"
ACCESS_TOKEN_URL = f"{API_BASE_URL}/oauth/access_token"


class FakeCallbackServer:
    """Stands in for the verifier callback listener."""

    def __init__(self, receiver):
        self.receiver = receiver
        self.starts = 0
        self.stops = 0

    @property
    def is_running(self) -> bool:
        return self.starts > self.stops

    def start(self) -> str:
        self.starts += 1
        return "http://127.0.0.1:8765/"

    def stop(self) -> None:
        self.stops += 1


class CountingStore:
    """Wraps a CredentialStore and counts saves."""

    def __init__(self, store):
        self._store = store
        self.saves = 0

    @property
    def path(self):
        return self._store.path

    def load(self):
        return self._store.load()

    def save(self, credentials):
        self.saves += 1
        self._store.save(credentials)

    def delete(self):
        self._store.delete()


@pytest.fixture
def servers() -> list[FakeCallbackServer]:
    return []


@pytest.fixture
def callback_driver(settings, transport, credential_store, opened_urls, servers):
    """Driver with the callback listener enabled and faked."""

    def factory(receiver):
        server = FakeCallbackServer(receiver)
        servers.append(server)
        return server

    driver = OAuth1Driver(
        settings.model_copy(
            update={"callback_server_enabled": True, "launch_browser": True}
        ),
        transport=transport,
        credential_store=CountingStore(credential_store),
        callback_server_factory=factory,
        browser_opener=opened_urls.append,
    )
    yield driver
    driver.close()


def _mock_token_endpoints(router=respx):
    request_route = router.get(REQUEST_TOKEN_URL).mock(
        return_value=Response(
            200,
            text="oauth_token=T1&oauth_token_secret=S1&oauth_callback_confirmed=true",
        )
    )
    access_route = router.get(ACCESS_TOKEN_URL).mock(
        return_value=Response(
            200, text="oauth_token=A1&oauth_token_secret=AS1&screen_name=someone"
        )
    )
    return request_route, access_route


class TestHandshake:
    """Tests for the full tick sequence."""

    @respx.mock
    def test_fresh_session_reaches_authorized(
        self, callback_driver, servers, opened_urls
    ):
        """Test the whole handshake with a manually injected verifier."""
        request_route, access_route = _mock_token_endpoints()
        driver = callback_driver

        assert driver.state is AuthState.IDLE

        assert driver.tick() is AuthState.AWAITING_USER_VERIFICATION
        assert request_route.call_count == 1
        assert len(servers) == 1
        assert servers[0].starts == 1
        assert driver.flags.callback_confirmed is True

        assert driver.tick() is AuthState.AWAITING_VERIFIER_INPUT
        assert opened_urls == [
            "https://api.example.com/oauth/authorize?oauth_token=T1"
        ]
        assert driver.verification_url == opened_urls[0]

        # Waiting: nothing happens
        assert driver.tick() is AuthState.AWAITING_VERIFIER_INPUT
        assert len(opened_urls) == 1
        assert request_route.call_count == 1

        driver.set_verifier_received("T1", "V1")
        assert driver.state is AuthState.EXCHANGING_ACCESS_TOKEN

        assert driver.tick() is AuthState.AUTHORIZED
        assert access_route.call_count == 1
        assert servers[0].stops == 1
        assert driver.callback_server is None
        assert driver.identity.screen_name == "someone"
        assert driver._credential_store.saves == 1
        assert driver.is_authorized is True

    @respx.mock(assert_all_called=False)
    def test_callback_url_sent_as_oauth_callback(self, callback_driver, respx_mock):
        """Test that the listener URL is used as the oauth_callback."""
        request_route, _ = _mock_token_endpoints(respx_mock)

        callback_driver.tick()

        header = request_route.calls.last.request.headers["Authorization"]
        assert 'oauth_callback="http%3A%2F%2F127.0.0.1%3A8765%2F"' in header

    @respx.mock(assert_all_called=False)
    def test_authorized_ticks_are_idempotent(self, callback_driver, servers, respx_mock):
        """Test that ticking while authorized makes no calls and stops once."""
        request_route, access_route = _mock_token_endpoints(respx_mock)
        driver = callback_driver

        driver.tick()
        driver.tick()
        driver.set_verifier_received("T1", "V1")
        driver.tick()

        for _ in range(5):
            assert driver.tick() is AuthState.AUTHORIZED

        assert request_route.call_count == 1
        assert access_route.call_count == 1
        assert servers[0].stops == 1
        assert driver._credential_store.saves == 1

    @respx.mock(assert_all_called=False)
    def test_out_of_band_without_callback_server(self, driver, respx_mock):
        """Test the out-of-band path when the listener is disabled."""
        request_route, access_route = _mock_token_endpoints(respx_mock)

        driver.tick()
        driver.tick()
        assert driver.callback_server is None
        assert driver.state is AuthState.AWAITING_VERIFIER_INPUT

        header = request_route.calls.last.request.headers["Authorization"]
        assert 'oauth_callback="oob"' in header

        driver.set_request_token_verifier("PIN")
        assert driver.tick() is AuthState.AUTHORIZED
        assert access_route.called


class TestFirstTick:
    """Tests for credential loading on the first tick."""

    @respx.mock(assert_all_called=False)
    def test_persisted_credentials_authorize_immediately(
        self, driver, credential_store
    ):
        """Test that a stored token pair skips the handshake."""
        route = respx.get(REQUEST_TOKEN_URL).mock(return_value=Response(200))
        credential_store.save(
            StoredCredentials(access_token="A", access_secret="S", user_id="7")
        )

        assert driver.tick() is AuthState.AUTHORIZED
        assert driver.credentials.access_token == "A"
        assert driver.identity.user_id == "7"
        assert route.called is False

    @respx.mock(assert_all_called=False)
    def test_credentials_loaded_only_once(self, driver, credential_store, respx_mock):
        """Test that the credential file is read on the first tick only."""
        _mock_token_endpoints(respx_mock)

        driver.tick()
        credential_store.save(StoredCredentials(access_token="A", access_secret="S"))
        driver.tick()

        assert driver.credentials.access_token == ""


class TestFailure:
    """Tests for the sticky failure latch."""

    @respx.mock
    def test_failure_reported_once(self, driver, caplog):
        """Test that a failed handshake stays failed and logs once."""
        route = respx.get(REQUEST_TOKEN_URL).mock(
            return_value=Response(200, text="oauth_token=T1")
        )

        assert driver.tick() is AuthState.FAILED

        with caplog.at_level("ERROR", logger="oauth1_mcp.driver"):
            for _ in range(3):
                assert driver.tick() is AuthState.FAILED

        assert route.call_count == 1
        assert caplog.text.count("Access failed") == 1

    @respx.mock
    def test_reset_leaves_failed_state(self, driver):
        """Test that an explicit reset starts the handshake over."""
        route = respx.get(REQUEST_TOKEN_URL).mock(
            side_effect=[
                Response(200, text="oauth_token=T1"),
                Response(200, text="oauth_token=T2&oauth_token_secret=S2"),
            ]
        )

        assert driver.tick() is AuthState.FAILED
        driver.reset()
        assert driver.state is AuthState.AWAITING_REQUEST_TOKEN

        assert driver.tick() is AuthState.AWAITING_USER_VERIFICATION
        assert driver.credentials.request_token == "T2"
        assert route.call_count == 2

    def test_reset_can_forget_credentials(self, driver, credential_store):
        credential_store.save(StoredCredentials(access_token="A", access_secret="S"))
        driver.tick()

        driver.reset(forget_credentials=True)

        assert credential_store.exists() is False
        assert driver.is_authorized is False


class TestVerifierInput:
    """Tests for verifier delivery."""

    def test_matching_request_token_sets_verifier(self, driver):
        driver.credentials.request_token = "T1"

        driver.set_verifier_received("T1", "V1")

        assert driver.credentials.request_token_verifier == "V1"

    def test_mismatched_request_token_rejected(self, driver, caplog):
        driver.credentials.request_token = "T2"

        with caplog.at_level("ERROR"):
            with pytest.raises(MismatchError):
                driver.set_verifier_received("T1", "V1")

        assert driver.credentials.request_token_verifier == ""
        assert "didn't match" in caplog.text


class TestAuthorizedCalls:
    """Tests for signed API calls through the driver."""

    @respx.mock(assert_all_called=False)
    def test_call_requires_authorization(self, driver):
        route = respx.get(f"{API_BASE_URL}/me").mock(return_value=Response(200))

        with pytest.raises(ConfigurationError):
            driver.call("/me")

        assert route.called is False

    @respx.mock
    def test_call_after_authorization(self, driver, credential_store):
        credential_store.save(StoredCredentials(access_token="A", access_secret="S"))
        driver.tick()
        route = respx.get(f"{API_BASE_URL}/me").mock(
            return_value=Response(200, text='{"name": "someone"}')
        )

        body = driver.call("/me", {"fields": "name"})

        assert body == '{"name": "someone"}'
        request = route.calls.last.request
        assert request.url.params["fields"] == "name"
        assert 'oauth_token="A"' in request.headers["Authorization"]


def test_request_user_verification_without_url(driver, caplog):
    """Test that a missing authorization URL is reported, not raised."""
    driver.endpoints.authorization_url = ""

    with caplog.at_level("ERROR"):
        assert driver.request_user_verification() == ""

    assert "Authorization URL is not set" in caplog.text


def test_request_user_verification_additional_params(driver, opened_urls):
    driver.credentials.request_token = "T9"

    url = driver.request_user_verification("&perms=write", launch_browser=True)

    assert url == "https://api.example.com/oauth/authorize?oauth_token=T9&perms=write"
    assert opened_urls == [url]


class ResettingTransport:
    """Resets the driver while the access token request is in flight."""

    def __init__(self):
        self.driver = None

    def get(self, url, headers=None):
        if url.startswith(ACCESS_TOKEN_URL):
            self.driver.reset(forget_credentials=True)
            return "oauth_token=A1&oauth_token_secret=AS1"
        return ""

    def close(self):
        pass


class TestResetDuringExchange:
    """Tests for a reset racing an access token round trip."""

    def test_reset_wins_over_inflight_reply(self, settings, credential_store):
        """Test that the reply of an abandoned exchange is not applied or saved."""
        transport = ResettingTransport()
        driver = OAuth1Driver(
            settings, transport=transport, credential_store=credential_store
        )
        transport.driver = driver
        credential_store.save(StoredCredentials(access_token="", access_secret=""))
        driver.flags.first_time = False
        driver.credentials.request_token = "T1"
        driver.credentials.request_token_secret = "S1"
        driver.credentials.request_token_verifier = "V1"

        assert driver.tick() is AuthState.AWAITING_REQUEST_TOKEN

        assert driver.credentials.access_token == ""
        assert driver.flags.access_failed is False
        assert credential_store.exists() is False

    def test_reset_clears_flags_in_place(self, driver):
        """Test that references held by a running tick see the reset."""
        flags = driver.flags
        identity = driver.identity
        driver.session.latch_failure("boom")
        identity.screen_name = "someone"

        driver.reset()

        assert driver.flags is flags
        assert flags.access_failed is False
        assert flags.failure_reason is None
        assert flags.first_time is False
        assert identity.screen_name == ""


@respx.mock
def test_verifier_from_real_callback_server(
    settings, transport, credential_store, tmp_path
):
    """Test a redirect delivered on the listener thread while the driver ticks."""
    _mock_token_endpoints()
    respx.route(host="127.0.0.1").pass_through()
    driver = OAuth1Driver(
        settings.model_copy(
            update={
                "callback_server_enabled": True,
                "callback_server_doc_root": str(tmp_path),
            }
        ),
        transport=transport,
        credential_store=credential_store,
    )

    try:
        assert driver.tick() is AuthState.AWAITING_USER_VERIFICATION
        server = driver.callback_server
        thread = server._thread
        assert server.is_running
        assert driver.endpoints.verifier_callback_url == server.url

        assert driver.tick() is AuthState.AWAITING_VERIFIER_INPUT
        response = httpx.get(
            server.url,
            params={"oauth_token": "T1", "oauth_verifier": "V1"},
            trust_env=False,
        )
        assert response.status_code == 200
        assert driver.state is AuthState.EXCHANGING_ACCESS_TOKEN

        for _ in range(3):
            if driver.tick() is AuthState.AUTHORIZED:
                break
        assert driver.state is AuthState.AUTHORIZED
        assert driver.callback_server is None
        assert server.is_running is False
        assert thread.is_alive() is False
        assert driver.endpoints.verifier_callback_url == ""
    finally:
        driver.close()


def test_missing_authorization_url_fails(driver):
    """Test that the driver fails rather than waiting for a verifier forever."""
    driver.flags.first_time = False
    driver.credentials.request_token = "T1"
    driver.credentials.request_token_secret = "S1"
    driver.endpoints.authorization_url = ""

    assert driver.tick() is AuthState.FAILED
    assert driver.flags.verification_requested is False
    assert driver.flags.failure_reason == "Authorization URL is not set"
