"""Tick-driven OAuth 1.0a authorization state machine."""

import logging
import webbrowser
from collections.abc import Callable

from .api_client import OAuth1ApiClient, Query
from .callback_server import VerifierCallbackServer
from .config import Settings
from .exceptions import MismatchError
from .models import (
    AuthState,
    Credentials,
    Endpoints,
    IdentityFields,
    Session,
    SessionFlags,
)
from .oauth_flow import TokenExchangeClient
from .token_store import CredentialStore
from .transport import HttpTransport

logger = logging.getLogger(__name__)


class OAuth1Driver:
    """Drives the three-legged OAuth 1.0a handshake one tick at a time.

    Each call to ``tick`` advances the handshake by at most one step:

    1. Get a request token (starting the callback listener first if enabled)
    2. Present the authorization URL to the user, once
    3. Wait for the verifier from the listener or out-of-band input
    4. Exchange the verifier for an access token and persist it

    Token round trips block the calling tick. The callback listener runs on
    its own thread and reports through ``set_verifier_received``.
    """

    def __init__(
        self,
        settings: Settings,
        transport: HttpTransport | None = None,
        credential_store: CredentialStore | None = None,
        callback_server_factory: Callable[["OAuth1Driver"], VerifierCallbackServer]
        | None = None,
        browser_opener: Callable[[str], object] | None = None,
    ) -> None:
        """Initialize the driver.

        Args:
            settings: Application settings.
            transport: HTTP transport; one is created from settings if omitted.
            credential_store: Credential persistence; defaults to the file at
                ``settings.credentials_path``.
            callback_server_factory: Builds the verifier callback listener.
            browser_opener: Opens the authorization URL; defaults to
                ``webbrowser.open``.
        """
        self._settings = settings
        self._session = Session(
            credentials=Credentials(
                consumer_key=settings.consumer_key,
                consumer_secret=settings.consumer_secret,
                realm=settings.realm,
            )
        )
        self._endpoints = Endpoints.from_base_url(
            settings.api_base_url,
            request_token_url=settings.request_token_url,
            access_token_url=settings.access_token_url,
            authorization_url=settings.authorization_url,
        )

        self._owns_transport = transport is None
        self._transport = transport or HttpTransport(
            ca_bundle_path=settings.ca_bundle_path,
            timeout=settings.http_timeout,
        )
        self._credential_store = credential_store or CredentialStore(
            settings.credentials_path
        )

        self._exchange = TokenExchangeClient(
            settings,
            self._session,
            self._endpoints,
            self._transport,
            self._credential_store,
        )
        self._api = OAuth1ApiClient(
            settings,
            self._session,
            self._endpoints,
            self._transport,
            signer_factory=self._exchange.build_signer,
        )

        self._callback_server_factory = callback_server_factory or (
            lambda receiver: VerifierCallbackServer(
                receiver,
                host=settings.callback_server_host,
                doc_root=settings.callback_server_doc_root,
            )
        )
        self._callback_server: VerifierCallbackServer | None = None
        self._open_browser = browser_opener or webbrowser.open

        self.verification_url = ""

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def credentials(self) -> Credentials:
        return self._session.credentials

    @property
    def identity(self) -> IdentityFields:
        return self._session.identity

    @property
    def flags(self) -> SessionFlags:
        return self._session.flags

    @property
    def endpoints(self) -> Endpoints:
        return self._endpoints

    @property
    def exchange(self) -> TokenExchangeClient:
        return self._exchange

    @property
    def callback_server(self) -> VerifierCallbackServer | None:
        return self._callback_server

    @property
    def is_authorized(self) -> bool:
        return self._session.is_authorized

    @property
    def state(self) -> AuthState:
        """The current state, derived from the session fields."""
        with self._session.lock:
            credentials = self._session.credentials
            flags = self._session.flags
            if flags.access_failed:
                return AuthState.FAILED
            if credentials.has_access_token:
                return AuthState.AUTHORIZED
            if flags.first_time:
                return AuthState.IDLE
            if credentials.request_token_verifier:
                return AuthState.EXCHANGING_ACCESS_TOKEN
            if credentials.request_token:
                if flags.verification_requested:
                    return AuthState.AWAITING_VERIFIER_INPUT
                return AuthState.AWAITING_USER_VERIFICATION
            return AuthState.AWAITING_REQUEST_TOKEN

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def tick(self) -> AuthState:
        """Advance the handshake by at most one step.

        Safe to call repeatedly; nothing happens while waiting on the user.

        Returns:
            The state after this step.
        """
        session = self._session
        flags = session.flags

        with session.lock:
            first_time = flags.first_time
            flags.first_time = False
        if first_time:
            self._exchange.load_credentials()

        with session.lock:
            credentials = session.credentials
            access_failed = flags.access_failed
            has_access_token = credentials.has_access_token
            has_verifier = bool(credentials.request_token_verifier)
            has_request_token = bool(credentials.request_token)
            verification_requested = flags.verification_requested

        if access_failed:
            with session.lock:
                report = not flags.access_failed_reported
                flags.access_failed_reported = True
            if report:
                logger.error("Access failed: %s", flags.failure_reason or "unknown")
        elif not has_access_token:
            if not has_verifier:
                if not has_request_token:
                    self._start_callback_server()
                    self._exchange.obtain_request_token()
                elif not verification_requested:
                    if self.request_user_verification():
                        with session.lock:
                            flags.verification_requested = True
                    else:
                        session.latch_failure("Authorization URL is not set")
                else:
                    logger.debug(
                        "Waiting for user verification. Call "
                        "set_verifier_received() or set_request_token_verifier() "
                        "with the verification code to continue."
                    )
            else:
                with session.lock:
                    flags.verification_requested = False
                self._stop_callback_server()
                self._exchange.obtain_access_token()
        else:
            self._stop_callback_server()

        return self.state

    def request_user_verification(
        self, additional_params: str = "", launch_browser: bool | None = None
    ) -> str:
        """Step 2: Build the authorization URL and present it to the user.

        Args:
            additional_params: Raw query text appended after the token.
            launch_browser: Open the URL in a browser; defaults to the
                ``launch_browser`` setting.

        Returns:
            The authorization URL, or an empty string if none is configured.
        """
        if not self._endpoints.authorization_url:
            logger.error("Authorization URL is not set.")
            return ""

        with self._session.lock:
            request_token = self._session.credentials.request_token

        url = f"{self._endpoints.authorization_url}oauth_token={request_token}"
        url += additional_params
        self.verification_url = url
        logger.info("Authorize this application at: %s", url)

        if launch_browser is None:
            launch_browser = self._settings.launch_browser
        if launch_browser:
            self._open_browser(url)

        return url

    # ------------------------------------------------------------------
    # Verifier input
    # ------------------------------------------------------------------

    def set_verifier_received(self, request_token: str, verifier: str) -> None:
        """Accept a verifier for the request token on record.

        Called from the callback listener thread or for manual input.

        Raises:
            MismatchError: If ``request_token`` is not the one on record.
        """
        with self._session.lock:
            if request_token != self._session.credentials.request_token:
                logger.error(
                    "The request token didn't match the request token on record."
                )
                raise MismatchError(
                    "The request token didn't match the request token on record."
                )
            self._session.credentials.request_token_verifier = verifier

    def set_request_token_verifier(self, verifier: str) -> None:
        """Set the verifier directly (out-of-band PIN entry)."""
        with self._session.lock:
            self._session.credentials.request_token_verifier = verifier

    # ------------------------------------------------------------------
    # Authorized calls
    # ------------------------------------------------------------------

    def call(self, uri: str, query: Query = None) -> str:
        """Make a signed API call with the configured HTTP method."""
        return self._api.call(uri, query)

    def get(self, uri: str, query: Query = None) -> str:
        """Make a signed GET API call."""
        return self._api.get(uri, query)

    def post(self, uri: str, data: Query = None) -> str:
        """Make a signed POST API call."""
        return self._api.post(uri, data)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self, forget_credentials: bool = False) -> None:
        """Drop all session progress, including the failure latch.

        Args:
            forget_credentials: Also delete the persisted credential file.
        """
        self._stop_callback_server()
        self._session.restart()
        self.verification_url = ""

        if forget_credentials:
            self._credential_store.delete()
        logger.info("Authorization session reset")

    def close(self) -> None:
        """Stop the callback listener and release the transport."""
        self._stop_callback_server()
        if self._owns_transport:
            self._transport.close()

    def _start_callback_server(self) -> None:
        if not self._settings.callback_server_enabled:
            logger.debug(
                "Callback server disabled, expecting the verifier via "
                "out-of-band input. Call set_request_token_verifier() with the "
                "verification code to continue."
            )
            return

        if self._callback_server is None:
            server = self._callback_server_factory(self)
            try:
                url = server.start()
            except OSError as e:
                logger.error("Could not start the callback server: %s", e)
                return
            self._callback_server = server
            self._endpoints.verifier_callback_url = url

    def _stop_callback_server(self) -> None:
        if self._callback_server is not None:
            server = self._callback_server
            self._callback_server = None
            self._endpoints.verifier_callback_url = ""
            server.stop()
