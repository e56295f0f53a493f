"""Signed API calls on behalf of an authorized user."""

import logging
import urllib.parse
from collections.abc import Callable, Mapping

from .auth import OAuth1Signer
from .config import Settings
from .exceptions import ConfigurationError
from .models import Endpoints, HttpMethod, Session
from .transport import HttpTransport

logger = logging.getLogger(__name__)

Query = str | Mapping[str, str] | None


class OAuth1ApiClient:
    """Client for signed calls against the provider API.

    Every call requires the API URL, the consumer pair and the access token
    pair; a missing field fails before any network traffic.
    """

    def __init__(
        self,
        settings: Settings,
        session: Session,
        endpoints: Endpoints,
        transport: HttpTransport,
        signer_factory: Callable[[], OAuth1Signer],
    ) -> None:
        """Initialize the API client.

        Args:
            settings: Application settings (HTTP method selection).
            session: Shared credentials.
            endpoints: Endpoint set holding the API base URL.
            transport: HTTP transport.
            signer_factory: Builds a signer from the current consumer pair.
        """
        self._settings = settings
        self._session = session
        self._endpoints = endpoints
        self._transport = transport
        self._signer_factory = signer_factory

    def _require_user_auth(self) -> tuple[str, str]:
        """Check every field a signed API call needs.

        Returns:
            The access token and secret.

        Raises:
            ConfigurationError: If any field is missing.
        """
        with self._session.lock:
            credentials = self._session.credentials
            required = (
                ("api URL", self._endpoints.api_url),
                ("consumer key", credentials.consumer_key),
                ("consumer secret", credentials.consumer_secret),
                ("access token", credentials.access_token),
                ("access token secret", credentials.access_token_secret),
            )
            token = credentials.access_token
            token_secret = credentials.access_token_secret

        for name, value in required:
            if not value:
                logger.error("No %s specified.", name)
                raise ConfigurationError(f"No {name} specified.")

        return token, token_secret

    def call(self, uri: str, query: Query = None) -> str:
        """Make a signed call using the configured HTTP method.

        Args:
            uri: Path appended to the API base URL.
            query: Query string or mapping of parameters.

        Returns:
            The response body, empty if the provider returned nothing.

        Raises:
            ConfigurationError: If the client is not authorized.
            TransportError: If the HTTP round trip fails.
        """
        if self._settings.http_method == HttpMethod.POST.value:
            return self.post(uri, query)
        return self.get(uri, query)

    def get(self, uri: str, query: Query = None) -> str:
        """Make a signed GET request."""
        token, token_secret = self._require_user_auth()

        signed = self._signer_factory().sign(
            self._build_url(uri, query),
            HttpMethod.GET.value,
            token=token,
            token_secret=token_secret,
        )
        reply = self._transport.get(
            signed.url, headers={"Authorization": signed.authorization_header}
        )

        if not reply:
            logger.info("HTTP get request to %s returned nothing.", uri)
        return reply

    def post(self, uri: str, data: Query = None) -> str:
        """Make a signed POST request.

        Non-oauth parameters are signed and sent as a form-encoded body; the
        oauth parameters travel in the Authorization header.
        """
        token, token_secret = self._require_user_auth()

        signed = self._signer_factory().sign(
            self._build_url(uri, data),
            HttpMethod.POST.value,
            token=token,
            token_secret=token_secret,
        )
        reply = self._transport.post(
            signed.base_url,
            data=signed.query_params,
            headers={"Authorization": signed.authorization_header},
        )

        if not reply:
            logger.info("HTTP post request to %s returned nothing.", uri)
        return reply

    def _build_url(self, uri: str, query: Query) -> str:
        url = self._endpoints.api_url + uri
        if isinstance(query, Mapping):
            query = urllib.parse.urlencode(query, quote_via=urllib.parse.quote)
        if query:
            url += ("&" if "?" in url else "?") + query
        return url
