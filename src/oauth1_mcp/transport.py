"""Blocking HTTP transport for the OAuth1 handshake and signed API calls."""

import logging
from typing import Any

import httpx

from .exceptions import TransportError

logger = logging.getLogger(__name__)


class HttpTransport:
    """Thin synchronous wrapper around ``httpx.Client``.

    The CA bundle is handed to the client explicitly instead of through the
    process environment.
    """

    def __init__(
        self,
        ca_bundle_path: str | None = None,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            ca_bundle_path: Optional CA bundle used for TLS verification.
            timeout: Timeout in seconds for every phase of a request.
            client: Pre-built client, mainly for tests.
        """
        self._client = client or httpx.Client(
            verify=ca_bundle_path or True,
            timeout=httpx.Timeout(timeout),
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def get(self, url: str, headers: dict[str, str] | None = None) -> str:
        """Issue a GET request.

        Args:
            url: Full request URL including the query string.
            headers: Extra headers, typically ``Authorization``.

        Returns:
            The response body.

        Raises:
            TransportError: If the request fails or returns an error status.
        """
        return self._send("GET", url, headers=headers)

    def post(
        self,
        url: str,
        data: dict[str, str] | list[tuple[str, str]] | None = None,
        headers: dict[str, str] | None = None,
    ) -> str:
        """Issue a form-encoded POST request.

        Args:
            url: Request URL.
            data: Form fields for the body.
            headers: Extra headers, typically ``Authorization``.

        Returns:
            The response body.

        Raises:
            TransportError: If the request fails or returns an error status.
        """
        content = str(httpx.QueryParams(data or {}))
        request_headers = {"Content-Type": "application/x-www-form-urlencoded"}
        request_headers.update(headers or {})
        return self._send("POST", url, headers=request_headers, content=content)

    def _send(self, method: str, url: str, **kwargs: Any) -> str:
        try:
            response = self._client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{method} {e.request.url} failed: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise TransportError(f"{method} {url} failed: {str(e)}") from e

        logger.debug("HTTP %s reply: %s", method, response.text)
        return response.text
