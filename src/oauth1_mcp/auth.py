"""OAuth1 request signing (HMAC-SHA1, RSA-SHA1 and PLAINTEXT)."""

import base64
import hashlib
import hmac
import logging
import secrets
import time
import urllib.parse
from dataclasses import dataclass, field

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from .models import SignatureMethod

logger = logging.getLogger(__name__)


@dataclass
class SignedRequest:
    """Result of signing a request.

    Attributes:
        url: Request URI carrying every non-``oauth_*`` parameter.
        authorization_header: Value for the ``Authorization`` HTTP header.
        params: Every signed parameter, including the signature.
    """

    url: str
    authorization_header: str
    params: list[tuple[str, str]] = field(default_factory=list)

    @property
    def base_url(self) -> str:
        return self.url.split("?", 1)[0]

    @property
    def query_params(self) -> list[tuple[str, str]]:
        return [(k, v) for k, v in self.params if not k.startswith("oauth_")]


class OAuth1Signer:
    """Signs requests using OAuth1.

    Supports both two-legged (no token) and three-legged (with a token)
    requests. The realm, when configured, is added to the Authorization
    header only and never takes part in the signature.
    """

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        signature_method: SignatureMethod | str = SignatureMethod.HMAC,
        realm: str = "",
        rsa_private_key: str | None = None,
    ) -> None:
        """Initialize the OAuth1 signer.

        Args:
            consumer_key: The consumer key, sent in plain text.
            consumer_secret: The consumer secret, first half of the signing key.
            signature_method: HMAC-SHA1, RSA-SHA1 or PLAINTEXT.
            realm: Optional unsigned realm for the Authorization header.
            rsa_private_key: PEM private key for RSA-SHA1. Falls back to the
                consumer secret when not given.
        """
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self._signature_method = SignatureMethod(signature_method)
        self._realm = realm
        self._rsa_private_key = rsa_private_key

    @property
    def signature_method(self) -> SignatureMethod:
        return self._signature_method

    def sign(
        self,
        url: str,
        method: str = "GET",
        token: str | None = None,
        token_secret: str | None = None,
        extra_params: list[tuple[str, str]] | None = None,
    ) -> SignedRequest:
        """Sign a request URL.

        Args:
            url: The request URL, optionally with query parameters.
            method: HTTP method (GET or POST).
            token: Optional OAuth token key.
            token_secret: Optional token secret, second half of the signing key.
            extra_params: Additional parameters to sign, e.g. ``oauth_callback``.

        Returns:
            The signed request URL and Authorization header.
        """
        base_url, params = self.split_url(url)
        params.extend(extra_params or [])

        # Generate OAuth parameters
        oauth_params = [
            ("oauth_consumer_key", self._consumer_key),
            ("oauth_nonce", self._generate_nonce()),
            ("oauth_signature_method", self._signature_method.value),
            ("oauth_timestamp", str(int(time.time()))),
            ("oauth_version", "1.0"),
        ]

        # Include oauth_token for 3-legged authentication
        if token:
            oauth_params.append(("oauth_token", token))

        all_params = params + oauth_params

        signature = self._generate_signature(
            base_url, method, all_params, token_secret or ""
        )
        all_params.append(("oauth_signature", signature))

        signed = SignedRequest(
            url=self._serialize_url(base_url, all_params),
            authorization_header=self._serialize_header(all_params),
            params=all_params,
        )

        logger.debug("Signed %s request URL: %s", method.upper(), signed.url)
        logger.debug("Signed request header: %s", signed.authorization_header)

        return signed

    @staticmethod
    def split_url(url: str) -> tuple[str, list[tuple[str, str]]]:
        """Split a URL into its base and its decoded query parameters.

        Args:
            url: URL to split. A trailing ``?`` or ``&`` is ignored.

        Returns:
            Tuple of the base URL (no query, no fragment) and parameter list.
        """
        parts = urllib.parse.urlsplit(url)
        base_url = urllib.parse.urlunsplit(
            (parts.scheme, parts.netloc, parts.path, "", "")
        )
        params = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
        return base_url, params

    def _generate_nonce(self) -> str:
        """Generate a unique nonce for the request.

        Returns:
            A random 32-character hex string.
        """
        return secrets.token_hex(16)

    def _signing_key(self, token_secret: str) -> str:
        # consumer_secret&token_secret; for two-legged requests the token
        # secret is empty
        return (
            f"{self._percent_encode(self._consumer_secret)}&"
            f"{self._percent_encode(token_secret)}"
        )

    def _generate_signature(
        self,
        url: str,
        method: str,
        params: list[tuple[str, str]],
        token_secret: str = "",
    ) -> str:
        """Generate the signature for an OAuth1 request.

        Args:
            url: The base request URL.
            method: HTTP method.
            params: All parameters to sign.
            token_secret: Token secret for the signing key.

        Returns:
            The signature for the configured method.
        """
        if self._signature_method is SignatureMethod.PLAINTEXT:
            return self._signing_key(token_secret)

        base_string = self._create_signature_base_string(url, method, params)

        if self._signature_method is SignatureMethod.RSA:
            return self._rsa_sign(base_string)

        hashed = hmac.new(
            self._signing_key(token_secret).encode("utf-8"),
            base_string.encode("utf-8"),
            hashlib.sha1,
        )

        return base64.b64encode(hashed.digest()).decode("utf-8")

    def _rsa_sign(self, base_string: str) -> str:
        pem = self._rsa_private_key or self._consumer_secret
        private_key = serialization.load_pem_private_key(
            pem.encode("utf-8"), password=None
        )
        signature = private_key.sign(
            base_string.encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA1(),
        )
        return base64.b64encode(signature).decode("utf-8")

    def _create_signature_base_string(
        self,
        url: str,
        method: str,
        params: list[tuple[str, str]],
    ) -> str:
        """Create the OAuth1 signature base string.

        Args:
            url: The base request URL.
            method: HTTP method.
            params: All parameters to include.

        Returns:
            The signature base string.
        """
        # Sort on the encoded pairs, duplicates keep a stable order by value
        encoded = sorted(
            (self._percent_encode(k), self._percent_encode(v)) for k, v in params
        )
        param_string = "&".join(f"{k}={v}" for k, v in encoded)

        return "&".join(
            [
                method.upper(),
                self._percent_encode(url),
                self._percent_encode(param_string),
            ]
        )

    def _serialize_url(self, base_url: str, params: list[tuple[str, str]]) -> str:
        query = "&".join(
            f"{self._percent_encode(k)}={self._percent_encode(v)}"
            for k, v in params
            if not k.startswith("oauth_")
        )
        return f"{base_url}?{query}" if query else base_url

    def _serialize_header(self, params: list[tuple[str, str]]) -> str:
        header = ", ".join(
            f'{self._percent_encode(k)}="{self._percent_encode(v)}"'
            for k, v in params
            if k.startswith("oauth_")
        )
        if self._realm:
            # realm is never part of the signed parameter set
            return f'OAuth realm="{self._realm}", {header}'
        return f"OAuth {header}"

    @staticmethod
    def _percent_encode(value: str) -> str:
        """Percent-encode a value per RFC 5849 section 3.6.

        Args:
            value: The value to encode.

        Returns:
            Percent-encoded string.
        """
        # OAuth1 requires RFC 3986 encoding
        return urllib.parse.quote(str(value), safe="")
