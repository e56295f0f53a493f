"""OAuth 1.0a token exchange: request token and access token round trips."""

import logging
import urllib.parse
from dataclasses import dataclass, field

from .auth import OAuth1Signer, SignedRequest
from .config import Settings
from .exceptions import (
    ConfigurationError,
    OAuth1Error,
    ParseError,
    ProtocolError,
    TransportError,
)
from .models import Endpoints, HttpMethod, Session, StoredCredentials
from .token_store import CredentialStore
from .transport import HttpTransport

logger = logging.getLogger(__name__)

# Lowercase reply key -> (session section, attribute)
REQUEST_TOKEN_FIELDS: dict[str, tuple[str, str]] = {
    "oauth_token": ("credentials", "request_token"),
    "oauth_token_secret": ("credentials", "request_token_secret"),
    "oauth_callback_confirmed": ("flags", "callback_confirmed"),
}

ACCESS_TOKEN_FIELDS: dict[str, tuple[str, str]] = {
    "oauth_token": ("credentials", "access_token"),
    "oauth_token_secret": ("credentials", "access_token_secret"),
    "encoded_user_id": ("identity", "encoded_user_id"),
    "user_id": ("identity", "user_id"),
    "screen_name": ("identity", "screen_name"),
}


@dataclass
class ExchangeResult:
    """Outcome of a token exchange round trip.

    Attributes:
        params: Every well-formed ``key=value`` pair of the reply.
        errors: Problems met along the way, in order.
        ok: True when the expected token pair was obtained.
    """

    params: dict[str, str] = field(default_factory=dict)
    errors: list[OAuth1Error] = field(default_factory=list)
    ok: bool = False


def parse_reply(body: str) -> tuple[dict[str, str], list[ParseError]]:
    """Parse an ``&``-separated ``key=value`` reply body.

    Pairs that do not split into exactly two tokens are skipped.

    Args:
        body: Raw reply text.

    Returns:
        Tuple of the parsed pairs and the parse errors for skipped pairs.
    """
    params: dict[str, str] = {}
    errors: list[ParseError] = []

    for fragment in body.strip().split("&"):
        if not fragment:
            continue
        tokens = fragment.split("=")
        if len(tokens) != 2:
            logger.warning(
                "Return parameter did not have 2 values: %s - skipping.", fragment
            )
            errors.append(ParseError("Malformed reply parameter", fragment))
            continue
        key, value = tokens
        params[urllib.parse.unquote_plus(key)] = urllib.parse.unquote_plus(value)

    return params, errors


def _to_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


class TokenExchangeClient:
    """Performs the two token acquisition round trips of OAuth 1.0a.

    Both operations record their outcome on the shared session: tokens are
    written on success and the failure latch is set when an expected token
    is missing. Neither raises; problems come back in the ExchangeResult.
    """

    def __init__(
        self,
        settings: Settings,
        session: Session,
        endpoints: Endpoints,
        transport: HttpTransport,
        credential_store: CredentialStore | None = None,
    ) -> None:
        """Initialize the token exchange client.

        Args:
            settings: Application settings with signing options.
            session: Shared credentials and flags.
            endpoints: Token endpoint URLs.
            transport: HTTP transport for the round trips.
            credential_store: Where access tokens are persisted.
        """
        self._settings = settings
        self._session = session
        self._endpoints = endpoints
        self._transport = transport
        self._credential_store = credential_store
        self._rsa_private_key: str | None = None

        # Replaced by the name in the credential file once one is loaded
        self.api_name = settings.api_name

    def build_signer(self) -> OAuth1Signer:
        """Create a signer from the current consumer credentials."""
        credentials = self._session.credentials
        return OAuth1Signer(
            credentials.consumer_key,
            credentials.consumer_secret,
            signature_method=self._settings.signature_method,
            realm=credentials.realm,
            rsa_private_key=self._load_rsa_private_key(),
        )

    def _load_rsa_private_key(self) -> str | None:
        path = self._settings.rsa_private_key_path
        if not path:
            return None
        if self._rsa_private_key is None:
            with open(path, encoding="utf-8") as f:
                self._rsa_private_key = f.read()
        return self._rsa_private_key

    def obtain_request_token(self) -> ExchangeResult:
        """Step 1: Get a request token from the provider.

        Sets ``request_token``, ``request_token_secret`` and
        ``callback_confirmed`` on the session.

        Returns:
            The parsed reply and any errors. Empty when preconditions fail.
        """
        result = ExchangeResult()
        credentials = self._session.credentials

        with self._session.lock:
            generation = self._session.generation

        error = self._check_required(
            ("request token URL", self._endpoints.request_token_url),
            ("consumer key", credentials.consumer_key),
            ("consumer secret", credentials.consumer_secret),
        )
        if error:
            result.errors.append(error)
            return result

        extra_params = [
            ("oauth_callback", self._endpoints.verifier_callback_url or "oob")
        ]
        if self._settings.application_display_name:
            extra_params.append(
                ("xoauth_displayname", self._settings.application_display_name)
            )
        if self._settings.application_scope:
            extra_params.append(("scope", self._settings.application_scope))

        try:
            signed = self.build_signer().sign(
                self._endpoints.request_token_url,
                self._settings.http_method,
                extra_params=extra_params,
            )
        except (ValueError, TypeError, OSError) as e:
            return self._signing_failed(result, "request", e)

        reply = self._send(signed, result, "request")

        with self._session.lock:
            if self._is_stale(generation, "the request token round trip"):
                return result
            self._apply_reply(
                reply, result, REQUEST_TOKEN_FIELDS, "obtain_request_token"
            )
            result.ok = self._require_pair(
                "Request",
                credentials.request_token,
                credentials.request_token_secret,
            )

        return result

    def obtain_access_token(self) -> ExchangeResult:
        """Step 3: Exchange the verified request token for an access token.

        Sets ``access_token``, ``access_token_secret`` and the identity fields
        on the session, then persists the credentials on success.

        Returns:
            The parsed reply and any errors. Empty when preconditions fail.
        """
        result = ExchangeResult()
        credentials = self._session.credentials

        with self._session.lock:
            request_token = credentials.request_token
            request_token_secret = credentials.request_token_secret
            verifier = credentials.request_token_verifier
            generation = self._session.generation

        error = self._check_required(
            ("access token URL", self._endpoints.access_token_url),
            ("consumer key", credentials.consumer_key),
            ("consumer secret", credentials.consumer_secret),
            ("request token", request_token),
            ("request token secret", request_token_secret),
            ("request token verifier", verifier),
        )
        if error:
            result.errors.append(error)
            return result

        token_secret = None
        if self._settings.sign_access_request_with_token_secret:
            token_secret = request_token_secret

        try:
            signed = self.build_signer().sign(
                self._endpoints.access_token_url,
                self._settings.http_method,
                token=request_token,
                token_secret=token_secret,
                extra_params=[("oauth_verifier", verifier)],
            )
        except (ValueError, TypeError, OSError) as e:
            return self._signing_failed(result, "access", e)

        reply = self._send(signed, result, "access")

        # Held through the save so a reset cannot slip in between
        with self._session.lock:
            if self._is_stale(generation, "the access token round trip"):
                return result
            self._apply_reply(
                reply, result, ACCESS_TOKEN_FIELDS, "obtain_access_token"
            )
            result.ok = self._require_pair(
                "Access",
                credentials.access_token,
                credentials.access_token_secret,
            )
            if not result.ok:
                credentials.access_token = ""
                credentials.access_token_secret = ""
                return result

            credentials.request_token = ""
            credentials.request_token_secret = ""
            credentials.request_token_verifier = ""

            try:
                self.save_credentials()
            except OSError as e:
                logger.error("Failed to save credentials: %s", e)
                result.errors.append(ConfigurationError(str(e)))

        return result

    def save_credentials(self) -> None:
        """Persist the access token pair and identity fields."""
        if self._credential_store is None:
            return

        with self._session.lock:
            credentials = self._session.credentials
            identity = self._session.identity
            stored = StoredCredentials(
                api_name=self.api_name,
                access_token=credentials.access_token,
                access_secret=credentials.access_token_secret,
                screen_name=identity.screen_name,
                user_id=identity.user_id,
                user_id_encoded=identity.encoded_user_id,
                user_password=identity.user_password,
                user_password_encoded=identity.encoded_user_password,
            )

        self._credential_store.save(stored)
        logger.info("Saved credentials to %s", self._credential_store.path)

    def load_credentials(self) -> bool:
        """Load persisted credentials into the session.

        Returns:
            True if a complete access token pair was loaded.
        """
        if self._credential_store is None:
            return False

        with self._session.lock:
            generation = self._session.generation

        stored = self._credential_store.load()
        if stored is None:
            return False

        with self._session.lock:
            if self._is_stale(generation, "credential loading"):
                return False
            if bool(stored.access_token) != bool(stored.access_secret):
                logger.warning(
                    "Stored credentials hold only half of the access token pair; "
                    "ignoring them."
                )
                return False

            credentials = self._session.credentials
            identity = self._session.identity
            if stored.api_name:
                self.api_name = stored.api_name
            credentials.access_token = stored.access_token
            credentials.access_token_secret = stored.access_secret
            identity.screen_name = stored.screen_name
            identity.user_id = stored.user_id
            identity.encoded_user_id = stored.user_id_encoded
            identity.user_password = stored.user_password
            identity.encoded_user_password = stored.user_password_encoded
            return credentials.has_access_token

    def _is_stale(self, generation: int, step: str) -> bool:
        """Whether the session was reset since ``generation`` was read.

        Must be called with the session lock held.
        """
        if self._session.generation == generation:
            return False
        logger.info("Session was reset during %s; discarding the result.", step)
        return True

    @staticmethod
    def _check_required(*fields: tuple[str, str]) -> ConfigurationError | None:
        for name, value in fields:
            if not value:
                logger.error("No %s specified.", name)
                return ConfigurationError(f"No {name} specified.")
        return None

    def _signing_failed(
        self, result: ExchangeResult, step: str, error: Exception
    ) -> ExchangeResult:
        logger.error("Could not sign the %s token request: %s", step, error)
        result.errors.append(ConfigurationError(f"Signing failed: {error}"))
        self._session.latch_failure(f"Could not sign the {step} token request")
        return result

    def _send(self, signed: SignedRequest, result: ExchangeResult, step: str) -> str:
        headers = {"Authorization": signed.authorization_header}
        try:
            if self._settings.http_method == HttpMethod.POST.value:
                reply = self._transport.post(
                    signed.base_url, data=signed.query_params, headers=headers
                )
            else:
                reply = self._transport.get(signed.url, headers=headers)
        except TransportError as e:
            logger.warning("HTTP request for an oauth %s-token failed: %s", step, e)
            result.errors.append(e)
            return ""

        if not reply:
            logger.warning("HTTP request for an oauth %s-token failed.", step)
            result.errors.append(TransportError(f"Empty {step} token reply"))
        return reply

    def _apply_reply(
        self,
        reply: str,
        result: ExchangeResult,
        fields: dict[str, tuple[str, str]],
        operation: str,
    ) -> None:
        params, parse_errors = parse_reply(reply)
        result.params = params
        result.errors.extend(parse_errors)

        with self._session.lock:
            for key, value in params.items():
                lowered = key.lower()
                if lowered in fields:
                    section, attribute = fields[lowered]
                    target = getattr(self._session, section)
                    if isinstance(getattr(target, attribute), bool):
                        setattr(target, attribute, _to_bool(value))
                    else:
                        setattr(target, attribute, value)
                elif lowered == "oauth_problem":
                    logger.error("%s: got oauth problem: %s", operation, value)
                    result.errors.append(
                        ProtocolError(f"Provider reported: {value}", problem=value)
                    )
                else:
                    logger.info(
                        "%s: got an unknown parameter: %s=%s", operation, key, value
                    )

    def _require_pair(self, kind: str, token: str, secret: str) -> bool:
        if not secret:
            logger.warning("%s token secret not returned.", kind)
        if not token:
            logger.warning("%s token not returned.", kind)
        if token and secret:
            return True
        self._session.latch_failure(f"{kind} token not returned")
        return False
