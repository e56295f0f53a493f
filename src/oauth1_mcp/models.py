"""
Pydantic models for OAuth1 credentials, endpoints and session state.
"""

import threading
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

# ============================================================================
# Enumerations
# ============================================================================


class SignatureMethod(str, Enum):
    """OAuth1 signature methods."""

    HMAC = "HMAC-SHA1"
    RSA = "RSA-SHA1"
    PLAINTEXT = "PLAINTEXT"


class HttpMethod(str, Enum):
    """HTTP methods used for signed requests."""

    GET = "GET"
    POST = "POST"


class AuthState(str, Enum):
    """States of the authorization driver."""

    IDLE = "idle"
    AWAITING_REQUEST_TOKEN = "awaiting_request_token"
    AWAITING_USER_VERIFICATION = "awaiting_user_verification"
    AWAITING_VERIFIER_INPUT = "awaiting_verifier_input"
    EXCHANGING_ACCESS_TOKEN = "exchanging_access_token"
    AUTHORIZED = "authorized"
    FAILED = "failed"


# ============================================================================
# Endpoint Models
# ============================================================================


def add_query_separator(url: str) -> str:
    """Make sure a URL ends ready for more query parameters.

    Appends ``?`` when the URL has no query yet and ``&`` when it already
    carries one. Empty URLs stay empty so they can still be detected as unset.
    """
    if not url or url.endswith(("?", "&")):
        return url
    return url + ("&" if "?" in url else "?")


class Endpoints(BaseModel):
    """The set of URLs the OAuth1 handshake talks to."""

    model_config = ConfigDict(validate_assignment=True)

    api_url: str = ""
    request_token_url: str = ""
    access_token_url: str = ""
    authorization_url: str = ""
    verifier_callback_url: str = ""

    @field_validator("request_token_url", "access_token_url", "authorization_url")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return add_query_separator(value)

    @classmethod
    def from_base_url(
        cls,
        api_url: str,
        request_token_url: str | None = None,
        access_token_url: str | None = None,
        authorization_url: str | None = None,
    ) -> "Endpoints":
        """Derive the token endpoints from the API base URL.

        Args:
            api_url: Base API URL.
            request_token_url: Explicit request token endpoint override.
            access_token_url: Explicit access token endpoint override.
            authorization_url: Explicit authorization endpoint override.

        Returns:
            Endpoints with every unset endpoint derived from ``api_url``.
        """
        base = api_url.rstrip("/")

        def derive(override: str | None, path: str) -> str:
            if override:
                return override
            return f"{base}{path}" if base else ""

        return cls(
            api_url=api_url,
            request_token_url=derive(request_token_url, "/oauth/request_token"),
            access_token_url=derive(access_token_url, "/oauth/access_token"),
            authorization_url=derive(authorization_url, "/oauth/authorize"),
        )


# ============================================================================
# Credential and Session Models
# ============================================================================


class Credentials(BaseModel):
    """Consumer configuration plus the mutable token pairs of a session."""

    consumer_key: str = ""
    consumer_secret: str = ""
    access_token: str = ""
    access_token_secret: str = ""
    request_token: str = ""
    request_token_secret: str = ""
    request_token_verifier: str = ""
    realm: str = ""

    @property
    def has_access_token(self) -> bool:
        return bool(self.access_token) and bool(self.access_token_secret)


class IdentityFields(BaseModel):
    """User identity fields passed through from the provider or credential file."""

    screen_name: str = ""
    user_id: str = ""
    encoded_user_id: str = ""
    user_password: str = ""
    encoded_user_password: str = ""


class SessionFlags(BaseModel):
    """Progress and failure flags for one authorization session."""

    callback_confirmed: bool = False
    verification_requested: bool = False
    access_failed: bool = False
    access_failed_reported: bool = False
    first_time: bool = True
    failure_reason: str | None = None

    def restart(self) -> None:
        """Put every flag back to its default, marking the first tick done."""
        for name, model_field in type(self).model_fields.items():
            setattr(self, name, model_field.default)
        self.first_time = False


class Session(BaseModel):
    """Everything the driver and token exchange client share.

    The lock guards read-modify-write sequences against a verifier delivered
    concurrently by the callback listener. ``generation`` changes on every
    restart, so a round trip that began before a reset can tell that its
    reply no longer belongs to the session.
    """

    credentials: Credentials
    identity: IdentityFields = Field(default_factory=IdentityFields)
    flags: SessionFlags = Field(default_factory=SessionFlags)
    generation: int = 0

    _lock: Any = PrivateAttr(default_factory=threading.RLock)

    @property
    def lock(self) -> Any:
        return self._lock

    @property
    def is_authorized(self) -> bool:
        return self.credentials.has_access_token and not self.flags.access_failed

    def restart(self) -> None:
        """Drop every token, identity field and flag, keeping the consumer pair.

        Sections are cleared in place; callers may hold references to them.
        """
        with self._lock:
            credentials = self.credentials
            credentials.access_token = ""
            credentials.access_token_secret = ""
            credentials.request_token = ""
            credentials.request_token_secret = ""
            credentials.request_token_verifier = ""
            for name in type(self.identity).model_fields:
                setattr(self.identity, name, "")
            self.flags.restart()
            self.generation += 1

    def latch_failure(self, reason: str) -> None:
        """Set the sticky failure latch, keeping the first reason seen."""
        with self._lock:
            if not self.flags.access_failed:
                self.flags.failure_reason = reason
            self.flags.access_failed = True


class StoredCredentials(BaseModel):
    """Model for the persisted credential file."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    api_name: str = ""
    access_token: str = ""
    access_secret: str = ""
    screen_name: str = ""
    user_id: str = ""
    user_id_encoded: str = ""
    user_password: str = ""
    user_password_encoded: str = ""
