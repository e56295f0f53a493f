"""Custom exceptions for the OAuth1 client."""


class OAuth1Error(Exception):
    """Base exception for OAuth1 client errors."""

    pass


class ConfigurationError(OAuth1Error):
    """Raised when a required field is missing before a network call."""

    pass


class ProtocolError(OAuth1Error):
    """Raised when the provider reports an ``oauth_problem``."""

    def __init__(self, message: str, problem: str | None = None):
        super().__init__(message)
        self.problem = problem


class ParseError(OAuth1Error):
    """Raised when a reply parameter is not a single ``key=value`` pair."""

    def __init__(self, message: str, fragment: str = ""):
        super().__init__(message)
        self.fragment = fragment


class MismatchError(OAuth1Error):
    """Raised when a verifier arrives for a request token not on record."""

    pass


class TransportError(OAuth1Error):
    """Raised when an HTTP round trip fails or returns nothing."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
