"""Exception types raised by the Gangway handlers.

Each exception carries the HTTP status and the public message the client
sees; the internal cause is kept on the exception for the operator log.
The web layer in :mod:`gangway.main` turns them into responses.
"""

from typing import Optional


class GangwayError(Exception):
    """Base class for errors that end a request with a fixed response."""

    status_code: int = 500
    detail: str = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, *, detail: Optional[str] = None) -> None:
        super().__init__(message or detail or self.detail)
        if detail is not None:
            self.detail = detail


class SessionStoreError(GangwayError):
    """A session cookie could not be decoded or encoded."""


class StateMismatchError(GangwayError):
    """The callback state does not match the one issued at login."""

    status_code = 403
    detail = "Forbidden"


class TokenExchangeError(GangwayError):
    """The authorization code could not be exchanged for tokens."""

    detail = "Failed to exchange authorization code"


class TokenParseError(GangwayError):
    """The stored ID token could not be parsed or verified."""

    detail = "Could not parse JWT"


class ClaimError(GangwayError):
    """A required claim is missing from the ID token or has the wrong type."""

    def __init__(self, claim: str, *, detail: Optional[str] = None) -> None:
        super().__init__(f"claim {claim!r} missing or not a string", detail=detail)
        self.claim = claim


class KubeconfigRenderError(GangwayError):
    """The kubeconfig document could not be serialized."""

    detail = "Error creating kubeconfig"


class RedirectHome(GangwayError):
    """Base for outcomes answered with a 307 to the site root."""

    status_code = 307
    clear_sessions: bool = False


class LoginRequired(RedirectHome):
    """A gated page was requested without an ID token session."""


class SessionReset(RedirectHome):
    """The stored session is unusable; clear it and start over."""

    clear_sessions = True
