"""
Cookie Session Management Module
================================

Encrypted, cookie-backed sessions for the login flow.

The portal keeps three independent sessions, one cookie each, so that a large
ID token and refresh token never have to share a single 4 KB cookie:

- ``gangway``: the anti-CSRF ``state`` issued at login
- ``gangway_id_token``: the provider ID token
- ``gangway_refresh_token``: the provider refresh token

Cookie values are JSON, encrypted and authenticated with Fernet, and expire
after ``SESSION_MAX_AGE`` seconds.
"""

import base64
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from cryptography.fernet import Fernet, InvalidToken
from fastapi import Request, Response

from gangway.errors import SessionStoreError


PRIMARY_SESSION = "gangway"
ID_TOKEN_SESSION = "gangway_id_token"
REFRESH_TOKEN_SESSION = "gangway_refresh_token"

ALL_SESSIONS = (PRIMARY_SESSION, ID_TOKEN_SESSION, REFRESH_TOKEN_SESSION)

# Browsers drop cookies larger than this.
MAX_COOKIE_LENGTH = 4096


@dataclass
class Session:
    """Values of one named session as decoded from its cookie."""

    name: str
    values: Dict[str, Any] = field(default_factory=dict)
    is_new: bool = True


def _derive_key(secret: str) -> bytes:
    """Turn an arbitrary secret string into a Fernet key."""
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


class CookieSessionStore:
    """
    Get-or-create, save and delete named sessions stored in cookies.

    The store holds no per-user state, so one instance is shared by every
    request.
    """

    def __init__(
        self,
        secret_key: str,
        *,
        max_age: int = 60 * 60 * 24,
        path: str = "/",
        secure: bool = False,
        same_site: str = "lax",
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._fernet = Fernet(_derive_key(secret_key))
        self.max_age = max_age
        self.path = path
        self.secure = secure
        self.same_site = same_site

    def get(self, request: Request, name: str) -> Session:
        """
        Load the named session, or a new empty one if no cookie is present.

        Raises:
            SessionStoreError: If the cookie exists but cannot be decoded
        """
        raw = request.cookies.get(name)
        if not raw:
            return Session(name=name)
        return Session(name=name, values=self.decode(name, raw), is_new=False)

    def get_all(self, request: Request, names: Iterable[str] = ALL_SESSIONS) -> Dict[str, Session]:
        return {name: self.get(request, name) for name in names}

    def save(self, response: Response, session: Session) -> None:
        """
        Encode the session into a Set-Cookie header on ``response``.

        Raises:
            SessionStoreError: If the values cannot be encoded or the cookie
                               would exceed the browser size limit
        """
        value = self.encode(session)
        response.set_cookie(
            key=session.name,
            value=value,
            max_age=self.max_age,
            path=self.path,
            secure=self.secure,
            httponly=True,
            samesite=self.same_site,
        )
        session.is_new = False

    def encode(self, session: Session) -> str:
        """Encrypt the session values into a cookie value."""
        try:
            payload = json.dumps(session.values, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SessionStoreError(f"could not encode session {session.name!r}") from e

        value = self._fernet.encrypt(payload).decode("ascii")
        if len(value) > MAX_COOKIE_LENGTH:
            raise SessionStoreError(
                f"session {session.name!r} is {len(value)} bytes, over the {MAX_COOKIE_LENGTH} byte cookie limit"
            )
        return value

    def decode(self, name: str, raw: str) -> Dict[str, Any]:
        """Decrypt a cookie value back into session values."""
        try:
            payload = self._fernet.decrypt(raw.encode("ascii"), ttl=self.max_age)
            values = json.loads(payload)
        except (InvalidToken, UnicodeError, ValueError) as e:
            raise SessionStoreError(f"could not decode session {name!r}") from e

        if not isinstance(values, dict):
            raise SessionStoreError(f"session {name!r} does not hold a mapping")
        return values

    def cleanup(self, response: Response, name: str) -> None:
        """Expire the named session cookie; harmless if it does not exist."""
        response.delete_cookie(
            key=name,
            path=self.path,
            secure=self.secure,
            httponly=True,
            samesite=self.same_site,
        )

    def cleanup_all(self, response: Response, names: Optional[Iterable[str]] = None) -> None:
        for name in names or ALL_SESSIONS:
            self.cleanup(response, name)


__all__ = [
    "PRIMARY_SESSION",
    "ID_TOKEN_SESSION",
    "REFRESH_TOKEN_SESSION",
    "ALL_SESSIONS",
    "Session",
    "CookieSessionStore",
]
