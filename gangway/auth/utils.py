"""
ID token utilities.

This module handles:
- Typed access to ID token claims
- Fetching and caching the provider JWKS (JSON Web Key Set)
- Parsing, and optionally verifying, ID tokens returned by the provider
"""

import logging
import time
from typing import Any, Dict, Iterator, Mapping, Optional

import httpx
from jose import JWTError, jwk, jwt
from jose.exceptions import JOSEError

from gangway.errors import ClaimError, TokenParseError

logger = logging.getLogger(__name__)


# =============================================================================
# Claims
# =============================================================================

class ClaimSet(Mapping[str, Any]):
    """Read-only view over decoded ID token claims."""

    def __init__(self, claims: Dict[str, Any]) -> None:
        self._claims = dict(claims)

    def __getitem__(self, name: str) -> Any:
        return self._claims[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._claims)

    def __len__(self) -> int:
        return len(self._claims)

    def get_string(self, name: str) -> Optional[str]:
        """Return the claim if it is present and a string, else None."""
        value = self._claims.get(name)
        if isinstance(value, str):
            return value
        return None

    def require_string(self, name: str, *, detail: Optional[str] = None) -> str:
        """
        Return a string claim.

        Raises:
            ClaimError: If the claim is missing or is not a string
        """
        value = self.get_string(name)
        if value is None:
            raise ClaimError(name, detail=detail)
        return value


# =============================================================================
# Verifier
# =============================================================================

class TokenVerifier:
    """
    Turn an ID token string into a :class:`ClaimSet`.

    Without a JWKS URL the token is decoded without checking its signature;
    it was received straight from the provider token endpoint over TLS. With
    a JWKS URL the signature, audience and expiry are verified.
    """

    def __init__(
        self,
        client_id: str,
        *,
        jwks_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        jwks_cache_seconds: int = 3600,
    ) -> None:
        self.client_id = client_id
        self.jwks_url = jwks_url
        self.jwks_cache_seconds = jwks_cache_seconds
        self._http_client = http_client
        self._jwks_cache: Optional[Dict[str, Any]] = None
        self._jwks_cache_time: float = 0.0

    async def parse(self, id_token: str) -> ClaimSet:
        """
        Parse an ID token.

        Raises:
            TokenParseError: If the token is malformed or fails verification
        """
        if self.jwks_url:
            try:
                claims = await self._verify(id_token)
            except (JOSEError, httpx.HTTPError, ValueError) as e:
                raise TokenParseError(f"ID token verification failed: {e}") from e
        else:
            try:
                claims = jwt.get_unverified_claims(id_token)
            except JWTError as e:
                raise TokenParseError(f"ID token is malformed: {e}") from e

        if not isinstance(claims, dict):
            raise TokenParseError("ID token payload is not a JSON object")
        return ClaimSet(claims)

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the provider JWKS, cached for ``jwks_cache_seconds``.

        Raises:
            httpx.HTTPError: If the JWKS endpoint is unreachable
            ValueError: If the response is not a key set
        """
        current_time = time.time()
        if (
            not force_refresh
            and self._jwks_cache
            and (current_time - self._jwks_cache_time) < self.jwks_cache_seconds
        ):
            return self._jwks_cache

        if self._http_client is None:
            async with httpx.AsyncClient() as client:
                response = await client.get(self.jwks_url, timeout=10.0)
        else:
            response = await self._http_client.get(self.jwks_url)
        response.raise_for_status()

        jwks_data = response.json()
        if "keys" not in jwks_data:
            raise ValueError("Invalid JWKS response: missing 'keys' field")

        self._jwks_cache = jwks_data
        self._jwks_cache_time = current_time
        logger.debug("Fetched %d signing keys from JWKS", len(jwks_data["keys"]))
        return jwks_data

    async def _verify(self, id_token: str) -> Dict[str, Any]:
        jwks = await self.fetch_jwks()
        signing_key = get_signing_key(id_token, jwks)
        if not signing_key:
            # Keys may have rotated
            jwks = await self.fetch_jwks(force_refresh=True)
            signing_key = get_signing_key(id_token, jwks)
            if not signing_key:
                raise JWTError("Unable to find matching signing key in JWKS")

        algorithm = signing_key.get("alg") or jwt.get_unverified_header(id_token).get("alg", "RS256")
        public_key = jwk.construct(signing_key, algorithm=algorithm)

        return jwt.decode(
            id_token,
            public_key.to_pem().decode("utf-8"),
            algorithms=[algorithm],
            audience=self.client_id,
            options={
                "verify_at_hash": False,
                "leeway": 10,
            },
        )


def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Return the JWKS entry matching the token's ``kid``, or None.

    Raises:
        JWTError: If the token header is malformed or has no kid
    """
    unverified_header = jwt.get_unverified_header(token)

    kid = unverified_header.get("kid")
    if not kid:
        raise JWTError("Token header missing 'kid' (Key ID)")

    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None
