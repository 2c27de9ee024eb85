"""
Authentication Package

This package handles the OIDC authorization code flow for the portal.

Modules:
- routes: /login, /callback and /logout
- session: encrypted cookie sessions for the state, ID token and refresh token
- oauth: authorization URL building and code exchange
- utils: ID token parsing, JWKS verification and typed claims

The authentication flow:
1. /login stores a random state and redirects to the provider
2. The user authenticates with the provider
3. /callback checks the state and exchanges the code for tokens
4. The tokens are kept in cookie sessions for the kubeconfig pages
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
