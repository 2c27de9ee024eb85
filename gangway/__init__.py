"""
Gangway

A small web portal that logs users in against an OIDC provider and hands
them a kubeconfig using their ID token and refresh token.

Packages:
- auth: login, callback and logout, cookie sessions, OAuth2 client, ID token parsing
- kubeconfig: credential assembly, kubeconfig generation, page routes
"""

__version__ = "1.0.0"
