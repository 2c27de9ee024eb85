"""
Kubeconfig Package

Turns a logged-in session into kubectl credentials.

Modules:
- info: builds the per-request UserInfo from sessions, claims and settings
- generator: produces and serializes the kubeconfig document
- routes: home, /commandline and /kubeconfig pages
"""

from .routes import pages_router

__all__ = ["pages_router"]
