"""MSAL-based partner and tenant authentication."""

from .authenticator import Authenticator

__all__ = ["Authenticator"]
