"""Exceptions raised while talking to the Mercado Libre API."""
from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for upstream failures."""


class AuthenticationError(MarketplaceError):
    """The access token was rejected. Never retried."""


class UpstreamError(MarketplaceError):
    """The API answered with a non-success status other than 401."""

    def __init__(self, status_code: int, url: str = "") -> None:
        super().__init__(f"Upstream returned {status_code} for {url or 'request'}")
        self.status_code = status_code
        self.url = url
