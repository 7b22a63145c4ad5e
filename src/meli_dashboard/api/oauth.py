"""Authorization-code flow against Mercado Libre."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import requests

from ..config import FetchConfig, OAuthConfig
from .errors import AuthenticationError, UpstreamError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TokenPair:
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None


def authorization_url(config: OAuthConfig) -> str:
    query = urlencode(
        {
            "response_type": "code",
            "client_id": config.app_id,
            "redirect_uri": config.redirect_uri,
        }
    )
    return f"{config.authorization_url}?{query}"


def exchange_code(code: str, config: OAuthConfig, fetch: FetchConfig | None = None) -> TokenPair:
    """Trade an authorization code for an access/refresh token pair.

    Raises ``AuthenticationError`` when the API refuses the code and lets
    ``requests.RequestException`` through on transport failures.
    """

    fetch = fetch or FetchConfig()
    url = f"{fetch.api_base_url.rstrip('/')}/oauth/token"
    response = requests.post(
        url,
        headers={
            "accept": "application/json",
            "content-type": "application/x-www-form-urlencoded",
        },
        data={
            "grant_type": "authorization_code",
            "client_id": config.app_id,
            "client_secret": config.client_secret,
            "code": code,
            "redirect_uri": config.redirect_uri,
        },
        timeout=fetch.timeout_seconds,
    )

    try:
        payload: Any = response.json()
    except ValueError:
        payload = {}

    if not response.ok:
        logger.error("Token exchange failed with %s: %s", response.status_code, payload)
        if 400 <= response.status_code < 500:
            raise AuthenticationError("Authorization code rejected")
        raise UpstreamError(response.status_code, url)

    access_token = payload.get("access_token") if isinstance(payload, dict) else None
    if not access_token:
        raise AuthenticationError("Token response did not include an access token")

    return TokenPair(
        access_token=str(access_token),
        refresh_token=payload.get("refresh_token"),
        expires_in=payload.get("expires_in"),
    )
