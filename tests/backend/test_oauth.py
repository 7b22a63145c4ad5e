from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
import requests

from meli_dashboard.api.errors import AuthenticationError, UpstreamError
from meli_dashboard.api.oauth import authorization_url, exchange_code
from meli_dashboard.config import FetchConfig, OAuthConfig


class DummyResponse:
    def __init__(self, status_code: int, payload: object) -> None:
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload

    def json(self) -> object:
        return self._payload


@pytest.fixture
def oauth() -> OAuthConfig:
    return OAuthConfig(app_id="123", client_secret="shh", app_url="https://dash.example")


def test_authorization_url_carries_client_and_redirect(oauth: OAuthConfig) -> None:
    parsed = urlparse(authorization_url(oauth))
    query = parse_qs(parsed.query)

    assert parsed.netloc == "auth.mercadolibre.com.ar"
    assert query == {
        "response_type": ["code"],
        "client_id": ["123"],
        "redirect_uri": ["https://dash.example/callback"],
    }


def test_exchange_code_returns_tokens(monkeypatch, oauth: OAuthConfig) -> None:
    captured: dict[str, object] = {}

    def fake_post(url, headers=None, data=None, timeout=None):
        captured.update(url=url, data=data)
        return DummyResponse(200, {"access_token": "APP_USR-1", "refresh_token": "TG-1", "expires_in": 21600})

    monkeypatch.setattr(requests, "post", fake_post)

    tokens = exchange_code("CODE", oauth, FetchConfig(api_base_url="https://api.example.com"))

    assert captured["url"] == "https://api.example.com/oauth/token"
    assert captured["data"]["grant_type"] == "authorization_code"
    assert captured["data"]["code"] == "CODE"
    assert tokens.access_token == "APP_USR-1"
    assert tokens.refresh_token == "TG-1"


def test_exchange_code_rejected(monkeypatch, oauth: OAuthConfig) -> None:
    monkeypatch.setattr(requests, "post", lambda *args, **kwargs: DummyResponse(400, {"error": "invalid_grant"}))

    with pytest.raises(AuthenticationError):
        exchange_code("BAD", oauth)


def test_exchange_code_server_error(monkeypatch, oauth: OAuthConfig) -> None:
    monkeypatch.setattr(requests, "post", lambda *args, **kwargs: DummyResponse(502, {}))

    with pytest.raises(UpstreamError):
        exchange_code("CODE", oauth)
