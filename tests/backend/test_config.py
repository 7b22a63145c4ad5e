from __future__ import annotations

from meli_dashboard.config import MAX_WINDOW_DAYS, AppConfig, OAuthConfig, PaginationConfig, SalesConfig


def test_page_and_batch_sizes_are_capped_to_upstream_limits() -> None:
    config = PaginationConfig(page_size=500, batch_size=100)

    assert config.page_size == 50
    assert config.batch_size == 20


def test_redirect_uri_points_to_callback() -> None:
    assert OAuthConfig(app_url="https://dash.example/").redirect_uri == "https://dash.example/callback"


def test_from_env_reads_credentials(monkeypatch) -> None:
    monkeypatch.setenv("MELI_APP_ID", "123")
    monkeypatch.setenv("MELI_CLIENT_SECRET", "shh")
    monkeypatch.setenv("APP_URL", "https://dash.example")
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("FLASK_SECRET_KEY", "secret")

    config = AppConfig.from_env()

    assert config.oauth.app_id == "123"
    assert config.oauth.client_secret == "shh"
    assert config.oauth.redirect_uri == "https://dash.example/callback"
    assert config.environment == "production"
    assert config.secret_key == "secret"
    assert config.sales.window_days == 60


def test_from_env_ignores_unknown_environment(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "staging")

    assert AppConfig.from_env().environment == "development"


def test_negative_start_offset_is_reset() -> None:
    assert PaginationConfig(start_offset=-5).start_offset == 0


def test_sales_window_is_kept_in_range() -> None:
    assert SalesConfig(window_days=0).window_days == 1
    assert SalesConfig(window_days=1_000_000).window_days == MAX_WINDOW_DAYS
