"""Configuration settings for the Mercado Libre dashboard."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

from dotenv import load_dotenv

TotalPolicy = Literal["refresh", "initial"]

MAX_WINDOW_DAYS = 365


@dataclass(slots=True)
class FetchConfig:
    """Settings for a single upstream call."""

    api_base_url: str = "https://api.mercadolibre.com"
    timeout_seconds: float = 10.0

    retries: int = 3
    """Total attempts per call, including the first one."""

    base_delay_seconds: float = 1.0
    """Backoff base; attempt ``n`` waits ``base_delay_seconds * 2 ** n``."""


@dataclass(slots=True)
class PaginationConfig:
    """Settings for walking an offset/limit listing."""

    page_size: int = 50
    """Upstream refuses listing pages larger than 50."""

    batch_size: int = 20
    """Upstream multi-get accepts at most 20 ids."""

    page_delay_seconds: float = 1.0
    batch_delay_seconds: float = 0.5

    max_records: int = 1000
    """Safety ceiling on records fetched in one run."""

    max_consecutive_failures: int = 3
    """Failures in a row that stop the walk; the walk ends on the failure that reaches this count."""

    start_offset: int = 0
    """Listing offset the walk starts from; the ceiling counts records from here."""

    total_policy: TotalPolicy = "refresh"
    """``refresh`` re-reads the declared total on every page, ``initial`` keeps the first one."""

    def __post_init__(self) -> None:
        self.page_size = max(1, min(self.page_size, 50))
        self.batch_size = max(1, min(self.batch_size, 20))
        self.start_offset = max(self.start_offset, 0)


def clamp_window_days(days: int) -> int:
    """Keep a sales window between one day and ``MAX_WINDOW_DAYS``."""

    return max(1, min(days, MAX_WINDOW_DAYS))


@dataclass(slots=True)
class SalesConfig:
    """Settings for the trailing-window sales reconciliation."""

    window_days: int = 60
    pagination: PaginationConfig = field(default_factory=PaginationConfig)

    def __post_init__(self) -> None:
        self.window_days = clamp_window_days(self.window_days)


@dataclass(slots=True)
class OAuthConfig:
    """Credentials for the authorization-code flow."""

    app_id: str = ""
    client_secret: str = ""
    app_url: str = "http://localhost:5000"
    authorization_url: str = "https://auth.mercadolibre.com.ar/authorization"

    @property
    def redirect_uri(self) -> str:
        return f"{self.app_url.rstrip('/')}/callback"


@dataclass(slots=True)
class AppConfig:
    """Top-level configuration for the application."""

    environment: Literal["development", "production"] = "development"
    secret_key: str = "development-secret-key"
    fetch: FetchConfig = field(default_factory=FetchConfig)
    catalog: PaginationConfig = field(default_factory=PaginationConfig)
    sales: SalesConfig = field(default_factory=SalesConfig)
    oauth: OAuthConfig = field(default_factory=OAuthConfig)

    max_concurrent_pipelines: int = 2
    """Catalog and sales pipelines run side by side, never more."""

    @classmethod
    def from_env(cls) -> AppConfig:
        """Build a configuration from the process environment and ``.env``."""

        load_dotenv()
        environment = os.getenv("APP_ENV", "development")
        if environment not in ("development", "production"):
            environment = "development"
        return cls(
            environment=environment,
            secret_key=os.getenv("FLASK_SECRET_KEY", "development-secret-key"),
            fetch=FetchConfig(
                api_base_url=os.getenv("MELI_API_BASE_URL", "https://api.mercadolibre.com"),
            ),
            oauth=OAuthConfig(
                app_id=os.getenv("MELI_APP_ID", ""),
                client_secret=os.getenv("MELI_CLIENT_SECRET", ""),
                app_url=os.getenv("APP_URL", "http://localhost:5000"),
            ),
        )


DEFAULT_CONFIG = AppConfig()
