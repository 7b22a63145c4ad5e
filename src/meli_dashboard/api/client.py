"""Client for the read-only parts of the Mercado Libre API."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import requests

from ..config import FetchConfig
from ..models import ALL_STATUSES, Page
from .errors import AuthenticationError, UpstreamError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 503})
MULTIGET_LIMIT = 20
LISTING_LIMIT = 50

CATALOG_ATTRIBUTES = (
    "id",
    "title",
    "price",
    "available_quantity",
    "sold_quantity",
    "status",
    "permalink",
    "thumbnail",
    "pictures",
    "shipping",
    "attributes",
)
SKU_ATTRIBUTES = ("id", "attributes")


@dataclass(slots=True)
class MultigetEntry:
    """Per-id result inside a multi-get response."""

    code: int
    body: Mapping[str, Any] | None

    @property
    def ok(self) -> bool:
        return self.code == 200 and self.body is not None


@dataclass(slots=True)
class MercadoLibreClient:
    """Handles communication with the Mercado Libre API on behalf of one seller.

    Every call goes through :meth:`fetch_with_retry`. The client keeps no state
    between calls apart from its configuration, so one instance can serve both
    the catalog and the sales pipeline.
    """

    access_token: str
    config: FetchConfig = field(default_factory=FetchConfig)
    sleep: Callable[[float], None] = time.sleep

    def build_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def url(self, path: str) -> str:
        return f"{self.config.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    def fetch_with_retry(
        self,
        url: str,
        params: Mapping[str, Any] | None = None,
        *,
        retries: int | None = None,
        base_delay: float | None = None,
    ) -> requests.Response:
        """Perform a GET, backing off on 429/503 and transport errors.

        Any other status is handed back untouched so the caller can decide
        whether it is fatal. Transport errors are re-raised once the budget is
        spent; a rate limit that outlasts the budget returns its last response.
        """

        attempts = max(retries if retries is not None else self.config.retries, 1)
        delay = base_delay if base_delay is not None else self.config.base_delay_seconds

        for attempt in range(attempts):
            is_last = attempt == attempts - 1
            try:
                response = requests.get(
                    url,
                    headers=self.build_headers(),
                    params=params,
                    timeout=self.config.timeout_seconds,
                )
            except requests.RequestException as exc:
                logger.warning("Attempt %s/%s for %s failed: %s", attempt + 1, attempts, url, exc)
                if is_last:
                    raise
                self.sleep(delay * 2**attempt)
                continue

            if response.status_code in RETRYABLE_STATUSES and not is_last:
                wait = delay * 2**attempt
                logger.info("Rate limited (%s) on %s, waiting %.1fs", response.status_code, url, wait)
                self.sleep(wait)
                continue

            return response

        raise AssertionError("unreachable")  # pragma: no cover

    def get_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        """Fetch ``path`` and decode it, mapping failures onto our exceptions."""

        url = self.url(path)
        response = self.fetch_with_retry(url, params)
        if response.status_code == 401:
            raise AuthenticationError("Access token rejected")
        if not 200 <= response.status_code < 300:
            raise UpstreamError(response.status_code, url)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(response.status_code, url) from exc

    def get_current_user_id(self) -> str:
        payload = self.get_json("/users/me")
        if not isinstance(payload, Mapping) or payload.get("id") is None:
            raise UpstreamError(200, self.url("/users/me"))
        return str(payload["id"])

    def search_item_ids(
        self,
        seller_id: str,
        offset: int,
        limit: int,
        statuses: Sequence[str] = ALL_STATUSES,
    ) -> Page[str]:
        """Return one page of listing ids for ``seller_id``."""

        limit = min(limit, LISTING_LIMIT)
        payload = self.get_json(
            f"/users/{seller_id}/items/search",
            {"status": ",".join(statuses), "offset": offset, "limit": limit},
        )
        results = [str(item_id) for item_id in self._extract_results(payload)]
        return Page(offset=offset, limit=limit, items=results, declared_total=self._extract_total(payload))

    def search_orders(
        self,
        seller_id: str,
        date_from: datetime,
        date_to: datetime,
        offset: int,
        limit: int,
    ) -> Page[Mapping[str, Any]]:
        """Return one page of orders created between ``date_from`` and ``date_to``."""

        limit = min(limit, LISTING_LIMIT)
        payload = self.get_json(
            "/orders/search",
            {
                "seller": seller_id,
                "order.date_created.from": format_instant(date_from),
                "order.date_created.to": format_instant(date_to),
                "offset": offset,
                "limit": limit,
            },
        )
        orders = [order for order in self._extract_results(payload) if isinstance(order, Mapping)]
        return Page(offset=offset, limit=limit, items=orders, declared_total=self._extract_total(payload))

    def fetch_items(self, item_ids: Iterable[str], attributes: Sequence[str] = CATALOG_ATTRIBUTES) -> list[MultigetEntry]:
        """Multi-get up to 20 listings, keeping the per-id status codes."""

        ids = list(item_ids)
        if len(ids) > MULTIGET_LIMIT:
            raise ValueError(f"Multi-get accepts at most {MULTIGET_LIMIT} ids, got {len(ids)}")
        if not ids:
            return []

        payload = self.get_json("/items", {"ids": ",".join(ids), "attributes": ",".join(attributes)})
        if not isinstance(payload, list):
            raise UpstreamError(200, self.url("/items"))

        entries: list[MultigetEntry] = []
        for raw in payload:
            if not isinstance(raw, Mapping):
                continue
            try:
                code = int(raw.get("code", 0))
            except (TypeError, ValueError):
                code = 0
            body = raw.get("body")
            entries.append(MultigetEntry(code=code, body=body if isinstance(body, Mapping) else None))
        return entries

    @staticmethod
    def _extract_results(payload: Any) -> list[Any]:
        if not isinstance(payload, Mapping):
            return []
        results = payload.get("results")
        return list(results) if isinstance(results, list) else []

    @staticmethod
    def _extract_total(payload: Any) -> int:
        if not isinstance(payload, Mapping):
            return 0
        paging = payload.get("paging")
        if not isinstance(paging, Mapping):
            return 0
        try:
            return max(int(paging.get("total") or 0), 0)
        except (TypeError, ValueError):
            return 0


def format_instant(moment: datetime) -> str:
    """Render an aware datetime as the ISO-8601 UTC instant the API expects."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
