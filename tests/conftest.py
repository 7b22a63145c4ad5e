from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

import pytest

from meli_dashboard.api.client import MultigetEntry
from meli_dashboard.api.errors import AuthenticationError, UpstreamError
from meli_dashboard.config import AppConfig, PaginationConfig, SalesConfig
from meli_dashboard.models import Page


def make_body(item_id: str, sku: str | None = None, **overrides: Any) -> dict[str, Any]:
    attributes = [{"id": "BRAND", "value_name": "Acme"}]
    if sku is not None:
        attributes.append({"id": "SELLER_SKU", "value_name": sku})
    body: dict[str, Any] = {
        "id": item_id,
        "title": f"Item {item_id}",
        "price": 100.0,
        "available_quantity": 5,
        "sold_quantity": 2,
        "status": "active",
        "permalink": f"https://articulo.example/{item_id}",
        "thumbnail": f"https://img.example/{item_id}.jpg",
        "shipping": {"mode": "me2", "free_shipping": True, "logistic_type": "fulfillment"},
        "attributes": attributes,
    }
    body.update(overrides)
    return body


def make_order(order_id: int, *lines: tuple[str, int]) -> dict[str, Any]:
    return {
        "id": order_id,
        "order_items": [{"item": {"id": item_id}, "quantity": quantity} for item_id, quantity in lines],
    }


class FakeMarketplace:
    """In-memory stand-in for ``MercadoLibreClient``."""

    def __init__(
        self,
        *,
        items: Mapping[str, Mapping[str, Any]] | None = None,
        listing: Sequence[str] | None = None,
        orders: Sequence[Mapping[str, Any]] = (),
        seller_id: str = "42",
        reject_token_on: str | None = None,
        failing_offsets: Iterable[int] = (),
        failing_batches: Iterable[int] = (),
    ) -> None:
        self.items = dict(items or {})
        self.listing = list(listing if listing is not None else self.items)
        self.orders = list(orders)
        self.seller_id = seller_id
        self.reject_token_on = reject_token_on
        self.failing_offsets = set(failing_offsets)
        self.failing_batches = set(failing_batches)
        self.calls: list[tuple[str, Any]] = []
        self.order_window: tuple[datetime, datetime] | None = None
        self._batch_count = 0

    def _guard(self, endpoint: str) -> None:
        if self.reject_token_on == endpoint:
            raise AuthenticationError("Access token rejected")

    def get_current_user_id(self) -> str:
        self.calls.append(("me", None))
        self._guard("me")
        return self.seller_id

    def search_item_ids(self, seller_id: str, offset: int, limit: int) -> Page[str]:
        self.calls.append(("listing", offset))
        self._guard("listing")
        if offset in self.failing_offsets:
            raise UpstreamError(500, "/items/search")
        return Page(
            offset=offset,
            limit=limit,
            items=self.listing[offset : offset + limit],
            declared_total=len(self.listing),
        )

    def search_orders(
        self, seller_id: str, date_from: datetime, date_to: datetime, offset: int, limit: int
    ) -> Page[Mapping[str, Any]]:
        self.calls.append(("orders", offset))
        self._guard("orders")
        self.order_window = (date_from, date_to)
        return Page(
            offset=offset,
            limit=limit,
            items=self.orders[offset : offset + limit],
            declared_total=len(self.orders),
        )

    def fetch_items(self, item_ids: Iterable[str], attributes: Sequence[str]) -> list[MultigetEntry]:
        ids = list(item_ids)
        self.calls.append(("items", tuple(ids)))
        self._guard("items")
        batch = self._batch_count
        self._batch_count += 1
        if batch in self.failing_batches:
            raise UpstreamError(500, "/items")
        entries = []
        for item_id in ids:
            body = self.items.get(item_id)
            if body is None:
                entries.append(MultigetEntry(code=404, body={"id": item_id, "message": "not found"}))
            else:
                entries.append(MultigetEntry(code=200, body=body))
        return entries

    def calls_to(self, endpoint: str) -> list[Any]:
        return [argument for name, argument in self.calls if name == endpoint]


@pytest.fixture
def fake_marketplace():
    return FakeMarketplace


@pytest.fixture
def item_body():
    return make_body


@pytest.fixture
def order():
    return make_order


@pytest.fixture
def fast_pagination() -> PaginationConfig:
    return PaginationConfig(page_delay_seconds=0, batch_delay_seconds=0)


@pytest.fixture
def fast_config(fast_pagination: PaginationConfig) -> AppConfig:
    return AppConfig(
        catalog=fast_pagination,
        sales=SalesConfig(pagination=PaginationConfig(page_delay_seconds=0, batch_delay_seconds=0)),
    )
