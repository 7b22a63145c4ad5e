"""Units sold per SKU over a trailing window of orders."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import requests

from ..api.client import SKU_ATTRIBUTES, MercadoLibreClient
from ..api.errors import AuthenticationError, UpstreamError
from ..config import SalesConfig, clamp_window_days
from ..models import NO_SKU, CollectionProgress, CollectionStatus, SalesResult, extract_sku
from .pagination import ItemHydrator, PaginatedCollector, relay

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _line_quantity(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def fold_item_quantities(orders: Iterable[Mapping[str, Any]]) -> dict[str, int]:
    """Sum order-line quantities per item id.

    Lines without an item id or with a non-positive quantity are ignored.
    """

    totals: dict[str, int] = {}
    for order in orders:
        lines = order.get("order_items")
        if not isinstance(lines, list):
            continue
        for line in lines:
            if not isinstance(line, Mapping):
                continue
            item = line.get("item")
            item_id = item.get("id") if isinstance(item, Mapping) else None
            if not item_id:
                continue
            quantity = _line_quantity(line.get("quantity"))
            if quantity <= 0:
                continue
            key = str(item_id)
            totals[key] = totals.get(key, 0) + quantity
    return totals


def fold_sku_quantities(
    item_units: Mapping[str, int],
    item_skus: Mapping[str, str],
) -> tuple[dict[str, int], int]:
    """Fold ``itemId -> units`` into ``SKU -> units``.

    Returns the SKU totals and the units of resolved items that carry no SKU.
    Items missing from ``item_skus`` are left out entirely.
    """

    totals: dict[str, int] = {}
    unassigned = 0
    for item_id, units in item_units.items():
        sku = item_skus.get(item_id)
        if sku is None:
            continue
        if sku == NO_SKU:
            unassigned += units
            continue
        totals[sku] = totals.get(sku, 0) + units
    return totals, unassigned


@dataclass(slots=True)
class SalesReconciler:
    """Collects recent orders and maps their units onto seller SKUs."""

    client: MercadoLibreClient
    config: SalesConfig = field(default_factory=SalesConfig)
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], datetime] = _utcnow

    def iter_reconcile(self, window_days: int | None = None) -> Iterator[CollectionProgress | SalesResult]:
        """Yield progress events, then exactly one ``SalesResult``."""

        days = clamp_window_days(window_days if window_days is not None else self.config.window_days)
        history: list[CollectionProgress] = []

        try:
            seller_id = self.client.get_current_user_id()
        except AuthenticationError:
            logger.warning("Sales reconciliation rejected: invalid or expired token")
            yield SalesResult(status=CollectionStatus.AUTH_FAILED, window_days=days)
            return
        except (UpstreamError, requests.RequestException) as exc:
            logger.error("Could not resolve the seller: %s", exc)
            yield SalesResult(status=CollectionStatus.FAILED, window_days=days)
            return

        date_to = self.clock()
        date_from = date_to - timedelta(days=days)
        pagination = self.config.pagination
        collector: PaginatedCollector[Mapping[str, Any]] = PaginatedCollector(
            lambda offset, limit: self.client.search_orders(seller_id, date_from, date_to, offset, limit),
            pagination,
            key=lambda order: order.get("id"),
            stage="orders",
            sleep=self.sleep,
        )
        resolver = ItemHydrator(
            self.client,
            pagination,
            attributes=SKU_ATTRIBUTES,
            stage="resolving",
            sleep=self.sleep,
        )

        try:
            orders = yield from relay(collector.iter_collect(), history)
            if orders.status is CollectionStatus.FAILED:
                yield SalesResult(status=CollectionStatus.FAILED, window_days=days)
                return

            item_units = fold_item_quantities(orders.records)
            resolution = yield from relay(resolver.iter_hydrate(list(item_units)), history)
        except AuthenticationError:
            logger.warning("Sales reconciliation aborted: token rejected mid-run")
            yield SalesResult(status=CollectionStatus.AUTH_FAILED, window_days=days)
            return

        item_skus = {item_id: extract_sku(body.get("attributes")) for item_id, body in resolution.bodies.items()}
        units_by_sku, unassigned = fold_sku_quantities(item_units, item_skus)

        if orders.status is CollectionStatus.COMPLETE and resolution.failed_batches == 0:
            status = CollectionStatus.COMPLETE
        else:
            status = CollectionStatus.PARTIAL

        if resolution.unresolved_count:
            logger.info("Dropped %s sold items that could not be resolved", resolution.unresolved_count)

        yield SalesResult(
            status=status,
            window_days=days,
            units_by_sku=units_by_sku,
            units_by_item=item_units,
            total_orders=len(orders.records),
            declared_orders=orders.declared_total,
            unresolved_count=resolution.unresolved_count,
            unassigned_units=unassigned,
            ceiling_reached=orders.ceiling_reached,
        )

    def reconcile(self, window_days: int | None = None) -> SalesResult:
        result: SalesResult | None = None
        for event in self.iter_reconcile(window_days):
            if isinstance(event, SalesResult):
                result = event
        assert result is not None
        return result
