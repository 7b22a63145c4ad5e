"""Runs the catalog and sales pipelines and joins them for display."""
from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Iterable, Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace

from ..api.client import MercadoLibreClient
from ..config import AppConfig, PaginationConfig
from ..models import (
    CatalogItem,
    CatalogResult,
    CollectionProgress,
    CollectionStatus,
    DashboardRow,
    Fulfillment,
    SalesResult,
)
from .catalog_service import CatalogService
from .sales_service import SalesReconciler

logger = logging.getLogger(__name__)

PAGE_SIZES = (50, 100, 200)
ALL = "all"


@dataclass(slots=True)
class DashboardFilters:
    """Search and pagination state of the product table."""

    search: str = ""
    fulfillment: str = ALL
    status: str = ALL
    page: int = 1
    per_page: int = PAGE_SIZES[0]

    @classmethod
    def from_args(cls, args: Mapping[str, str]) -> DashboardFilters:
        try:
            page = max(int(args.get("page", 1)), 1)
        except (TypeError, ValueError):
            page = 1
        try:
            per_page = int(args.get("per_page", PAGE_SIZES[0]))
        except (TypeError, ValueError):
            per_page = PAGE_SIZES[0]
        if per_page not in PAGE_SIZES:
            per_page = PAGE_SIZES[0]
        return cls(
            search=(args.get("q") or "").strip(),
            fulfillment=args.get("fulfillment") or ALL,
            status=args.get("status") or ALL,
            page=page,
            per_page=per_page,
        )

    def matches(self, row: DashboardRow) -> bool:
        item = row.item
        if self.search:
            term = self.search.lower()
            haystack = (item.title.lower(), item.id.lower(), item.sku.lower())
            if not any(term in value for value in haystack):
                return False

        if self.fulfillment != ALL and not _matches_fulfillment(item, self.fulfillment):
            return False

        if self.status != ALL and item.status.value != self.status:
            return False

        return True


def _matches_fulfillment(item: CatalogItem, wanted: str) -> bool:
    shipping = item.shipping
    if wanted == Fulfillment.FULL.value:
        return shipping.logistic_type == "fulfillment"
    if wanted == Fulfillment.FLEX.value:
        return shipping.logistic_type == "xd_drop_off"
    if wanted == Fulfillment.MERCADO_ENVIOS.value:
        return shipping.mode == "me2"
    if wanted == Fulfillment.NORMAL.value:
        return shipping.mode == "not_specified" or (not shipping.logistic_type and shipping.mode != "me2")
    return True


def join_rows(items: Iterable[CatalogItem], sales: SalesResult | None) -> list[DashboardRow]:
    """Attach units sold to each item by SKU; unknown or absent SKUs get zero."""

    return [
        DashboardRow(item=item, units_sold=sales.units_for(item.sku) if sales and item.has_sku else 0)
        for item in items
    ]


def apply_filters(rows: Iterable[DashboardRow], filters: DashboardFilters) -> list[DashboardRow]:
    return [row for row in rows if filters.matches(row)]


def paginate(rows: list[DashboardRow], page: int, per_page: int) -> tuple[list[DashboardRow], int, int]:
    """Return the rows of ``page`` together with the clamped page and page count."""

    total_pages = max(math.ceil(len(rows) / per_page), 1)
    page = min(max(page, 1), total_pages)
    start = (page - 1) * per_page
    return rows[start : start + per_page], page, total_pages


@dataclass(slots=True)
class DashboardSnapshot:
    """Both pipeline results plus the joined rows."""

    catalog: CatalogResult
    sales: SalesResult
    rows: list[DashboardRow] = field(default_factory=list)

    @property
    def auth_failed(self) -> bool:
        return CollectionStatus.AUTH_FAILED in (self.catalog.status, self.sales.status)

    @property
    def status(self) -> CollectionStatus:
        statuses = (self.catalog.status, self.sales.status)
        for candidate in (
            CollectionStatus.AUTH_FAILED,
            CollectionStatus.FAILED,
            CollectionStatus.PARTIAL,
        ):
            if candidate in statuses:
                return candidate
        return CollectionStatus.COMPLETE


@dataclass(slots=True)
class DashboardService:
    """Caller-facing entry point for one seller session."""

    client: MercadoLibreClient
    config: AppConfig = field(default_factory=AppConfig)
    sleep: Callable[[float], None] = time.sleep

    def catalog_service(self, pagination: PaginationConfig | None = None) -> CatalogService:
        return CatalogService(client=self.client, config=pagination or self.config.catalog, sleep=self.sleep)

    def iter_catalog(self, pagination: PaginationConfig | None = None) -> Iterator[CollectionProgress | CatalogResult]:
        return self.catalog_service(pagination).iter_collect()

    def collect_catalog(self, pagination: PaginationConfig | None = None) -> CatalogResult:
        return self.catalog_service(pagination).collect()

    def collect_sales(self, window_days: int | None = None) -> SalesResult:
        reconciler = SalesReconciler(client=self.client, config=self.config.sales, sleep=self.sleep)
        return reconciler.reconcile(window_days)

    def catalog_with_limit(self, max_records: int | None, start_offset: int = 0) -> PaginationConfig:
        """Catalog pagination settings, optionally lowering the safety ceiling or resuming at an offset."""

        catalog = self.config.catalog
        if max_records is not None and max_records > 0:
            catalog = replace(catalog, max_records=min(max_records, catalog.max_records))
        if start_offset > 0:
            catalog = replace(catalog, start_offset=start_offset)
        return catalog

    def load(self, window_days: int | None = None, pagination: PaginationConfig | None = None) -> DashboardSnapshot:
        """Run catalog and sales side by side and join them by SKU."""

        with ThreadPoolExecutor(max_workers=self.config.max_concurrent_pipelines) as executor:
            catalog_future = executor.submit(self.collect_catalog, pagination)
            sales_future = executor.submit(self.collect_sales, window_days)
            catalog = catalog_future.result()
            sales = sales_future.result()

        logger.info("Dashboard loaded: catalog %s, sales %s", catalog.status.value, sales.status.value)
        return DashboardSnapshot(catalog=catalog, sales=sales, rows=join_rows(catalog.items, sales))
