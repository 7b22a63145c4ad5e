from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from meli_dashboard.config import MAX_WINDOW_DAYS, PaginationConfig, SalesConfig
from meli_dashboard.models import NO_SKU, CollectionStatus
from meli_dashboard.services.sales_service import SalesReconciler, fold_item_quantities, fold_sku_quantities

NOW = datetime(2026, 10, 16, 12, 0, tzinfo=UTC)


@pytest.fixture
def sales_config() -> SalesConfig:
    return SalesConfig(pagination=PaginationConfig(page_delay_seconds=0, batch_delay_seconds=0))


def test_same_item_across_orders_is_summed(order) -> None:
    orders = [order(1, ("MLA1", 2)), order(2, ("MLA1", 5))]

    assert fold_item_quantities(orders) == {"MLA1": 7}


def test_invalid_lines_are_ignored(order) -> None:
    orders = [
        order(1, ("MLA1", 0), ("MLA2", -3), ("MLA3", 1)),
        {"id": 2, "order_items": [{"item": {}, "quantity": 4}, {"quantity": 2}, "junk"]},
        {"id": 3, "order_items": [{"item": {"id": "MLA3"}, "quantity": "lots"}]},
        {"id": 4},
    ]

    assert fold_item_quantities(orders) == {"MLA3": 1}


def test_shared_sku_sums_across_listings() -> None:
    totals, unassigned = fold_sku_quantities({"MLA1": 3, "MLA2": 4}, {"MLA1": "ABC", "MLA2": "ABC"})

    assert totals == {"ABC": 7}
    assert unassigned == 0


def test_sku_fold_is_independent_of_iteration_order() -> None:
    item_units = {"MLA1": 3, "MLA2": 4, "MLA3": 9, "MLA4": 1}
    item_skus = {"MLA1": "ABC", "MLA2": "XYZ", "MLA3": "ABC", "MLA4": NO_SKU}
    reversed_units = dict(reversed(list(item_units.items())))

    assert fold_sku_quantities(item_units, item_skus) == fold_sku_quantities(reversed_units, item_skus)
    assert fold_sku_quantities(item_units, item_skus) == ({"ABC": 12, "XYZ": 4}, 1)


def test_unresolved_items_are_left_out() -> None:
    totals, unassigned = fold_sku_quantities({"MLA1": 3, "GONE": 8}, {"MLA1": "ABC"})

    assert totals == {"ABC": 3}
    assert unassigned == 0


def test_reconcile_maps_orders_to_skus(fake_marketplace, item_body, order, sales_config) -> None:
    client = fake_marketplace(
        items={
            "MLA1": item_body("MLA1", sku="ABC"),
            "MLA2": item_body("MLA2", sku="ABC"),
            "MLA3": item_body("MLA3"),
        },
        orders=[
            order(1, ("MLA1", 2)),
            order(2, ("MLA1", 5), ("MLA2", 4)),
            order(3, ("MLA3", 6), ("DELETED", 10)),
        ],
    )
    reconciler = SalesReconciler(client=client, config=sales_config, clock=lambda: NOW)

    result = reconciler.reconcile()

    assert result.status is CollectionStatus.COMPLETE
    assert result.units_by_item == {"MLA1": 7, "MLA2": 4, "MLA3": 6, "DELETED": 10}
    assert result.units_by_sku == {"ABC": 11}
    assert result.unassigned_units == 6
    assert result.unresolved_count == 1
    assert result.total_orders == 3
    resolved = sum(units for item_id, units in result.units_by_item.items() if item_id != "DELETED")
    assert sum(result.units_by_sku.values()) + result.unassigned_units == resolved


def test_reconcile_requests_trailing_window(fake_marketplace, sales_config) -> None:
    client = fake_marketplace()
    reconciler = SalesReconciler(client=client, config=sales_config, clock=lambda: NOW)

    result = reconciler.reconcile(window_days=30)

    assert client.order_window == (NOW - timedelta(days=30), NOW)
    assert result.window_days == 30
    assert result.units_by_sku == {}
    assert result.status is CollectionStatus.COMPLETE


def test_reconcile_caps_oversized_window(fake_marketplace, sales_config) -> None:
    client = fake_marketplace()
    reconciler = SalesReconciler(client=client, config=sales_config, clock=lambda: NOW)

    result = reconciler.reconcile(window_days=1_000_000)

    assert result.window_days == MAX_WINDOW_DAYS
    assert client.order_window == (NOW - timedelta(days=MAX_WINDOW_DAYS), NOW)
    assert result.status is CollectionStatus.COMPLETE


def test_reconcile_walks_every_order_page(fake_marketplace, item_body, order, sales_config) -> None:
    orders = [order(number, ("MLA1", 1)) for number in range(120)]
    client = fake_marketplace(items={"MLA1": item_body("MLA1", sku="ABC")}, orders=orders)
    reconciler = SalesReconciler(client=client, config=sales_config, clock=lambda: NOW)

    result = reconciler.reconcile()

    assert client.calls_to("orders") == [0, 50, 100]
    assert result.units_by_sku == {"ABC": 120}


def test_failed_resolution_batch_marks_partial(fake_marketplace, item_body, order, sales_config) -> None:
    client = fake_marketplace(
        items={"MLA1": item_body("MLA1", sku="ABC")},
        orders=[order(1, ("MLA1", 2))],
        failing_batches={0},
    )
    reconciler = SalesReconciler(client=client, config=sales_config, clock=lambda: NOW)

    result = reconciler.reconcile()

    assert result.status is CollectionStatus.PARTIAL
    assert result.units_by_sku == {}
    assert result.unresolved_count == 1


def test_rejected_token_aborts_reconciliation(fake_marketplace, order, sales_config) -> None:
    client = fake_marketplace(orders=[order(1, ("MLA1", 2))], reject_token_on="orders")
    reconciler = SalesReconciler(client=client, config=sales_config, clock=lambda: NOW)

    result = reconciler.reconcile()

    assert result.status is CollectionStatus.AUTH_FAILED
    assert result.units_by_sku == {}
    assert client.calls_to("items") == []
