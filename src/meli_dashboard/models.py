"""Domain models used throughout the Mercado Libre dashboard."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SKU_ATTRIBUTE_ID = "SELLER_SKU"
NO_SKU = "NO-SKU"


def normalize_sku(value: Any) -> str:
    """Return a well-formed aggregation key for a raw SKU value."""

    if value is None:
        return NO_SKU
    text = str(value).strip()
    return text or NO_SKU


def extract_sku(attributes: Any) -> str:
    """Pick the seller SKU out of a listing's generic attribute list."""

    if not isinstance(attributes, list):
        return NO_SKU
    for attribute in attributes:
        if isinstance(attribute, Mapping) and attribute.get("id") == SKU_ATTRIBUTE_ID:
            return normalize_sku(attribute.get("value_name"))
    return NO_SKU


class ItemStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CLOSED = "closed"
    UNDER_REVIEW = "under_review"
    INACTIVE = "inactive"

    @classmethod
    def parse(cls, value: Any) -> ItemStatus:
        try:
            return cls(str(value))
        except ValueError:
            logger.debug("Unknown listing status %r treated as inactive", value)
            return cls.INACTIVE


ALL_STATUSES: tuple[str, ...] = tuple(status.value for status in ItemStatus)


class Fulfillment(str, Enum):
    FULL = "full"
    FLEX = "flex"
    MERCADO_ENVIOS = "mercadoenvios"
    NORMAL = "normal"
    UNKNOWN = "unknown"

    @property
    def label(self) -> str:
        return _FULFILLMENT_LABELS[self]


_FULFILLMENT_LABELS = {
    Fulfillment.FULL: "Full",
    Fulfillment.FLEX: "Flex",
    Fulfillment.MERCADO_ENVIOS: "Mercado Envíos",
    Fulfillment.NORMAL: "Normal",
    Fulfillment.UNKNOWN: "Unknown",
}


@dataclass(slots=True)
class ShippingInfo:
    """Shipping descriptor attached to a listing."""

    mode: str = "not_specified"
    free_shipping: bool = False
    logistic_type: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Any) -> ShippingInfo:
        if not isinstance(payload, Mapping):
            return cls()
        return cls(
            mode=payload.get("mode") or "not_specified",
            free_shipping=bool(payload.get("free_shipping") or False),
            logistic_type=payload.get("logistic_type") or None,
        )

    @property
    def fulfillment(self) -> Fulfillment:
        if self.logistic_type == "fulfillment":
            return Fulfillment.FULL
        if self.logistic_type == "xd_drop_off":
            return Fulfillment.FLEX
        if self.mode == "me2":
            return Fulfillment.MERCADO_ENVIOS
        if self.mode == "not_specified":
            return Fulfillment.NORMAL
        return Fulfillment.UNKNOWN


@dataclass(slots=True)
class CatalogItem:
    """One listing owned by the authenticated seller."""

    id: str
    title: str
    price: float
    available_quantity: int
    status: ItemStatus
    permalink: str = ""
    thumbnail: str = ""
    sold_quantity: int = 0
    shipping: ShippingInfo = field(default_factory=ShippingInfo)
    sku: str = NO_SKU

    @classmethod
    def from_api(cls, body: Mapping[str, Any]) -> CatalogItem:
        """Build an item from a multi-get ``body``."""

        thumbnail = body.get("thumbnail") or ""
        if not thumbnail:
            pictures = body.get("pictures") or []
            if pictures and isinstance(pictures[0], Mapping):
                thumbnail = pictures[0].get("url") or ""

        return cls(
            id=str(body["id"]),
            title=str(body.get("title") or ""),
            price=_as_float(body.get("price")),
            available_quantity=_as_int(body.get("available_quantity")),
            sold_quantity=_as_int(body.get("sold_quantity")),
            status=ItemStatus.parse(body.get("status")),
            permalink=str(body.get("permalink") or ""),
            thumbnail=str(thumbnail),
            shipping=ShippingInfo.from_api(body.get("shipping")),
            sku=extract_sku(body.get("attributes")),
        )

    @property
    def has_sku(self) -> bool:
        return self.sku != NO_SKU

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(slots=True)
class Page(Generic[T]):
    """A bounded slice returned by one listing call."""

    offset: int
    limit: int
    items: list[T]
    declared_total: int


class CollectionStatus(str, Enum):
    IDLE = "idle"
    FETCHING_FIRST_PAGE = "fetching_first_page"
    PAGING = "paging"
    COMPLETE = "complete"
    PARTIAL = "partial"
    AUTH_FAILED = "auth_failed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            CollectionStatus.COMPLETE,
            CollectionStatus.PARTIAL,
            CollectionStatus.AUTH_FAILED,
            CollectionStatus.FAILED,
        )


@dataclass(slots=True)
class CollectionProgress:
    """Progress event emitted while a pipeline runs."""

    stage: str
    completed: int
    expected: int
    records: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "progress",
            "stage": self.stage,
            "completed": self.completed,
            "expected": self.expected,
            "records": self.records,
        }


@dataclass(slots=True)
class CatalogResult:
    """Outcome of one catalog collection run."""

    status: CollectionStatus
    items: list[CatalogItem] = field(default_factory=list)
    intended_count: int = 0
    declared_total: int = 0
    ceiling_reached: bool = False
    failed_pages: int = 0
    failed_batches: int = 0
    start_offset: int = 0
    next_offset: int | None = None
    """Where a follow-up run resumes when the ceiling cut this one short."""

    progress: list[CollectionProgress] = field(default_factory=list)

    @property
    def hydrated_count(self) -> int:
        return len(self.items)

    @property
    def missing_count(self) -> int:
        return self.intended_count - self.hydrated_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "result",
            "status": self.status.value,
            "products": [item.to_dict() for item in self.items],
            "total": self.declared_total,
            "intended_count": self.intended_count,
            "hydrated_count": self.hydrated_count,
            "ceiling_reached": self.ceiling_reached,
            "failed_pages": self.failed_pages,
            "failed_batches": self.failed_batches,
            "offset": self.start_offset,
            "next_offset": self.next_offset,
            "progress": [event.to_dict() for event in self.progress],
        }


@dataclass(slots=True)
class SalesResult:
    """Units sold per SKU over a trailing window."""

    status: CollectionStatus
    window_days: int
    units_by_sku: dict[str, int] = field(default_factory=dict)
    units_by_item: dict[str, int] = field(default_factory=dict)
    total_orders: int = 0
    declared_orders: int = 0
    unresolved_count: int = 0
    unassigned_units: int = 0
    ceiling_reached: bool = False

    def units_for(self, sku: str) -> int:
        if sku == NO_SKU:
            return 0
        return self.units_by_sku.get(sku, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "salesBySKU": dict(self.units_by_sku),
            "unitsByItem": dict(self.units_by_item),
            "totalOrders": self.total_orders,
            "declaredOrders": self.declared_orders,
            "periodDays": self.window_days,
            "unresolved": self.unresolved_count,
            "unassignedUnits": self.unassigned_units,
            "ceilingReached": self.ceiling_reached,
        }


@dataclass(slots=True)
class DashboardRow:
    """A catalog item joined with its units sold."""

    item: CatalogItem
    units_sold: int

    @property
    def fulfillment(self) -> Fulfillment:
        return self.item.shipping.fulfillment


def _as_float(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _as_int(value: Any) -> int:
    try:
        return max(int(value), 0) if value is not None else 0
    except (TypeError, ValueError):
        return 0
