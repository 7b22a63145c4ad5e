"""Collects and hydrates the seller's full catalog."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

import requests

from ..api.client import CATALOG_ATTRIBUTES, MercadoLibreClient
from ..api.errors import AuthenticationError, UpstreamError
from ..config import PaginationConfig
from ..models import CatalogItem, CatalogResult, CollectionProgress, CollectionStatus
from .pagination import ItemHydrator, PaginatedCollector, PaginationOutcome, relay

logger = logging.getLogger(__name__)


def _resume_offset(listing: PaginationOutcome[str]) -> int | None:
    if listing.ceiling_reached and listing.next_offset < listing.declared_total:
        return listing.next_offset
    return None


@dataclass(slots=True)
class CatalogService:
    """Pipeline turning listing ids into fully hydrated ``CatalogItem`` objects."""

    client: MercadoLibreClient
    config: PaginationConfig = field(default_factory=PaginationConfig)
    sleep: Callable[[float], None] = time.sleep

    def iter_collect(self) -> Iterator[CollectionProgress | CatalogResult]:
        """Yield progress events, then exactly one ``CatalogResult``."""

        history: list[CollectionProgress] = []
        try:
            seller_id = self.client.get_current_user_id()
        except AuthenticationError:
            logger.warning("Catalog collection rejected: invalid or expired token")
            yield CatalogResult(status=CollectionStatus.AUTH_FAILED)
            return
        except (UpstreamError, requests.RequestException) as exc:
            logger.error("Could not resolve the seller: %s", exc)
            yield CatalogResult(status=CollectionStatus.FAILED)
            return

        collector: PaginatedCollector[str] = PaginatedCollector(
            lambda offset, limit: self.client.search_item_ids(seller_id, offset, limit),
            self.config,
            key=lambda item_id: item_id,
            stage="listing",
            sleep=self.sleep,
        )
        hydrator = ItemHydrator(
            self.client,
            self.config,
            attributes=CATALOG_ATTRIBUTES,
            stage="hydrating",
            sleep=self.sleep,
        )

        try:
            listing = yield from relay(collector.iter_collect(), history)
            if listing.status is CollectionStatus.FAILED:
                yield CatalogResult(status=CollectionStatus.FAILED, failed_pages=listing.failed_pages, progress=history)
                return
            hydration = yield from relay(hydrator.iter_hydrate(listing.records), history)
        except AuthenticationError:
            logger.warning("Catalog collection aborted: token rejected mid-run")
            yield CatalogResult(status=CollectionStatus.AUTH_FAILED, progress=history)
            return

        items = [CatalogItem.from_api(body) for body in hydration.bodies.values()]
        if listing.status is CollectionStatus.COMPLETE and not hydration.unresolved_count:
            status = CollectionStatus.COMPLETE
        else:
            status = CollectionStatus.PARTIAL

        result = CatalogResult(
            status=status,
            items=items,
            intended_count=len(listing.records),
            declared_total=listing.declared_total,
            ceiling_reached=listing.ceiling_reached,
            failed_pages=listing.failed_pages,
            failed_batches=hydration.failed_batches,
            start_offset=self.config.start_offset,
            next_offset=_resume_offset(listing),
            progress=history,
        )
        logger.info(
            "Catalog %s: %s of %s ids hydrated (declared total %s)",
            status.value,
            result.hydrated_count,
            result.intended_count,
            result.declared_total,
        )
        yield result

    def collect(self) -> CatalogResult:
        """Run the whole pipeline and return its terminal result."""

        result: CatalogResult | None = None
        for event in self.iter_collect():
            if isinstance(event, CatalogResult):
                result = event
        assert result is not None
        return result
