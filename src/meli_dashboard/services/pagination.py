"""Offset/limit pagination and batched multi-get hydration.

Both walkers are generators: they yield a ``CollectionProgress`` after each
page or batch and *return* their outcome, so callers can either drive them
with ``yield from`` (streaming progress upwards) or exhaust them and read
``StopIteration.value``. Every accumulator lives inside one generator
invocation; a caller that stops iterating simply abandons the run.
"""
from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable, Generator, Hashable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

import requests

from ..api.client import MultigetEntry
from ..api.errors import UpstreamError
from ..config import PaginationConfig
from ..models import CollectionProgress, CollectionStatus, Page

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

PageFailure = (UpstreamError, requests.RequestException)


class MultigetClient(Protocol):
    def fetch_items(self, item_ids: Iterable[str], attributes: Sequence[str]) -> list[MultigetEntry]:
        ...


@dataclass(slots=True)
class PaginationOutcome(Generic[T]):
    status: CollectionStatus
    records: list[T] = field(default_factory=list)
    declared_total: int = 0
    pages_fetched: int = 0
    failed_pages: int = 0
    ceiling_reached: bool = False
    next_offset: int = 0
    """Offset a follow-up walk would resume from."""


@dataclass(slots=True)
class HydrationOutcome:
    bodies: dict[str, Mapping[str, Any]] = field(default_factory=dict)
    missing_ids: list[str] = field(default_factory=list)
    """Ids whose multi-get sub-status was not 200."""

    failed_ids: list[str] = field(default_factory=list)
    """Ids that belonged to a batch that failed as a whole."""

    failed_batches: int = 0

    @property
    def unresolved_count(self) -> int:
        return len(self.missing_ids) + len(self.failed_ids)


def chunked(values: Sequence[T], size: int) -> Iterator[list[T]]:
    for start in range(0, len(values), size):
        yield list(values[start : start + size])


def relay(
    events: Generator[CollectionProgress, None, R],
    history: list[CollectionProgress],
) -> Generator[CollectionProgress, None, R]:
    """Re-yield ``events`` while recording them, returning the inner outcome."""

    while True:
        try:
            event = next(events)
        except StopIteration as stop:
            return stop.value
        history.append(event)
        yield event


class PaginatedCollector(Generic[T]):
    """Walks an offset/limit listing one page at a time."""

    def __init__(
        self,
        fetch_page: Callable[[int, int], Page[T]],
        config: PaginationConfig,
        *,
        key: Callable[[T], Hashable | None] | None = None,
        stage: str = "listing",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._fetch_page = fetch_page
        self._config = config
        self._key = key
        self._stage = stage
        self._sleep = sleep

    def iter_collect(self) -> Generator[CollectionProgress, None, PaginationOutcome[T]]:
        config = self._config
        records: list[T] = []
        seen: set[Hashable] = set()
        status = CollectionStatus.FETCHING_FIRST_PAGE
        total: int | None = None
        start = config.start_offset
        offset = start
        pages = 0
        failed = 0
        consecutive_failures = 0
        ceiling_reached = False
        exhausted = False

        while True:
            limit = min(config.page_size, start + config.max_records - offset)
            if limit <= 0:
                ceiling_reached = True
                break
            if offset > start and config.page_delay_seconds > 0:
                self._sleep(config.page_delay_seconds)

            try:
                page = self._fetch_page(offset, limit)
            except PageFailure as exc:
                if status is CollectionStatus.FETCHING_FIRST_PAGE:
                    logger.error("First %s page failed: %s", self._stage, exc)
                    return PaginationOutcome(status=CollectionStatus.FAILED, failed_pages=1, next_offset=start)
                failed += 1
                consecutive_failures += 1
                logger.warning("Skipping %s page at offset %s: %s", self._stage, offset, exc)
                offset += limit
                yield self._progress(pages + failed, total or 0, len(records))
                if consecutive_failures >= config.max_consecutive_failures:
                    logger.warning(
                        "Giving up on %s after %s consecutive page failures", self._stage, consecutive_failures
                    )
                    break
                if total is not None and offset >= total:
                    break
                continue

            status = CollectionStatus.PAGING
            consecutive_failures = 0
            pages += 1
            if total is None or config.total_policy == "refresh":
                total = page.declared_total

            for record in page.items:
                record_key = self._key(record) if self._key is not None else None
                if record_key is not None:
                    if record_key in seen:
                        continue
                    seen.add(record_key)
                records.append(record)

            offset += limit
            yield self._progress(pages + failed, total, len(records))

            if not page.items or offset >= total or start + len(records) >= total:
                exhausted = True
                break

        if status is CollectionStatus.FETCHING_FIRST_PAGE:
            # a zero ceiling never requests anything
            return PaginationOutcome(status=CollectionStatus.PARTIAL, ceiling_reached=True, next_offset=start)

        if exhausted and failed == 0:
            final = CollectionStatus.COMPLETE
        else:
            final = CollectionStatus.PARTIAL
        logger.info(
            "Collected %s %s records (declared %s) in %s pages, %s failed: %s",
            len(records),
            self._stage,
            total,
            pages,
            failed,
            final.value,
        )
        return PaginationOutcome(
            status=final,
            records=records,
            declared_total=total or 0,
            pages_fetched=pages,
            failed_pages=failed,
            ceiling_reached=ceiling_reached,
            next_offset=offset,
        )

    def _progress(self, completed: int, total: int, records: int) -> CollectionProgress:
        bounded = min(max(total - self._config.start_offset, 0), self._config.max_records)
        expected = max(math.ceil(bounded / self._config.page_size), completed)
        return CollectionProgress(stage=self._stage, completed=completed, expected=expected, records=records)


class ItemHydrator:
    """Fetches listing details in multi-get batches, one batch at a time."""

    def __init__(
        self,
        client: MultigetClient,
        config: PaginationConfig,
        *,
        attributes: Sequence[str],
        stage: str = "hydrating",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._config = config
        self._attributes = attributes
        self._stage = stage
        self._sleep = sleep

    def iter_hydrate(self, item_ids: Sequence[str]) -> Generator[CollectionProgress, None, HydrationOutcome]:
        outcome = HydrationOutcome()
        batches = list(chunked(list(item_ids), self._config.batch_size))

        for index, batch in enumerate(batches):
            if index > 0 and self._config.batch_delay_seconds > 0:
                self._sleep(self._config.batch_delay_seconds)

            try:
                entries = self._client.fetch_items(batch, self._attributes)
            except PageFailure as exc:
                logger.error("Detail batch %s/%s failed: %s", index + 1, len(batches), exc)
                outcome.failed_batches += 1
                outcome.failed_ids.extend(batch)
                yield self._progress(index + 1, len(batches), len(outcome.bodies))
                continue

            found: dict[str, Mapping[str, Any]] = {}
            for entry in entries:
                if entry.ok and entry.body is not None and entry.body.get("id") is not None:
                    found[str(entry.body["id"])] = entry.body
                else:
                    body_id = entry.body.get("id") if entry.body is not None else None
                    logger.warning("Item %s returned code %s", body_id or "unknown", entry.code)

            for item_id in batch:
                body = found.get(item_id)
                if body is None:
                    outcome.missing_ids.append(item_id)
                else:
                    outcome.bodies[item_id] = body

            yield self._progress(index + 1, len(batches), len(outcome.bodies))

        if outcome.unresolved_count:
            logger.info(
                "Hydrated %s of %s ids (%s failed batches)",
                len(outcome.bodies),
                len(item_ids),
                outcome.failed_batches,
            )
        return outcome

    def _progress(self, completed: int, expected: int, records: int) -> CollectionProgress:
        return CollectionProgress(stage=self._stage, completed=completed, expected=expected, records=records)
