"""
Ingestion Coordinator - Normalise and Persist One Feed's Batch

Drives raw items through the normaliser into the store and keeps the
per-run log. Items are inserted one at a time, so everything before a
failure (or a deadline) stays committed.

Run status:
    success  every item was inserted or skipped
    partial  at least one item hit a store error, or the deadline cut
             the batch short
    failed   the fetch itself failed; nothing was processed
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError

from loss_engine.geo_math import utc_now
from loss_engine.models import IngestionRun, RunStatus, SourceType
from loss_engine.normalization import SignalNormalizer, SkipReason, SkipRecord
from loss_engine.storage import LossRepository

if TYPE_CHECKING:
    from feeds.base import SignalFeed


logger = logging.getLogger(__name__)


DEFAULT_FETCH_TIMEOUT_SECONDS = 60.0


class IngestionCoordinator:
    """
    Coordinates ingestion runs against the store.

    Concurrent coordinators for the same feed are safe: duplicate items
    lose on the store's unique constraint and are counted as skipped.
    """

    def __init__(
        self,
        repository: LossRepository,
        normalizer: Optional[SignalNormalizer] = None,
        clock: Callable[[], datetime] = utc_now,
        timer: Callable[[], float] = time.monotonic,
    ):
        self._repository = repository
        self._normalizer = normalizer or SignalNormalizer()
        self._clock = clock
        self._timer = timer

    # =========================================================================
    # Public API
    # =========================================================================

    def ingest(
        self,
        source_type: SourceType,
        source_name: str,
        raw_items: Iterable[Any],
        deadline_seconds: Optional[float] = None,
    ) -> IngestionRun:
        """
        Normalise and store a batch of raw items from one feed.

        Args:
            source_type: Category of the feed (selects the vocabulary table)
            source_name: Registered feed name
            raw_items: Canonical raw item dicts
            deadline_seconds: Stop processing after this long; what was
                stored so far stays stored and the run ends partial

        Returns:
            The finished IngestionRun (also persisted)
        """
        run = self._begin(source_type, source_name)
        self._process(run, raw_items, deadline_seconds)
        return self._finish(run)

    async def run_feed(
        self,
        feed: SignalFeed,
        since: Optional[datetime] = None,
        timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        deadline_seconds: Optional[float] = None,
    ) -> IngestionRun:
        """
        Fetch from a feed and ingest the result.

        A fetch exception or timeout finishes the run as failed with the
        error message and nothing processed.
        """
        registration = feed.registration
        run = self._begin(registration.source_type, registration.source_name)

        try:
            items = await asyncio.wait_for(feed.fetch_items(since), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            return self._fail(run, f"fetch timed out after {timeout_seconds:g}s")
        except Exception as e:
            logger.warning("Fetch failed for %s: %s", registration.source_name, e)
            return self._fail(run, f"fetch failed: {e}")

        self._process(run, items, deadline_seconds)
        return self._finish(run)

    # =========================================================================
    # Run Lifecycle
    # =========================================================================

    def _begin(self, source_type: SourceType, source_name: str) -> IngestionRun:
        run = IngestionRun(
            source_type=source_type,
            source_name=source_name,
            started_at=self._clock(),
        )
        self._normalizer.reset()
        self._repository.start_run(run)
        logger.info("Ingestion run %s started for %s", run.id, source_name)
        return run

    def _process(
        self,
        run: IngestionRun,
        raw_items: Iterable[Any],
        deadline_seconds: Optional[float],
    ) -> None:
        started = self._timer()
        errors: list[str] = []
        timed_out = False

        for index, raw_item in enumerate(raw_items):
            if deadline_seconds is not None and self._timer() - started > deadline_seconds:
                timed_out = True
                logger.warning(
                    "Ingestion run %s for %s hit its %ss deadline after %d items",
                    run.id,
                    run.source_name,
                    deadline_seconds,
                    index,
                )
                break

            result = self._normalizer.normalize(run.source_type, raw_item, run.source_name)
            if isinstance(result, SkipRecord):
                run.signals_skipped += 1
                continue

            try:
                stored = self._repository.insert_signal(result)
            except SQLAlchemyError as e:
                run.signals_failed += 1
                errors.append(f"{result.source_event_id or index}: {e.__class__.__name__}")
                logger.warning(
                    "Store error on item %s from %s: %s",
                    result.source_event_id,
                    run.source_name,
                    e,
                )
                continue

            if stored is None:
                self._normalizer.record_skip(run.source_type, SkipReason.DUPLICATE, raw_item)
                run.signals_skipped += 1
            else:
                run.signals_ingested += 1

        messages = []
        if timed_out:
            messages.append(f"deadline of {deadline_seconds:g}s exceeded")
        if errors:
            messages.append(f"{len(errors)} item(s) failed: " + "; ".join(errors[:5]))

        run.status = RunStatus.PARTIAL if (timed_out or errors) else RunStatus.SUCCESS
        run.error_message = " | ".join(messages) or None

    def _finish(self, run: IngestionRun) -> IngestionRun:
        run.finished_at = self._clock()
        self._repository.finish_run(run)
        logger.info(
            "Ingestion run %s for %s finished %s: %d ingested, %d skipped, %d failed",
            run.id,
            run.source_name,
            run.status.value,
            run.signals_ingested,
            run.signals_skipped,
            run.signals_failed,
        )
        return run

    def _fail(self, run: IngestionRun, message: str) -> IngestionRun:
        run.status = RunStatus.FAILED
        run.error_message = message
        return self._finish(run)
