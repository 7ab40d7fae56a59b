# pricewatch/services/refresh_orchestrator.py

"""One scheduled pass that re-prices every tracked URL."""

import asyncio
import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal

from pricewatch.config.settings import Settings
from pricewatch.extractors.base_extractor import BaseExtractor
from pricewatch.filters.url_canonicalizer import group_by_canonical_url
from pricewatch.models.price_history_entry import PriceHistoryEntry
from pricewatch.models.run_summary import (
    STATUS_REJECTED,
    CanonicalUrlGroup,
    GroupOutcome,
    RunSummary,
)
from pricewatch.models.tracked_item import TrackedItem
from pricewatch.services.currency_normalizer import CurrencyNormalizer
from pricewatch.storage.tracked_item_db import (
    RepositoryUnavailableError,
    TrackedItemDB,
)

logger = logging.getLogger("pricewatch.orchestrator")


class PriceRefreshOrchestrator:
    """Groups tracked items by page, extracts once per page, fans out.

    Extraction cost is one call per canonical URL; write cost is one
    transaction per changed item. A failed extraction fails only its
    group and a failed write fails only its item. At most one pass runs
    per instance at a time.
    """

    def __init__(
        self,
        repository: TrackedItemDB,
        extractor: BaseExtractor,
        normalizer: CurrencyNormalizer | None = None,
        default_currency: str | None = None,
        extraction_timeout: float | None = None,
        run_timeout: float | None = None,
        max_concurrency: int | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._repository = repository
        self._extractor = extractor
        self._normalizer = normalizer or CurrencyNormalizer()
        self._default_currency = (
            default_currency or Settings.DEFAULT_CURRENCY
        ).upper()
        self._extraction_timeout = (
            extraction_timeout if extraction_timeout is not None
            else Settings.EXTRACTION_TIMEOUT
        )
        self._run_timeout = (
            run_timeout if run_timeout is not None
            else Settings.RUN_TIMEOUT
        )
        self._max_concurrency = max(
            1, max_concurrency or Settings.MAX_CONCURRENT_EXTRACTIONS,
        )
        self._clock = clock
        # idle while unlocked, running while held
        self._run_guard = threading.Lock()

    @property
    def is_running(self) -> bool:
        """Whether a pass currently holds the run guard."""
        return self._run_guard.locked()

    # ── Entry point ──────────────────────────────────────

    async def run(self) -> RunSummary:
        """Execute one refresh pass.

        Returns a ``"rejected"`` summary without doing any work when a
        pass is already in progress.

        Raises:
            RepositoryUnavailableError: If the tracked items cannot be
                loaded at all.
        """
        if not self._run_guard.acquire(blocking=False):
            logger.warning(
                "Refresh requested while a previous run is active, skipping"
            )
            now = self._clock()
            return RunSummary(
                status=STATUS_REJECTED, started_at=now, finished_at=now,
            )
        try:
            return await self._run_pass()
        finally:
            self._run_guard.release()

    async def _run_pass(self) -> RunSummary:
        started_at = self._clock()
        try:
            items = await asyncio.to_thread(
                self._repository.list_tracked_with_url
            )
        except RepositoryUnavailableError:
            logger.error("Tracked items unavailable, aborting run",
                         exc_info=True)
            raise

        groups = group_by_canonical_url(items)
        summary = RunSummary(
            total_items=sum(len(g.members) for g in groups),
            unique_url_count=len(groups),
            started_at=started_at,
        )
        logger.info(
            "Processing %d items across %d unique URLs",
            summary.total_items,
            summary.unique_url_count,
        )

        for outcome in await self._process_groups(groups):
            summary.merge(outcome)

        summary.finished_at = self._clock()
        logger.info(summary.describe())
        return summary

    # ── Groups ───────────────────────────────────────────

    async def _process_groups(
        self, groups: list[CanonicalUrlGroup],
    ) -> list[GroupOutcome]:
        """Run every group concurrently under the run timeout.

        Extractions run on a pool owned by this pass. It is shut down
        without waiting, so a hung page never holds up the event loop
        after the pass has given up on it.
        """
        if not groups:
            return []

        semaphore = asyncio.Semaphore(self._max_concurrency)
        outcomes = [GroupOutcome(g.canonical_key) for g in groups]
        executor = ThreadPoolExecutor(thread_name_prefix="pricewatch-extract")
        try:
            tasks = [
                asyncio.create_task(
                    self._process_group(group, outcome, semaphore, executor)
                )
                for group, outcome in zip(groups, outcomes)
            ]

            _done, pending = await asyncio.wait(
                tasks, timeout=self._run_timeout,
            )
            if pending:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for task, group, outcome in zip(tasks, groups, outcomes):
            if task in pending:
                self._fail_unfinished(group, outcome)
        return outcomes

    def _fail_unfinished(
        self, group: CanonicalUrlGroup, outcome: GroupOutcome,
    ) -> None:
        """Count members a cancelled group never settled as failed."""
        settled = outcome.updated + outcome.skipped + outcome.failed
        remaining = len(group.members) - settled
        if remaining <= 0:
            return
        outcome.failed += remaining
        message = (
            f"Run timeout reached before {group.canonical_key} finished "
            f"(affects {remaining} item(s))"
        )
        outcome.errors.append(message)
        logger.error(message)

    async def _process_group(
        self,
        group: CanonicalUrlGroup,
        outcome: GroupOutcome,
        semaphore: asyncio.Semaphore,
        executor: ThreadPoolExecutor,
    ) -> None:
        """Extract the group's page once and apply it to every member."""
        scrape_url = group.representative.url
        affected = len(group.members)

        async with semaphore:
            logger.info(
                "Scraping %s (affects %d item(s))", scrape_url, affected,
            )
            try:
                loop = asyncio.get_running_loop()
                result = await asyncio.wait_for(
                    loop.run_in_executor(
                        executor, self._extractor.extract, scrape_url,
                    ),
                    timeout=self._extraction_timeout,
                )
                currency = (
                    (result.currency_code or "").strip().upper()
                    or self._default_currency
                )
                price_native = self._normalizer.round_price(
                    Decimal(str(result.price))
                )
                price_base = self._normalizer.to_base(
                    price_native, currency,
                )
            except asyncio.TimeoutError:
                self._fail_group(
                    group, outcome,
                    f"timed out after {self._extraction_timeout:g}s",
                )
                return
            except Exception as exc:
                self._fail_group(
                    group, outcome, str(exc) or type(exc).__name__,
                )
                return

        await asyncio.gather(*(
            self._apply_price(
                member, price_native, price_base, currency, outcome,
            )
            for member in group.members
        ))

    def _fail_group(
        self,
        group: CanonicalUrlGroup,
        outcome: GroupOutcome,
        reason: str,
    ) -> None:
        affected = len(group.members)
        outcome.failed += affected
        message = (
            f"Failed to scrape {group.canonical_key}: {reason} "
            f"(affects {affected} item(s))"
        )
        outcome.errors.append(message)
        logger.error(message)

    # ── Members ──────────────────────────────────────────

    async def _apply_price(
        self,
        member: TrackedItem,
        price_native: Decimal,
        price_base: Decimal,
        currency: str,
        outcome: GroupOutcome,
    ) -> None:
        """Record a change for one member, or count it as unchanged."""
        if price_base == member.last_known_price_base:
            outcome.skipped += 1
            logger.debug(
                "Skipped %s (price unchanged: %s)",
                member.label, member.last_known_price_base,
            )
            return

        now = self._clock()
        entry = PriceHistoryEntry(
            tracked_item_id=member.id,
            price_native=price_native,
            currency_code=currency,
            price_base=price_base,
            recorded_at=now,
        )
        fields = {
            "last_known_price_native": price_native,
            "last_known_price_base": price_base,
            "currency_code": currency,
            "updated_at": now,
        }
        try:
            await asyncio.to_thread(
                self._repository.record_price_change, entry, fields,
            )
        except Exception as exc:
            outcome.failed += 1
            message = f"Failed to update {member.label}: {exc}"
            outcome.errors.append(message)
            logger.error(message, exc_info=True)
            return

        outcome.updated += 1
        logger.info(
            "Updated %s (%s): %s -> %s",
            member.label, member.owner_id,
            member.last_known_price_base, price_base,
        )
