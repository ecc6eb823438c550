"""Sequential, single-flight batch collection over product pages."""

from __future__ import annotations

import asyncio
import inspect
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from sellerboard.errors import BatchInProgressError, error_code
from sellerboard.extraction import CollectAttemptPolicy, ExtractionService
from sellerboard.gateway import PageAutomationGateway
from sellerboard.health import HealthMonitor
from sellerboard.logging_config import get_logger
from sellerboard.models import BatchOptions, BatchRun, BatchStatus, ItemResult, ProductSnapshot, Progress
from sellerboard.targets import TargetMatcher

LOGGER = get_logger(__name__)

ProgressObserver = Callable[[Progress], Any]
SaveProduct = Callable[[ProductSnapshot], Any]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchCollectionOrchestrator:
    """Visit target pages one at a time, collecting a snapshot from each.

    Only one run may be active per instance; pages are never opened
    concurrently so per-item pacing stays meaningful to the storefront.
    """

    def __init__(
        self,
        gateway: PageAutomationGateway,
        extraction: ExtractionService,
        *,
        save_product: SaveProduct | None = None,
        matcher: TargetMatcher | None = None,
        defaults: BatchOptions | None = None,
        health_factory: Callable[[str], HealthMonitor] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._gateway = gateway
        self._extraction = extraction
        self._save_product = save_product
        self._matcher = matcher or TargetMatcher()
        self._defaults = defaults or BatchOptions()
        self._health_factory = health_factory
        self._clock = clock
        self._run = BatchRun()
        self._running = False
        self._stop_requested = False
        self._stop_event: asyncio.Event | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def current_run(self) -> BatchRun:
        """Snapshot of the active run, or of the last one."""

        return self._run.copy()

    @property
    def defaults(self) -> BatchOptions:
        return self._defaults

    def stop(self) -> bool:
        """Request cooperative cancellation; returns False when nothing is running."""

        if not self._running:
            return False
        if not self._stop_requested:
            LOGGER.info(
                "Batch stop requested | processed=%d/%d",
                self._run.processed,
                self._run.total,
            )
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()
        return True

    async def run(
        self,
        targets: Iterable[str],
        options: BatchOptions | None = None,
        progress: ProgressObserver | None = None,
    ) -> BatchRun:
        """Process *targets* in order and return the final run summary."""

        if self._running:
            raise BatchInProgressError("A batch run is already in progress")

        opts = options or self._defaults
        accepted, _ = self._matcher.filter(list(targets))
        run = BatchRun(total=len(accepted), status=BatchStatus.RUNNING, started_at=self._clock())
        self._run = run
        self._running = True
        self._stop_requested = False
        self._stop_event = asyncio.Event()

        run_id = run.started_at.strftime("%Y%m%d-%H%M%S")
        health = self._health_factory(run_id) if self._health_factory else None
        LOGGER.info(
            "Batch run started | run_id=%s | total=%d | delay_ms=%d | max_retries=%d",
            run_id,
            run.total,
            opts.per_item_delay_ms,
            opts.max_retries,
        )

        try:
            for index, address in enumerate(accepted, start=1):
                result = await self._process_item(address, opts, health)
                run.record(result)
                await self._emit_progress(
                    progress,
                    Progress(
                        current=index,
                        total=run.total,
                        percent_complete=round(index / run.total * 100, 1),
                        current_label=result.name or address,
                    ),
                )
                if index == run.total or self._stop_requested:
                    break
                await self._pause(opts, health)
                if self._stop_requested:
                    break
        finally:
            run.status = BatchStatus.COMPLETED if run.processed == run.total else BatchStatus.STOPPED
            run.finished_at = self._clock()
            self._running = False
            self._stop_event = None
            LOGGER.info(
                "Batch run %s | run_id=%s | total=%d | succeeded=%d | failed=%d",
                run.status.value,
                run_id,
                run.total,
                run.succeeded,
                run.failed,
            )
        return run.copy()

    async def _process_item(
        self,
        address: str,
        opts: BatchOptions,
        health: HealthMonitor | None,
    ) -> ItemResult:
        policy = CollectAttemptPolicy(
            max_attempts=opts.max_retries,
            backoff_seconds=opts.retry_backoff_ms / 1000,
        )
        page = None
        try:
            page = await self._gateway.open(address)
            await self._gateway.activate(page)
            if not await self._gateway.wait_for_load(page, opts.load_timeout_ms):
                LOGGER.warning(
                    "Load wait timed out; continuing | url=%s | timeout_ms=%d",
                    address,
                    opts.load_timeout_ms,
                )
                if health is not None:
                    health.record_load_timeout(address=address, timeout_ms=opts.load_timeout_ms)
            if opts.settle_delay_ms > 0:
                await asyncio.sleep(opts.settle_delay_ms / 1000)

            snapshot = await policy.run(
                lambda: self._extraction.collect(page),
                lambda: self._gateway.inject(page),
                label=address,
            )
            record = await self._save(snapshot)
        except Exception as exc:
            code = error_code(exc)
            reason = str(exc) or code
            LOGGER.warning(
                "Item failed | url=%s | code=%s | attempts=%d | reason=%s",
                address,
                code,
                policy.last_attempts,
                reason,
            )
            if health is not None:
                health.record_failure(address=address, reason=reason, code=code)
            return ItemResult(
                address=address,
                success=False,
                reason=reason,
                error=code,
                attempts=policy.last_attempts,
            )
        finally:
            if page is not None:
                await self._gateway.close(page)

        if health is not None:
            health.record_success(address=address)
        product_id = record.get("id") if isinstance(record, dict) else None
        LOGGER.info("Item collected | url=%s | name=%s | price=%s", address, snapshot.name, snapshot.price)
        return ItemResult(
            address=address,
            success=True,
            attempts=policy.last_attempts,
            product_id=product_id,
            name=snapshot.name,
        )

    async def _save(self, snapshot: ProductSnapshot) -> Any:
        if self._save_product is None:
            return None
        outcome = self._save_product(snapshot)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    async def _emit_progress(self, progress: ProgressObserver | None, event: Progress) -> None:
        if progress is None:
            return
        try:
            outcome = progress(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            LOGGER.warning("Progress observer failed at %d/%d: %s", event.current, event.total, exc)

    async def _pause(self, opts: BatchOptions, health: HealthMonitor | None) -> None:
        delay = opts.per_item_delay_ms / 1000
        if health is not None:
            extra = health.recommended_extra_delay()
            if extra > 0:
                LOGGER.debug("Health state %s -> sleeping extra %.1fs", health.state.value, extra)
                delay += extra
        if delay <= 0 or self._stop_event is None:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass


__all__ = ["BatchCollectionOrchestrator", "ProgressObserver", "SaveProduct"]
