"""Recurring price and stock checks for registered products."""

from __future__ import annotations

import asyncio
import math
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from sellerboard.alerts.notifier import NotificationSink
from sellerboard.errors import InvalidRequestError, ProductNotMonitoredError, StoreError, error_code
from sellerboard.extraction import CollectAttemptPolicy, ExtractionService
from sellerboard.gateway import PageAutomationGateway
from sellerboard.history import (
    DEFAULT_HISTORY_LIMIT,
    alert_title,
    compose_alert,
    diff_snapshot,
    history_counts,
)
from sellerboard.logging_config import get_logger
from sellerboard.models import (
    CheckOutcome,
    HistoryEntry,
    MonitoredProduct,
    MonitorOptions,
    ProductSnapshot,
    StockStatus,
)
from sellerboard.normalizers import normalize_stock, parse_price
from sellerboard.storage.kv import PersistentStore
from sellerboard.timers import RecurringScheduler

LOGGER = get_logger(__name__)

INDEX_KEY = "monitoring/index"
TIMER_PREFIX = "monitor_"
_OPTION_FIELDS = (
    "check_interval_minutes",
    "price_alert_enabled",
    "stock_alert_enabled",
    "price_delta_threshold",
    "enabled",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def product_key(product_id: str) -> str:
    return f"monitoring/{product_id}"


def timer_id(product_id: str) -> str:
    return f"{TIMER_PREFIX}{product_id}"


def _validate_options(options: MonitorOptions) -> None:
    interval = options.interval_minutes
    if interval is not None and (not math.isfinite(interval) or interval <= 0):
        raise InvalidRequestError(f"interval_minutes must be positive, got {interval!r}")
    threshold = options.price_threshold
    if threshold is not None and (not math.isfinite(threshold) or threshold < 0):
        raise InvalidRequestError(f"price_threshold must not be negative, got {threshold!r}")


class MonitoringScheduler:
    """Own the set of monitored products and their recurring checks.

    Every product gets one timer binding. A firing for a product whose
    previous check is still in flight is dropped, so checks for one id never
    overlap; checks for different ids may run concurrently.
    """

    def __init__(
        self,
        gateway: PageAutomationGateway,
        extraction: ExtractionService,
        store: PersistentStore,
        timers: RecurringScheduler,
        sink: NotificationSink | None = None,
        *,
        default_interval_minutes: float = 60,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        settle_delay_ms: int = 3000,
        load_timeout_ms: int = 15000,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        _validate_options(MonitorOptions(interval_minutes=default_interval_minutes))
        self._gateway = gateway
        self._extraction = extraction
        self._store = store
        self._timers = timers
        self._sink = sink
        self._default_interval = default_interval_minutes
        self._history_limit = history_limit
        self._settle_delay_ms = settle_delay_ms
        self._load_timeout_ms = load_timeout_ms
        self._clock = clock
        self._products: dict[str, MonitoredProduct] = {}
        self._in_flight: set[str] = set()

    def start(self) -> int:
        """Reload persisted products and bind timers for the enabled ones."""

        loaded = 0
        for product_id in self._store.get(INDEX_KEY) or []:
            data = self._store.get(product_key(product_id))
            if not data:
                LOGGER.warning("Monitoring index references missing product | id=%s", product_id)
                continue
            try:
                product = MonitoredProduct.from_dict(data)
            except (KeyError, TypeError, ValueError) as exc:
                LOGGER.warning("Skipping unreadable monitored product | id=%s | error=%s", product_id, exc)
                continue
            self._products[product.id] = product
            if product.enabled:
                self._bind(product)
            loaded += 1
        LOGGER.info("Monitoring started | products=%d", loaded)
        return loaded

    def shutdown(self) -> None:
        for product_id in self._products:
            self._timers.cancel(timer_id(product_id))
        LOGGER.info("Monitoring stopped | products=%d", len(self._products))

    def start_monitoring(
        self,
        product: Mapping[str, Any] | ProductSnapshot,
        options: MonitorOptions | None = None,
    ) -> MonitoredProduct:
        """Register *product* for recurring checks and return a copy of it.

        *product* needs an ``id`` and a ``url`` (or ``source_address``); its
        current ``price`` and ``stock`` seed the history.
        """

        opts = options or MonitorOptions()
        _validate_options(opts)
        data = product.to_dict() if isinstance(product, ProductSnapshot) else dict(product or {})

        product_id = data.get("id")
        address = data.get("url") or data.get("source_address")
        if product_id in (None, "") or not address:
            raise InvalidRequestError("A monitored product needs both an id and a source address")
        try:
            price = parse_price(data.get("price"))
            stock = StockStatus(normalize_stock(data.get("stock")))
        except ValueError as exc:
            raise InvalidRequestError(str(exc)) from exc

        now = self._clock()
        monitored = MonitoredProduct(
            id=str(product_id),
            source_address=str(address),
            name=data.get("name"),
            check_interval_minutes=(
                opts.interval_minutes if opts.interval_minutes is not None else self._default_interval
            ),
            price_alert_enabled=opts.price_alert if opts.price_alert is not None else True,
            stock_alert_enabled=opts.stock_alert if opts.stock_alert is not None else True,
            price_delta_threshold=opts.price_threshold if opts.price_threshold is not None else 0.0,
            enabled=opts.enabled if opts.enabled is not None else True,
            last_known_price=price,
            last_known_stock=stock,
            last_checked_at=now,
            price_history=[HistoryEntry(value=price, timestamp=now)],
            stock_history=[HistoryEntry(value=stock, timestamp=now)],
            images=list(data.get("images") or []),
        )

        self._persist(monitored)
        replaced = monitored.id in self._products
        self._products[monitored.id] = monitored
        if monitored.enabled:
            self._bind(monitored)
        else:
            self._timers.cancel(timer_id(monitored.id))
        LOGGER.info(
            "Monitoring %s | id=%s | interval_min=%s | threshold=%s | url=%s",
            "replaced" if replaced else "registered",
            monitored.id,
            monitored.check_interval_minutes,
            monitored.price_delta_threshold,
            monitored.source_address,
        )
        return monitored.copy()

    def stop_monitoring(self, product_id: str) -> bool:
        """Remove *product_id*; returns False when it was not monitored."""

        product_id = str(product_id)
        if product_id not in self._products:
            return False
        self._forget(product_id)
        del self._products[product_id]
        self._timers.cancel(timer_id(product_id))
        LOGGER.info("Monitoring stopped | id=%s", product_id)
        return True

    def update_options(self, product_id: str, options: MonitorOptions) -> MonitoredProduct:
        """Apply the non-None fields of *options* to a monitored product.

        The updated state is written to the store before the live product
        changes, so a failed write leaves both the product and its timer as
        they were.
        """

        _validate_options(options)
        product = self._require(product_id)

        updated = product.copy()
        if options.interval_minutes is not None:
            updated.check_interval_minutes = options.interval_minutes
        if options.price_alert is not None:
            updated.price_alert_enabled = options.price_alert
        if options.stock_alert is not None:
            updated.stock_alert_enabled = options.stock_alert
        if options.price_threshold is not None:
            updated.price_delta_threshold = options.price_threshold
        if options.enabled is not None:
            updated.enabled = options.enabled
        self._persist(updated)

        interval_changed = updated.check_interval_minutes != product.check_interval_minutes
        was_enabled = product.enabled
        # Copy onto the live object; an in-flight check holds a reference to it.
        for name in _OPTION_FIELDS:
            setattr(product, name, getattr(updated, name))

        rebound = interval_changed or (product.enabled and not was_enabled)
        if rebound:
            self._bind(product)
        LOGGER.info(
            "Monitoring options updated | id=%s | interval_min=%s | enabled=%s | rebound=%s",
            product.id,
            product.check_interval_minutes,
            product.enabled,
            rebound,
        )
        return product.copy()

    def get_all(self) -> list[MonitoredProduct]:
        return [product.copy() for product in self._products.values()]

    def get(self, product_id: str) -> MonitoredProduct | None:
        product = self._products.get(str(product_id))
        return product.copy() if product is not None else None

    def statistics(self) -> dict[str, int]:
        price_changes = 0
        stock_changes = 0
        for product in self._products.values():
            counts = history_counts(product)
            price_changes += counts["price_changes"]
            stock_changes += counts["stock_changes"]
        return {
            "total": len(self._products),
            "active": sum(1 for product in self._products.values() if product.enabled),
            "price_changes": price_changes,
            "stock_changes": stock_changes,
        }

    async def check_now(self, product_id: str) -> CheckOutcome | None:
        """Run one check for *product_id*; returns None when skipped or failed."""

        product_id = str(product_id)
        product = self._products.get(product_id)
        if product is None:
            LOGGER.debug("Check skipped; product no longer monitored | id=%s", product_id)
            return None
        if not product.enabled:
            LOGGER.debug("Check skipped; monitoring disabled | id=%s", product_id)
            return None
        if product_id in self._in_flight:
            LOGGER.info("Check dropped; previous check still running | id=%s", product_id)
            return None

        self._in_flight.add(product_id)
        try:
            return await self._check(product)
        finally:
            self._in_flight.discard(product_id)

    async def _check(self, product: MonitoredProduct) -> CheckOutcome | None:
        snapshot = await self._extract(product)
        now = self._clock()

        if self._products.get(product.id) is not product:
            LOGGER.info("Check result discarded; product was stopped or replaced | id=%s", product.id)
            return None
        product.last_checked_at = now
        if snapshot is None:
            return None

        outcome = diff_snapshot(product, snapshot, now=now, history_limit=self._history_limit)
        if outcome.changed:
            try:
                self._persist(product)
            except StoreError as exc:
                LOGGER.error("Failed to persist check result | id=%s | error=%s", product.id, exc)
            message = compose_alert(product, outcome)
            if message:
                await self._notify(product, message)
        LOGGER.info(
            "Check done | id=%s | price=%s | stock=%s | price_changed=%s | stock_changed=%s",
            product.id,
            product.last_known_price,
            product.last_known_stock.value,
            outcome.price_changed,
            outcome.stock_changed,
        )
        return outcome

    async def _extract(self, product: MonitoredProduct) -> ProductSnapshot | None:
        policy = CollectAttemptPolicy(max_attempts=1)
        page = None
        try:
            # Checks run in the background; the page is never brought forward.
            page = await self._gateway.open(product.source_address)
            if not await self._gateway.wait_for_load(page, self._load_timeout_ms):
                LOGGER.debug("Load wait timed out during check | id=%s", product.id)
            if self._settle_delay_ms > 0:
                await asyncio.sleep(self._settle_delay_ms / 1000)
            return await policy.run(
                lambda: self._extraction.collect(page),
                lambda: self._gateway.inject(page),
                label=product.source_address,
            )
        except Exception as exc:
            LOGGER.warning(
                "Check failed | id=%s | code=%s | reason=%s",
                product.id,
                error_code(exc),
                exc,
            )
            return None
        finally:
            if page is not None:
                await self._gateway.close(page)

    async def _notify(self, product: MonitoredProduct, message: str) -> None:
        if self._sink is None:
            LOGGER.info("Alert (no sink) | id=%s | %s", product.id, message.replace("\n", " | "))
            return
        try:
            await asyncio.to_thread(self._sink.notify, product.id, alert_title(product), message)
        except Exception as exc:
            LOGGER.warning("Notification failed | id=%s | error=%s", product.id, exc)

    def _require(self, product_id: str) -> MonitoredProduct:
        product = self._products.get(str(product_id))
        if product is None:
            raise ProductNotMonitoredError(f"Product {product_id} is not monitored")
        return product

    def _bind(self, product: MonitoredProduct) -> None:
        period_ms = max(int(product.check_interval_minutes * 60_000), 1)
        product_id = product.id

        async def _fire() -> None:
            await self.check_now(product_id)

        self._timers.schedule(timer_id(product_id), period_ms, _fire)

    def _persist(self, product: MonitoredProduct) -> None:
        self._store.set(product_key(product.id), product.to_dict())
        index = list(self._store.get(INDEX_KEY) or [])
        if product.id not in index:
            index.append(product.id)
            self._store.set(INDEX_KEY, index)

    def _forget(self, product_id: str) -> None:
        index = [item for item in self._store.get(INDEX_KEY) or [] if item != product_id]
        self._store.set(INDEX_KEY, index)
        self._store.set(product_key(product_id), None)


__all__ = ["INDEX_KEY", "MonitoringScheduler", "product_key", "timer_id"]
