"""Wiring of the collection engine from configuration and collaborators."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Iterable

from sellerboard.alerts.notifier import NotificationSink, Notifier
from sellerboard.batch import BatchCollectionOrchestrator, ProgressObserver
from sellerboard.config import DEFAULT_CONFIG, batch_options, number_setting, section
from sellerboard.extraction import CollectorExtractionService, ExtractionService
from sellerboard.gateway import PageAutomationGateway, PlaywrightGateway
from sellerboard.health import HealthMonitor
from sellerboard.logging_config import get_logger
from sellerboard.models import BatchOptions, BatchRun, ProductSnapshot
from sellerboard.monitoring import MonitoringScheduler
from sellerboard.storage.catalog import ProductCatalog
from sellerboard.storage.db import get_engine, init_db_safe, make_session
from sellerboard.storage.kv import PersistentStore, SqlKeyValueStore
from sellerboard.targets import TargetMatcher
from sellerboard.timers import APSchedulerTimers, RecurringScheduler

LOGGER = get_logger(__name__)


def _sql_store(config: dict[str, Any]) -> SqlKeyValueStore:
    sqlite_path = section(config, "storage").get("sqlite_path") or DEFAULT_CONFIG["storage"]["sqlite_path"]
    engine = get_engine(str(sqlite_path))
    init_db_safe(engine)
    LOGGER.info("Database initialized | path=%s", sqlite_path)
    return SqlKeyValueStore(make_session(engine))


class SellerboardEngine:
    """Batch orchestrator and monitoring scheduler sharing one browser and store."""

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        gateway: PageAutomationGateway | None = None,
        extraction: ExtractionService | None = None,
        store: PersistentStore | None = None,
        notifier: NotificationSink | None = None,
        timers: RecurringScheduler | None = None,
    ) -> None:
        self.config = config or {}
        collector = section(self.config, "collector")
        health = section(self.config, "health")
        monitoring = section(self.config, "monitoring")

        self.gateway = gateway or PlaywrightGateway(collector.get("script_path"))
        self.extraction = extraction or CollectorExtractionService(self.gateway)
        self.store = store if store is not None else _sql_store(self.config)
        self.notifier = notifier if notifier is not None else Notifier()
        self.timers = timers or APSchedulerTimers()
        self.catalog = ProductCatalog(self.store)
        self.matcher = TargetMatcher(section(self.config, "targets").get("extra_patterns") or [])
        self._notify_on_collect = bool(section(self.config, "notifications").get("on_collect"))

        health_log = health.get("log_path")
        thresholds = (
            int(number_setting(self.config, "health", "suspect_after", minimum=1)),
            int(number_setting(self.config, "health", "block_after", minimum=1)),
        )

        def _health_factory(run_id: str) -> HealthMonitor:
            return HealthMonitor(
                run_id=run_id,
                log_path=Path(health_log) if health_log else None,
                failure_threshold=thresholds,
            )

        self.batch = BatchCollectionOrchestrator(
            self.gateway,
            self.extraction,
            save_product=self._save_product,
            matcher=self.matcher,
            defaults=batch_options(self.config),
            health_factory=_health_factory,
        )
        self.monitoring = MonitoringScheduler(
            self.gateway,
            self.extraction,
            self.store,
            self.timers,
            self.notifier,
            default_interval_minutes=number_setting(
                self.config, "monitoring", "default_interval_minutes", positive=True
            ),
            history_limit=int(number_setting(self.config, "monitoring", "history_limit", minimum=1)),
            settle_delay_ms=int(number_setting(self.config, "monitoring", "settle_delay_ms")),
            load_timeout_ms=int(number_setting(self.config, "monitoring", "load_timeout_ms")),
        )
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        await self.gateway.start()
        self.monitoring.start()
        self.timers.start()
        self._started = True
        LOGGER.info("Engine started")

    async def shutdown(self) -> None:
        if self.batch.stop():
            LOGGER.info("Stopping active batch run for shutdown")
        self.monitoring.shutdown()
        self.timers.shutdown()
        await self.gateway.stop()
        self._started = False
        LOGGER.info("Engine stopped")

    async def collect(
        self,
        targets: Iterable[str],
        options: BatchOptions | None = None,
        progress: ProgressObserver | None = None,
    ) -> BatchRun:
        return await self.batch.run(targets, options, progress)

    def stop_collection(self) -> bool:
        return self.batch.stop()

    async def _save_product(self, snapshot: ProductSnapshot) -> dict[str, Any]:
        record = self.catalog.save(snapshot)
        if self._notify_on_collect:
            title = snapshot.name or "Product collected"
            message = f"Collected: {snapshot.url}"
            if snapshot.price is not None:
                message += f"\nPrice: {snapshot.price:,.0f}"
            try:
                await asyncio.to_thread(self.notifier.notify, str(record.get("id")), title, message)
            except Exception as exc:
                LOGGER.warning("Collect notification failed | url=%s | error=%s", snapshot.url, exc)
        return record


__all__ = ["SellerboardEngine"]
