from __future__ import annotations

import asyncio

import pytest

from fakes import FakeGateway, product_reply, wait_until
from sellerboard.batch import BatchCollectionOrchestrator
from sellerboard.errors import BatchInProgressError
from sellerboard.extraction import CollectorExtractionService
from sellerboard.health import HealthMonitor, HealthState
from sellerboard.models import BatchOptions, BatchStatus
from sellerboard.storage.catalog import ProductCatalog
from sellerboard.storage.kv import MemoryStore

URL_A = "https://www.coupang.com/vp/products/1001"
URL_B = "https://www.coupang.com/vp/products/1002"
URL_C = "https://smartstore.naver.com/shop/products/1003"

FAST = BatchOptions(per_item_delay_ms=0, max_retries=3, settle_delay_ms=0, retry_backoff_ms=0)


def _orchestrator(gateway: FakeGateway, **kwargs) -> BatchCollectionOrchestrator:
    return BatchCollectionOrchestrator(
        gateway,
        CollectorExtractionService(gateway),
        defaults=FAST,
        **kwargs,
    )


def test_run_counts_successes_and_failures() -> None:
    gateway = FakeGateway(
        {
            URL_A: product_reply("Kettle", 19900),
            URL_B: {"success": False, "error": "price block missing"},
            URL_C: product_reply("Mug", "4,500"),
        }
    )
    orchestrator = _orchestrator(gateway)
    events = []

    run = asyncio.run(orchestrator.run([URL_A, URL_B, URL_C], progress=events.append))

    assert (run.total, run.succeeded, run.failed) == (3, 2, 1)
    assert run.status is BatchStatus.COMPLETED
    assert [item.success for item in run.item_results] == [True, False, True]
    failed = run.item_results[1]
    assert failed.reason == "price block missing"
    assert failed.error == "extraction_failed"
    assert failed.attempts == 3
    assert [event.current for event in events] == [1, 2, 3]
    assert [event.percent_complete for event in events] == [33.3, 66.7, 100.0]
    assert events[0].current_label == "Kettle"
    assert events[1].current_label == URL_B
    assert all(page.closed for page in gateway.pages)
    assert all(page.activated for page in gateway.pages)


def test_empty_run_completes_immediately() -> None:
    gateway = FakeGateway()
    events = []

    run = asyncio.run(_orchestrator(gateway).run([], progress=events.append))

    assert run.total == 0
    assert run.status is BatchStatus.COMPLETED
    assert events == []
    assert gateway.pages == []


def test_non_product_addresses_are_filtered_out() -> None:
    gateway = FakeGateway({URL_A: product_reply("Kettle", 100)})

    run = asyncio.run(
        _orchestrator(gateway).run(["https://example.com/about", "", URL_A, "not a url"])
    )

    assert run.total == 1
    assert run.succeeded == 1
    assert gateway.opened() == [URL_A]


def test_stop_ends_run_after_current_item() -> None:
    gateway = FakeGateway({url: product_reply("Item", 10) for url in (URL_A, URL_B, URL_C)})
    orchestrator = _orchestrator(gateway)

    def _observer(event) -> None:
        orchestrator.stop()

    run = asyncio.run(orchestrator.run([URL_A, URL_B, URL_C], progress=_observer))

    assert run.status is BatchStatus.STOPPED
    assert run.processed == 1
    assert gateway.opened() == [URL_A]
    assert orchestrator.is_running is False
    assert orchestrator.stop() is False


def test_stop_interrupts_inter_item_delay() -> None:
    gateway = FakeGateway({url: product_reply("Item", 10) for url in (URL_A, URL_B)})
    orchestrator = _orchestrator(gateway)
    options = FAST.merged(per_item_delay_ms=60_000)

    async def scenario():
        task = asyncio.create_task(orchestrator.run([URL_A, URL_B], options))
        await wait_until(lambda: orchestrator.current_run.processed == 1)
        orchestrator.stop()
        return await asyncio.wait_for(task, timeout=5)

    run = asyncio.run(scenario())

    assert run.status is BatchStatus.STOPPED
    assert run.processed == 1


def test_second_run_is_rejected_while_active() -> None:
    gateway = FakeGateway({URL_A: product_reply("Kettle", 100)})
    orchestrator = _orchestrator(gateway)

    async def scenario():
        gateway.gate = asyncio.Event()
        task = asyncio.create_task(orchestrator.run([URL_A]))
        await wait_until(lambda: gateway.sends == 1)
        assert orchestrator.is_running
        with pytest.raises(BatchInProgressError):
            await orchestrator.run([URL_B])
        gateway.gate.set()
        return await task

    run = asyncio.run(scenario())

    assert run.succeeded == 1
    assert gateway.opened() == [URL_A]


def test_missing_collector_is_injected_once_without_spending_attempts() -> None:
    gateway = FakeGateway({URL_A: product_reply("Kettle", 100)}, collector_present=False)

    run = asyncio.run(_orchestrator(gateway).run([URL_A]))

    assert run.succeeded == 1
    assert run.item_results[0].attempts == 1
    assert gateway.injections == 1
    assert gateway.sends == 2


def test_open_failure_becomes_failed_item() -> None:
    gateway = FakeGateway({URL_B: product_reply("Mug", 5)})
    gateway.open_failures.add(URL_A)

    run = asyncio.run(_orchestrator(gateway).run([URL_A, URL_B]))

    assert run.failed == 1
    assert run.succeeded == 1
    assert run.item_results[0].error == "collection_failed"
    assert run.status is BatchStatus.COMPLETED


def test_load_wait_timeout_still_collects_item() -> None:
    gateway = FakeGateway({URL_A: product_reply("Kettle", 100)})
    gateway.load_ok = False
    monitors: list[HealthMonitor] = []

    def health_factory(run_id: str) -> HealthMonitor:
        monitors.append(HealthMonitor(run_id=run_id))
        return monitors[-1]

    run = asyncio.run(_orchestrator(gateway, health_factory=health_factory).run([URL_A]))

    assert run.succeeded == 1
    assert run.item_results[0].success is True
    assert monitors[0].load_timeouts == 1
    assert monitors[0].state is HealthState.HEALTHY


def test_retry_budget_recovers_from_transient_failure() -> None:
    gateway = FakeGateway(
        {URL_A: [{"success": False, "error": "still rendering"}, product_reply("Kettle", 100)]}
    )

    run = asyncio.run(_orchestrator(gateway).run([URL_A], FAST.merged(max_retries=2)))

    assert run.succeeded == 1
    assert run.item_results[0].attempts == 2


def test_successful_items_are_saved_to_catalog() -> None:
    gateway = FakeGateway(
        {URL_A: product_reply("Kettle", 19900), URL_C: product_reply("Mug", 4500, "out_of_stock")}
    )
    catalog = ProductCatalog(MemoryStore())
    orchestrator = _orchestrator(gateway, save_product=catalog.save)

    run = asyncio.run(orchestrator.run([URL_A, URL_C]))

    products = catalog.list_products()
    assert [product["url"] for product in products] == [URL_A, URL_C]
    assert run.item_results[0].product_id == products[0]["id"]
    assert products[1]["stock"] == "out_of_stock"
    assert catalog.stats()["total"] == 2


def test_save_failure_is_reported_per_item() -> None:
    gateway = FakeGateway({URL_A: product_reply("Kettle", 1), URL_B: product_reply("Mug", 2)})

    def _save(snapshot):
        if snapshot.url == URL_A:
            raise RuntimeError("disk full")
        return {"id": 7}

    run = asyncio.run(_orchestrator(gateway, save_product=_save).run([URL_A, URL_B]))

    assert [item.success for item in run.item_results] == [False, True]
    assert run.item_results[0].reason == "disk full"
    assert run.item_results[1].product_id == 7
