from __future__ import annotations

import pytest

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient

from fakes import FakeGateway, FakeSink, product_reply
from sellerboard.dashboard import create_app
from sellerboard.engine import SellerboardEngine
from sellerboard.storage.kv import MemoryStore
from sellerboard.timers import VirtualTimers

URL_A = "https://www.coupang.com/vp/products/1001"
URL_B = "https://www.coupang.com/vp/products/1002"

CONFIG = {
    "batch": {"per_item_delay_ms": 0, "settle_delay_ms": 0, "retry_backoff_ms": 0, "max_retries": 1},
    "monitoring": {"settle_delay_ms": 0},
    "health": {"log_path": None},
}


@pytest.fixture()
def engine():
    gateway = FakeGateway(
        {URL_A: product_reply("Kettle", 19900), URL_B: {"success": False, "error": "blocked"}}
    )
    return SellerboardEngine(
        CONFIG,
        gateway=gateway,
        store=MemoryStore(),
        notifier=FakeSink(),
        timers=VirtualTimers(),
    )


@pytest.fixture()
def client(engine):
    return TestClient(create_app(engine))


def test_healthz(client) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "batch_running": False, "monitored": 0}


def test_batch_run_and_status(client) -> None:
    response = client.post(
        "/api/batch",
        json={"targets": [URL_A, "https://example.com", URL_B], "wait": True},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["accepted"] == [URL_A, URL_B]
    assert body["rejected"] == ["https://example.com"]
    assert body["run"]["status"] == "completed"
    assert (body["run"]["succeeded"], body["run"]["failed"]) == (1, 1)

    status = client.get("/api/batch").json()
    assert status["total"] == 2
    products = client.get("/api/products").json()
    assert products["count"] == 1
    assert products["items"][0]["name"] == "Kettle"
    assert client.get("/api/stats").json()["total"] == 1


def test_batch_rejects_invalid_options(client) -> None:
    response = client.post("/api/batch", json={"targets": [URL_A], "max_retries": 0})

    assert response.status_code == 422


def test_stop_without_running_batch(client) -> None:
    assert client.post("/api/batch/stop").json() == {"stopping": False}


def test_monitoring_lifecycle(client, engine) -> None:
    created = client.post(
        "/api/monitoring",
        json={"id": "p1", "url": URL_A, "name": "Kettle", "price": 19900, "interval_minutes": 30},
    )
    assert created.status_code == 201
    assert created.json()["check_interval_minutes"] == 30
    assert engine.timers.scheduled() == {"monitor_p1": 1_800_000}

    listed = client.get("/api/monitoring").json()
    assert listed["count"] == 1
    assert client.get("/api/monitoring/p1").json()["name"] == "Kettle"

    patched = client.patch("/api/monitoring/p1", json={"price_threshold": 1000})
    assert patched.status_code == 200
    assert patched.json()["price_delta_threshold"] == 1000

    stats = client.get("/api/monitoring/stats").json()
    assert stats == {"total": 1, "active": 1, "price_changes": 0, "stock_changes": 0}

    assert client.delete("/api/monitoring/p1").status_code == 200
    assert client.delete("/api/monitoring/p1").status_code == 404
    assert client.get("/api/monitoring/p1").status_code == 404
    assert engine.timers.scheduled() == {}


def test_monitoring_validation_errors(client) -> None:
    bad_interval = client.post("/api/monitoring", json={"id": "p1", "url": URL_A, "interval_minutes": 0})
    assert bad_interval.status_code == 400

    client.post("/api/monitoring", json={"id": "p1", "url": URL_A})
    bad_patch = client.patch("/api/monitoring/p1", json={"price_threshold": -5})
    assert bad_patch.status_code == 400

    unknown = client.patch("/api/monitoring/nope", json={"interval_minutes": 5})
    assert unknown.status_code == 404
