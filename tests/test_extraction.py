from __future__ import annotations

import asyncio

import pytest

from fakes import FakeGateway, FakePage, product_reply
from sellerboard.errors import CollectorUnavailableError, ExtractionError
from sellerboard.extraction import CollectAttemptPolicy, CollectorExtractionService
from sellerboard.models import StockStatus

URL = "https://www.coupang.com/vp/products/42"


def _collect(reply):
    gateway = FakeGateway({URL: reply})
    service = CollectorExtractionService(gateway)
    return asyncio.run(service.collect(FakePage(URL, collector=True)))


def test_collect_builds_snapshot_from_reply() -> None:
    snapshot = _collect(product_reply("Kettle", "19,900", "OutOfStock", images=["a.jpg", ""]))

    assert snapshot.url == URL
    assert snapshot.name == "Kettle"
    assert snapshot.price == 19900.0
    assert snapshot.stock is StockStatus.OUT_OF_STOCK
    assert snapshot.images == ["a.jpg"]


def test_collect_accepts_product_key() -> None:
    snapshot = _collect({"success": True, "product": {"title": "Mug", "price": 3}})

    assert snapshot.name == "Mug"
    assert snapshot.stock is StockStatus.IN_STOCK


@pytest.mark.parametrize(
    "reply",
    [
        {"success": False, "error": "no price block"},
        {"success": True},
        {"success": True, "data": {"price": "free"}},
        {"success": True, "data": {"price": -5}},
        {"success": True, "data": {"price": 5, "stock": "whenever"}},
        ["not", "a", "dict"],
    ],
)
def test_collect_rejects_bad_replies(reply) -> None:
    with pytest.raises(ExtractionError):
        _collect([reply])


def test_policy_retries_collection_errors_within_budget() -> None:
    calls = []

    async def request():
        calls.append(1)
        if len(calls) < 3:
            raise ExtractionError("not rendered yet")
        return "ok"

    policy = CollectAttemptPolicy(max_attempts=3)

    assert asyncio.run(policy.run(request)) == "ok"
    assert policy.last_attempts == 3


def test_policy_reraises_after_budget() -> None:
    async def request():
        raise ExtractionError("never renders")

    policy = CollectAttemptPolicy(max_attempts=2)

    with pytest.raises(ExtractionError):
        asyncio.run(policy.run(request))
    assert policy.last_attempts == 2


def test_policy_does_not_retry_unexpected_errors() -> None:
    async def request():
        raise KeyError("bug")

    policy = CollectAttemptPolicy(max_attempts=5)

    with pytest.raises(KeyError):
        asyncio.run(policy.run(request))
    assert policy.last_attempts == 1


def test_policy_remediates_only_once_per_run() -> None:
    remediations = []

    async def request():
        raise CollectorUnavailableError("gone")

    async def remediate():
        remediations.append(1)

    policy = CollectAttemptPolicy(max_attempts=3)

    with pytest.raises(CollectorUnavailableError):
        asyncio.run(policy.run(request, remediate))
    assert remediations == [1]
    assert policy.last_attempts == 3


def test_policy_requires_positive_budget() -> None:
    with pytest.raises(ValueError):
        CollectAttemptPolicy(max_attempts=0)
