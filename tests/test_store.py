from __future__ import annotations

import pytest

from sellerboard.errors import StoreError
from sellerboard.storage.db import get_engine, init_db_safe, make_session
from sellerboard.storage.kv import MemoryStore, SqlKeyValueStore
from sellerboard.storage.models_sql import Base


@pytest.fixture()
def sql_store(tmp_path):
    engine = get_engine(str(tmp_path / "db" / "sellerboard.sqlite"))
    init_db_safe(engine)
    try:
        yield SqlKeyValueStore(make_session(engine)), engine
    finally:
        engine.dispose()


def test_memory_store_copies_values() -> None:
    store = MemoryStore()
    value = {"items": [1, 2]}

    store.set("k", value)
    value["items"].append(3)
    fetched = store.get("k")
    fetched["items"].append(4)

    assert store.get("k") == {"items": [1, 2]}
    assert store.get("missing", []) == []
    assert store.keys() == ["k"]


def test_memory_store_rejects_unserialisable_values() -> None:
    with pytest.raises(StoreError):
        MemoryStore().set("k", {"when": object()})


def test_sql_store_round_trips_and_overwrites(sql_store) -> None:
    store, _ = sql_store

    assert store.get("products") is None
    store.set("products", [{"id": 1, "name": "컵"}])
    store.set("products", [{"id": 2}])

    assert store.get("products") == [{"id": 2}]
    assert store.get("stats", {"total": 0}) == {"total": 0}


def test_sql_store_wraps_database_errors(sql_store) -> None:
    store, engine = sql_store
    Base.metadata.drop_all(engine)

    with pytest.raises(StoreError):
        store.get("products")
    with pytest.raises(StoreError):
        store.set("products", [])


def test_sql_store_rejects_unserialisable_values(sql_store) -> None:
    store, _ = sql_store

    with pytest.raises(StoreError):
        store.set("k", {1, 2})
