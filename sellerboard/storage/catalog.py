"""Product-save path for collected snapshots."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from sellerboard.logging_config import get_logger
from sellerboard.models import ProductSnapshot

from .kv import PersistentStore

LOGGER = get_logger(__name__)

PRODUCTS_KEY = "products"
STATS_KEY = "stats"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProductCatalog:
    """Upsert collected products keyed by URL and keep the daily counters."""

    def __init__(self, store: PersistentStore, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self._clock = clock

    def list_products(self) -> list[dict[str, Any]]:
        return list(self._store.get(PRODUCTS_KEY) or [])

    def get(self, product_id: int) -> dict[str, Any] | None:
        for product in self.list_products():
            if product.get("id") == product_id:
                return product
        return None

    def save(self, snapshot: ProductSnapshot) -> dict[str, Any]:
        """Insert or merge *snapshot*; returns the stored record."""

        now = self._clock()
        stamp = now.isoformat()
        products = self.list_products()
        data = snapshot.to_dict()

        existing_index = next(
            (index for index, product in enumerate(products) if product.get("url") == snapshot.url),
            None,
        )
        if existing_index is not None:
            record = {**products[existing_index], **data, "updated_at": stamp}
            products[existing_index] = record
            LOGGER.info("Product updated | id=%s | url=%s", record.get("id"), snapshot.url)
        else:
            record = {
                **data,
                "id": self._next_id(products, now),
                "collected_at": stamp,
                "updated_at": stamp,
            }
            products.append(record)
            LOGGER.info("Product added | id=%s | url=%s", record["id"], snapshot.url)

        self._store.set(PRODUCTS_KEY, products)
        self._update_stats(products, now)
        return record

    def stats(self) -> dict[str, Any]:
        stats = self._store.get(STATS_KEY)
        if stats is None:
            products = self.list_products()
            return self._compute_stats(products, self._clock())
        return stats

    @staticmethod
    def _next_id(products: list[dict[str, Any]], now: datetime) -> int:
        candidate = int(now.timestamp() * 1000)
        highest = max((int(p.get("id") or 0) for p in products), default=0)
        return max(candidate, highest + 1)

    @staticmethod
    def _compute_stats(products: list[dict[str, Any]], now: datetime) -> dict[str, Any]:
        today = now.date().isoformat()
        collected_today = 0
        for product in products:
            collected_at = product.get("collected_at")
            if collected_at and str(collected_at)[:10] == today:
                collected_today += 1
        return {"total": len(products), "today": collected_today, "last_collected_date": today}

    def _update_stats(self, products: list[dict[str, Any]], now: datetime) -> None:
        self._store.set(STATS_KEY, self._compute_stats(products, now))


__all__ = ["PRODUCTS_KEY", "STATS_KEY", "ProductCatalog"]
