"""Domain types for batch collection runs and monitored products."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from sellerboard.errors import ExtractionError
from sellerboard.normalizers import normalize_stock, parse_price


class StockStatus(str, Enum):
    """Closed set of stock states reported by collectors."""

    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"


class BatchStatus(str, Enum):
    """Lifecycle of a batch collection run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class ProductSnapshot:
    """Structured result of one successful extraction."""

    url: str
    name: str | None = None
    price: float | None = None
    stock: StockStatus = StockStatus.IN_STOCK
    images: list[str] = field(default_factory=list)
    platform: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, url: str) -> "ProductSnapshot":
        """Build a snapshot from a collector reply, raising ExtractionError on junk."""

        if not isinstance(payload, Mapping):
            raise ExtractionError("Collector returned a non-object payload", url=url)

        raw_price = payload.get("price")
        price = parse_price(raw_price)
        if raw_price not in (None, "") and price is None:
            raise ExtractionError(f"Unparseable price {raw_price!r}", url=url)
        if price is not None and price < 0:
            raise ExtractionError(f"Negative price {price}", url=url)

        try:
            stock = StockStatus(normalize_stock(payload.get("stock")))
        except ValueError as exc:
            raise ExtractionError(str(exc), url=url) from exc

        images = payload.get("images") or []
        if isinstance(images, str):
            images = [images]

        name = payload.get("name") or payload.get("title")
        return cls(
            url=str(payload.get("url") or url),
            name=str(name).strip() if name else None,
            price=price,
            stock=stock,
            images=[str(image) for image in images if image],
            platform=payload.get("platform"),
            raw=dict(payload),
        )

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.raw)
        data.update(
            {
                "url": self.url,
                "name": self.name,
                "price": self.price,
                "stock": self.stock.value,
                "images": list(self.images),
                "platform": self.platform,
            }
        )
        return data


@dataclass(frozen=True)
class BatchOptions:
    """Pacing and retry knobs for one batch run."""

    per_item_delay_ms: int = 2000
    max_retries: int = 3
    settle_delay_ms: int = 1000
    load_timeout_ms: int = 15000
    retry_backoff_ms: int = 1500

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        for name in ("per_item_delay_ms", "settle_delay_ms", "load_timeout_ms", "retry_backoff_ms"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

    def merged(self, **overrides: Any) -> "BatchOptions":
        cleaned = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **cleaned)


@dataclass(frozen=True)
class Progress:
    """Progress event emitted after every processed batch item."""

    current: int
    total: int
    percent_complete: float
    current_label: str


@dataclass
class ItemResult:
    """Outcome of one batch target."""

    address: str
    success: bool
    reason: str | None = None
    error: str | None = None
    attempts: int = 0
    product_id: int | None = None
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "success": self.success,
            "reason": self.reason,
            "error": self.error,
            "attempts": self.attempts,
            "product_id": self.product_id,
            "name": self.name,
        }


@dataclass
class BatchRun:
    """State of a batch collection run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    item_results: list[ItemResult] = field(default_factory=list)
    status: BatchStatus = BatchStatus.IDLE
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    def record(self, result: ItemResult) -> None:
        if self.processed >= self.total:
            raise RuntimeError("BatchRun already holds a result for every target")
        self.item_results.append(result)
        if result.success:
            self.succeeded += 1
        else:
            self.failed += 1

    def copy(self) -> "BatchRun":
        return replace(self, item_results=[replace(item) for item in self.item_results])

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "items": [item.to_dict() for item in self.item_results],
        }


@dataclass(frozen=True)
class MonitorOptions:
    """Monitoring options; ``None`` fields are left untouched on update."""

    interval_minutes: float | None = None
    price_alert: bool | None = None
    stock_alert: bool | None = None
    price_threshold: float | None = None
    enabled: bool | None = None


@dataclass
class HistoryEntry:
    value: Any
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        value = self.value.value if isinstance(self.value, Enum) else self.value
        return {"value": value, "timestamp": self.timestamp.isoformat()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HistoryEntry":
        return cls(value=data.get("value"), timestamp=_parse_dt(data["timestamp"]))


@dataclass
class MonitoredProduct:
    """A product registered for recurring price/stock checks."""

    id: str
    source_address: str
    check_interval_minutes: float
    name: str | None = None
    price_alert_enabled: bool = True
    stock_alert_enabled: bool = True
    price_delta_threshold: float = 0.0
    enabled: bool = True
    last_known_price: float | None = None
    last_known_stock: StockStatus = StockStatus.IN_STOCK
    last_checked_at: datetime | None = None
    price_history: list[HistoryEntry] = field(default_factory=list)
    stock_history: list[HistoryEntry] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    price_changes: int = 0
    stock_changes: int = 0

    def copy(self) -> "MonitoredProduct":
        return replace(
            self,
            price_history=[replace(entry) for entry in self.price_history],
            stock_history=[replace(entry) for entry in self.stock_history],
            images=list(self.images),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_address": self.source_address,
            "name": self.name,
            "check_interval_minutes": self.check_interval_minutes,
            "price_alert_enabled": self.price_alert_enabled,
            "stock_alert_enabled": self.stock_alert_enabled,
            "price_delta_threshold": self.price_delta_threshold,
            "enabled": self.enabled,
            "last_known_price": self.last_known_price,
            "last_known_stock": self.last_known_stock.value,
            "last_checked_at": _iso(self.last_checked_at),
            "price_history": [entry.to_dict() for entry in self.price_history],
            "stock_history": [entry.to_dict() for entry in self.stock_history],
            "images": list(self.images),
            "price_changes": self.price_changes,
            "stock_changes": self.stock_changes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MonitoredProduct":
        price_history = [HistoryEntry.from_dict(entry) for entry in data.get("price_history") or []]
        stock_history = [
            HistoryEntry(value=StockStatus(entry["value"]), timestamp=_parse_dt(entry["timestamp"]))
            for entry in data.get("stock_history") or []
        ]
        return cls(
            id=str(data["id"]),
            source_address=str(data["source_address"]),
            name=data.get("name"),
            check_interval_minutes=float(data["check_interval_minutes"]),
            price_alert_enabled=bool(data.get("price_alert_enabled", True)),
            stock_alert_enabled=bool(data.get("stock_alert_enabled", True)),
            price_delta_threshold=float(data.get("price_delta_threshold") or 0.0),
            enabled=bool(data.get("enabled", True)),
            last_known_price=data.get("last_known_price"),
            last_known_stock=StockStatus(data.get("last_known_stock") or StockStatus.IN_STOCK.value),
            last_checked_at=_parse_dt(data.get("last_checked_at")),
            price_history=price_history,
            stock_history=stock_history,
            images=list(data.get("images") or []),
            # Records without counters fall back to their history length.
            price_changes=int(data.get("price_changes", max(len(price_history) - 1, 0))),
            stock_changes=int(data.get("stock_changes", max(len(stock_history) - 1, 0))),
        )


@dataclass
class CheckOutcome:
    """Transient result of diffing one check against last-known state."""

    price_changed: bool = False
    stock_changed: bool = False
    price_delta: float | None = None
    price_delta_pct: float | None = None
    stock_transition: tuple[StockStatus, StockStatus] | None = None

    @property
    def changed(self) -> bool:
        return self.price_changed or self.stock_changed
