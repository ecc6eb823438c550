"""Change detection and bounded history shared by monitoring checks."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sellerboard.models import CheckOutcome, HistoryEntry, MonitoredProduct, ProductSnapshot

DEFAULT_HISTORY_LIMIT = 100


def append_bounded(history: list[HistoryEntry], entry: HistoryEntry, limit: int) -> list[HistoryEntry]:
    """Append *entry* in place, evicting the oldest entries beyond *limit*."""

    if limit <= 0:
        raise ValueError("history limit must be positive")
    history.append(entry)
    overflow = len(history) - limit
    if overflow > 0:
        del history[:overflow]
    return history


def diff_snapshot(
    product: MonitoredProduct,
    snapshot: ProductSnapshot,
    *,
    now: datetime,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
) -> CheckOutcome:
    """Compare *snapshot* with the product's last-known state and record changes."""

    outcome = CheckOutcome()

    new_price = snapshot.price
    old_price = product.last_known_price
    # A missing price is unobserved, not a change to "unknown".
    if new_price is not None and new_price != old_price:
        outcome.price_changed = True
        if old_price is not None:
            outcome.price_delta = new_price - old_price
            if old_price:
                outcome.price_delta_pct = outcome.price_delta / old_price * 100
        append_bounded(product.price_history, HistoryEntry(value=new_price, timestamp=now), history_limit)
        product.last_known_price = new_price
        product.price_changes += 1

    new_stock = snapshot.stock
    old_stock = product.last_known_stock
    if new_stock != old_stock:
        outcome.stock_changed = True
        outcome.stock_transition = (old_stock, new_stock)
        append_bounded(product.stock_history, HistoryEntry(value=new_stock, timestamp=now), history_limit)
        product.last_known_stock = new_stock
        product.stock_changes += 1

    if snapshot.name and not product.name:
        product.name = snapshot.name
    return outcome


def _format_amount(value: float, *, signed: bool = True) -> str:
    sign = "+" if signed else ""
    if float(value).is_integer():
        return f"{value:{sign},.0f}"
    return f"{value:{sign},.2f}"


def compose_alert(product: MonitoredProduct, outcome: CheckOutcome) -> str:
    """Return the notification text for *outcome*, or "" when nothing qualifies."""

    lines: list[str] = []

    if outcome.price_changed and product.price_alert_enabled and outcome.price_delta is not None:
        if abs(outcome.price_delta) >= product.price_delta_threshold:
            direction = "up" if outcome.price_delta > 0 else "down"
            line = f"Price {direction}: {_format_amount(outcome.price_delta)}"
            if outcome.price_delta_pct is not None:
                line += f" ({outcome.price_delta_pct:+.1f}%)"
            if product.last_known_price is not None:
                line += f", now {_format_amount(product.last_known_price, signed=False)}"
            lines.append(line)

    if outcome.stock_changed and product.stock_alert_enabled and outcome.stock_transition:
        before, after = outcome.stock_transition
        lines.append(f"Stock: {before.value} → {after.value}")

    return "\n".join(lines)


def alert_title(product: MonitoredProduct) -> str:
    return product.name or f"Product {product.id}"


def history_counts(product: MonitoredProduct) -> dict[str, Any]:
    """Number of changes recorded since registration.

    Counted separately from the histories, which drop old entries.
    """

    return {"price_changes": product.price_changes, "stock_changes": product.stock_changes}


__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "alert_title",
    "append_bounded",
    "compose_alert",
    "diff_snapshot",
    "history_counts",
]
