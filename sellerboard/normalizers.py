"""Utility helpers for normalising collector values."""

from __future__ import annotations

import re
from typing import Any

IN_STOCK = "in_stock"
OUT_OF_STOCK = "out_of_stock"
LOW_STOCK = "low_stock"

_PRICE_CLEAN_RE = re.compile(r"[^\d.,\-]")


def normalize_stock(value: str | None) -> str:
    """Map collector or schema.org availability values onto the stock codes.

    Missing values count as in stock, which is what product pages imply when
    they render a buy button without an availability badge.
    """

    if value is None:
        return IN_STOCK

    trimmed = str(value).strip()
    if not trimmed:
        return IN_STOCK

    lowered = trimmed.lower()
    for prefix in ("http://schema.org/", "https://schema.org/"):
        if lowered.startswith(prefix):
            lowered = lowered[len(prefix) :]
            break

    compact = lowered.replace("_", "").replace("-", "").replace(" ", "")
    mapped = {
        "instock": IN_STOCK,
        "available": IN_STOCK,
        "onlineonly": IN_STOCK,
        "preorder": IN_STOCK,
        "outofstock": OUT_OF_STOCK,
        "soldout": OUT_OF_STOCK,
        "discontinued": OUT_OF_STOCK,
        "unavailable": OUT_OF_STOCK,
        "lowstock": LOW_STOCK,
        "limited": LOW_STOCK,
        "limitedavailability": LOW_STOCK,
    }
    if compact in mapped:
        return mapped[compact]
    raise ValueError(f"Unknown stock value: {value!r}")


def parse_price(value: Any) -> float | None:
    """Parse a collector price (number or display text) into a float."""

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = _PRICE_CLEAN_RE.sub("", str(value))
    if not text or not any(ch.isdigit() for ch in text):
        return None

    # "1,234.56" -> thousands commas; "1234,56" -> decimal comma
    if "," in text and "." not in text:
        head, _, tail = text.rpartition(",")
        if len(tail) == 3:
            text = text.replace(",", "")
        else:
            text = f"{head.replace(',', '')}.{tail}"
    else:
        text = text.replace(",", "")

    try:
        return float(text)
    except ValueError:
        return None


__all__ = ["IN_STOCK", "LOW_STOCK", "OUT_OF_STOCK", "normalize_stock", "parse_price"]
