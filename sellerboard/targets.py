"""Recognition of collectible product-page addresses."""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import urlparse

from sellerboard.logging_config import get_logger

LOGGER = get_logger(__name__)

# Product detail pages per supported marketplace.
PLATFORM_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "aliexpress": (re.compile(r"(?:^|\.)aliexpress\.[a-z.]+/item/(?:[^/]*?)(\d{6,})\.html", re.I),),
    "taobao": (
        re.compile(r"(?:^|\.)item\.taobao\.com/item\.htm\?.*\bid=\d+", re.I),
        re.compile(r"(?:^|\.)detail\.tmall\.com/item\.htm\?.*\bid=\d+", re.I),
    ),
    "1688": (re.compile(r"(?:^|\.)detail\.1688\.com/offer/\d+\.html", re.I),),
    "coupang": (re.compile(r"(?:^|\.)coupang\.com/vp/products/\d+", re.I),),
    "naver": (
        re.compile(r"(?:^|\.)smartstore\.naver\.com/[^/]+/products/\d+", re.I),
        re.compile(r"(?:^|\.)brand\.naver\.com/[^/]+/products/\d+", re.I),
    ),
    "gmarket": (re.compile(r"(?:^|\.)item\.gmarket\.co\.kr/Item\?.*\bgoodscode=\d+", re.I),),
    "auction": (re.compile(r"(?:^|\.)itempage3\.auction\.co\.kr/DetailView\.aspx\?.*\bitemno=\w+", re.I),),
    "11st": (re.compile(r"(?:^|\.)11st\.co\.kr/products/\d+", re.I),),
}


class TargetMatcher:
    """Decide whether an address points at a page the collector understands."""

    def __init__(self, extra_patterns: Iterable[str] | None = None) -> None:
        self._patterns: dict[str, tuple[re.Pattern[str], ...]] = dict(PLATFORM_PATTERNS)
        extras = tuple(re.compile(pattern, re.I) for pattern in (extra_patterns or ()) if pattern)
        if extras:
            self._patterns["custom"] = extras

    def platform_for(self, address: str | None) -> str | None:
        """Return the platform key matching *address*, or None."""

        if not address:
            return None
        candidate = address.strip()
        parsed = urlparse(candidate)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            return None
        location = candidate.split("://", 1)[1]
        for platform, patterns in self._patterns.items():
            if any(pattern.search(location) for pattern in patterns):
                return platform
        return None

    def is_collectible(self, address: str | None) -> bool:
        return self.platform_for(address) is not None

    def filter(self, addresses: Iterable[str]) -> tuple[list[str], list[str]]:
        """Split *addresses* into (collectible, rejected), preserving order."""

        accepted: list[str] = []
        rejected: list[str] = []
        for address in addresses:
            cleaned = (address or "").strip()
            if self.is_collectible(cleaned):
                accepted.append(cleaned)
            else:
                rejected.append(address)
        if rejected:
            LOGGER.info("Dropped %d non-product addresses from batch", len(rejected))
            LOGGER.debug("Rejected addresses: %s", rejected)
        return accepted, rejected


__all__ = ["PLATFORM_PATTERNS", "TargetMatcher"]
