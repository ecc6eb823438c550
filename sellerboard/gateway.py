"""Page automation gateway: the only module that drives the browser."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError, async_playwright

from sellerboard.errors import CollectorUnavailableError
from sellerboard.logging_config import get_logger
from sellerboard.playwright_env import (
    apply_stealth,
    close_browser,
    launch_browser,
    navigation_timeout_ms,
)

LOGGER = get_logger(__name__)

# Global the injected collector script registers itself under.
COLLECTOR_GLOBAL = "__sellerboardCollector"

_SEND_SCRIPT = f"""
async (request) => {{
    const collector = window.{COLLECTOR_GLOBAL};
    if (!collector || typeof collector.handle !== 'function') {{
        return null;
    }}
    return await collector.handle(request);
}}
"""


class PageAutomationGateway(Protocol):
    """Host capability to open pages and talk to their in-page collector."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def open(self, address: str) -> Any: ...

    async def activate(self, page: Any) -> None: ...

    async def close(self, page: Any) -> None: ...

    async def wait_for_load(self, page: Any, timeout_ms: int) -> bool: ...

    async def inject(self, page: Any, collector: str | None = None) -> None: ...

    async def send(self, page: Any, request: dict[str, Any]) -> Any: ...


class PlaywrightGateway:
    """Gateway backed by a single Chromium context."""

    def __init__(self, collector_script: str | Path | None = None) -> None:
        self._collector_script = Path(collector_script) if collector_script else None
        self._playwright = None
        self._browser = None
        self._context = None

    async def start(self) -> None:
        if self._context is not None:
            return
        self._playwright = await async_playwright().start()
        apply_stealth(self._playwright)
        self._browser, self._context = await launch_browser(self._playwright)
        LOGGER.info("Browser started | headless context ready")

    async def stop(self) -> None:
        await close_browser(self._browser, self._context)
        self._browser = None
        self._context = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:  # pragma: no cover
                LOGGER.debug("Playwright stop failed: %s", exc)
            self._playwright = None
        LOGGER.info("Browser stopped")

    async def open(self, address: str) -> Page:
        """Open *address* in a new background page; navigation may still be loading."""

        if self._context is None:
            await self.start()
        page = await self._context.new_page()
        try:
            await page.goto(address, wait_until="commit", timeout=navigation_timeout_ms())
        except Exception:
            await self.close(page)
            raise
        return page

    async def activate(self, page: Page) -> None:
        try:
            await page.bring_to_front()
        except PlaywrightError as exc:
            LOGGER.debug("bring_to_front failed | url=%s | error=%s", page.url, exc)

    async def close(self, page: Page | None) -> None:
        if page is None:
            return
        try:
            await page.close()
        except Exception as exc:
            LOGGER.debug("Page close failed: %s", exc)

    async def wait_for_load(self, page: Page, timeout_ms: int) -> bool:
        """Wait for the load event; returns False on timeout instead of raising."""

        try:
            await page.wait_for_load_state("load", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            return False
        except PlaywrightError as exc:
            LOGGER.debug("wait_for_load failed | url=%s | error=%s", page.url, exc)
            return False

    async def inject(self, page: Page, collector: str | None = None) -> None:
        """Add the collector script to *page* (inline source or configured file)."""

        try:
            if collector:
                await page.add_script_tag(content=collector)
            elif self._collector_script is not None and self._collector_script.exists():
                await page.add_script_tag(path=str(self._collector_script))
            else:
                LOGGER.warning("No collector script available to inject | url=%s", page.url)
                return
        except PlaywrightError as exc:
            raise CollectorUnavailableError(f"Collector injection failed: {exc}", url=page.url) from exc
        LOGGER.debug("Collector injected | url=%s", page.url)

    async def send(self, page: Page, request: dict[str, Any]) -> Any:
        try:
            reply = await page.evaluate(_SEND_SCRIPT, request)
        except PlaywrightError as exc:
            # Navigation destroys the execution context along with the collector.
            raise CollectorUnavailableError(f"Collector unreachable: {exc}", url=page.url) from exc
        if reply is None:
            raise CollectorUnavailableError("No collector present on page", url=page.url)
        return reply


__all__ = ["COLLECTOR_GLOBAL", "PageAutomationGateway", "PlaywrightGateway"]
