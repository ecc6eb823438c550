"""Centralised helpers for Playwright launch + anti-bot configuration."""

from __future__ import annotations

import os
import shlex
from functools import lru_cache
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from playwright.async_api import Browser, BrowserContext, Playwright

_FALSE_VALUES = {"0", "false", "no", "off"}


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in _FALSE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


@lru_cache(maxsize=1)
def headless_enabled() -> bool:
    """Return True if Playwright should run in headless mode."""

    return _as_bool(os.getenv("SELLERBOARD_HEADLESS"), True)


def stealth_enabled() -> bool:
    """Return True when stealth evasion scripts should be applied."""

    return _as_bool(os.getenv("SELLERBOARD_STEALTH"), True)


@lru_cache(maxsize=1)
def _stealth_instance():
    if not stealth_enabled():
        return None
    try:
        from playwright_stealth import Stealth
    except Exception:
        return None

    lang_env = os.getenv("SELLERBOARD_LANGS") or "ko-KR,ko,en-US"
    langs = tuple(
        entry.strip()
        for entry in lang_env.split(",")
        if entry.strip()
    ) or ("ko-KR", "ko")

    return Stealth(
        navigator_languages_override=langs[:2],
        navigator_platform_override=os.getenv("SELLERBOARD_PLATFORM", "Win32"),
        navigator_user_agent_override=os.getenv("SELLERBOARD_STEALTH_UA") or os.getenv("USER_AGENT"),
        navigator_vendor_override=os.getenv("SELLERBOARD_VENDOR", "Google Inc."),
    )


def apply_stealth(playwright: Playwright) -> None:
    """Hook the provided Playwright object with stealth evasions when available."""

    instance = _stealth_instance()
    if instance is None:
        return
    try:
        instance.hook_playwright_context(playwright)
    except Exception:
        # Stealth hooks rely on Playwright internals that change between releases.
        pass


def _user_data_dir() -> Path | None:
    raw = os.getenv("SELLERBOARD_USER_DATA_DIR")
    if not raw:
        return None
    path = Path(raw).expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return path


def _proxy_config() -> dict[str, str] | None:
    raw = os.getenv("SELLERBOARD_PROXY")
    if not raw:
        return None
    parsed = urlparse(raw)
    if not parsed.scheme:
        return {"server": f"http://{raw}"}
    return {"server": raw}


def slow_mo_ms() -> int | None:
    value = _env_int("SELLERBOARD_SLOW_MO_MS", 0)
    return value if value > 0 else None


def navigation_timeout_ms() -> int:
    """Upper bound for page.goto before the navigation is abandoned."""

    return max(_env_int("SELLERBOARD_NAVIGATION_TIMEOUT_MS", 60000), 1000)


def launch_kwargs() -> dict[str, Any]:
    """Return kwargs for chromium.launch."""

    args = [
        "--disable-blink-features=AutomationControlled",
        "--disable-dev-shm-usage",
        "--no-default-browser-check",
    ]
    extra_args = os.getenv("SELLERBOARD_CHROMIUM_ARGS")
    if extra_args:
        args.extend(shlex.split(extra_args))

    kwargs: dict[str, Any] = {"headless": headless_enabled(), "args": args}
    channel = os.getenv("SELLERBOARD_BROWSER_CHANNEL")
    if channel:
        kwargs["channel"] = channel
    proxy = _proxy_config()
    if proxy:
        kwargs["proxy"] = proxy
    slow_mo = slow_mo_ms()
    if slow_mo:
        kwargs["slow_mo"] = slow_mo
    return kwargs


def context_kwargs() -> dict[str, Any]:
    """Return kwargs for the browsing context that hosts every collector page."""

    kwargs: dict[str, Any] = {
        "locale": os.getenv("SELLERBOARD_LOCALE", "ko-KR"),
        "timezone_id": os.getenv("SELLERBOARD_TIMEZONE", "Asia/Seoul"),
        "viewport": {
            "width": _env_int("SELLERBOARD_VIEWPORT_WIDTH", 1440),
            "height": _env_int("SELLERBOARD_VIEWPORT_HEIGHT", 960),
        },
    }
    user_agent = os.getenv("SELLERBOARD_USER_AGENT")
    if user_agent:
        kwargs["user_agent"] = user_agent
    if _as_bool(os.getenv("SELLERBOARD_IGNORE_HTTPS_ERRORS"), False):
        kwargs["ignore_https_errors"] = True
    return kwargs


async def launch_browser(playwright: Playwright) -> tuple[Browser | None, BrowserContext]:
    """Launch Chromium according to env overrides. Returns (browser, context).

    With ``SELLERBOARD_USER_DATA_DIR`` set, a persistent profile is used so
    marketplace logins and cookies survive restarts; browser is then None.
    """

    user_dir = _user_data_dir()
    if user_dir is not None:
        context = await playwright.chromium.launch_persistent_context(
            str(user_dir), **launch_kwargs(), **context_kwargs()
        )
        return None, context

    browser = await playwright.chromium.launch(**launch_kwargs())
    context = await browser.new_context(**context_kwargs())
    return browser, context


async def close_browser(browser: Browser | None, context: BrowserContext | None) -> None:
    """Close the provided browser/context pair without raising."""

    for target in (context, browser):
        if target is None:
            continue
        try:
            await target.close()
        except Exception:
            continue
