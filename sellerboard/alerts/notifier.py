"""Alert notification helper utilities."""

from __future__ import annotations

import html
import os
import time
from typing import Iterable, Protocol

import requests
from tenacity import retry, stop_after_attempt, wait_exponential

from sellerboard.logging_config import get_logger

LOGGER = get_logger(__name__)


class NotificationSink(Protocol):
    """Best-effort, fire-and-forget delivery of a user-visible alert."""

    def notify(self, subject_id: str, title: str, message: str) -> None: ...


class Notifier:
    """Send alerts via Telegram or SendGrid when credentials are present."""

    def __init__(self) -> None:
        self._telegram_token = os.getenv("TELEGRAM_BOT_TOKEN")
        self._telegram_chat = os.getenv("TELEGRAM_CHAT_ID")
        self._sendgrid_key = os.getenv("SENDGRID_API_KEY")
        self._sendgrid_to = os.getenv("SENDGRID_TO")
        self._sendgrid_from = os.getenv("SENDGRID_FROM")
        self._last_send = 0.0

    def notify(self, subject_id: str, title: str, message: str) -> None:
        """Deliver one alert; failures are logged, never raised."""

        lines = [title, *[line for line in message.splitlines() if line.strip()]]
        self._dispatch(subject_id, title, lines)

    def _dispatch(self, subject_id: str, subject: str, lines: list[str]) -> None:
        transport = None
        try:
            if self._telegram_token and self._telegram_chat:
                transport = "telegram"
                self._send_telegram(lines)
            elif self._sendgrid_key and self._sendgrid_to and self._sendgrid_from:
                transport = "sendgrid"
                self._send_sendgrid(subject, lines)
            else:
                LOGGER.info("Alert (noop) | subject=%s | %s", subject_id, " | ".join(lines))
                return
            LOGGER.info("Alert sent | subject=%s | transport=%s", subject_id, transport)
        except Exception as exc:  # pragma: no cover - retries exhausted
            LOGGER.warning("Alert delivery failed via %s for %s: %s", transport, subject_id, exc)

    def _throttle(self) -> None:
        elapsed = time.monotonic() - self._last_send
        if elapsed < 1:
            time.sleep(1 - elapsed)
        self._last_send = time.monotonic()

    @retry(wait=wait_exponential(multiplier=0.5, max=10), stop=stop_after_attempt(5), reraise=True)
    def _send_telegram(self, lines: Iterable[str]) -> None:
        self._throttle()
        url = f"https://api.telegram.org/bot{self._telegram_token}/sendMessage"
        payload = {
            "chat_id": self._telegram_chat,
            "text": "\n".join(lines),
            "disable_web_page_preview": True,
        }
        response = requests.post(url, json=payload, timeout=8)
        if response.status_code >= 400:
            raise RuntimeError(f"HTTP {response.status_code}")

    @retry(wait=wait_exponential(multiplier=0.5, max=10), stop=stop_after_attempt(5), reraise=True)
    def _send_sendgrid(self, subject: str, lines: list[str]) -> None:
        self._throttle()
        body = "".join(f"<p>{html.escape(line)}</p>" for line in lines)
        payload = {
            "from": {"email": self._sendgrid_from},
            "personalizations": [{"to": [{"email": self._sendgrid_to}], "subject": subject}],
            "content": [{"type": "text/html", "value": body}],
        }
        headers = {"Authorization": f"Bearer {self._sendgrid_key}"}
        response = requests.post(
            "https://api.sendgrid.com/v3/mail/send",
            json=payload,
            headers=headers,
            timeout=8,
        )
        if response.status_code >= 300:
            raise RuntimeError(f"HTTP {response.status_code}")


__all__ = ["NotificationSink", "Notifier"]
