"""Extraction service plus the attempt policy used to drive it."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from sellerboard.errors import CollectionError, CollectorUnavailableError, ExtractionError
from sellerboard.gateway import PageAutomationGateway
from sellerboard.logging_config import get_logger
from sellerboard.models import ProductSnapshot

LOGGER = get_logger(__name__)

T = TypeVar("T")


class ExtractionService(Protocol):
    async def collect(self, page: Any) -> ProductSnapshot: ...


class CollectorExtractionService:
    """Ask the page's collector for a product and validate the reply."""

    def __init__(self, gateway: PageAutomationGateway, *, action: str = "collectProduct") -> None:
        self._gateway = gateway
        self._action = action

    async def collect(self, page: Any) -> ProductSnapshot:
        url = getattr(page, "url", "") or ""
        reply = await self._gateway.send(page, {"action": self._action})
        if not isinstance(reply, dict):
            raise ExtractionError(f"Unexpected collector reply type {type(reply).__name__}", url=url)
        if not reply.get("success"):
            raise ExtractionError(str(reply.get("error") or "Collector reported failure"), url=url)
        data = reply.get("data") or reply.get("product")
        if not data:
            raise ExtractionError("Collector returned no product data", url=url)
        return ProductSnapshot.from_payload(data, url=url)


class CollectAttemptPolicy:
    """Two-phase attempt policy: request, remediate once, retry within a budget.

    Each attempt sends the request; the first ``remediate_on`` failure of the
    whole run triggers the remediation (collector injection) followed by an
    immediate re-request inside the same attempt. Attempts that still fail
    with a ``CollectionError`` are retried up to ``max_attempts`` with a fixed
    backoff.
    """

    def __init__(
        self,
        *,
        max_attempts: int,
        backoff_seconds: float = 0.0,
        remediate_on: tuple[type[BaseException], ...] = (CollectorUnavailableError,),
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = max(backoff_seconds, 0.0)
        self.remediate_on = remediate_on
        self.last_attempts = 0

    async def run(
        self,
        request: Callable[[], Awaitable[T]],
        remediate: Callable[[], Awaitable[None]] | None = None,
        *,
        label: str = "",
    ) -> T:
        """Return the request result or raise the last error.

        ``last_attempts`` holds the number of attempts used either way.
        """

        remediated = False
        self.last_attempts = 0

        async def _attempt() -> T:
            nonlocal remediated
            try:
                return await request()
            except self.remediate_on as exc:
                if remediated or remediate is None:
                    raise
                remediated = True
                LOGGER.info("Collector missing; injecting and retrying | target=%s | error=%s", label, exc)
                await remediate()
                return await request()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.backoff_seconds),
            retry=retry_if_exception_type(CollectionError),
            reraise=True,
        )
        async for attempt in retrying:
            self.last_attempts = attempt.retry_state.attempt_number
            with attempt:
                if self.last_attempts > 1:
                    LOGGER.info(
                        "Retrying collection | target=%s | attempt=%d/%d",
                        label,
                        self.last_attempts,
                        self.max_attempts,
                    )
                result = await _attempt()
        return result


__all__ = ["CollectAttemptPolicy", "CollectorExtractionService", "ExtractionService"]
