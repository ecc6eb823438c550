"""Exception taxonomy shared by the batch orchestrator and the monitor."""

from __future__ import annotations


class SellerboardError(RuntimeError):
    """Base class for engine errors."""

    code = "error"


class CollectionError(SellerboardError):
    """A page could not produce a product snapshot; worth retrying."""

    code = "collection_failed"

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class CollectorUnavailableError(CollectionError):
    """The in-page collector did not answer (missing or page context lost)."""

    code = "collector_unavailable"


class ExtractionError(CollectionError):
    """The collector answered but could not extract a product."""

    code = "extraction_failed"


class StoreError(SellerboardError):
    """The persistent store rejected a read or write."""

    code = "store_error"


class InvalidRequestError(SellerboardError, ValueError):
    """A caller passed arguments that cannot be acted on."""

    code = "invalid_request"


class BatchInProgressError(SellerboardError):
    """A batch run was requested while another one is active."""

    code = "batch_in_progress"


class ProductNotMonitoredError(SellerboardError, LookupError):
    """An operation referenced a product id that is not being monitored."""

    code = "not_monitored"


def error_code(exc: BaseException) -> str:
    """Return the short code used in item results and logs for *exc*."""

    return getattr(exc, "code", None) or type(exc).__name__


__all__ = [
    "BatchInProgressError",
    "CollectionError",
    "CollectorUnavailableError",
    "ExtractionError",
    "InvalidRequestError",
    "ProductNotMonitoredError",
    "SellerboardError",
    "StoreError",
    "error_code",
]
