"""FastAPI surface for batch collection and product monitoring."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from sellerboard.engine import SellerboardEngine
from sellerboard.errors import BatchInProgressError, InvalidRequestError, ProductNotMonitoredError
from sellerboard.logging_config import get_logger
from sellerboard.models import MonitorOptions

LOGGER = get_logger(__name__)


class BatchPayload(BaseModel):
    targets: list[str] = Field(..., description="Product page addresses to collect, in order.")
    per_item_delay_ms: int | None = Field(default=None, ge=0)
    max_retries: int | None = Field(default=None, ge=1)
    wait: bool = Field(default=False, description="Block until the run finishes and return its summary.")


class MonitorOptionsPayload(BaseModel):
    interval_minutes: float | None = None
    price_alert: bool | None = None
    stock_alert: bool | None = None
    price_threshold: float | None = None
    enabled: bool | None = None

    def to_options(self) -> MonitorOptions:
        return MonitorOptions(
            interval_minutes=self.interval_minutes,
            price_alert=self.price_alert,
            stock_alert=self.stock_alert,
            price_threshold=self.price_threshold,
            enabled=self.enabled,
        )


class MonitorPayload(MonitorOptionsPayload):
    id: str = Field(..., description="Caller-assigned product id.")
    url: str = Field(..., description="Product page address to check.")
    name: str | None = None
    price: float | str | None = None
    stock: str | None = None
    images: list[str] = Field(default_factory=list)


def create_app(engine: SellerboardEngine) -> FastAPI:
    """Build the API application bound to *engine*."""

    app = FastAPI(title="Sellerboard Collector API")
    app.state.engine = engine
    app.state.batch_tasks = set()

    @app.get("/healthz")
    def healthcheck() -> dict[str, Any]:
        """Return application health information."""

        return {
            "status": "ok",
            "batch_running": engine.batch.is_running,
            "monitored": len(engine.monitoring.get_all()),
        }

    @app.get("/api/batch")
    def batch_status() -> JSONResponse:
        return JSONResponse(content=engine.batch.current_run.to_dict())

    @app.post("/api/batch")
    async def start_batch(payload: BatchPayload) -> JSONResponse:
        """Start a batch run; returns the accepted and rejected addresses."""

        if engine.batch.is_running:
            raise HTTPException(status_code=409, detail="A batch run is already in progress.")
        accepted, rejected = engine.matcher.filter(payload.targets)
        options = engine.batch.defaults.merged(
            per_item_delay_ms=payload.per_item_delay_ms,
            max_retries=payload.max_retries,
        )

        if payload.wait:
            try:
                run = await engine.collect(accepted, options)
            except BatchInProgressError as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            return JSONResponse(content={"accepted": accepted, "rejected": rejected, "run": run.to_dict()})

        task = asyncio.create_task(engine.collect(accepted, options))
        app.state.batch_tasks.add(task)
        task.add_done_callback(_batch_done(app))
        LOGGER.info("Batch accepted via API | accepted=%d | rejected=%d", len(accepted), len(rejected))
        return JSONResponse(status_code=202, content={"accepted": accepted, "rejected": rejected})

    @app.post("/api/batch/stop")
    def stop_batch() -> dict[str, bool]:
        return {"stopping": engine.stop_collection()}

    @app.get("/api/monitoring")
    def list_monitoring() -> JSONResponse:
        items = [product.to_dict() for product in engine.monitoring.get_all()]
        return JSONResponse(content={"items": items, "count": len(items)})

    @app.post("/api/monitoring")
    def start_monitoring(payload: MonitorPayload) -> JSONResponse:
        product = {
            "id": payload.id,
            "url": payload.url,
            "name": payload.name,
            "price": payload.price,
            "stock": payload.stock,
            "images": payload.images,
        }
        try:
            monitored = engine.monitoring.start_monitoring(product, payload.to_options())
        except InvalidRequestError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(status_code=201, content=monitored.to_dict())

    @app.get("/api/monitoring/stats")
    def monitoring_stats() -> dict[str, int]:
        return engine.monitoring.statistics()

    @app.get("/api/monitoring/{product_id}")
    def get_monitored(product_id: str) -> JSONResponse:
        product = engine.monitoring.get(product_id)
        if product is None:
            raise HTTPException(status_code=404, detail="Product is not monitored.")
        return JSONResponse(content=product.to_dict())

    @app.patch("/api/monitoring/{product_id}")
    def update_monitoring(product_id: str, payload: MonitorOptionsPayload) -> JSONResponse:
        try:
            product = engine.monitoring.update_options(product_id, payload.to_options())
        except ProductNotMonitoredError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except InvalidRequestError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(content=product.to_dict())

    @app.delete("/api/monitoring/{product_id}")
    def stop_monitoring(product_id: str) -> dict[str, Any]:
        if not engine.monitoring.stop_monitoring(product_id):
            raise HTTPException(status_code=404, detail="Product is not monitored.")
        return {"id": product_id, "stopped": True}

    @app.get("/api/products")
    def list_products() -> JSONResponse:
        items = engine.catalog.list_products()
        return JSONResponse(content={"items": items, "count": len(items)})

    @app.get("/api/stats")
    def api_stats() -> JSONResponse:
        """Return aggregate collection stats."""

        return JSONResponse(content=engine.catalog.stats())

    return app


def _batch_done(app: FastAPI):
    def _callback(task: asyncio.Task) -> None:
        app.state.batch_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, BatchInProgressError):
            LOGGER.info("Background batch rejected: %s", exc)
        elif exc is not None:
            LOGGER.error("Background batch failed: %s", exc)

    return _callback


__all__ = ["create_app"]
