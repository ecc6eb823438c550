"""Command-line interface entry point for the Sellerboard engine."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any, Iterable

import uvicorn
from dotenv import load_dotenv

from sellerboard.config import load_config, section
from sellerboard.engine import SellerboardEngine
from sellerboard.errors import SellerboardError
from sellerboard.logging_config import get_logger
from sellerboard.models import MonitorOptions, Progress

LOGGER = get_logger(__name__)


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the application."""

    parser = argparse.ArgumentParser(
        description="Collect marketplace product pages and monitor their price and stock."
    )
    parser.add_argument("--config", type=str, help="Path to the YAML configuration file.")
    parser.add_argument(
        "--collect",
        type=str,
        help="Comma-separated product page addresses to collect in one batch.",
    )
    parser.add_argument(
        "--targets-file",
        type=Path,
        help="File with one product page address per line to add to the batch.",
    )
    parser.add_argument("--delay-ms", type=int, help="Pause between batch items in milliseconds.")
    parser.add_argument("--retries", type=int, help="Extraction attempts per batch item.")
    parser.add_argument("--watch", type=str, metavar="URL", help="Start monitoring a product page.")
    parser.add_argument("--product-id", type=str, help="Id to register the watched product under.")
    parser.add_argument("--interval", type=float, help="Check interval in minutes for --watch.")
    parser.add_argument("--threshold", type=float, help="Minimum absolute price change worth an alert.")
    parser.add_argument("--no-price-alert", action="store_true", help="Disable price alerts for --watch.")
    parser.add_argument("--no-stock-alert", action="store_true", help="Disable stock alerts for --watch.")
    parser.add_argument("--unwatch", type=str, metavar="ID", help="Stop monitoring the given product id.")
    parser.add_argument("--list", action="store_true", help="Print monitored products and exit.")
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Keep running: fire monitoring checks on schedule until interrupted.",
    )
    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="With --serve, also expose the HTTP API.",
    )

    args = parser.parse_args(list(argv) if argv is not None else None)

    collect_arg = args.collect or ""
    args.targets = [item.strip() for item in collect_arg.split(",") if item.strip()]

    if args.watch and not args.product_id:
        parser.error("--watch requires --product-id")
    if args.interval is not None and args.interval <= 0:
        parser.error("--interval must be positive")
    if args.threshold is not None and args.threshold < 0:
        parser.error("--threshold must not be negative")
    if args.delay_ms is not None and args.delay_ms < 0:
        parser.error("--delay-ms must not be negative")
    if args.retries is not None and args.retries <= 0:
        parser.error("--retries must be a positive integer")
    if args.dashboard and not args.serve:
        parser.error("--dashboard requires --serve")
    return args


def _load_targets_file(path: Path) -> list[str]:
    if not path.exists():
        raise FileNotFoundError(f"Targets file not found at {path}")
    lines = path.read_text(encoding="utf-8").splitlines()
    return [line.strip() for line in lines if line.strip() and not line.lstrip().startswith("#")]


def _print_progress(event: Progress) -> None:
    print(f"[{event.current}/{event.total}] {event.percent_complete:5.1f}% {event.current_label}")


def _watch_options(args: argparse.Namespace) -> MonitorOptions:
    return MonitorOptions(
        interval_minutes=args.interval,
        price_threshold=args.threshold,
        price_alert=False if args.no_price_alert else None,
        stock_alert=False if args.no_stock_alert else None,
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


async def _serve(engine: SellerboardEngine, *, dashboard: bool) -> None:
    if not dashboard:
        LOGGER.info("Serving monitoring checks; press Ctrl+C to exit")
        await asyncio.Event().wait()
        return

    from sellerboard.dashboard import create_app

    conf = section(engine.config, "dashboard")
    config = uvicorn.Config(
        create_app(engine),
        host=str(conf.get("host") or "127.0.0.1"),
        port=int(conf.get("port") or 8000),
        reload=False,
        log_config=None,
    )
    server = uvicorn.Server(config)
    LOGGER.info("Dashboard starting | host=%s port=%s", config.host, config.port)
    await server.serve()


async def _async_main(argv: Iterable[str] | None = None) -> None:
    args = parse_args(argv)
    load_dotenv()
    config = load_config(args.config)

    targets = list(args.targets)
    if args.targets_file is not None:
        targets.extend(_load_targets_file(args.targets_file))

    engine = SellerboardEngine(config)
    await engine.start()
    try:
        if args.unwatch:
            stopped = engine.monitoring.stop_monitoring(args.unwatch)
            LOGGER.info("Unwatch | id=%s | stopped=%s", args.unwatch, stopped)
            if not stopped:
                print(f"Product {args.unwatch} is not monitored")

        if args.watch:
            product = {"id": args.product_id, "url": args.watch}
            existing = engine.catalog.list_products()
            for record in existing:
                if record.get("url") == args.watch:
                    product.update({k: record.get(k) for k in ("name", "price", "stock", "images")})
                    break
            monitored = engine.monitoring.start_monitoring(product, _watch_options(args))
            _print_json(monitored.to_dict())

        if targets:
            options = engine.batch.defaults.merged(
                per_item_delay_ms=args.delay_ms,
                max_retries=args.retries,
            )
            run = await engine.collect(targets, options, _print_progress)
            _print_json(run.to_dict())

        if args.list:
            _print_json(
                {
                    "products": [product.to_dict() for product in engine.monitoring.get_all()],
                    "statistics": engine.monitoring.statistics(),
                }
            )

        if args.serve:
            await _serve(engine, dashboard=args.dashboard)
    finally:
        await engine.shutdown()


def main() -> None:
    try:
        asyncio.run(_async_main())
    except SellerboardError as exc:
        LOGGER.error("Command failed: %s", exc)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:  # pragma: no cover - interactive safety
        LOGGER.info("Interrupted by user")


if __name__ == "__main__":
    main()
