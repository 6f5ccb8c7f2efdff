from __future__ import annotations

import argparse
import asyncio
import os
import signal
import time
from pathlib import Path

import httpx
import structlog

from gov_alerts.config import DEFAULT_CONFIG_PATH, GovAlertsConfig, load_config
from gov_alerts.engine import AlertEngine
from gov_alerts.errors import ConfigError
from gov_alerts.logging_setup import configure_logging
from gov_alerts.sinks import build_sink
from gov_alerts.state import AlertStore
from gov_alerts.validators import build_provider


logger = structlog.get_logger(__name__)


def _install_stop_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows / non-main thread: fall back to KeyboardInterrupt.
            pass


async def run_loop(config: GovAlertsConfig, *, once: bool, dry_run: bool = False) -> int:
    store = AlertStore.load(Path(config.state_path))
    provider = build_provider(config)
    stop = asyncio.Event()
    _install_stop_handlers(stop)

    limits = httpx.Limits(max_connections=max(10, config.chain_concurrency * 4))
    async with httpx.AsyncClient(limits=limits, headers={"User-Agent": "gov-alerts"}) as client:
        sink = build_sink(config, client, dry_run=dry_run)
        engine = AlertEngine(client=client, config=config, provider=provider, sink=sink, store=store)
        logger.info(
            "gov-alerts started",
            sink=type(sink).__name__,
            interval_seconds=config.interval_seconds,
            alert_window_hours=config.alert_window_hours,
            known_alerts=len(store),
        )

        while not stop.is_set():
            cycle_started = time.time()
            cycle = asyncio.create_task(engine.run_cycle(), name="poll-cycle")
            stopper = asyncio.create_task(stop.wait(), name="stop-wait")
            done, _ = await asyncio.wait({cycle, stopper}, return_when=asyncio.FIRST_COMPLETED)
            stopper.cancel()
            if cycle not in done:
                # The engine persists delivered alerts in its own cleanup.
                logger.warning("shutdown requested; cancelling in-flight cycle")
                cycle.cancel()
                await asyncio.gather(cycle, return_exceptions=True)
                break
            cycle.result()
            if once:
                return 0

            elapsed = time.time() - cycle_started
            sleep_for = max(0.0, config.interval_seconds - elapsed)
            logger.debug("sleeping until next cycle", sleep_seconds=round(sleep_for, 3))
            try:
                await asyncio.wait_for(stop.wait(), timeout=sleep_for)
            except asyncio.TimeoutError:
                pass

    logger.info("gov-alerts stopped")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Governance voting-deadline alerts for Cosmos validators")
    parser.add_argument(
        "--config",
        default=os.getenv("GOV_ALERTS_CONFIG", DEFAULT_CONFIG_PATH),
        help="Path to YAML config",
    )
    parser.add_argument("--once", action="store_true", help="Run one poll cycle and exit")
    parser.add_argument("--dry-run", action="store_true", help="Log alerts instead of sending them")
    parser.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        configure_logging(args.log_level or "INFO")
        logger.error("invalid configuration", error=str(exc))
        return 2

    configure_logging(args.log_level or config.log_level)
    try:
        return asyncio.run(run_loop(config, once=bool(args.once), dry_run=bool(args.dry_run)))
    except ConfigError as exc:
        logger.error("invalid configuration", error=str(exc))
        return 2
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
