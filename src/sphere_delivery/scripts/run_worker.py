# src/sphere_delivery/scripts/run_worker.py
"""
Run the delivery coordinator outside the API process.

By default the coordinator polls until interrupted. ``--once`` runs a single
delivery pass and ``--recover`` only releases stale claims, both suitable
for cron.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from sphere_delivery.core.settings import settings
from sphere_delivery.services.coordinator import DeliveryCoordinator, build_coordinator

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def run_forever(coordinator: DeliveryCoordinator) -> None:
    """Run the background loop until SIGINT or SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            pass

    await coordinator.start()
    logger.info("Delivery worker started")
    try:
        await stop.wait()
    finally:
        logger.info("Stopping delivery worker")
        await coordinator.stop()


async def run(args: argparse.Namespace) -> int:
    coordinator = build_coordinator()
    try:
        if args.recover:
            released = await coordinator.recover()
            print(f"[run_worker] released {released} stale claim(s)")
        elif args.once:
            await coordinator.recover()
            processed = await coordinator.run_once()
            print(f"[run_worker] processed {processed} deliveries")
        else:
            await run_forever(coordinator)
    finally:
        await coordinator.dispatcher.close()
    return 1 if coordinator.durability_alarms else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the outbound delivery worker")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="Run a single delivery pass and exit.")
    mode.add_argument(
        "--recover",
        action="store_true",
        help="Release claims whose lease expired and exit.",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
