from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import structlog

from .config.settings import Settings, load_settings
from .origin.events import Event, LiveImageDownloaded, SnapshotImageDownloaded
from .origin.session import configure_session, get_session, shutdown_session

logger = logging.getLogger(__name__)


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


async def _open_session(settings: Settings, host: Optional[str]):
    configure_session(settings)
    session = await get_session()
    if not await session.connect(host):
        logger.error("cli.connect_failed host=%s", host or settings.origin_host)
        await shutdown_session()
        raise SystemExit(1)
    return session


async def status_command(*, settings: Settings, host: Optional[str], wait: float) -> None:
    """Connect, let a few status polls arrive and print the mount status."""
    session = await _open_session(settings, host)
    try:
        await asyncio.sleep(max(wait, 0.0))
        status = session.status
        print(
            json.dumps(
                {
                    "host": session.connected_host,
                    "ra_hours": status.ra_position,
                    "dec_degrees": status.dec_position,
                    "tracking": status.is_tracking,
                    "slewing": status.is_slewing,
                    "aligned": status.is_aligned,
                    "operation": status.current_operation,
                    "temperature": status.temperature,
                },
                indent=2,
            )
        )
    finally:
        await shutdown_session()


async def goto_command(*, settings: Settings, host: Optional[str], ra_hours: float, dec_degrees: float) -> None:
    session = await _open_session(settings, host)
    try:
        if not await session.goto_position(ra_hours, dec_degrees):
            raise SystemExit(1)
        logger.info("cli.goto.sent ra=%s dec=%s", ra_hours, dec_degrees)
    finally:
        await shutdown_session()


async def snapshot_command(
    *,
    settings: Settings,
    host: Optional[str],
    exposure: float,
    iso: int,
    output: str,
    timeout: float,
) -> None:
    """Request a sample capture and save the TIFF the mount produces."""
    session = await _open_session(settings, host)
    try:
        waiter = asyncio.ensure_future(session.events.wait_for(SnapshotImageDownloaded, timeout=timeout))
        await asyncio.sleep(0)
        if not await session.take_snapshot(exposure, iso):
            waiter.cancel()
            raise SystemExit(1)
        try:
            event = await waiter
        except asyncio.TimeoutError:
            logger.error("cli.snapshot.timeout timeout=%s", timeout)
            raise SystemExit(1)
        with open(output, "wb") as handle:
            handle.write(event.data)
        logger.info("cli.snapshot.saved path=%s size=%s", output, len(event.data))
    finally:
        await shutdown_session()


async def monitor_command(*, settings: Settings, host: Optional[str], duration: float) -> None:
    """Log every session event for ``duration`` seconds (0 runs until interrupted)."""
    session = await _open_session(settings, host)

    def _log_event(event: Event) -> None:
        if isinstance(event, LiveImageDownloaded):
            logger.info("cli.monitor.live_image path=%s shape=%s", event.file_path, event.image.shape)
            return
        logger.info("cli.monitor.event %r", event)

    session.events.subscribe_all(_log_event)
    try:
        if duration > 0:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        await shutdown_session()


def main() -> None:
    """CLI entry point for talking to an Origin telescope."""
    import argparse

    logging.basicConfig(level=logging.INFO)
    _configure_structlog()

    parser = argparse.ArgumentParser(description="Celestron Origin client")
    parser.add_argument(
        "--config",
        type=str,
        help="Path to a settings YAML file to load in addition to environment variables.",
    )
    parser.add_argument(
        "--host",
        type=str,
        help="Origin host or IP address (defaults to the configured origin_host).",
    )
    subparsers = parser.add_subparsers(dest="command")

    status_parser = subparsers.add_parser("status", help="Print the current mount status")
    status_parser.add_argument(
        "--wait",
        type=float,
        default=6.0,
        help="Seconds to collect status updates before printing (default: 6).",
    )

    goto_parser = subparsers.add_parser("goto", help="Slew to equatorial coordinates")
    goto_parser.add_argument("ra", type=float, help="Right ascension in hours")
    goto_parser.add_argument("dec", type=float, help="Declination in degrees")

    snapshot_parser = subparsers.add_parser("snapshot", help="Capture a snapshot and save the TIFF")
    snapshot_parser.add_argument("output", type=str, help="File to write the TIFF to")
    snapshot_parser.add_argument("--exposure", type=float, default=1.0, help="Exposure in seconds")
    snapshot_parser.add_argument("--iso", type=int, default=200, help="Sensor ISO")
    snapshot_parser.add_argument(
        "--timeout",
        type=float,
        default=120.0,
        help="Seconds to wait for the image (default: 120).",
    )

    monitor_parser = subparsers.add_parser("monitor", help="Log session events")
    monitor_parser.add_argument(
        "--duration",
        type=float,
        default=0.0,
        help="Seconds to run; 0 runs until interrupted.",
    )

    args = parser.parse_args()
    settings = load_settings(config_path=args.config)

    if args.command == "goto":
        asyncio.run(goto_command(settings=settings, host=args.host, ra_hours=args.ra, dec_degrees=args.dec))
        return

    if args.command == "snapshot":
        asyncio.run(
            snapshot_command(
                settings=settings,
                host=args.host,
                exposure=args.exposure,
                iso=args.iso,
                output=args.output,
                timeout=args.timeout,
            )
        )
        return

    if args.command == "monitor":
        try:
            asyncio.run(monitor_command(settings=settings, host=args.host, duration=args.duration))
        except KeyboardInterrupt:
            pass
        return

    # default to a status readout
    asyncio.run(status_command(settings=settings, host=args.host, wait=getattr(args, "wait", 6.0)))


if __name__ == "__main__":
    main()
