"""Entry point: load the settings once, then poll until the process is stopped."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

import httpx
import structlog

from site_monitor.config import DEFAULT_LOG_FILE, ConfigError, MonitorSettings, load_settings
from site_monitor.probe import BrowserProbe
from site_monitor.pushplus import PushplusNotifier
from site_monitor.scheduler import PollScheduler


logger = structlog.get_logger(__name__)

LOG_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_SHARED_PROCESSORS = [
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt=LOG_TIME_FORMAT),
]


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging with a console handler."""
    structlog.configure(
        processors=[*_SHARED_PROCESSORS, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(),
            foreign_pre_chain=_SHARED_PROCESSORS,
        )
    )

    root = logging.getLogger()
    root.handlers = [console]
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    # The PushPlus token travels in request bodies; keep transport debug output out of the logs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    # A dropped tick while a cycle is still running is expected.
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def add_log_file(path: str) -> logging.Handler:
    """Also append every log line to ``path``."""
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=False),
            foreign_pre_chain=_SHARED_PROCESSORS,
        )
    )
    logging.getLogger().addHandler(handler)
    return handler


async def run(settings: MonitorSettings) -> int:
    async with httpx.AsyncClient(headers={"User-Agent": "site-monitor"}) as http_client:
        async with BrowserProbe(settings.chrome, settings.navigation_timeout) as probe:
            notifier = PushplusNotifier(http_client, settings.pushplus_config())
            scheduler = PollScheduler(
                targets=settings.url,
                polling=settings.polling_config(),
                probe=probe.probe,
                notify=notifier.send,
            )

            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, scheduler.stop)
                except NotImplementedError:
                    # Windows event loops; Ctrl+C still raises KeyboardInterrupt there.
                    pass

            await scheduler.run()
    logger.info("Site monitor stopped")
    return 0


def main() -> int:
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))

    try:
        settings = load_settings()
    except ConfigError as e:
        # No settings means no configured log file; record the failure in the default one.
        try:
            add_log_file(DEFAULT_LOG_FILE)
        except OSError as log_err:
            logger.warning("Cannot open log file", path=DEFAULT_LOG_FILE, error=str(log_err))
        logger.error("Failed to load configuration", error=str(e))
        return 1

    try:
        add_log_file(settings.log_file)
    except OSError as e:
        logger.error("Cannot open log file", path=settings.log_file, error=str(e))
        return 1

    logger.info("Site monitor starting", targets=list(settings.url), interval_seconds=settings.polling)
    return asyncio.run(run(settings))


if __name__ == "__main__":
    raise SystemExit(main())
