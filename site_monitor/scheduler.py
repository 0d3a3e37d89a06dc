"""Fixed-interval polling of the configured targets."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from site_monitor.classifier import AlertEvent, classify as default_classify, format_seconds
from site_monitor.config import PollingConfig
from site_monitor.probe import FailureKind, ProbeFailure, ProbeResult, ProbeSuccess
from site_monitor.pushplus import build_alert_message


logger = structlog.get_logger(__name__)

CYCLE_JOB_ID = "poll-cycle"

ProbeFunc = Callable[[str], Awaitable[ProbeResult]]
NotifyFunc = Callable[[str], Awaitable[tuple[bool, dict]]]


class PollScheduler:
    """Runs a check cycle over every target once per interval.

    Targets are probed one at a time in configured order. At most one cycle
    runs at a time; a tick that fires while a cycle is still running is
    dropped rather than queued.
    """

    def __init__(
        self,
        targets: Sequence[str],
        polling: PollingConfig,
        probe: ProbeFunc,
        notify: NotifyFunc,
        classify: Callable[..., AlertEvent | None] = default_classify,
        format_message: Callable[[AlertEvent], str] = build_alert_message,
    ):
        self.targets = tuple(targets)
        self.polling = polling
        self.probe = probe
        self.notify = notify
        self.classify = classify
        self.format_message = format_message
        self.scheduler = AsyncIOScheduler()
        self.running = False
        self._stopped: asyncio.Event | None = None

    def start(self) -> None:
        """Register the interval job and start the scheduler."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.add_job(
            func=self.run_cycle,
            trigger=IntervalTrigger(seconds=self.polling.interval_seconds),
            id=CYCLE_JOB_ID,
            name="Check all targets",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        self.running = True
        logger.info(
            "Poll scheduler started",
            targets=len(self.targets),
            interval_seconds=self.polling.interval_seconds,
            timeout_threshold_seconds=self.polling.timeout_threshold_seconds,
        )

    def stop(self) -> None:
        if self._stopped is not None:
            self._stopped.set()
        if not self.running:
            return
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Poll scheduler stopped")

    async def run(self) -> None:
        """Start polling and block until :meth:`stop` is called."""
        self._stopped = asyncio.Event()
        self.start()
        try:
            await self._stopped.wait()
        finally:
            self.stop()

    async def run_cycle(self) -> list[AlertEvent]:
        """Check every target once, in order, and return the alerts raised."""
        logger.info("Running check cycle", targets=len(self.targets))
        alerts: list[AlertEvent] = []
        for url in self.targets:
            event = await self.check_target(url)
            if event is not None:
                alerts.append(event)
        logger.info("Cycle complete", targets=len(self.targets), alerts=len(alerts))
        return alerts

    async def check_target(self, url: str) -> AlertEvent | None:
        try:
            result = await self.probe(url)
        except Exception as e:
            logger.exception("Probe crashed", url=url)
            result = ProbeFailure(url=url, kind=FailureKind.OTHER, detail=f"probe_crashed: {type(e).__name__}: {e}")
        else:
            if not isinstance(result, (ProbeSuccess, ProbeFailure)):
                logger.error("Probe returned an unexpected result", url=url, result=repr(result)[:200])
                result = ProbeFailure(
                    url=url,
                    kind=FailureKind.OTHER,
                    detail=f"probe_crashed: unexpected result {type(result).__name__}",
                )

        if isinstance(result, ProbeSuccess):
            logger.info("Page loaded", url=url, duration=format_seconds(result.duration))
        else:
            logger.warning("Page check failed", url=url, kind=result.kind.value, error=result.detail)

        event = self.classify(result, self.polling.timeout_threshold_seconds)
        if event is None:
            return None

        message = self.format_message(event)
        try:
            ok, resp = await self.notify(message)
        except Exception as e:
            logger.exception("Notification crashed", url=url, reason=event.reason.value)
            ok, resp = False, {"error": f"{type(e).__name__}: {e}"}

        if ok:
            logger.info("Alert sent", url=url, reason=event.reason.value)
        else:
            logger.error("Alert delivery failed", url=url, reason=event.reason.value, error=resp.get("error"))
        return event
