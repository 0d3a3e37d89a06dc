from __future__ import annotations

import enum
import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence, Union

import structlog
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError, async_playwright


logger = structlog.get_logger(__name__)

DEFAULT_NAVIGATION_TIMEOUT_SECONDS = 20.0

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-gpu",
    "--ignore-certificate-errors",
    "--disable-crash-reporter",
    "--disable-notifications",
    "--hide-scrollbars",
    "--window-size=1080,1920",
    "--mute-audio",
    "--incognito",
]

CHROMIUM_PATH_ENV = "CHROMIUM_PATH"

CHROMIUM_BINARY_CANDIDATES = (
    "chromium",
    "chromium-browser",
    "google-chrome",
    "google-chrome-stable",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
)

# Chromium net error codes that mean the host could not be reached at all.
UNREACHABLE_NET_ERRORS = (
    "net::err_name_not_resolved",
    "net::err_name_resolution_failed",
    "net::err_internet_disconnected",
    "net::err_address_unreachable",
)


class FailureKind(str, enum.Enum):
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    OTHER = "other"


@dataclass(frozen=True)
class ProbeSuccess:
    url: str
    duration: float  # seconds


@dataclass(frozen=True)
class ProbeFailure:
    url: str
    kind: FailureKind
    detail: str


ProbeResult = Union[ProbeSuccess, ProbeFailure]


def classify_navigation_error(exc: Exception) -> FailureKind:
    """Map a Playwright navigation exception onto a failure kind.

    Playwright only reports Chromium's ``net::ERR_*`` code inside the message
    text, so unreachable hosts are recognised by substring.
    """
    if isinstance(exc, PlaywrightTimeoutError):
        return FailureKind.TIMEOUT
    msg = str(exc or "").lower()
    if any(code in msg for code in UNREACHABLE_NET_ERRORS):
        return FailureKind.UNREACHABLE
    return FailureKind.OTHER


def _error_detail(exc: Exception) -> str:
    text = str(exc or "").strip()
    # Playwright appends a multi-line call log; the first line carries the net error.
    first_line = text.splitlines()[0] if text else ""
    return first_line[:500] or type(exc).__name__


def find_chromium_executable(candidates: Sequence[str] = CHROMIUM_BINARY_CANDIDATES) -> str | None:
    """Return the first usable Chromium binary, or None for Playwright's bundled one.

    ``CHROMIUM_PATH`` wins when it points at a file; candidates may be bare
    command names (looked up on PATH) or absolute paths.
    """
    env_path = os.getenv(CHROMIUM_PATH_ENV, "").strip()
    if env_path and Path(env_path).is_file():
        return env_path

    for candidate in candidates:
        found = shutil.which(candidate) if os.sep not in candidate else candidate
        if found and Path(found).is_file():
            return found
    return None


class BrowserProbe:
    """Loads one URL in a freshly launched headless Chromium and times it.

    Every call to :meth:`probe` launches its own browser and closes it again,
    so nothing survives between probes. Use as an async context manager to
    start and stop the Playwright driver.
    """

    def __init__(
        self,
        chrome_path: str | None = None,
        navigation_timeout: float = DEFAULT_NAVIGATION_TIMEOUT_SECONDS,
        *,
        browser_type: Any = None,
    ):
        self.chrome_path = chrome_path or find_chromium_executable()
        self.navigation_timeout = float(navigation_timeout)
        self._browser_type = browser_type
        self._playwright = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        if self._browser_type is not None:
            return
        logger.info("Starting Playwright driver", chrome_path=self.chrome_path)
        self._playwright = await async_playwright().start()
        self._browser_type = self._playwright.chromium

    async def stop(self) -> None:
        if self._playwright is None:
            return
        logger.info("Stopping Playwright driver")
        try:
            await self._playwright.stop()
        finally:
            self._playwright = None
            self._browser_type = None

    async def _launch(self):
        if self._browser_type is None:
            raise RuntimeError("BrowserProbe.start() must be called before probing")
        launch_kwargs: dict[str, Any] = {"headless": True, "args": list(CHROMIUM_ARGS)}
        if self.chrome_path:
            launch_kwargs["executable_path"] = self.chrome_path
        return await self._browser_type.launch(**launch_kwargs)

    async def probe(self, url: str, navigation_timeout: float | None = None) -> ProbeResult:
        timeout = self.navigation_timeout if navigation_timeout is None else float(navigation_timeout)
        timeout_ms = int(timeout * 1000)

        try:
            browser = await self._launch()
        except PlaywrightError as e:
            return ProbeFailure(url=url, kind=FailureKind.OTHER, detail=f"browser_launch_error: {_error_detail(e)}")

        context = None
        page = None
        try:
            context = await browser.new_context(ignore_https_errors=True)
            page = await context.new_page()
            started = time.perf_counter()
            try:
                await page.goto(url, wait_until="load", timeout=timeout_ms)
            except PlaywrightError as e:
                return ProbeFailure(url=url, kind=classify_navigation_error(e), detail=_error_detail(e))
            return ProbeSuccess(url=url, duration=max(0.0, time.perf_counter() - started))
        except PlaywrightError as e:
            return ProbeFailure(url=url, kind=FailureKind.OTHER, detail=f"browser_error: {_error_detail(e)}")
        finally:
            # Dependency order: page, context, browser. Each close runs even if an earlier one failed.
            if page is not None:
                await self._close_quietly(page, "page", url)
            if context is not None:
                await self._close_quietly(context, "context", url)
            await self._close_quietly(browser, "browser", url)

    @staticmethod
    async def _close_quietly(resource: Any, name: str, url: str) -> None:
        try:
            await resource.close()
        except Exception as e:
            logger.warning("Failed to close browser resource", resource=name, url=url, error=f"{type(e).__name__}: {e}")
