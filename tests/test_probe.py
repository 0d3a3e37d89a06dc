from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError
from structlog.testing import capture_logs

from site_monitor.probe import (
    BrowserProbe,
    FailureKind,
    ProbeFailure,
    ProbeSuccess,
    classify_navigation_error,
    find_chromium_executable,
)


class _Tracker:
    def __init__(self) -> None:
        self.launches: list[dict[str, Any]] = []
        self.contexts: list[dict[str, Any]] = []
        self.gotos: list[tuple[str, str, int]] = []
        self.closed: list[str] = []


class _FakePage:
    def __init__(self, tracker: _Tracker, goto_exc: BaseException | None, close_exc: BaseException | None) -> None:
        self.tracker = tracker
        self.goto_exc = goto_exc
        self.close_exc = close_exc

    async def goto(self, url: str, *, wait_until: str, timeout: int) -> None:
        self.tracker.gotos.append((url, wait_until, timeout))
        if self.goto_exc is not None:
            raise self.goto_exc

    async def close(self) -> None:
        self.tracker.closed.append("page")
        if self.close_exc is not None:
            raise self.close_exc


class _FakeContext:
    def __init__(self, tracker: _Tracker, page: _FakePage) -> None:
        self.tracker = tracker
        self.page = page

    async def new_page(self) -> _FakePage:
        return self.page

    async def close(self) -> None:
        self.tracker.closed.append("context")


class _FakeBrowser:
    def __init__(self, tracker: _Tracker, page: _FakePage) -> None:
        self.tracker = tracker
        self.page = page

    async def new_context(self, **kwargs: Any) -> _FakeContext:
        self.tracker.contexts.append(kwargs)
        return _FakeContext(self.tracker, self.page)

    async def close(self) -> None:
        self.tracker.closed.append("browser")


class _FakeBrowserType:
    def __init__(
        self,
        goto_exc: BaseException | None = None,
        page_close_exc: BaseException | None = None,
        launch_exc: BaseException | None = None,
    ) -> None:
        self.tracker = _Tracker()
        self.goto_exc = goto_exc
        self.page_close_exc = page_close_exc
        self.launch_exc = launch_exc

    async def launch(self, **kwargs: Any) -> _FakeBrowser:
        self.tracker.launches.append(kwargs)
        if self.launch_exc is not None:
            raise self.launch_exc
        page = _FakePage(self.tracker, self.goto_exc, self.page_close_exc)
        return _FakeBrowser(self.tracker, page)


@pytest.mark.asyncio
async def test_probe_success_measures_and_releases_everything() -> None:
    fake = _FakeBrowserType()
    probe = BrowserProbe("/opt/chrome/chrome", navigation_timeout=20, browser_type=fake)

    result = await probe.probe("https://ok.example")

    assert isinstance(result, ProbeSuccess)
    assert result.url == "https://ok.example"
    assert result.duration >= 0.0
    assert fake.tracker.gotos == [("https://ok.example", "load", 20000)]
    assert fake.tracker.closed == ["page", "context", "browser"]
    assert fake.tracker.contexts == [{"ignore_https_errors": True}]


@pytest.mark.asyncio
async def test_probe_launches_headless_chromium_with_monitor_flags() -> None:
    fake = _FakeBrowserType()
    probe = BrowserProbe("/opt/chrome/chrome", browser_type=fake)

    await probe.probe("https://ok.example")

    launch = fake.tracker.launches[0]
    assert launch["headless"] is True
    assert launch["executable_path"] == "/opt/chrome/chrome"
    for flag in ("--disable-gpu", "--ignore-certificate-errors", "--disable-notifications", "--mute-audio", "--incognito"):
        assert flag in launch["args"]


@pytest.mark.asyncio
async def test_probe_navigation_timeout_override() -> None:
    fake = _FakeBrowserType()
    probe = BrowserProbe("/opt/chrome/chrome", navigation_timeout=20, browser_type=fake)

    await probe.probe("https://ok.example", navigation_timeout=2.5)

    assert fake.tracker.gotos[0][2] == 2500


@pytest.mark.asyncio
async def test_probe_name_not_resolved_is_unreachable() -> None:
    exc = PlaywrightError("Page.goto: net::ERR_NAME_NOT_RESOLVED at https://down.example/\nCall log:\n  - navigating")
    fake = _FakeBrowserType(goto_exc=exc)
    probe = BrowserProbe("/opt/chrome/chrome", browser_type=fake)

    result = await probe.probe("https://down.example")

    assert isinstance(result, ProbeFailure)
    assert result.kind is FailureKind.UNREACHABLE
    assert result.detail == "Page.goto: net::ERR_NAME_NOT_RESOLVED at https://down.example/"
    assert fake.tracker.closed == ["page", "context", "browser"]


@pytest.mark.asyncio
async def test_probe_navigation_timeout_is_timeout() -> None:
    fake = _FakeBrowserType(goto_exc=PlaywrightTimeoutError("Page.goto: Timeout 20000ms exceeded."))
    probe = BrowserProbe("/opt/chrome/chrome", browser_type=fake)

    result = await probe.probe("https://slow.example")

    assert isinstance(result, ProbeFailure)
    assert result.kind is FailureKind.TIMEOUT
    assert fake.tracker.closed == ["page", "context", "browser"]


@pytest.mark.asyncio
async def test_probe_other_navigation_error_keeps_engine_text() -> None:
    exc = PlaywrightError("Page.goto: net::ERR_CONNECTION_REFUSED at https://refused.example/")
    fake = _FakeBrowserType(goto_exc=exc)
    probe = BrowserProbe("/opt/chrome/chrome", browser_type=fake)

    result = await probe.probe("https://refused.example")

    assert isinstance(result, ProbeFailure)
    assert result.kind is FailureKind.OTHER
    assert "net::ERR_CONNECTION_REFUSED" in result.detail


@pytest.mark.asyncio
async def test_repeated_failing_probes_do_not_leak_browsers() -> None:
    fake = _FakeBrowserType(goto_exc=PlaywrightError("Page.goto: net::ERR_NAME_NOT_RESOLVED"))
    probe = BrowserProbe("/opt/chrome/chrome", browser_type=fake)

    for _ in range(5):
        await probe.probe("https://down.example")

    assert len(fake.tracker.launches) == 5
    assert fake.tracker.closed.count("browser") == 5
    assert fake.tracker.closed.count("context") == 5
    assert fake.tracker.closed.count("page") == 5


@pytest.mark.asyncio
async def test_unexpected_navigation_exception_still_releases_resources() -> None:
    fake = _FakeBrowserType(goto_exc=RuntimeError("driver exploded"))
    probe = BrowserProbe("/opt/chrome/chrome", browser_type=fake)

    with pytest.raises(RuntimeError):
        await probe.probe("https://ok.example")

    assert fake.tracker.closed == ["page", "context", "browser"]


@pytest.mark.asyncio
async def test_page_close_failure_is_logged_and_browser_still_closed() -> None:
    fake = _FakeBrowserType(page_close_exc=PlaywrightError("Target page, context or browser has been closed"))
    probe = BrowserProbe("/opt/chrome/chrome", browser_type=fake)

    with capture_logs() as logs:
        result = await probe.probe("https://ok.example")

    assert isinstance(result, ProbeSuccess)
    assert fake.tracker.closed == ["page", "context", "browser"]
    warnings = [e for e in logs if e["log_level"] == "warning"]
    assert len(warnings) == 1
    assert warnings[0]["resource"] == "page"
    assert warnings[0]["url"] == "https://ok.example"


@pytest.mark.asyncio
async def test_browser_launch_failure_is_reported_as_other() -> None:
    fake = _FakeBrowserType(launch_exc=PlaywrightError("BrowserType.launch: Executable doesn't exist at /opt/chrome/chrome"))
    probe = BrowserProbe("/opt/chrome/chrome", browser_type=fake)

    result = await probe.probe("https://ok.example")

    assert isinstance(result, ProbeFailure)
    assert result.kind is FailureKind.OTHER
    assert result.detail.startswith("browser_launch_error:")
    assert fake.tracker.closed == []


@pytest.mark.asyncio
async def test_probe_without_start_raises() -> None:
    probe = BrowserProbe("/opt/chrome/chrome")
    with pytest.raises(RuntimeError):
        await probe.probe("https://ok.example")


@pytest.mark.parametrize(
    ("message", "kind"),
    [
        ("Page.goto: net::ERR_NAME_NOT_RESOLVED at https://x/", FailureKind.UNREACHABLE),
        ("Page.goto: net::ERR_NAME_RESOLUTION_FAILED at https://x/", FailureKind.UNREACHABLE),
        ("Page.goto: net::ERR_INTERNET_DISCONNECTED at https://x/", FailureKind.UNREACHABLE),
        ("Page.goto: net::ERR_CERT_AUTHORITY_INVALID at https://x/", FailureKind.OTHER),
        ("Page.goto: net::ERR_CONNECTION_RESET at https://x/", FailureKind.OTHER),
    ],
)
def test_classify_navigation_error_messages(message: str, kind: FailureKind) -> None:
    assert classify_navigation_error(PlaywrightError(message)) is kind


def test_classify_navigation_error_timeout_type() -> None:
    assert classify_navigation_error(PlaywrightTimeoutError("Timeout 1ms exceeded.")) is FailureKind.TIMEOUT


def test_find_chromium_prefers_env_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    binary = tmp_path / "chrome"
    binary.write_text("", encoding="utf-8")
    monkeypatch.setenv("CHROMIUM_PATH", str(binary))

    assert find_chromium_executable(candidates=()) == str(binary)


def test_find_chromium_skips_missing_env_and_uses_candidates(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    binary = tmp_path / "chromium"
    binary.write_text("", encoding="utf-8")
    monkeypatch.setenv("CHROMIUM_PATH", str(tmp_path / "missing"))

    found = find_chromium_executable(candidates=(str(tmp_path / "nope"), str(binary)))

    assert found == str(binary)


def test_find_chromium_resolves_command_names_on_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    binary = tmp_path / "my-chromium"
    binary.write_text("", encoding="utf-8")
    binary.chmod(0o755)
    monkeypatch.delenv("CHROMIUM_PATH", raising=False)
    monkeypatch.setenv("PATH", str(tmp_path))

    assert find_chromium_executable(candidates=("my-chromium",)) == str(binary)


def test_find_chromium_returns_none_when_nothing_installed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CHROMIUM_PATH", raising=False)
    monkeypatch.setenv("PATH", str(tmp_path))

    assert find_chromium_executable(candidates=("chromium", str(tmp_path / "chrome"))) is None
