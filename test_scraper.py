"""
Tests for scraper.py without a real browser.

A fake page stands in for Playwright: clicking the export button queues
file content, and the watcher's injected sleep "finishes the download" by
writing it into the download directory. That keeps the asynchronous
arrival of the file without any real waiting.
"""

import asyncio
from datetime import date

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import scraper
from errors import (
    DownloadTimeout, ParseError, QueryCancelled, SessionInitError,
    UiElementUnavailable
)
from models import FetchParams
from scraper import EXPORT_FILENAME, TrendsSession, activate_export_control, fetch_keyword
from utils import DownloadWatcher


def export_csv(keyword, rows):
    lines = ["Category: All categories", "", f"Month,{keyword}: (United States)"]
    lines += [f"{month},{value}" for month, value in rows]
    return "\n".join(lines) + "\n"


class FakeLocator:

    def __init__(self, page, selector):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    async def wait_for(self, state=None, timeout=None):
        self.page.waits.append((state, timeout))
        if not self.page.button_visible:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded.")

    async def click(self, timeout=None):
        self.page.clicks += 1
        if self.page.on_click is not None:
            await self.page.on_click()
        if self.page.exports:
            self.page.pending = self.page.exports.pop(0)


class FakeResponse:

    def __init__(self, status=200):
        self.status = status

    @property
    def ok(self):
        return 200 <= self.status < 300


class FakePage:

    def __init__(self, exports=None, button_visible=True, status=200):
        self.exports = list(exports or [])
        self.button_visible = button_visible
        self.status = status
        self.urls = []
        self.selectors = []
        self.waits = []
        self.clicks = 0
        self.pending = None
        self.on_click = None
        self.handlers = {}
        self.navigation_timeout = None

    async def goto(self, url, **kwargs):
        self.urls.append(url)
        return FakeResponse(self.status)

    def set_default_navigation_timeout(self, timeout):
        self.navigation_timeout = timeout

    def on(self, event, handler):
        self.handlers[event] = handler

    def locator(self, selector):
        self.selectors.append(selector)
        return FakeLocator(self, selector)

    def get_by_role(self, role, name=None):
        return HiddenButton()


class HiddenButton:

    async def is_visible(self):
        return False


class DownloadingClock:
    """Fake clock whose sleep delivers the queued export to disk."""

    def __init__(self, page, target):
        self.page = page
        self.target = target
        self.now = 0.0

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds
        if self.page.pending is not None:
            self.target.write_text(self.page.pending, encoding="utf-8")
            self.page.pending = None


@pytest.fixture(autouse=True)
def no_delays(monkeypatch):
    async def instant(*args, **kwargs):
        return None

    screenshots = []

    async def fake_screenshot(page, name="error", directory="./logs"):
        screenshots.append(name)
        return ""

    monkeypatch.setattr(scraper, "random_delay", instant)
    monkeypatch.setattr(scraper, "take_screenshot", fake_screenshot)
    return screenshots


def make_session(tmp_path, page):
    session = TrendsSession(FetchParams(download_dir=str(tmp_path), ui_timeout_ms=500))
    session.page = page
    clock = DownloadingClock(page, session.export_path)
    session.watcher = DownloadWatcher(
        timeout_ms=1000,
        poll_interval_ms=100,
        clock=clock,
        sleep=clock.sleep
    )
    return session


# ---------------------------------------------------------------------------
# fetch_keyword
# ---------------------------------------------------------------------------

class TestFetchKeyword:

    def test_end_to_end(self, tmp_path):
        page = FakePage(exports=[export_csv("rust", [("2023-01", "45"), ("2023-02", "60")])])
        session = make_session(tmp_path, page)

        report = asyncio.run(fetch_keyword(session, "rust"))

        assert report.keyword == "rust"
        assert report.as_pairs() == [(date(2023, 1, 1), 45), (date(2023, 2, 1), 60)]
        assert len(page.urls) == 1
        assert "q=rust" in page.urls[0]
        assert "geo=US" in page.urls[0]
        assert "hl=en-US" in page.urls[0]
        assert "date=all" in page.urls[0]
        assert page.clicks == 1

    def test_waits_for_visibility_before_click(self, tmp_path):
        page = FakePage(exports=[export_csv("rust", [("2023-01", "1")])])
        session = make_session(tmp_path, page)

        asyncio.run(fetch_keyword(session, "rust"))

        assert page.waits == [("visible", 500)]
        assert page.selectors[0].startswith("xpath=/html/body")

    def test_keyword_is_url_encoded(self, tmp_path):
        page = FakePage(exports=[export_csv("x", [("2023-01", "1")])])
        session = make_session(tmp_path, page)

        asyncio.run(fetch_keyword(session, "c++ & rust"))

        assert "q=c%2B%2B%20%26%20rust" in page.urls[0]

    def test_stale_export_is_not_reused(self, tmp_path):
        stale = export_csv("old", [("1999-01", "99")])
        (tmp_path / EXPORT_FILENAME).write_text(stale, encoding="utf-8")

        page = FakePage(exports=[export_csv("rust", [("2023-01", "45")])])
        session = make_session(tmp_path, page)

        report = asyncio.run(fetch_keyword(session, "rust"))

        assert report.as_pairs() == [(date(2023, 1, 1), 45)]

    def test_consecutive_queries_get_their_own_data(self, tmp_path):
        page = FakePage(exports=[
            export_csv("rust", [("2023-01", "45")]),
            export_csv("zig", [("2023-01", "7"), ("2023-02", "8")]),
        ])
        session = make_session(tmp_path, page)

        async def go():
            first = await fetch_keyword(session, "rust")
            second = await fetch_keyword(session, "zig")
            return first, second

        first, second = asyncio.run(go())

        assert first.as_pairs() == [(date(2023, 1, 1), 45)]
        assert second.keyword == "zig"
        assert second.as_pairs() == [(date(2023, 1, 1), 7), (date(2023, 2, 1), 8)]

    def test_missing_button_raises(self, tmp_path, no_delays):
        page = FakePage(button_visible=False)
        session = make_session(tmp_path, page)

        with pytest.raises(UiElementUnavailable) as exc_info:
            asyncio.run(fetch_keyword(session, "rust"))

        assert exc_info.value.keyword == "rust"
        assert page.clicks == 0
        assert no_delays == ["export_button_missing"]

    def test_download_never_arrives(self, tmp_path):
        page = FakePage(exports=[])
        session = make_session(tmp_path, page)

        with pytest.raises(DownloadTimeout) as exc_info:
            asyncio.run(fetch_keyword(session, "rust"))

        assert exc_info.value.keyword == "rust"
        assert session.watcher._clock() >= 1.0

    def test_failed_save_is_named_in_timeout(self, tmp_path):
        page = FakePage(exports=[])
        session = make_session(tmp_path, page)
        page.on_click = lambda: session._save_download(BrokenDownload())

        with pytest.raises(DownloadTimeout) as exc_info:
            asyncio.run(fetch_keyword(session, "rust"))

        assert "Download was canceled" in str(exc_info.value)
        assert not (tmp_path / EXPORT_FILENAME).exists()

    def test_earlier_save_failure_not_reported_again(self, tmp_path):
        page = FakePage(exports=[])
        session = make_session(tmp_path, page)
        session.last_download_error = "saving multiTimeline.csv failed: old"

        with pytest.raises(DownloadTimeout) as exc_info:
            asyncio.run(fetch_keyword(session, "rust"))

        assert "old" not in str(exc_info.value)

    def test_malformed_export_raises(self, tmp_path):
        page = FakePage(exports=[export_csv("rust", [("2023-01", "45"), ("2023-13", "60")])])
        session = make_session(tmp_path, page)

        with pytest.raises(ParseError) as exc_info:
            asyncio.run(fetch_keyword(session, "rust"))

        assert exc_info.value.keyword == "rust"
        assert exc_info.value.row == ["2023-13", "60"]

    def test_cancelled_before_start(self, tmp_path):
        page = FakePage(exports=[export_csv("rust", [("2023-01", "45")])])
        session = make_session(tmp_path, page)

        async def go():
            event = asyncio.Event()
            event.set()
            await fetch_keyword(session, "rust", cancel_event=event)

        with pytest.raises(QueryCancelled):
            asyncio.run(go())
        assert page.urls == []

    def test_requires_started_session(self, tmp_path):
        session = TrendsSession(FetchParams(download_dir=str(tmp_path)))

        with pytest.raises(RuntimeError):
            asyncio.run(fetch_keyword(session, "rust"))


# ---------------------------------------------------------------------------
# activate_export_control
# ---------------------------------------------------------------------------

class TestActivateExportControl:

    def test_clicks_visible_button(self):
        page = FakePage()

        asyncio.run(activate_export_control(page, 1234))

        assert page.waits == [("visible", 1234)]
        assert page.clicks == 1

    def test_invisible_button(self):
        page = FakePage(button_visible=False)

        with pytest.raises(UiElementUnavailable):
            asyncio.run(activate_export_control(page, 10))


# ---------------------------------------------------------------------------
# TrendsSession
# ---------------------------------------------------------------------------

class FakeDownload:

    def __init__(self, content, suggested_filename=EXPORT_FILENAME):
        self.content = content
        self.suggested_filename = suggested_filename

    async def save_as(self, path):
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.content)


class BrokenDownload:
    suggested_filename = EXPORT_FILENAME

    async def save_as(self, path):
        raise PlaywrightError("Download was canceled")


class FakeContext:

    def __init__(self, page, calls):
        self.page = page
        self.calls = calls

    async def set_extra_http_headers(self, headers):
        pass

    async def new_page(self):
        return self.page

    async def close(self):
        self.calls.append("context.close")


class FakeBrowser:

    def __init__(self, page, calls):
        self.page = page
        self.calls = calls

    async def new_context(self, **kwargs):
        self.calls.append("new_context")
        assert kwargs["accept_downloads"] is True
        return FakeContext(self.page, self.calls)

    async def close(self):
        self.calls.append("browser.close")


class FakeChromium:

    def __init__(self, page, calls):
        self.page = page
        self.calls = calls

    async def launch(self, **kwargs):
        self.calls.append("launch")
        return FakeBrowser(self.page, self.calls)


class FakePlaywright:

    def __init__(self, page, calls):
        self.chromium = FakeChromium(page, calls)
        self.calls = calls

    async def stop(self):
        self.calls.append("playwright.stop")


class FakePlaywrightStarter:
    """Stands in for ``async_playwright()``."""

    def __init__(self, page=None, calls=None, fail=False):
        self.page = page
        self.calls = calls if calls is not None else []
        self.fail = fail

    async def start(self):
        if self.fail:
            raise PlaywrightError("Executable doesn't exist")
        return FakePlaywright(self.page, self.calls)


class TestTrendsSession:

    def test_open_fails_when_browser_cannot_start(self, tmp_path, monkeypatch):
        monkeypatch.setattr(scraper, "async_playwright", lambda: FakePlaywrightStarter(fail=True))
        sessions = []
        original_init = TrendsSession.__init__

        def tracking_init(self, params=None):
            original_init(self, params)
            sessions.append(self)

        monkeypatch.setattr(TrendsSession, "__init__", tracking_init)

        with pytest.raises(SessionInitError) as exc_info:
            asyncio.run(TrendsSession.open(str(tmp_path / "downloads")))

        assert isinstance(exc_info.value.__cause__, PlaywrightError)
        session = sessions[0]
        assert session.playwright is None
        assert session.browser is None
        assert session.context is None
        assert session.page is None

    def test_open_fails_when_warm_up_rejected(self, tmp_path, monkeypatch):
        calls = []
        page = FakePage(status=429)
        monkeypatch.setattr(scraper, "async_playwright", lambda: FakePlaywrightStarter(page, calls))
        session = TrendsSession(FetchParams(download_dir=str(tmp_path)))

        with pytest.raises(SessionInitError):
            asyncio.run(session.start_browser())

        assert page.urls == ["https://trends.google.com"]
        assert calls == ["launch", "new_context", "context.close", "browser.close", "playwright.stop"]
        assert session.playwright is None
        assert session.browser is None
        assert session.page is None

    def test_open_through_factory(self, tmp_path, monkeypatch):
        page = FakePage()
        monkeypatch.setattr(scraper, "async_playwright", lambda: FakePlaywrightStarter(page))

        session = asyncio.run(TrendsSession.open(str(tmp_path / "dl")))

        assert session.page is page
        assert session.download_dir == (tmp_path / "dl").resolve()
        assert (tmp_path / "dl").is_dir()
        assert page.urls == ["https://trends.google.com"]
        assert page.navigation_timeout == 30000
        assert page.handlers["download"] == session._save_download

    def test_open_through_factory_rejected(self, tmp_path, monkeypatch):
        page = FakePage(status=429)
        monkeypatch.setattr(scraper, "async_playwright", lambda: FakePlaywrightStarter(page))

        with pytest.raises(SessionInitError):
            asyncio.run(TrendsSession.open(str(tmp_path)))

    def test_failed_save_is_remembered(self, tmp_path):
        session = TrendsSession(FetchParams(download_dir=str(tmp_path)))

        asyncio.run(session._save_download(BrokenDownload()))

        assert "Download was canceled" in session.last_download_error
        assert list(tmp_path.iterdir()) == []

    def test_download_dir_is_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        session = TrendsSession(FetchParams(download_dir="downloads"))

        assert session.download_dir == tmp_path.resolve() / "downloads"
        assert session.export_path == tmp_path.resolve() / "downloads" / EXPORT_FILENAME

    def test_watcher_uses_params(self, tmp_path):
        session = TrendsSession(FetchParams(
            download_dir=str(tmp_path),
            download_timeout_ms=2500,
            poll_interval_ms=50
        ))

        assert session.watcher.timeout_ms == 2500
        assert session.watcher.poll_interval_ms == 50

    def test_save_download_lands_in_download_dir(self, tmp_path):
        session = TrendsSession(FetchParams(download_dir=str(tmp_path)))

        asyncio.run(session._save_download(FakeDownload("hello")))

        assert (tmp_path / EXPORT_FILENAME).read_text(encoding="utf-8") == "hello"
        assert list(tmp_path.iterdir()) == [tmp_path / EXPORT_FILENAME]

    def test_warm_up_visits_home_page(self, tmp_path):
        session = TrendsSession(FetchParams(download_dir=str(tmp_path)))
        session.page = FakePage()

        asyncio.run(session._warm_up())

        assert session.page.urls == ["https://trends.google.com"]

    def test_warm_up_rejected(self, tmp_path):
        session = TrendsSession(FetchParams(download_dir=str(tmp_path)))
        session.page = FakePage(status=429)

        with pytest.raises(SessionInitError):
            asyncio.run(session._warm_up())

    def test_close_without_start(self, tmp_path):
        session = TrendsSession(FetchParams(download_dir=str(tmp_path)))

        asyncio.run(session.close())
        asyncio.run(session.close())

        assert session.page is None
