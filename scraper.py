"""
Google Trends interest-over-time fetcher using Playwright.

A ``TrendsSession`` owns one browser bound to one download directory.
``fetch_keyword`` drives the explore page for a keyword, clicks the CSV
export of the interest-over-time widget, waits for the file and parses it.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional, Tuple

from playwright.async_api import async_playwright, Browser, BrowserContext, Download, Page, Playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from errors import (
    DownloadTimeout, QueryCancelled, QueryError, SessionInitError,
    TrendsError, UiElementUnavailable
)
from exporter import parse_timeline_csv
from models import ErrorReport, ExploreQuery, FetchParams, Report, TRENDS_HOME_URL
from utils import (
    DownloadWatcher, handle_consent_dialog, random_delay,
    remove_stale_file, take_screenshot
)


logger = logging.getLogger(__name__)

# Default name the site gives the interest-over-time export
EXPORT_FILENAME = "multiTimeline.csv"

# First widget-action button (CSV download) on the interest-over-time widget
EXPORT_BUTTON_XPATH = (
    "/html/body/div[3]/div[2]/div/md-content/div/div/div[1]/trends-widget/"
    "ng-include/widget/div/div/div/widget-actions/div/button[1]"
)


class TrendsSession:
    """
    One live browser session with a fixed download directory.

    Not safe for concurrent queries: the export filename is fixed, so only
    one query may be in flight per session (and per download directory).
    """

    def __init__(self, params: Optional[FetchParams] = None):
        self.params = params or FetchParams()
        self.download_dir = Path(self.params.download_dir).resolve()
        self.watcher = DownloadWatcher(
            timeout_ms=self.params.download_timeout_ms,
            poll_interval_ms=self.params.poll_interval_ms
        )
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.last_download_error: Optional[str] = None

    @classmethod
    async def open(cls, download_dir: str, params: Optional[FetchParams] = None) -> "TrendsSession":
        """
        Start a browser saving downloads into ``download_dir`` and warm it up.

        Raises:
            SessionInitError: Browser could not start or warm-up failed
        """
        params = (params or FetchParams()).model_copy(update={"download_dir": download_dir})
        session = cls(params)
        await session.start_browser()
        return session

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start_browser()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    @property
    def export_path(self) -> Path:
        return self.download_dir / EXPORT_FILENAME

    async def start_browser(self):
        """Start browser, hook downloads and run the warm-up navigation."""
        try:
            os.makedirs(self.download_dir, exist_ok=True)
            self.playwright = await async_playwright().start()

            launch_args = ['--disable-blink-features=AutomationControlled']
            proxy = {"server": self.params.proxy} if self.params.proxy else None

            self.browser = await self.playwright.chromium.launch(
                headless=self.params.headless,
                args=launch_args,
                proxy=proxy
            )

            user_agent = ("Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
                          "AppleWebKit/537.36 (KHTML, like Gecko) "
                          "Chrome/120.0.0.0 Safari/537.36")

            self.context = await self.browser.new_context(
                viewport={'width': 1920, 'height': 1080},
                user_agent=user_agent,
                locale='en-US',
                timezone_id='America/New_York',
                accept_downloads=True
            )
            await self.context.set_extra_http_headers({
                'Accept-Language': 'en-US,en;q=0.9'
            })

            self.page = await self.context.new_page()
            self.page.set_default_navigation_timeout(self.params.timeout * 1000)
            self.page.on("download", self._save_download)

            logger.info(f"Browser started, downloads go to {self.download_dir}")

            await self._warm_up()

        except SessionInitError:
            await self.close()
            raise
        except (PlaywrightError, OSError) as e:
            logger.error(f"Failed to start browser: {e}")
            await self.close()
            raise SessionInitError(f"Failed to start browser: {e}") from e

    async def _warm_up(self):
        # Without the cookies from the home page the explore page answers 429
        response = await self.page.goto(TRENDS_HOME_URL)
        if response is None or not response.ok:
            status = response.status if response is not None else "no response"
            raise SessionInitError(f"Warm-up navigation to {TRENDS_HOME_URL} failed: {status}")

        logger.info(f"Warm-up navigation done: {TRENDS_HOME_URL}")
        await handle_consent_dialog(self.page)

    async def _save_download(self, download: Download):
        """Move a finished download into the download directory."""
        target = self.download_dir / download.suggested_filename
        partial = target.with_name(target.name + ".part")
        try:
            await download.save_as(partial)
            os.replace(partial, target)
            logger.info(f"Downloaded file: {target}")
        except (PlaywrightError, OSError) as e:
            # Nothing lands at the target, so the watcher reports DownloadTimeout
            self.last_download_error = f"saving {download.suggested_filename} failed: {e}"
            logger.error(f"Download of {download.suggested_filename} failed: {e}")

    async def close(self):
        """Close browser and cleanup. Safe to call more than once."""
        try:
            if self.context:
                await self.context.close()
            if self.browser:
                await self.browser.close()
            if self.playwright:
                await self.playwright.stop()
            logger.info("Browser closed")
        except PlaywrightError as e:
            logger.error(f"Error closing browser: {e}")
        finally:
            self.page = None
            self.context = None
            self.browser = None
            self.playwright = None


async def activate_export_control(page: Page, timeout_ms: int):
    """
    Find the CSV export button on the explore page and click it.

    The button can be in the DOM before it is interactable, so it must
    first become visible, then it is clicked.

    Raises:
        UiElementUnavailable: Button did not become visible in time
    """
    button = page.locator(f"xpath={EXPORT_BUTTON_XPATH}").first
    try:
        await button.wait_for(state="visible", timeout=timeout_ms)
        await button.click(timeout=timeout_ms)
    except PlaywrightTimeoutError as e:
        raise UiElementUnavailable(
            f"Export button not visible after {timeout_ms}ms"
        ) from e


def _check_cancelled(cancel_event: Optional[asyncio.Event], keyword: str, stage: str):
    if cancel_event is not None and cancel_event.is_set():
        raise QueryCancelled(f"Query cancelled before {stage}", keyword=keyword)


async def fetch_keyword(
    session: TrendsSession,
    keyword: str,
    cancel_event: Optional[asyncio.Event] = None
) -> Report:
    """
    Fetch monthly interest over time for one keyword.

    Args:
        session: Started session
        keyword: Search keyword
        cancel_event: Optional event the caller sets to abort the query

    Returns:
        Report with the parsed timeline

    Raises:
        QueryError: Any stage failed (see subclasses)
    """
    if session.page is None:
        raise RuntimeError("Browser not started")

    query = ExploreQuery(keyword=keyword)
    export_path = session.export_path

    try:
        remove_stale_file(export_path)
    except OSError as e:
        raise QueryError(f"Could not remove stale export {export_path}: {e}", keyword=keyword) from e
    session.last_download_error = None

    _check_cancelled(cancel_event, keyword, "navigation")
    url = query.to_url()
    try:
        await session.page.goto(url)
    except PlaywrightError as e:
        raise QueryError(f"Navigation to {url} failed: {e}", keyword=keyword) from e
    logger.info(f"Navigated to: {url}")
    await random_delay()

    _check_cancelled(cancel_event, keyword, "export")
    try:
        await activate_export_control(session.page, session.params.ui_timeout_ms)
    except UiElementUnavailable as e:
        e.keyword = keyword
        await take_screenshot(session.page, "export_button_missing")
        logger.error(f"Export button unavailable for '{keyword}': {e}")
        raise
    except PlaywrightError as e:
        raise QueryError(f"Clicking export button failed: {e}", keyword=keyword) from e
    logger.info(f"Clicked export for '{keyword}'")

    try:
        arrived = await session.watcher.wait_for_file(export_path, cancel_event)
    except QueryCancelled as e:
        e.keyword = keyword
        raise
    if not arrived:
        message = f"{EXPORT_FILENAME} did not appear within {session.watcher.timeout_ms}ms"
        if session.last_download_error:
            message = f"{message} ({session.last_download_error})"
        raise DownloadTimeout(message, keyword=keyword)

    try:
        timeline = parse_timeline_csv(export_path)
    except QueryError as e:
        e.keyword = keyword
        raise

    logger.info(f"Fetched {len(timeline)} points for '{keyword}'")
    return Report(keyword=keyword, timeline=timeline)


async def fetch_keywords(
    keywords: List[str],
    params: FetchParams
) -> Tuple[List[Report], List[ErrorReport]]:
    """
    Fetch several keywords one after another with a single session.

    A failed keyword is recorded and the rest continue; nothing is retried.

    Returns:
        Successful reports and error reports for failed keywords
    """
    reports = []
    errors = []

    async with TrendsSession(params) as session:
        for keyword in keywords:
            try:
                reports.append(await fetch_keyword(session, keyword))
            except TrendsError as e:
                logger.error(f"Failed to fetch '{keyword}': {e}")
                errors.append(ErrorReport(
                    stage=type(e).__name__,
                    message=str(e),
                    keyword=keyword
                ))
            await random_delay(1000, 2000)

    return reports, errors


def run(keywords: List[str], params: FetchParams) -> Tuple[List[Report], List[ErrorReport]]:
    """
    Synchronous wrapper for programmatic usage.

    Args:
        keywords: Keywords to fetch
        params: Fetch parameters

    Returns:
        Successful reports and error reports for failed keywords
    """
    return asyncio.run(fetch_keywords(keywords, params))
