"""
Utility functions for the Google Trends interest-over-time fetcher.
"""

import asyncio
import logging
import os
import random
import time
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from errors import QueryCancelled


logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """
    Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers = [logging.StreamHandler()]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=log_format,
        handlers=handlers
    )


async def random_delay(min_ms: int = 200, max_ms: int = 600):
    """
    Add random delay between actions.

    Args:
        min_ms: Minimum delay in milliseconds
        max_ms: Maximum delay in milliseconds
    """
    delay = random.randint(min_ms, max_ms) / 1000
    await asyncio.sleep(delay)


async def take_screenshot(
    page: Page,
    name: str = "error",
    directory: str = "./logs"
) -> str:
    """
    Take a screenshot of the current page.

    Args:
        page: Playwright page object
        name: Screenshot name prefix
        directory: Directory to save screenshots

    Returns:
        Path to saved screenshot, or empty string if it could not be taken
    """
    try:
        os.makedirs(directory, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"{name}_{timestamp}.png"
        filepath = os.path.join(directory, filename)

        await page.screenshot(path=filepath, full_page=True)
        logger.info(f"Screenshot saved: {filepath}")
        return filepath

    except (PlaywrightError, OSError) as e:
        logger.error(f"Failed to take screenshot: {e}")
        return ""


async def handle_consent_dialog(page: Page):
    """
    Dismiss the Google consent/privacy dialog if one is showing.

    Args:
        page: Playwright page object
    """
    consent_texts = ["I agree", "Accept all", "Agree", "Accept", "Got it"]

    for text in consent_texts:
        try:
            consent_button = page.get_by_role("button", name=text)
            if await consent_button.is_visible():
                logger.info(f"Found consent button: {text}")
                await consent_button.click()
                await random_delay()
                return
        except PlaywrightError as e:
            logger.debug(f"Consent button '{text}' not usable: {e}")


def ensure_directories(*extra: str):
    """Ensure required directories exist."""
    directories = ["./out", "./logs", *extra]
    for directory in directories:
        os.makedirs(directory, exist_ok=True)


def remove_stale_file(path: Union[str, Path]) -> bool:
    """
    Delete a leftover export so it cannot be mistaken for a fresh one.

    Returns:
        True if a file was removed
    """
    path = Path(path)
    if path.exists():
        path.unlink()
        logger.info(f"Removed stale export: {path}")
        return True
    return False


class DownloadWatcher:
    """
    Poll the filesystem until an expected file shows up.

    The browser writes exports asynchronously, so this is a bounded
    existence poll rather than a filesystem event subscription. Clock and
    sleep are injectable so tests can run without real waiting.
    """

    def __init__(
        self,
        timeout_ms: int = 10000,
        poll_interval_ms: int = 100,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self._clock = clock
        self._sleep = sleep

    async def wait_for_file(
        self,
        path: Union[str, Path],
        cancel_event: Optional[asyncio.Event] = None
    ) -> bool:
        """
        Wait for ``path`` to exist.

        Args:
            path: File to wait for
            cancel_event: Optional event; when set, waiting stops with QueryCancelled

        Returns:
            True if the file appeared, False if the timeout elapsed first
        """
        path = Path(path)
        started = self._clock()

        while True:
            if path.exists():
                elapsed_ms = (self._clock() - started) * 1000
                logger.debug(f"Found {path} after {elapsed_ms:.0f}ms")
                return True

            if cancel_event is not None and cancel_event.is_set():
                raise QueryCancelled(f"Cancelled while waiting for {path.name}")

            if (self._clock() - started) * 1000 >= self.timeout_ms:
                logger.warning(f"Gave up waiting for {path} after {self.timeout_ms}ms")
                return False

            await self._sleep(self.poll_interval_ms / 1000)
