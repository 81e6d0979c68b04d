"""
Browser Session Manager - Headless Chromium Lifecycle
=====================================================

Launches and tears down Playwright browser sessions for scraping and
chart capture, with:
- Fixed viewport and user agent
- Optional blocking of stylesheet/font/image requests
- Bounded per-call timeout so a hung page fails instead of wedging a job
- Scoped sessions that are closed on every exit path
- Generic retry helper with linear backoff
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from playwright.async_api import async_playwright
from tenacity import AsyncRetrying, stop_after_attempt, wait_incrementing

from stockscan.core.config import Config
from stockscan.utils.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

MINIMAL_ARGS = [
    "--autoplay-policy=user-gesture-required",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-breakpad",
    "--disable-client-side-phishing-detection",
    "--disable-component-update",
    "--disable-default-apps",
    "--disable-dev-shm-usage",
    "--disable-domain-reliability",
    "--disable-extensions",
    "--disable-features=AudioServiceOutOfProcess,TranslateUI",
    "--disable-hang-monitor",
    "--disable-ipc-flooding-protection",
    "--disable-notifications",
    "--disable-popup-blocking",
    "--disable-print-preview",
    "--disable-prompt-on-repost",
    "--disable-renderer-backgrounding",
    "--disable-setuid-sandbox",
    "--disable-speech-api",
    "--disable-sync",
    "--disable-blink-features=AutomationControlled",
    "--hide-scrollbars",
    "--metrics-recording-only",
    "--mute-audio",
    "--no-default-browser-check",
    "--no-first-run",
    "--no-pings",
    "--no-sandbox",
    "--password-store=basic",
    "--use-mock-keychain",
]

BLOCKED_RESOURCE_TYPES = frozenset({"stylesheet", "font", "image"})

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/75.0.3738.0 Safari/537.36"
)


@dataclass
class BrowserSession:
    """A running browser with one context and one page."""

    playwright: Any
    browser: Any
    context: Any
    page: Any
    closed: bool = False


async def block_heavy_resources(route, request) -> None:
    """Abort stylesheet, font and image requests; let everything else through."""
    if request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    sleep = retry_state.next_action.sleep if retry_state.next_action else 0
    log.warning(
        f"Attempt {retry_state.attempt_number} failed: {exc}. Retrying in {sleep:.1f}s..."
    )


class BrowserSessionManager:
    """
    Creates and destroys headless browser sessions.
    """

    def __init__(
        self,
        *,
        headless: Optional[bool] = None,
        timeout_ms: Optional[int] = None,
        launch_attempts: Optional[int] = None,
        user_agent: Optional[str] = None,
        viewport: Optional[dict] = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ):
        self.headless = headless if headless is not None else Config.get("browser", "headless", default=True)
        self.timeout_ms = timeout_ms or Config.get("browser", "timeout_ms", default=60000)
        self.launch_attempts = launch_attempts or Config.get("browser", "launch_attempts", default=3)
        self.user_agent = user_agent or Config.get("browser", "user_agent", default=DEFAULT_USER_AGENT)
        self.viewport = viewport or Config.get("browser", "viewport", default={"width": 1280, "height": 720})
        self._playwright_factory = playwright_factory

    async def launch(self) -> BrowserSession:
        """Launch a full-rendering browser session (used for chart capture)."""
        pw = await self._playwright_factory().start()
        try:
            browser = await pw.chromium.launch(headless=self.headless, args=MINIMAL_ARGS)
            context = await browser.new_context(
                user_agent=self.user_agent,
                viewport=self.viewport,
                java_script_enabled=True,
            )
            context.set_default_timeout(self.timeout_ms)
            context.set_default_navigation_timeout(self.timeout_ms)
            page = await context.new_page()
        except Exception:
            await pw.stop()
            raise

        log.debug("Browser session launched")
        return BrowserSession(playwright=pw, browser=browser, context=context, page=page)

    async def launch_for_scraping(self) -> BrowserSession:
        """Launch a session that skips stylesheets, fonts and images."""
        session = await self.launch()
        try:
            await session.page.route("**/*", block_heavy_resources)
        except Exception:
            await self.close(session)
            raise
        return session

    async def close(self, session: Optional[BrowserSession]) -> None:
        """Close a session. Closing ``None`` or an already closed session is a no-op."""
        if session is None or session.closed:
            return
        session.closed = True
        try:
            if session.browser is not None:
                await session.browser.close()
        except Exception as e:
            log.warning(f"Error while closing browser: {e}")
        finally:
            if session.playwright is not None:
                try:
                    await session.playwright.stop()
                except Exception as e:
                    log.warning(f"Error while stopping playwright: {e}")
        log.debug("Browser session closed")

    @asynccontextmanager
    async def session(self, for_scraping: bool = False) -> AsyncIterator[BrowserSession]:
        """
        Launch a session with retry and guarantee it is closed on exit,
        including errors and task cancellation.
        """
        launcher = self.launch_for_scraping if for_scraping else self.launch
        session = await self.retry(launcher, max_attempts=self.launch_attempts)
        try:
            yield session
        finally:
            await self.close(session)

    @staticmethod
    async def retry(
        fn: Callable[[], Awaitable[T]],
        max_attempts: int = 3,
        base_delay: float = 1.0,
    ) -> T:
        """
        Call ``fn`` up to ``max_attempts`` times, sleeping ``base_delay * attempt``
        between attempts, and re-raise the last error once attempts are exhausted.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_incrementing(start=base_delay, increment=base_delay),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                result = await fn()
        return result
