"""
Screener.in Adapter - Authenticated Multi-page Table Scraper
============================================================

Logs into screener.in once per browser session and walks every page
of a saved screen with a fixed inter-page delay.
"""

import asyncio
import os
from typing import List, Optional

from stockscan.core.browser import BrowserSessionManager
from stockscan.core.config import Config
from stockscan.core.errors import ConfigError
from stockscan.sources.base import CancelCheck, SCREENERIN, ScrapedStock, ScreenerConfig, SiteAdapter
from stockscan.sources.screener_parser import ScreenerParser
from stockscan.utils.logger import get_logger

log = get_logger(__name__)

DEFAULT_LOGIN_URL = "https://www.screener.in/login/?/"


def page_url(base_url: str, page_number: int) -> str:
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}page={page_number}"


class ScreenerAdapter(SiteAdapter):
    """
    Scraper for screener.in saved screens
    """

    source_name = SCREENERIN

    def __init__(
        self,
        browser: BrowserSessionManager,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        login_url: Optional[str] = None,
        login_wait: Optional[float] = None,
        page_delay: Optional[float] = None,
    ):
        self.browser = browser
        cfg = Config.get("scraping", "screenerin", default={}) or {}
        self.username = username or os.getenv("SCREENER_USERNAME")
        self.password = password or os.getenv("SCREENER_PASSWORD")
        self.login_url = login_url or cfg.get("login_url", DEFAULT_LOGIN_URL)
        self.login_wait = login_wait if login_wait is not None else cfg.get("login_wait_seconds", 3.0)
        self.page_delay = page_delay if page_delay is not None else cfg.get("page_delay_seconds", 2.0)

    async def scrape(
        self,
        screener: ScreenerConfig,
        should_cancel: Optional[CancelCheck] = None,
    ) -> List[ScrapedStock]:
        if not self.username or not self.password:
            raise ConfigError(
                "screener.in credentials are not configured",
                key="SCREENER_USERNAME/SCREENER_PASSWORD",
                source=SCREENERIN,
            )

        log.info(f"Started scraping process for {screener.scan_name}")
        async with self.browser.session(for_scraping=True) as session:
            await self.login(session.page)
            stocks = await self.scrape_pages(session.page, screener.source_url, should_cancel)
        log.info(f"Found {len(stocks)} stocks in {screener.scan_name}")
        return stocks

    async def login(self, page) -> None:
        await page.goto(self.login_url, wait_until="domcontentloaded")
        await page.fill("#id_username", self.username)
        await page.fill("#id_password", self.password)
        await page.click('button[type="submit"]')
        await asyncio.sleep(self.login_wait)

    async def scrape_pages(self, page, url: str, should_cancel: Optional[CancelCheck] = None) -> List[ScrapedStock]:
        await page.goto(url, wait_until="domcontentloaded")
        total_pages = ScreenerParser(await page.content()).total_pages()
        log.info(f"Total pages for {url} is {total_pages}")

        stocks: List[ScrapedStock] = []
        for page_number in range(1, total_pages + 1):
            if should_cancel and should_cancel():
                log.info(f"Cancellation requested, stopping before page {page_number}")
                break
            await asyncio.sleep(self.page_delay)
            await page.goto(page_url(url, page_number), wait_until="domcontentloaded")
            page_stocks = ScreenerParser(await page.content()).parse_stocks()
            log.debug(f"Page {page_number}/{total_pages}: {len(page_stocks)} stocks")
            stocks.extend(page_stocks)
        return stocks
