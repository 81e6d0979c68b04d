"""
Chartink Adapter - Paginated Table Scraper and Chart Capture
============================================================

Drives a headless browser through chartink.com to:
- Collect every stock of a screener by walking the DataTables pagination
- Screenshot technical charts (EMA 10/20/50/200) per timeframe
"""

import asyncio
import os
from typing import List, Optional, Sequence

from stockscan.core.browser import BrowserSessionManager
from stockscan.core.config import Config
from stockscan.core.errors import ChartCaptureError, ScrapeError
from stockscan.sources.base import (
    CHARTINK,
    CancelCheck,
    ChartDownloadResult,
    ScrapedStock,
    ScreenerConfig,
    SiteAdapter,
    StockDetails,
    Timeframe,
)
from stockscan.sources.chartink_parser import CHARTINK_BASE_URL, ChartinkParser
from stockscan.utils.logger import get_logger

log = get_logger(__name__)

TABLE_BODY = "#DataTables_Table_0 > tbody"
SHOW_ALL_TOGGLE = "p.cursor-pointer.bg-yellow-300 > label > input[type=checkbox]"
PAGINATION = "#DataTables_Table_0_paginate"
NEXT_ENABLED = "#DataTables_Table_0_paginate ul li:last-child:not(.disabled)"
NEXT_BUTTON = "#DataTables_Table_0_next > a:not(.disabled)"

MOVING_AVERAGE_ROWS = "#moving_avgs tr:not(.limg)"
EMA_PERIODS = (10, 20, 50, 200)


class ChartinkAdapter(SiteAdapter):
    """
    Scraper for chartink screeners and stock charts
    """

    source_name = CHARTINK

    def __init__(
        self,
        browser: BrowserSessionManager,
        *,
        table_wait: Optional[float] = None,
        toggle_wait: Optional[float] = None,
        page_settle: Optional[float] = None,
        max_pages: Optional[int] = None,
        chart_settle: float = 0.1,
    ):
        self.browser = browser
        cfg = Config.get("scraping", "chartink", default={}) or {}
        self.table_wait = table_wait if table_wait is not None else cfg.get("table_wait_seconds", 2.0)
        self.toggle_wait = toggle_wait if toggle_wait is not None else cfg.get("toggle_wait_seconds", 1.0)
        self.page_settle = page_settle if page_settle is not None else cfg.get("page_settle_seconds", 0.5)
        self.max_pages = max_pages or cfg.get("max_pages", 100)
        self.chart_settle = chart_settle

    async def scrape(
        self,
        screener: ScreenerConfig,
        should_cancel: Optional[CancelCheck] = None,
    ) -> List[ScrapedStock]:
        log.info(f"Started scraping for {screener.scan_name}")
        async with self.browser.session(for_scraping=True) as session:
            stocks = await self.scrape_page(session.page, screener.source_url, should_cancel)
        log.info(f"Found {len(stocks)} stocks in {screener.scan_name}")
        return stocks

    async def scrape_page(self, page, url: str, should_cancel: Optional[CancelCheck] = None) -> List[ScrapedStock]:
        try:
            await page.goto(url, wait_until="domcontentloaded")
            await page.wait_for_selector(TABLE_BODY)
        except Exception as e:
            raise ScrapeError(f"Results table did not load: {e}", url=url, source=CHARTINK) from e
        await asyncio.sleep(self.table_wait)

        # Reveals the full result set; older layouts have no toggle
        try:
            await page.click(SHOW_ALL_TOGGLE, timeout=5000)
            await asyncio.sleep(self.toggle_wait)
        except Exception as e:
            log.warning(f"Show-all toggle click failed, continuing anyway: {e}")

        stocks: List[ScrapedStock] = []
        for loop_count in range(self.max_pages):
            if should_cancel and should_cancel():
                log.info(f"Cancellation requested, stopping after {loop_count} pages")
                break

            stocks.extend(ChartinkParser(await page.content()).parse_stocks())

            if not await self._has_next_page(page):
                break
            await page.click(NEXT_BUTTON)
            await asyncio.sleep(self.page_settle)
        else:
            log.warning(f"Reached pagination limit of {self.max_pages} pages, stopping")

        return stocks

    async def _has_next_page(self, page) -> bool:
        await page.wait_for_selector(PAGINATION)
        return await page.locator(NEXT_ENABLED).count() > 0

    async def capture_charts(
        self,
        page,
        stock: StockDetails,
        timeframes: Sequence[Timeframe],
        output_dir: str,
        should_cancel: Optional[CancelCheck] = None,
    ) -> ChartDownloadResult:
        code = stock.chart_code
        if not code:
            raise ChartCaptureError(f"No exchange code for {stock.stock_name}", source=CHARTINK)

        await page.goto(f"{CHARTINK_BASE_URL}/stocks/{code}.html")
        await self._set_moving_averages(page, code)

        downloaded: List[str] = []
        for timeframe in timeframes:
            if should_cancel and should_cancel():
                break
            file_path = os.path.join(output_dir, f"{code}_{timeframe.name}_{timeframe.range}.png")

            await page.eval_on_selector("#d", "(el, value) => { el.value = value; }", timeframe.time_frame)
            await page.eval_on_selector("#ti", "(el, value) => { el.value = value; }", timeframe.range)
            await asyncio.sleep(self.chart_settle)
            await page.click("#innerb")

            chart = await page.wait_for_selector("#ChartImage")
            if chart is None:
                raise ChartCaptureError("Chart image did not render", code=code, timeframe=timeframe.name)
            await asyncio.sleep(self.chart_settle * 3)
            await chart.scroll_into_view_if_needed()
            await asyncio.sleep(self.chart_settle * 2)
            await chart.screenshot(path=file_path)

            downloaded.append(file_path)
            log.debug(f"Downloaded {code}_{timeframe.name}_{timeframe.range}.png")

        return ChartDownloadResult(stock=stock, downloaded_paths=downloaded)

    async def _set_moving_averages(self, page, code: str) -> None:
        rows = await page.query_selector_all(MOVING_AVERAGE_ROWS)
        if len(rows) < len(EMA_PERIODS):
            raise ChartCaptureError(f"Moving average form not found ({len(rows)} rows)", code=code)

        for row, period in zip(rows, EMA_PERIODS):
            await row.eval_on_selector("td:first-child input", "el => { el.checked = true; }")
            await row.eval_on_selector("td:nth-child(4) select", "el => { el.value = 'EMA'; }")
            await row.eval_on_selector("td:nth-child(5) input", "(el, value) => { el.value = value; }", str(period))
