import asyncio
import os
from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from db.manager import DatabaseManager
from db.models import Screener
from stockscan.core.browser import BrowserSessionManager
from stockscan.sources.base import (
    CHARTINK,
    ChartDownloadResult,
    ScrapedStock,
    ScreenerConfig,
    SiteAdapter,
    StockDetails,
)


def make_stocks(prefix: str, count: int) -> List[ScrapedStock]:
    return [
        ScrapedStock(
            name=f"{prefix} Stock {i}",
            code=f"{prefix}{i}",
            url=f"https://chartink.com/stocks/{prefix}{i}.html",
        )
        for i in range(count)
    ]


def make_screener(scan_name: str, source_name: str = CHARTINK, id: Optional[int] = None) -> ScreenerConfig:
    return ScreenerConfig(
        id=id,
        scan_name=scan_name,
        source_name=source_name,
        source_url=f"https://example.com/screens/{scan_name}",
    )


class FakeScrapeAdapter(SiteAdapter):
    """Returns canned stocks per screener name; names in ``failing`` raise."""

    source_name = CHARTINK

    def __init__(self, results: Dict[str, List[ScrapedStock]], failing=(), on_scrape=None):
        self.results = results
        self.failing = set(failing)
        self.on_scrape = on_scrape
        self.calls: List[str] = []

    async def scrape(self, screener, should_cancel=None):
        self.calls.append(screener.scan_name)
        await asyncio.sleep(0)
        if self.on_scrape:
            self.on_scrape(screener)
        if screener.scan_name in self.failing:
            raise RuntimeError(f"{screener.scan_name} blew up")
        return list(self.results.get(screener.scan_name, []))


class FakeChartAdapter(SiteAdapter):
    """
    Writes a small PNG stand-in per timeframe. ``failures`` maps a code to the
    number of attempts that fail before one succeeds (-1 fails forever).
    """

    source_name = CHARTINK

    def __init__(self, failures: Optional[Dict[str, int]] = None):
        self.failures = dict(failures or {})
        self.attempts: Dict[str, int] = {}

    async def scrape(self, screener, should_cancel=None):
        return []

    async def capture_charts(self, page, stock: StockDetails, timeframes, output_dir, should_cancel=None):
        code = stock.chart_code
        self.attempts[code] = self.attempts.get(code, 0) + 1
        await asyncio.sleep(0)

        remaining = self.failures.get(code, 0)
        if remaining == -1 or self.attempts[code] <= remaining:
            raise RuntimeError(f"chart for {code} did not render")

        paths = []
        for timeframe in timeframes:
            path = os.path.join(output_dir, f"{code}_{timeframe.name}_{timeframe.range}.png")
            with open(path, "wb") as fh:
                fh.write(b"\x89PNG" + code.encode())
            paths.append(path)
        return ChartDownloadResult(stock=stock, downloaded_paths=paths)


class FakeBrowserManager:
    """Hands out stub sessions and counts how many are open at once."""

    def __init__(self, fail_launch: bool = False):
        self.fail_launch = fail_launch
        self.sessions_opened = 0
        self.open_sessions = 0
        self.max_open = 0

    @asynccontextmanager
    async def session(self, for_scraping: bool = False):
        if self.fail_launch:
            raise RuntimeError("browser failed to launch")
        self.sessions_opened += 1
        self.open_sessions += 1
        self.max_open = max(self.max_open, self.open_sessions)
        try:
            yield SimpleNamespace(page=object())
        finally:
            self.open_sessions -= 1

    @staticmethod
    async def retry(fn, max_attempts=3, base_delay=1.0):
        return await BrowserSessionManager.retry(fn, max_attempts=max_attempts, base_delay=0)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'stockscan_test.db'}"


@pytest.fixture
def run_with_db(db_url):
    """
    Run ``scenario(db)`` on a fresh event loop against a fresh schema.
    The engine is created and disposed inside that loop.
    """

    def run(scenario):
        async def wrapped():
            db = DatabaseManager(db_url)
            await db.create_all()
            try:
                return await scenario(db)
            finally:
                await db.close()

        return asyncio.run(wrapped())

    return run


async def seed_screeners(db: DatabaseManager, *names: str, source_name: str = CHARTINK) -> None:
    async with db.session_factory() as session:
        for name in names:
            session.add(Screener(
                scan_name=name,
                source_name=source_name,
                source_url=f"https://example.com/screens/{name}",
                is_active=True,
            ))
        await session.commit()
