"""
Chart Download Coordinator - Bounded Browser Pool
=================================================

Splits a stock list into contiguous chunks, one browser session per chunk.
Chunks run in parallel, stocks within a chunk run one after another, and
every stock is retried on its own so a single bad symbol never sinks the batch.
"""

import asyncio
import math
import os
from pathlib import Path
from typing import Callable, List, Optional, Sequence, TypeVar

from stockscan.core.browser import BrowserSessionManager
from stockscan.core.config import Config
from stockscan.sources.base import (
    DEFAULT_TIMEFRAMES,
    CancelCheck,
    ChartDownloadResult,
    SiteAdapter,
    StockDetails,
    resolve_timeframes,
)
from stockscan.utils.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[str], None]


def chunk_list(items: Sequence[T], max_chunks: int) -> List[List[T]]:
    """
    Contiguous chunks of size ``ceil(len / max_chunks)``, so never more than
    ``max_chunks`` chunks. ``chunk_list(range(10), 4)`` -> sizes 3, 3, 3, 1.
    """
    if max_chunks < 1:
        raise ValueError("max_chunks must be at least 1")
    size = max(1, math.ceil(len(items) / max_chunks))
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class ChartDownloadCoordinator:
    """
    Drives chart capture for many stocks through a bounded set of browser sessions.
    """

    def __init__(
        self,
        adapter: SiteAdapter,
        browser: BrowserSessionManager,
        *,
        output_dir: Optional[str] = None,
        stock_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.adapter = adapter
        self.browser = browser
        self.output_dir = output_dir or os.getenv("CHART_DIR") or Config.get("charts", "directory", default="./public/charts")
        self.stock_attempts = stock_attempts or Config.get("charts", "stock_attempts", default=5)
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None
            else Config.get("charts", "retry_base_delay", default=1.0)
        )

    async def download_charts_for_multiple_stocks(
        self,
        stocks: Sequence[StockDetails],
        max_concurrent: int = 4,
        on_progress: Optional[ProgressCallback] = None,
        should_cancel: Optional[CancelCheck] = None,
        timeframes: Sequence[str] = DEFAULT_TIMEFRAMES,
    ) -> List[ChartDownloadResult]:
        """
        Returns exactly one result per input stock, in input order. A stock whose
        capture failed (or never started because the job was cancelled) has an
        empty ``downloaded_paths``.
        """

        def report(message: str):
            log.info(message)
            if on_progress:
                on_progress(message)

        if not stocks:
            return []

        Path(self.output_dir).mkdir(parents=True, exist_ok=True)
        chunks = chunk_list(stocks, max_concurrent)
        report(f"📊 Processing {len(stocks)} stocks in {len(chunks)} chunks")

        chunk_results = await asyncio.gather(*(
            self.chart_download_process(chunk, index + 1, len(chunks), report, should_cancel, timeframes)
            for index, chunk in enumerate(chunks)
        ))
        return [result for chunk in chunk_results for result in chunk]

    async def chart_download_process(
        self,
        chunk: Sequence[StockDetails],
        chunk_index: int,
        total_chunks: int,
        report: ProgressCallback,
        should_cancel: Optional[CancelCheck] = None,
        timeframes: Sequence[str] = DEFAULT_TIMEFRAMES,
    ) -> List[ChartDownloadResult]:
        report(f"Processing chunk {chunk_index}/{total_chunks} ({len(chunk)} stocks)...")
        selected = resolve_timeframes(timeframes)
        results: List[ChartDownloadResult] = []

        try:
            await self._process_chunk(chunk, chunk_index, results, report, should_cancel, selected)
        except Exception as e:
            log.error(f"Chunk {chunk_index}/{total_chunks} aborted: {e}")
            report(f"Chunk {chunk_index}/{total_chunks} aborted: {e}")
            # Keep one result per stock even when the browser never came up
            results.extend(ChartDownloadResult(stock=stock) for stock in chunk[len(results):])

        report(f"Chunk {chunk_index}/{total_chunks} completed!")
        return results

    async def _process_chunk(self, chunk, chunk_index, results, report, should_cancel, selected):
        async with self.browser.session() as session:
            for position, stock in enumerate(chunk, start=1):
                if should_cancel and should_cancel():
                    results.append(ChartDownloadResult(stock=stock))
                    continue

                report(
                    f"Downloading charts for {stock.stock_name} "
                    f"({position}/{len(chunk)} in chunk {chunk_index})..."
                )
                try:
                    result = await self.browser.retry(
                        lambda: self.adapter.capture_charts(
                            session.page, stock, selected, self.output_dir, should_cancel
                        ),
                        max_attempts=self.stock_attempts,
                        base_delay=self.retry_base_delay,
                    )
                except Exception as e:
                    log.warning(f"Chart capture for {stock.stock_name} exhausted retries: {e}")
                    report(f"Failed to download chart for {stock.stock_name}: {e}")
                    result = ChartDownloadResult(stock=stock)
                results.append(result)
