"""
Scrape Coordinator - Multi-screener Fan-out
===========================================

Runs every configured screener through its site adapter concurrently,
staggering start times per source so no single host sees a burst.
A failing screener is logged and dropped; the rest of the batch continues.
"""

import asyncio
from typing import Callable, Dict, List, Optional, Sequence

from stockscan.core.config import Config
from stockscan.core.errors import UnsupportedSourceError
from stockscan.sources.base import SCREENERIN, CancelCheck, ScreenerBatch, ScreenerConfig, SiteAdapter
from stockscan.utils.logger import get_logger

log = get_logger(__name__)

ProgressCallback = Callable[[str], None]


class ScrapeCoordinator:
    """
    Coordinates screener scraping across site adapters.
    """

    def __init__(
        self,
        adapters: Dict[str, SiteAdapter],
        *,
        stagger_seconds: Optional[Dict[str, float]] = None,
        sleep=asyncio.sleep,
    ):
        self.adapters = adapters
        self.stagger_seconds = stagger_seconds or Config.get(
            "scraping", "stagger_seconds", default={SCREENERIN: 5.0, "default": 1.5}
        )
        self._sleep = sleep

    def stagger_delay(self, screener: ScreenerConfig, index: int) -> float:
        """Start delay for the screener at ``index``: ``index x per-source step``."""
        step = self.stagger_seconds.get(screener.source_name, self.stagger_seconds.get("default", 1.5))
        return index * step

    def adapter_for(self, screener: ScreenerConfig) -> SiteAdapter:
        adapter = self.adapters.get(screener.source_name)
        if adapter is None:
            raise UnsupportedSourceError(screener.source_name)
        return adapter

    async def scrape_screener(
        self,
        screener: ScreenerConfig,
        should_cancel: Optional[CancelCheck] = None,
    ) -> Optional[ScreenerBatch]:
        """Scrape one screener. Returns ``None`` when it produced no stocks."""
        log.info(f"Starting to scrape {screener.scan_name} from {screener.source_name}")
        adapter = self.adapter_for(screener)
        stocks = await adapter.scrape(screener, should_cancel)
        if not stocks:
            return None
        return ScreenerBatch(screener=screener, result=stocks)

    async def process_multiple_screeners(
        self,
        screeners: Sequence[ScreenerConfig],
        on_progress: Optional[ProgressCallback] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> List[ScreenerBatch]:
        """
        Scrape all screeners concurrently once their individual stagger delay
        has elapsed. Screeners that fail or return nothing are left out.
        """

        def report(message: str):
            log.info(message)
            if on_progress:
                on_progress(message)

        async def run(index: int, screener: ScreenerConfig) -> Optional[ScreenerBatch]:
            delay = self.stagger_delay(screener, index)
            if delay > 0:
                report(f"⏳ Waiting {delay:g}s before starting {screener.scan_name}...")
                await self._sleep(delay)

            if should_cancel and should_cancel():
                report(f"⏹ Skipping {screener.scan_name}: job cancelled")
                return None

            report(f"🚀 Starting {screener.scan_name}...")
            try:
                batch = await self.scrape_screener(screener, should_cancel)
            except Exception as e:
                log.exception(f"Failed to process {screener.scan_name}: {e}")
                if on_progress:
                    on_progress(f"❌ Failed to process {screener.scan_name}: {e}")
                return None

            if batch is None:
                report(f"⚠️ {screener.scan_name}: No data returned")
            else:
                report(f"✅ {screener.scan_name}: Found {len(batch.result)} stocks")
            return batch

        results = await asyncio.gather(*(run(i, s) for i, s in enumerate(screeners)))
        return [batch for batch in results if batch is not None]
