"""Site adapters for supported screener sources."""

from typing import Dict

from stockscan.core.browser import BrowserSessionManager
from stockscan.sources.base import CHARTINK, SCREENERIN, SiteAdapter
from stockscan.sources.chartink import ChartinkAdapter
from stockscan.sources.screener import ScreenerAdapter


def build_adapters(browser: BrowserSessionManager) -> Dict[str, SiteAdapter]:
    """Adapters keyed by screener ``source_name``."""
    return {
        CHARTINK: ChartinkAdapter(browser),
        SCREENERIN: ScreenerAdapter(browser),
    }


__all__ = ["build_adapters", "ChartinkAdapter", "ScreenerAdapter", "SiteAdapter"]
