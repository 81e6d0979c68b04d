"""Shared types and the site adapter contract."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence

from stockscan.core.errors import UnsupportedSourceError

CHARTINK = "chartink"
SCREENERIN = "screenerin"

CancelCheck = Callable[[], bool]


@dataclass(slots=True)
class ScreenerConfig:
    id: Optional[int]
    scan_name: str
    source_name: str
    source_url: str
    description: Optional[str] = None


@dataclass(slots=True)
class ScrapedStock:
    name: str
    code: str
    url: str
    added_date: str = field(default_factory=lambda: date.today().isoformat())


@dataclass(slots=True)
class ScreenerBatch:
    screener: ScreenerConfig
    result: List[ScrapedStock]


@dataclass(slots=True)
class StockDetails:
    stock_name: str
    nse_code: Optional[str] = None
    bse_code: Optional[str] = None
    industry: Optional[str] = None
    id: Optional[int] = None
    screeners: str = ""

    @property
    def chart_code(self) -> str:
        """Code used in chart URLs and file names: BSE first, NSE otherwise."""
        return self.bse_code or self.nse_code or ""


@dataclass(slots=True)
class ChartDownloadResult:
    stock: Optional[StockDetails]
    downloaded_paths: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.downloaded_paths)


@dataclass(frozen=True, slots=True)
class Timeframe:
    name: str
    time_frame: str
    range: str


TIMEFRAMES: Dict[str, Timeframe] = {
    "hourly": Timeframe("hourly", "60_minute", "44"),
    "daily": Timeframe("daily", "d", "121"),
    "weekly": Timeframe("weekly", "w", "504"),
    "monthly": Timeframe("monthly", "w", "1008"),
}

DEFAULT_TIMEFRAMES = ("daily", "weekly")


def resolve_timeframes(names: Optional[Sequence[str]] = None) -> List[Timeframe]:
    """Known timeframes in canonical order; ``None`` selects all of them."""
    if names is None:
        return list(TIMEFRAMES.values())
    return [tf for name, tf in TIMEFRAMES.items() if name in names]


class SiteAdapter(ABC):
    """
    Source-specific scraping strategy.

    Adding a new screener source means adding a new adapter, never touching
    the coordinators. Every adapter must implement ``scrape``. Chart capture
    is optional: only sources that serve charts override ``capture_charts``.
    """

    source_name: str = ""

    @abstractmethod
    async def scrape(
        self,
        screener: ScreenerConfig,
        should_cancel: Optional[CancelCheck] = None,
    ) -> List[ScrapedStock]:
        """Return every stock currently listed by the screener."""

    async def capture_charts(
        self,
        page: Any,
        stock: StockDetails,
        timeframes: Sequence[Timeframe],
        output_dir: str,
        should_cancel: Optional[CancelCheck] = None,
    ) -> ChartDownloadResult:
        """Screenshot one chart per timeframe using an already open page."""
        raise UnsupportedSourceError(self.source_name, phase="charts")
