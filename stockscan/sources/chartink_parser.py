"""
Chartink Parser - Screener Result Table Extraction
==================================================

Parses the rendered scan results table of a chartink screener page.
"""

from typing import List
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from stockscan.sources.base import ScrapedStock
from stockscan.utils.logger import get_logger

log = get_logger(__name__)

CHARTINK_BASE_URL = "https://chartink.com"


def code_from_url(url: str) -> str:
    """``https://chartink.com/stocks/RELIANCE.html`` -> ``RELIANCE``"""
    parts = url.split("/")
    if len(parts) < 5:
        return ""
    return parts[4].replace(".html", "").strip()


class ChartinkParser:
    """
    Parser for one page of a chartink scan results table.
    """

    ROW_LINK_SELECTOR = ".scan_results_table tr td:nth-child(2) a"

    def __init__(self, html: str, base_url: str = CHARTINK_BASE_URL):
        self.soup = BeautifulSoup(html or "", "html.parser")
        self.base_url = base_url

    def parse_stocks(self) -> List[ScrapedStock]:
        stocks = []
        for link in self.soup.select(self.ROW_LINK_SELECTOR):
            href = link.get("href")
            if not href:
                continue
            url = urljoin(self.base_url, href)
            code = code_from_url(url)
            if not code:
                log.debug(f"Skipping row without stock code: {url}")
                continue
            stocks.append(ScrapedStock(name=link.get_text(strip=True), code=code, url=url))
        return stocks
