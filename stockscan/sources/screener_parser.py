"""
Screener.in Parser - Screen Result Table Extraction
===================================================

Resilient parser for screener.in screen result pages using BeautifulSoup.
Extracts:
- Total page count from the results summary
- Stock name, code and URL for every result row
"""

import re
from typing import List
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from stockscan.sources.base import ScrapedStock
from stockscan.utils.logger import get_logger

log = get_logger(__name__)

SCREENER_BASE_URL = "https://www.screener.in"

_PAGE_COUNT_RE = re.compile(r"of\s+(\d+)")


class ScreenerParser:
    """
    Parser for one page of a screener.in screen.
    """

    SUMMARY_SELECTOR = "main div.card.card-large div.flex-row.flex-gap-8.flex-space-between.flex-align-center > div.sub"

    def __init__(self, html: str, base_url: str = SCREENER_BASE_URL):
        self.soup = BeautifulSoup(html or "", "html.parser")
        self.base_url = base_url

    def total_pages(self) -> int:
        """
        Reads "Showing page 1 of 12." style summaries. Unknown layouts yield 0.
        """
        summary = self.soup.select_one(self.SUMMARY_SELECTOR)
        if summary is None:
            log.warning("Pagination summary not found on screener page")
            return 0
        return parse_page_count(summary.get_text(" ", strip=True))

    def parse_stocks(self) -> List[ScrapedStock]:
        stocks = []
        rows = self.soup.select("table tbody tr")
        # First row is the column header row
        for row in rows[1:]:
            cells = row.find_all("td")
            if len(cells) < 2:
                continue
            link = cells[1].find("a")
            if link is None or not link.get("href"):
                continue

            name = re.sub(r"[\r\n]+", "", link.get_text()).strip()
            url = urljoin(self.base_url, link["href"]).strip()
            parts = url.split("/")
            code = parts[4].strip() if len(parts) > 4 else ""
            if not code:
                continue
            stocks.append(ScrapedStock(name=name, code=code, url=url))
        return stocks


def parse_page_count(text: str) -> int:
    match = _PAGE_COUNT_RE.search(text or "")
    if not match:
        return 0
    return int(match.group(1))
