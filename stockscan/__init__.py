"""StockScan: background screener scraping and chart capture engine."""

__version__ = "1.0.0"
