import asyncio

import pytest

from conftest import FakeBrowserManager, FakeChartAdapter, FakeScrapeAdapter
from stockscan.core.chart_coordinator import ChartDownloadCoordinator, chunk_list
from stockscan.core.errors import UnsupportedSourceError
from stockscan.sources.base import StockDetails


def _stocks(count):
    return [StockDetails(stock_name=f"Stock {i}", nse_code=f"S{i}") for i in range(count)]


def _coordinator(tmp_path, adapter, browser=None, attempts=3):
    return ChartDownloadCoordinator(
        adapter,
        browser or FakeBrowserManager(),
        output_dir=str(tmp_path / "charts"),
        stock_attempts=attempts,
        retry_base_delay=0,
    )


def test_chunk_list_never_exceeds_max_chunks():
    assert [len(c) for c in chunk_list(list(range(10)), 4)] == [3, 3, 3, 1]
    assert [len(c) for c in chunk_list(list(range(3)), 4)] == [1, 1, 1]
    assert chunk_list([], 4) == []
    assert chunk_list(list(range(5)), 1) == [list(range(5))]
    with pytest.raises(ValueError):
        chunk_list([1], 0)


def test_ten_stocks_four_sessions_results_in_order(tmp_path):
    adapter = FakeChartAdapter()
    browser = FakeBrowserManager()
    coordinator = _coordinator(tmp_path, adapter, browser)
    stocks = _stocks(10)
    messages = []

    results = asyncio.run(coordinator.download_charts_for_multiple_stocks(
        stocks, max_concurrent=4, on_progress=messages.append
    ))

    assert [r.stock.nse_code for r in results] == [s.nse_code for s in stocks]
    assert all(len(r.downloaded_paths) == 2 for r in results)
    assert browser.sessions_opened == 4
    assert browser.max_open <= 4
    assert messages[0] == "📊 Processing 10 stocks in 4 chunks"


def test_failing_stock_is_isolated(tmp_path):
    adapter = FakeChartAdapter(failures={"S2": -1, "S5": 1})
    coordinator = _coordinator(tmp_path, adapter, attempts=3)

    results = asyncio.run(coordinator.download_charts_for_multiple_stocks(_stocks(8), max_concurrent=2))

    assert len(results) == 8
    assert results[2].downloaded_paths == []
    assert adapter.attempts["S2"] == 3
    assert results[5].succeeded and adapter.attempts["S5"] == 2
    assert sum(r.succeeded for r in results) == 7


def test_cancelled_job_starts_no_captures(tmp_path):
    adapter = FakeChartAdapter()
    coordinator = _coordinator(tmp_path, adapter)

    results = asyncio.run(coordinator.download_charts_for_multiple_stocks(
        _stocks(5), max_concurrent=2, should_cancel=lambda: True
    ))

    assert len(results) == 5
    assert not any(r.succeeded for r in results)
    assert adapter.attempts == {}


def test_browser_launch_failure_yields_empty_results(tmp_path):
    coordinator = _coordinator(tmp_path, FakeChartAdapter(), FakeBrowserManager(fail_launch=True))

    results = asyncio.run(coordinator.download_charts_for_multiple_stocks(_stocks(6), max_concurrent=3))

    assert [r.stock.nse_code for r in results] == [f"S{i}" for i in range(6)]
    assert not any(r.succeeded for r in results)


def test_empty_input_returns_empty(tmp_path):
    coordinator = _coordinator(tmp_path, FakeChartAdapter())
    assert asyncio.run(coordinator.download_charts_for_multiple_stocks([])) == []


def test_sources_without_charts_reject_capture(tmp_path):
    adapter = FakeScrapeAdapter({})

    with pytest.raises(UnsupportedSourceError) as exc_info:
        asyncio.run(adapter.capture_charts(object(), _stocks(1)[0], [], str(tmp_path)))
    assert exc_info.value.phase == "charts"
