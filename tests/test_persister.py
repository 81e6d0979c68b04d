import os
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from conftest import make_screener, make_stocks
from db.models import Stock
from db.repository import ScreenerRepository
from stockscan.core.persister import ResultPersister, parse_chart_filename, split_code
from stockscan.sources.base import ChartDownloadResult, ScrapedStock, ScreenerBatch, StockDetails

SCAN_DATE = date(2024, 6, 3)


def test_split_code():
    assert split_code("500325") == (None, "500325")
    assert split_code("reliance") == ("RELIANCE", None)
    assert split_code("  ") == (None, None)


def test_parse_chart_filename():
    assert parse_chart_filename("/x/charts/RELIANCE_daily_121.png") == ("daily", "121")
    assert parse_chart_filename("/x/charts/BAJAJ_AUTO_weekly_504.png") == ("weekly", "504")
    assert parse_chart_filename("nonsense.png") is None


def test_screener_results_upsert_is_idempotent(run_with_db):
    batches = [
        ScreenerBatch(make_screener("momentum"), make_stocks("M", 5)),
        ScreenerBatch(make_screener("breakout"), make_stocks("M", 2) + make_stocks("B", 1)),
    ]

    async def scenario(db):
        persister = ResultPersister(db)
        first = await persister.upsert_screener_results(batches, scan_date=SCAN_DATE)
        second = await persister.upsert_screener_results(batches, scan_date=SCAN_DATE)

        async with db.session_factory() as session:
            matches = await ScreenerRepository(session).count_matches(SCAN_DATE)
            stocks = await session.scalar(select(func.count()).select_from(Stock))
        return first, second, matches, stocks

    first, second, matches, stocks = run_with_db(scenario)
    assert first == second == 8
    assert matches == 8
    assert stocks == 6


def test_duplicate_stock_in_one_screener_is_stored_once(run_with_db):
    dup = ScrapedStock(name="Dup", code="DUP", url="https://chartink.com/stocks/DUP.html")
    batches = [ScreenerBatch(make_screener("momentum"), [dup, dup])]

    async def scenario(db):
        return await ResultPersister(db).upsert_screener_results(batches, scan_date=SCAN_DATE)

    assert run_with_db(scenario) == 1


def test_numeric_codes_stored_as_bse(run_with_db):
    batches = [ScreenerBatch(make_screener("value"), [
        ScrapedStock(name="Reliance", code="500325", url="u1"),
        ScrapedStock(name="TCS", code="tcs", url="u2"),
    ])]

    async def scenario(db):
        await ResultPersister(db).upsert_screener_results(batches, scan_date=SCAN_DATE)
        async with db.session_factory() as session:
            rows = (await session.execute(select(Stock).order_by(Stock.id))).scalars().all()
        return [(s.nse_code, s.bse_code) for s in rows]

    assert run_with_db(scenario) == [(None, "500325"), ("TCS", None)]


def test_eligible_stocks_exclude_non_debt_only_matches(run_with_db):
    batches = [
        ScreenerBatch(make_screener("momentum"), make_stocks("M", 2)),
        ScreenerBatch(make_screener("non-debt"), make_stocks("M", 1) + make_stocks("N", 2)),
    ]

    async def scenario(db):
        persister = ResultPersister(db)
        await persister.upsert_screener_results(batches, scan_date=SCAN_DATE)
        eligible = await persister.eligible_stocks_for_charts(SCAN_DATE)
        other_day = await persister.eligible_stocks_for_charts(date(2024, 6, 4))
        return eligible, other_day

    eligible, other_day = run_with_db(scenario)
    assert sorted(s.nse_code for s in eligible) == ["M0", "M1"]
    assert other_day == []


def test_chart_metadata_replaces_previous_rows(run_with_db, tmp_path):
    public = tmp_path / "public"
    charts = public / "charts"
    charts.mkdir(parents=True)
    for name in ("TCS_daily_121.png", "TCS_weekly_504.png"):
        (charts / name).write_bytes(b"12345")
    stock = StockDetails(stock_name="TCS", nse_code="TCS")

    async def scenario(db):
        persister = ResultPersister(db, public_root=str(public))
        first = await persister.upsert_chart_metadata([ChartDownloadResult(stock, [
            str(charts / "TCS_daily_121.png"),
            str(charts / "TCS_weekly_504.png"),
        ])])
        second = await persister.upsert_chart_metadata([
            ChartDownloadResult(stock, [str(charts / "TCS_daily_121.png"), str(charts / "TCS_monthly_1008.png")]),
            ChartDownloadResult(StockDetails(stock_name="Nothing", nse_code="NIL"), []),
        ])

        async with db.session_factory() as session:
            repo = ScreenerRepository(session)
            tcs = await repo.find_stock_by_code("TCS")
            rows = await repo.list_charts(tcs.id)
            nil = await repo.find_stock_by_code("NIL")
        return first, second, rows, nil

    first, second, rows, nil = run_with_db(scenario)
    assert first == 2 and second == 2
    assert [(r.chart_type, r.chart_range) for r in rows] == [("daily", "121"), ("monthly", "1008")]
    assert rows[0].file_path == "/charts/TCS_daily_121.png"
    assert rows[0].file_size == os.path.getsize(charts / "TCS_daily_121.png")
    assert rows[1].file_size is None
    assert nil is None


def test_failing_stock_does_not_abort_the_batch(run_with_db, monkeypatch):
    original = ScreenerRepository.add_screener_match
    calls = []

    async def flaky_add(self, stock_id, screener_id, scan_date):
        calls.append(stock_id)
        if len(calls) == 2:
            raise IntegrityError("INSERT INTO stock_screener_results", {}, Exception("constraint failed"))
        return await original(self, stock_id, screener_id, scan_date)

    monkeypatch.setattr(ScreenerRepository, "add_screener_match", flaky_add)
    batches = [ScreenerBatch(make_screener("momentum"), make_stocks("M", 4))]

    async def scenario(db):
        updated = await ResultPersister(db).upsert_screener_results(batches, scan_date=SCAN_DATE)
        async with db.session_factory() as session:
            matches = await ScreenerRepository(session).count_matches(SCAN_DATE)
        return updated, matches

    updated, matches = run_with_db(scenario)
    assert len(calls) == 4
    assert updated == 3
    assert matches == 3
