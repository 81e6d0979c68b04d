"""
Result Persister - Idempotent Storage of Scrape and Chart Results
=================================================================

Writes screener matches and chart metadata so that re-running a job for
the same day replaces the previous output instead of duplicating it.
"""

import os
from datetime import date
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from db.manager import DatabaseManager
from db.repository import ScreenerRepository
from stockscan.core.config import Config
from stockscan.core.errors import PersistenceError
from stockscan.sources.base import ChartDownloadResult, ScreenerBatch, ScreenerConfig, StockDetails
from stockscan.utils.logger import get_logger, log_execution_time

log = get_logger(__name__)

EXCLUDED_FROM_CHARTS = ("non-debt",)


def split_code(code: str) -> Tuple[Optional[str], Optional[str]]:
    """Numeric codes are BSE scrip codes, everything else is an NSE symbol."""
    code = (code or "").strip().upper()
    if not code:
        return None, None
    if code.isdigit():
        return None, code
    return code, None


def parse_chart_filename(path: str) -> Optional[Tuple[str, str]]:
    """``RELIANCE_daily_121.png`` -> ``("daily", "121")``"""
    parts = Path(path).stem.split("_")
    if len(parts) < 3:
        return None
    # Codes may contain underscores; type and range are always the last two parts
    return parts[-2], parts[-1]


class ResultPersister:
    """
    Idempotent upserts of screener matches and chart metadata.
    """

    def __init__(self, db: DatabaseManager, public_root: Optional[str] = None):
        self.db = db
        self.public_root = Path(public_root or Config.get("charts", "public_root", default="./public")).resolve()

    @log_execution_time
    async def upsert_screener_results(
        self,
        batches: Sequence[ScreenerBatch],
        scan_date: Optional[date] = None,
        owner_id: Optional[int] = None,
    ) -> int:
        """
        Replace all matches for ``scan_date`` with the given batches.
        Returns the number of match rows written.
        """
        scan_date = scan_date or date.today()
        updated = 0

        async with self.db.session_factory() as session:
            repo = ScreenerRepository(session)
            try:
                cleared = await repo.clear_results_for_date(scan_date)
                log.info(f"📊 Cleared {cleared} screener results for {scan_date}, writing new ones...")

                for batch in batches:
                    cfg = batch.screener
                    screener = await repo.get_or_create_screener(
                        cfg.scan_name,
                        description=cfg.description,
                        source_name=cfg.source_name,
                        source_url=cfg.source_url,
                        user_id=owner_id,
                    )
                    seen = set()

                    for scraped in batch.result:
                        try:
                            async with session.begin_nested():
                                nse_code, bse_code = split_code(scraped.code)
                                if not (nse_code or bse_code):
                                    log.warning(f"Skipping {scraped.name}: no stock code")
                                    continue
                                stock = await repo.get_or_create_stock(
                                    scraped.name,
                                    nse_code=nse_code,
                                    bse_code=bse_code,
                                    user_id=owner_id,
                                )
                                if stock.id in seen:
                                    continue
                                await repo.add_screener_match(stock.id, screener.id, scan_date)
                                seen.add(stock.id)
                            updated += 1
                        except SQLAlchemyError as e:
                            log.error(f"Failed to process stock {scraped.code}: {e}")

                    log.info(f"✅ Processed {len(batch.result)} stocks for screener: {cfg.scan_name}")

                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"Failed to update screener results: {e}", operation="upsert_screener_results") from e

        log.info(f"📈 Total updated screener results: {updated}")
        return updated

    @log_execution_time
    async def upsert_chart_metadata(self, results: Sequence[ChartDownloadResult]) -> int:
        """
        Replace the chart rows of every stock in ``results`` with its new files.
        Returns the number of chart rows written.
        """
        updated = 0

        async with self.db.session_factory() as session:
            repo = ScreenerRepository(session)
            for result in results:
                details = result.stock
                if details is None or not result.downloaded_paths:
                    continue
                try:
                    async with session.begin_nested():
                        stock = await repo.get_or_create_stock(
                            details.stock_name,
                            nse_code=details.nse_code,
                            bse_code=details.bse_code,
                            industry=details.industry,
                        )
                        rows = []
                        for chart_path in result.downloaded_paths:
                            parsed = parse_chart_filename(chart_path)
                            if not parsed:
                                log.warning(f"Unrecognised chart file name: {chart_path}")
                                continue
                            chart_type, chart_range = parsed
                            rows.append({
                                "chart_type": chart_type,
                                "chart_range": chart_range,
                                "file_path": self.public_path(chart_path),
                                "file_size": file_size(chart_path),
                            })
                        updated += await repo.replace_charts(stock.id, rows)
                except SQLAlchemyError as e:
                    log.error(f"Failed to update charts for stock {details.stock_name}: {e}")

            try:
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"Failed to update stock charts: {e}", operation="upsert_chart_metadata") from e

        log.info(f"📊 Updated {updated} chart records")
        return updated

    async def active_screeners(self) -> List[ScreenerConfig]:
        async with self.db.session_factory() as session:
            screeners = await ScreenerRepository(session).list_active_screeners()
        return [
            ScreenerConfig(
                id=s.id,
                scan_name=s.scan_name,
                source_name=s.source_name,
                source_url=s.source_url,
                description=s.description,
            )
            for s in screeners
        ]

    async def eligible_stocks_for_charts(self, scan_date: Optional[date] = None) -> List[StockDetails]:
        """
        Active stocks matched on ``scan_date`` by at least one screener other than "non-debt".
        """
        scan_date = scan_date or date.today()
        async with self.db.session_factory() as session:
            stocks = await ScreenerRepository(session).list_matched_stocks(scan_date)

        eligible = []
        for stock in stocks:
            names = [
                r.screener.scan_name for r in stock.screener_results
                if r.scan_date == scan_date and r.is_match
            ]
            if not [n for n in names if n not in EXCLUDED_FROM_CHARTS]:
                continue
            eligible.append(StockDetails(
                id=stock.id,
                stock_name=stock.stock_name,
                nse_code=stock.nse_code,
                bse_code=stock.bse_code,
                industry=stock.industry,
                screeners=",".join(names),
            ))

        log.info(f"Found {len(eligible)} stocks eligible for chart download")
        return eligible

    def public_path(self, chart_path: str) -> str:
        """Path relative to the public root, as served to the UI (``/charts/x.png``)."""
        resolved = Path(chart_path).resolve()
        try:
            return "/" + resolved.relative_to(self.public_root).as_posix()
        except ValueError:
            return Path(chart_path).as_posix()


def file_size(path: str) -> Optional[int]:
    try:
        return os.path.getsize(path)
    except OSError as e:
        log.warning(f"Could not get file stats for {path}: {e}")
        return None
