from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, or_
from sqlalchemy.orm import selectinload

from db.models import Stock, Screener, StockScreenerResult, StockChart
from stockscan.utils.logger import get_logger

log = get_logger(__name__)

class ScreenerRepository:
    """
    Handles database CRUD operations for screeners, stocks, matches and charts.
    Callers own the transaction: nothing here commits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_or_create_screener(self, scan_name: str, **kwargs) -> Screener:
        """
        Retrieves a screener by scan name or creates it if it doesn't exist.
        """
        stmt = select(Screener).where(Screener.scan_name == scan_name)
        result = await self.session.execute(stmt)
        screener = result.scalar_one_or_none()

        if not screener:
            log.info(f"Creating new screener: {scan_name}")
            screener = Screener(scan_name=scan_name, **kwargs)
            self.session.add(screener)
            await self.session.flush() # Get ID
        return screener

    async def find_stock_by_code(self, *codes: Optional[str]) -> Optional[Stock]:
        """
        Finds a stock whose NSE or BSE code matches any of the given codes.
        """
        wanted = [c.upper() for c in codes if c]
        if not wanted:
            return None
        stmt = select(Stock).where(
            or_(Stock.nse_code.in_(wanted), Stock.bse_code.in_(wanted))
        ).order_by(Stock.id).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_stock(
        self,
        name: str,
        *,
        nse_code: Optional[str] = None,
        bse_code: Optional[str] = None,
        **kwargs,
    ) -> Stock:
        """
        Retrieves a stock keyed by exchange code or creates it if it doesn't exist.
        """
        nse_code = nse_code.upper() if nse_code else None
        bse_code = bse_code.upper() if bse_code else None
        stock = await self.find_stock_by_code(nse_code, bse_code)

        if not stock:
            log.debug(f"Creating new stock: {nse_code or bse_code} - {name}")
            stock = Stock(
                stock_name=name or "Unknown",
                nse_code=nse_code,
                bse_code=bse_code,
                industry=kwargs.pop("industry", None) or "Unknown",
                last_updated=datetime.utcnow(),
                **kwargs,
            )
            self.session.add(stock)
            await self.session.flush()
        return stock

    async def clear_results_for_date(self, scan_date: date) -> int:
        """
        Removes every screener match recorded for the given scan date.
        """
        stmt = delete(StockScreenerResult).where(StockScreenerResult.scan_date == scan_date)
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def add_screener_match(self, stock_id: int, screener_id: int, scan_date: date) -> StockScreenerResult:
        match = StockScreenerResult(
            stock_id=stock_id,
            screener_id=screener_id,
            scan_date=scan_date,
            is_match=True,
        )
        self.session.add(match)
        await self.session.flush()
        return match

    async def count_matches(self, scan_date: date) -> int:
        stmt = select(StockScreenerResult).where(StockScreenerResult.scan_date == scan_date)
        result = await self.session.execute(stmt)
        return len(result.scalars().all())

    async def replace_charts(self, stock_id: int, charts: Iterable[Dict[str, Any]]) -> int:
        """
        Replaces all chart rows of a stock with the given ones.
        """
        await self.session.execute(delete(StockChart).where(StockChart.stock_id == stock_id))
        count = 0
        for chart in charts:
            self.session.add(StockChart(stock_id=stock_id, **chart))
            count += 1
        await self.session.flush()
        return count

    async def list_charts(self, stock_id: int) -> List[StockChart]:
        stmt = select(StockChart).where(StockChart.stock_id == stock_id).order_by(StockChart.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_active_screeners(self) -> List[Screener]:
        stmt = select(Screener).where(Screener.is_active.is_(True)).order_by(Screener.scan_name)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_matched_stocks(self, scan_date: date) -> List[Stock]:
        """
        Active stocks with at least one match on the scan date, screeners eagerly loaded.
        """
        stmt = (
            select(Stock)
            .join(StockScreenerResult, StockScreenerResult.stock_id == Stock.id)
            .where(
                Stock.is_active.is_(True),
                StockScreenerResult.scan_date == scan_date,
                StockScreenerResult.is_match.is_(True),
            )
            .options(
                selectinload(Stock.screener_results).selectinload(StockScreenerResult.screener)
            )
            .distinct()
            .order_by(Stock.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().unique().all())
