from datetime import datetime, date
from typing import List, Optional
from sqlalchemy import String, Integer, Text, ForeignKey, Boolean, DateTime, Date, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

class Base(DeclarativeBase):
    pass

class Stock(Base):
    __tablename__ = "stocks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    bse_code: Mapped[Optional[str]] = mapped_column(String(50))
    nse_code: Mapped[Optional[str]] = mapped_column(String(50))
    stock_name: Mapped[str] = mapped_column(String(255))
    industry: Mapped[Optional[str]] = mapped_column(String(150))
    user_id: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    screener_results: Mapped[List["StockScreenerResult"]] = relationship(back_populates="stock", cascade="all, delete-orphan")
    charts: Mapped[List["StockChart"]] = relationship(back_populates="stock", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_stock_nse_code", "nse_code"),
        Index("idx_stock_bse_code", "bse_code"),
    )

class Screener(Base):
    __tablename__ = "screeners"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    scan_name: Mapped[str] = mapped_column(String(150), unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    source_name: Mapped[str] = mapped_column(String(50))
    source_url: Mapped[Optional[str]] = mapped_column(String(500))
    user_id: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    results: Mapped[List["StockScreenerResult"]] = relationship(back_populates="screener", cascade="all, delete-orphan")

class StockScreenerResult(Base):
    """One stock matching one screener on one scan date"""
    __tablename__ = "stock_screener_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stock_id: Mapped[int] = mapped_column(ForeignKey("stocks.id", ondelete="CASCADE"))
    screener_id: Mapped[int] = mapped_column(ForeignKey("screeners.id", ondelete="CASCADE"))
    is_match: Mapped[bool] = mapped_column(Boolean, default=True)
    scan_date: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    stock: Mapped["Stock"] = relationship(back_populates="screener_results")
    screener: Mapped["Screener"] = relationship(back_populates="results")

    __table_args__ = (
        UniqueConstraint("stock_id", "screener_id", "scan_date", name="uq_stock_screener_scan_date"),
        Index("idx_result_scan_date", "scan_date"),
    )

class StockChart(Base):
    __tablename__ = "stock_charts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stock_id: Mapped[int] = mapped_column(ForeignKey("stocks.id", ondelete="CASCADE"))
    chart_type: Mapped[str] = mapped_column(String(20)) # daily, weekly, monthly, hourly
    chart_range: Mapped[str] = mapped_column(String(20)) # 121, 504, ...
    file_path: Mapped[str] = mapped_column(String(500))
    file_size: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    stock: Mapped["Stock"] = relationship(back_populates="charts")
