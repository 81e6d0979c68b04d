"""
StockScan error hierarchy for clear classification in logs, job records and API responses.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class StockScanError(Exception):
    """Base class for all StockScan errors."""

    def __init__(
        self,
        message: str,
        *,
        job_id: Optional[str] = None,
        source: Optional[str] = None,
        phase: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.job_id = job_id
        self.source = source
        self.phase = phase
        self.details = details or {}

    def as_dict(self) -> Dict[str, Any]:
        """Serializable representation for logs/API."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "job_id": self.job_id,
            "source": self.source,
            "phase": self.phase,
            "details": self.details,
        }


class JobAlreadyRunningError(StockScanError):
    """Raised when a job of the same type is already running."""

    def __init__(self, job_type: str, running_job_id: str, **kwargs) -> None:
        super().__init__(
            f"{job_type} job is already running: {running_job_id}",
            job_id=running_job_id,
            **kwargs,
        )
        self.job_type = job_type
        self.running_job_id = running_job_id
        self.details["job_type"] = job_type


class ScrapeError(StockScanError):
    """Raised when a screener page cannot be scraped."""

    def __init__(self, message: str, *, url: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, phase=kwargs.pop("phase", "scrape"), **kwargs)
        self.url = url
        if url is not None:
            self.details["url"] = url


class UnsupportedSourceError(StockScanError):
    """Raised when no site adapter is registered for a screener source."""

    def __init__(self, source: str, **kwargs) -> None:
        super().__init__(f"Unsupported scraper source: {source}", source=source, **kwargs)


class ChartCaptureError(StockScanError):
    """Raised when a chart screenshot cannot be produced."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        timeframe: Optional[str] = None,
        **kwargs,
    ) -> None:
        super().__init__(message, phase=kwargs.pop("phase", "charts"), **kwargs)
        self.code = code
        self.timeframe = timeframe
        if code is not None:
            self.details["code"] = code
        if timeframe is not None:
            self.details["timeframe"] = timeframe


class PersistenceError(StockScanError):
    """Raised on read/write failures against the relational store."""

    def __init__(self, message: str, *, operation: Optional[str] = None, **kwargs) -> None:
        super().__init__(message, phase=kwargs.pop("phase", "persist"), **kwargs)
        self.operation = operation
        if operation is not None:
            self.details["operation"] = operation


class ConfigError(StockScanError):
    """Raised on missing/invalid configuration values."""

    def __init__(
        self,
        message: str,
        *,
        key: Optional[str] = None,
        section: Optional[str] = None,
        **kwargs,
    ) -> None:
        super().__init__(message, **kwargs)
        self.key = key
        self.section = section
        if key is not None:
            self.details["key"] = key
        if section is not None:
            self.details["section"] = section
