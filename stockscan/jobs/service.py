"""
Job Service - Background Execution of Scraping and Chart Jobs
=============================================================

Glue between the registry, the coordinators and the persister. Start
methods register the job, spawn an asyncio task and return the job id
immediately; the task reports progress and finally completes or fails
the job.
"""

import asyncio
import os
import traceback
from typing import Any, Dict, Optional, Set

from stockscan.core.chart_coordinator import ChartDownloadCoordinator
from stockscan.core.config import Config
from stockscan.core.persister import ResultPersister
from stockscan.core.scrape_coordinator import ScrapeCoordinator
from stockscan.jobs.registry import JobRegistry, JobType
from stockscan.utils.logger import get_logger

log = get_logger(__name__)


class JobService:
    def __init__(
        self,
        registry: JobRegistry,
        scrape_coordinator: ScrapeCoordinator,
        chart_coordinator: ChartDownloadCoordinator,
        persister: ResultPersister,
        default_max_concurrent: Optional[int] = None,
    ):
        self.registry = registry
        self.scrape_coordinator = scrape_coordinator
        self.chart_coordinator = chart_coordinator
        self.persister = persister
        self.default_max_concurrent = default_max_concurrent or int(
            os.getenv("MAX_CONCURRENT_CHARTS") or Config.get("charts", "max_concurrent", default=4)
        )
        self.timeframes = Config.get("charts", "timeframes", default=["daily", "weekly"])
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def tasks(self) -> Set[asyncio.Task]:
        return set(self._tasks.values())

    def _spawn(self, job_id: str, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=job_id)
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))

    def start_scraping_job(self, owner_id: Optional[int] = None) -> str:
        """
        Raises:
            JobAlreadyRunningError: a scraping job is already running
        """
        job_id = self.registry.start(JobType.SCRAPING, owner_id=owner_id)
        self._spawn(job_id, self.perform_scraping(job_id, owner_id))
        return job_id

    def start_chart_download_job(self, owner_id: Optional[int] = None, max_concurrent: Optional[int] = None) -> str:
        """
        Raises:
            JobAlreadyRunningError: a chart download job is already running
        """
        job_id = self.registry.start(JobType.CHART_DOWNLOAD, owner_id=owner_id)
        self._spawn(job_id, self.perform_chart_download(job_id, max_concurrent or self.default_max_concurrent))
        return job_id

    async def wait(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Wait for a spawned job's task to finish and return the job snapshot."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.registry.status(job_id)

    def _progress(self, job_id: str):
        return lambda message: self.registry.progress(job_id, message)

    def _cancelled(self, job_id: str):
        return lambda: self.registry.is_cancelled(job_id)

    async def perform_scraping(self, job_id: str, owner_id: Optional[int] = None) -> None:
        progress = self._progress(job_id)
        try:
            progress("Fetching active screeners...")
            screeners = await self.persister.active_screeners()

            if not screeners:
                self.registry.complete(job_id, {
                    "stock_count": 0,
                    "updated_count": 0,
                    "screeners": 0,
                    "message": "No active screeners configured",
                })
                return

            progress(f"Found {len(screeners)} screeners to process...")
            batches = await self.scrape_coordinator.process_multiple_screeners(
                screeners,
                on_progress=progress,
                should_cancel=self._cancelled(job_id),
            )

            if self.registry.is_cancelled(job_id):
                log.info(f"[{job_id}] Cancelled, discarding {len(batches)} scraped screeners")
                return

            stock_count = sum(len(batch.result) for batch in batches)
            progress(f"Scraping completed. Found {stock_count} stocks across {len(batches)} screeners. Updating database...")

            updated = await self.persister.upsert_screener_results(batches, owner_id=owner_id)
            progress(f"Database updated successfully. {updated} results saved.")

            self.registry.complete(job_id, {
                "stock_count": stock_count,
                "updated_count": updated,
                "screeners": len(batches),
                "screener_names": [batch.screener.scan_name for batch in batches],
            })
        except Exception as e:
            log.exception(f"[{job_id}] Scraping job failed: {e}")
            self.registry.fail(job_id, e, traceback.format_exc())

    async def perform_chart_download(self, job_id: str, max_concurrent: int) -> None:
        progress = self._progress(job_id)
        try:
            progress("Fetching stocks that need chart updates...")
            stocks = await self.persister.eligible_stocks_for_charts()

            if not stocks:
                self.registry.complete(job_id, {
                    "chart_count": 0,
                    "updated_chart_count": 0,
                    "eligible_stocks": 0,
                    "message": "No stocks found that need chart updates",
                })
                return

            progress(f"Found {len(stocks)} stocks for chart download. Starting download with {max_concurrent} concurrent processes...")
            results = await self.chart_coordinator.download_charts_for_multiple_stocks(
                stocks,
                max_concurrent=max_concurrent,
                on_progress=progress,
                should_cancel=self._cancelled(job_id),
                timeframes=self.timeframes,
            )

            successful = [r for r in results if r.succeeded]
            chart_count = sum(len(r.downloaded_paths) for r in successful)

            # Charts captured before a cancel are still on disk, so record them
            progress(f"Chart download completed. Downloaded {chart_count} charts. Updating database...")
            updated = await self.persister.upsert_chart_metadata(successful)

            if self.registry.is_cancelled(job_id):
                return

            progress(f"Database updated successfully. {updated} chart records saved.")
            self.registry.complete(job_id, {
                "chart_count": chart_count,
                "updated_chart_count": updated,
                "eligible_stocks": len(stocks),
                "successful_stocks": len(successful),
            })
        except Exception as e:
            log.exception(f"[{job_id}] Chart download job failed: {e}")
            self.registry.fail(job_id, e, traceback.format_exc())
