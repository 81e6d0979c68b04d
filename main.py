#!/usr/bin/env python3
"""
StockScan - Main Entry Point
============================

Screener scraping and chart download jobs, one-shot or on a schedule.

Usage:
    python main.py --mode api        # Run API server
    python main.py --mode scrape     # Run one scraping job and wait for it
    python main.py --mode charts     # Run one chart download job and wait for it
    python main.py --mode scheduler  # Start every cron schedule and block
    python main.py --help            # Show help
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from db.manager import init_db
from stockscan.api.app import build_service
from stockscan.jobs.scheduler import JobScheduler, run_forever
from stockscan.utils.logger import get_logger, setup_logging

log = get_logger(__name__)


async def run_job(mode: str, max_concurrent=None) -> int:
    db = init_db()
    await db.create_all()
    service = build_service(db)
    try:
        if mode == "scrape":
            job_id = service.start_scraping_job()
        else:
            job_id = service.start_chart_download_job(max_concurrent=max_concurrent)

        status = await service.wait(job_id)
        print(json.dumps(status, indent=2, default=str))
        return 0 if status and status["status"] == "completed" else 1
    finally:
        await db.close()


async def run_scheduler() -> None:
    db = init_db()
    await db.create_all()
    service = build_service(db)
    scheduler = JobScheduler(service, service.registry)
    try:
        await run_forever(scheduler)
    finally:
        await db.close()


def run_api(host: str, port: int) -> None:
    import uvicorn

    uvicorn.run("stockscan.api.app:app", host=host, port=port, log_level="info")


def main():
    load_dotenv()

    parser = argparse.ArgumentParser(description="StockScan screener and chart jobs")
    parser.add_argument(
        "--mode",
        choices=["api", "scrape", "charts", "scheduler"],
        default="api",
        help="What to run",
    )
    parser.add_argument("--host", default="0.0.0.0", help="API host")
    parser.add_argument("--port", type=int, default=8000, help="API port")
    parser.add_argument("--max-concurrent", type=int, default=None, help="Browser sessions for chart download")
    args = parser.parse_args()

    if args.mode == "api":
        run_api(args.host, args.port)
        return

    setup_logging()
    log.info(f"=== StockScan starting in {args.mode} mode ===")

    try:
        if args.mode == "scheduler":
            asyncio.run(run_scheduler())
        else:
            sys.exit(asyncio.run(run_job(args.mode, args.max_concurrent)))
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
