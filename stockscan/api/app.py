import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from db.manager import init_db
from stockscan import __version__
from stockscan.api.routes import router as jobs_router
from stockscan.api.scheduled_routes import router as scheduled_router
from stockscan.core.browser import BrowserSessionManager
from stockscan.core.chart_coordinator import ChartDownloadCoordinator
from stockscan.core.config import Config
from stockscan.core.errors import StockScanError
from stockscan.core.persister import ResultPersister
from stockscan.core.scrape_coordinator import ScrapeCoordinator
from stockscan.jobs.registry import JobRegistry
from stockscan.jobs.scheduler import JobScheduler
from stockscan.jobs.service import JobService
from stockscan.sources import build_adapters
from stockscan.sources.base import CHARTINK
from stockscan.utils.logger import get_logger, setup_logging

load_dotenv()
log = get_logger(__name__)


def build_service(db=None) -> JobService:
    """Wire the job service with the real browser, adapters and database."""
    db = db or init_db()
    browser = BrowserSessionManager()
    adapters = build_adapters(browser)
    return JobService(
        registry=JobRegistry(),
        scrape_coordinator=ScrapeCoordinator(adapters),
        chart_coordinator=ChartDownloadCoordinator(adapters[CHARTINK], browser),
        persister=ResultPersister(db),
    )


def scheduler_autostart() -> bool:
    env = os.getenv("SCHEDULER_AUTOSTART")
    if env is not None:
        return env.strip().lower() in {"1", "true", "yes", "on"}
    return bool(Config.get("scheduler", "autostart", default=False))


def create_app() -> FastAPI:
    app = FastAPI(
        title="StockScan Job API",
        description="Background screener scraping and chart download jobs with live progress",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StockScanError)
    async def stockscan_error_handler(request: Request, exc: StockScanError):
        log.error(f"Unhandled {exc.__class__.__name__} on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=500, content={"success": False, "error": exc.message, **exc.as_dict()})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.exception(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})

    @app.on_event("startup")
    async def startup_event():
        # Tests install their own service and scheduler before startup
        if getattr(app.state, "service", None) is not None:
            return

        setup_logging()
        db = init_db(os.getenv("DATABASE_URL"))
        await db.create_all()
        if not await db.check_connection():
            log.critical("Could not connect to database")

        service = build_service(db)
        scheduler = JobScheduler(service, service.registry)
        scheduler.run()
        if scheduler_autostart():
            scheduler.start_all()

        app.state.db = db
        app.state.service = service
        app.state.scheduler = scheduler
        log.info("🚀 StockScan API started")

    @app.on_event("shutdown")
    async def shutdown_event():
        scheduler = getattr(app.state, "scheduler", None)
        if scheduler is not None:
            scheduler.shutdown()
        db = getattr(app.state, "db", None)
        if db is not None:
            await db.close()

    app.include_router(jobs_router)
    app.include_router(scheduled_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/")
    async def root():
        return {"message": "StockScan Job API", "docs": "/docs", "version": __version__}

    return app


app = create_app()
