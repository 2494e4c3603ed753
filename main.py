from contextlib import asynccontextmanager
import asyncio
import logging
import os

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from database import engine, Base, SessionLocal
from errors import StoreUnavailableError, ValidationError
from logging_config import setup_logging
from routers import events, aggregation, dashboard, reports, scheduled_reports
import models
import report_scheduler

load_dotenv()
setup_logging()

logger = logging.getLogger(__name__)

# Create tables
Base.metadata.create_all(bind=engine)

SCHEDULER_ENABLED = os.getenv("REPORT_SCHEDULER_ENABLED", "false").lower() in ("1", "true", "yes")
SCHEDULER_INTERVAL_SECONDS = int(os.getenv("REPORT_SCHEDULER_INTERVAL_SECONDS", 60))


async def process_scheduled_reports_tick():
    """Run due scheduled reports for every website that has any"""
    db = SessionLocal()
    try:
        websites = await asyncio.to_thread(report_scheduler.websites_with_schedules, db)
        for website_id in websites:
            result = await report_scheduler.process_due(db, website_id)
            if result["sent"] or result["errors"]:
                logger.info(f"Scheduled reports for {website_id}: {result['sent']} sent, {result['errors']} failed")
    except StoreUnavailableError as e:
        logger.error(f"Scheduler tick aborted, store unavailable: {e}")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if SCHEDULER_ENABLED:
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            process_scheduled_reports_tick,
            IntervalTrigger(seconds=SCHEDULER_INTERVAL_SECONDS),
            id="scheduled_reports",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        logger.info(f"Report scheduler running every {SCHEDULER_INTERVAL_SECONDS}s")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(title="Website Analytics Engine", lifespan=lifespan)

origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.error(f"Store unavailable: {exc}")
    return JSONResponse(status_code=503, content={"success": False, "error": "Analytics store unavailable"})


# Include routers
API_PREFIX = "/api/analytics/advanced"
app.include_router(events.router, prefix=API_PREFIX, tags=["Events"])
app.include_router(aggregation.router, prefix=API_PREFIX, tags=["Aggregation"])
app.include_router(dashboard.router, prefix=API_PREFIX, tags=["Dashboard"])
app.include_router(reports.router, prefix=API_PREFIX, tags=["Reports"])
app.include_router(scheduled_reports.router, prefix=API_PREFIX, tags=["Scheduled Reports"])

@app.get("/")
def root():
    return {"message": "Website Analytics Engine"}

@app.get("/health")
def health_check():
    return {"status": "healthy"}
