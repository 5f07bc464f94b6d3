"""APScheduler jobs — mirror sync + scheduled boleto notifications once a day."""

import logging
from datetime import datetime

import pytz
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from boleto_dispatcher.config import get_settings
from boleto_dispatcher.infrastructure.database import SessionLocal

settings = get_settings()
logger = logging.getLogger(__name__)
tz = pytz.timezone(settings.TIMEZONE)

scheduler = AsyncIOScheduler(timezone=tz)

DAILY_JOB_ID = "daily_boleto_dispatch"


async def daily_dispatch_job():
    """Daily job: refresh the mirror, sync invoices, send what is due today."""
    from boleto_dispatcher.application.services.orchestrator_service import run_daily
    from boleto_dispatcher.infrastructure.clients import build_cora_client, build_remote_store
    from boleto_dispatcher.infrastructure.repositories.cache_store import SQLAlchemyCacheStore

    logger.info(f"Running daily dispatch job at {datetime.now(tz).strftime('%d/%m/%Y %H:%M')}")

    db = SessionLocal()
    try:
        result = await run_daily(SQLAlchemyCacheStore(db), build_cora_client(), build_remote_store())
        sends = result["scheduledSends"]
        logger.info(
            f"Daily dispatch result: synced={sends['synced']} sent={sends['sent']} "
            f"skipped={sends['skipped']} errors={len(sends['errors'])}"
        )
    except Exception as e:
        logger.error(f"Daily dispatch job failed: {e}")
    finally:
        db.close()


def scheduler_status() -> dict:
    jobs = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": next_run.isoformat() if next_run else None,
        })
    return {
        "running": scheduler.running,
        "timezone": settings.TIMEZONE,
        "now": datetime.now(tz).isoformat(),
        "jobs": jobs,
    }


def start_scheduler():
    """Start the APScheduler with the daily dispatch job."""
    if not settings.DAILY_JOB_ENABLED:
        logger.info("Daily dispatch job disabled (DAILY_JOB_ENABLED=false)")
        return

    scheduler.add_job(
        daily_dispatch_job,
        trigger=CronTrigger(hour=settings.DAILY_JOB_HOUR, minute=settings.DAILY_JOB_MINUTE, timezone=tz),
        id=DAILY_JOB_ID,
        name=f"Daily Boleto Dispatch ({settings.DAILY_JOB_HOUR:02d}:{settings.DAILY_JOB_MINUTE:02d})",
        replace_existing=True,
    )

    scheduler.start()
    logger.info(
        f"Scheduler started — daily dispatch at "
        f"{settings.DAILY_JOB_HOUR:02d}:{settings.DAILY_JOB_MINUTE:02d} {settings.TIMEZONE}"
    )


def stop_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
