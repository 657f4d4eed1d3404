"""
Cron scheduler for the processing service.

Runs the session reconstructor every few seconds and the streak nudge sweep
every hour, in a background thread.
"""
import logging
import sys
import threading
import time
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from langlog_server.processing_service.db_session import check_db_connection, get_db_session
from langlog_server.processing_service.logic.session_reconstructor import translate_batch
from langlog_server.processing_service.logic.settings import settings
from langlog_server.processing_service.logic.streaks import run_streak_nudge_sweep

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logging.getLogger("apscheduler.scheduler").setLevel(logging.WARNING)
logging.getLogger("apscheduler.executors.default").setLevel(logging.WARNING)
log = logging.getLogger(__name__)

scheduler: Optional[BackgroundScheduler] = None
_translate_lock = threading.Lock()


def translate_job():
    """Scheduled job folding the oldest pending events into activities."""
    if not _translate_lock.acquire(blocking=False):
        log.info("Previous translate batch still running. Skipping.")
        return
    try:
        with get_db_session() as db:
            result = translate_batch(db, limit=settings.TRANSLATE_BATCH_LIMIT)
        if result.processed or result.failed_groups:
            log.info(f"Translate job finished: {result.model_dump(by_alias=True)}")
    except Exception as e:
        log.error(f"Error during scheduled translate batch: {e}", exc_info=True)
    finally:
        _translate_lock.release()


def streak_nudge_job():
    """Scheduled job bridging or resetting lapsed streaks."""
    log.info("Running scheduled streak nudge sweep...")
    try:
        with get_db_session() as db:
            changed = run_streak_nudge_sweep(db, max_users=settings.STREAK_NUDGE_MAX_USERS)
        log.info(f"Streak nudge sweep finished. {changed} streak(s) changed.")
    except Exception as e:
        log.error(f"Error during scheduled streak nudge: {e}", exc_info=True)


def build_scheduler() -> BackgroundScheduler:
    new_scheduler = BackgroundScheduler(timezone="UTC")
    new_scheduler.add_job(
        translate_job,
        trigger=IntervalTrigger(seconds=settings.TRANSLATE_INTERVAL_SECONDS),
        id="translate_batch_job",
        name="Session Reconstructor",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30
    )
    new_scheduler.add_job(
        streak_nudge_job,
        trigger=IntervalTrigger(minutes=settings.STREAK_NUDGE_INTERVAL_MINUTES),
        id="streak_nudge_job",
        name="Streak Nudge",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300
    )
    return new_scheduler


def start_scheduler() -> bool:
    global scheduler
    log.info("--- Starting LangLog cron scheduler ---")
    if not check_db_connection():
        log.error("Database connection failed. Scheduler will not start.")
        return False

    scheduler = build_scheduler()
    try:
        scheduler.start()
        log.info(f"Scheduled translate batch every {settings.TRANSLATE_INTERVAL_SECONDS} seconds "
                 f"and streak nudge every {settings.STREAK_NUDGE_INTERVAL_MINUTES} minutes.")
        return True
    except Exception as e:
        log.error(f"Failed to start scheduler: {e}", exc_info=True)
        return False


def stop_scheduler():
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        log.info("Scheduler shut down gracefully.")
    else:
        log.info("Scheduler was not running or not initialized.")


def main():
    if not start_scheduler():
        log.error("Scheduler failed to start. Exiting.")
        sys.exit(1)
    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        log.info("Shutdown signal received.")
    finally:
        stop_scheduler()


if __name__ == "__main__":
    main()
