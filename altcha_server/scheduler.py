"""Background scheduler for expired challenge and stale session cleanup."""

import logging
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from altcha_server.config import settings
from altcha_server.database import SessionLocal
from altcha_server.services.challenge_store import ChallengeStore
from altcha_server.services.session_store import (
    SqlSessionStore,
    list_session_ids,
    purge_stale_sessions,
)

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def sweep_all_sessions(db) -> int:
    """Sweep expired challenges in every session. Returns count of removed challenges."""
    removed = 0
    for session_id in list_session_ids(db):
        removed += ChallengeStore(SqlSessionStore(db, session_id)).sweep_expired()
    return removed


def cleanup_job() -> None:
    """Run periodic cleanup of expired challenges and idle sessions."""
    db = SessionLocal()
    try:
        swept = sweep_all_sessions(db)
        purged = purge_stale_sessions(db, timedelta(hours=settings.session_ttl_hours))
        if swept or purged:
            logger.info(f"Cleanup: swept {swept} challenges, purged {purged} session entries")
    except Exception as e:
        logger.error(f"Cleanup failed: {e}")
        db.rollback()
    finally:
        db.close()


def start_scheduler() -> None:
    """Start the background scheduler."""
    scheduler.add_job(
        cleanup_job,
        trigger=IntervalTrigger(minutes=settings.cleanup_interval_minutes),
        id="cleanup_expired_challenges",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(f"Scheduler started - cleanup runs every {settings.cleanup_interval_minutes} minute(s)")


def shutdown_scheduler() -> None:
    """Shutdown the scheduler gracefully."""
    scheduler.shutdown()
    logger.info("Scheduler stopped")
