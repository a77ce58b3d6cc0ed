"""
Scheduler for the periodic game jobs.

Runs the round pool, round expiry, score refresh and market update jobs on
APScheduler interval triggers. Expiry runs outside the round pool lease, so
the round_finished events it publishes can trigger an immediate fill-only
top-up. The slower round pool cycle is the reconciliation pass.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from gamerit import jobs
from gamerit.config import settings
from gamerit.services.change_feed import feed as default_feed, ChangeFeed

logger = logging.getLogger(__name__)

TOP_UP_JOB_ID = "round_pool_top_up"


class Scheduler:
    """
    Owns the BackgroundScheduler and the change feed subscription.

    Each job is registered with max_instances=1 and coalescing, so a slow
    run is never stacked locally; the job leases guard across instances.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.scheduler: Optional[BackgroundScheduler] = None
        self.feed = feed or default_feed
        self.is_running = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> bool:
        if self.is_running:
            logger.warning("Scheduler is already running")
            return False

        try:
            self.scheduler = BackgroundScheduler(timezone=timezone.utc)
            self.scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

            self._add_interval_job(
                jobs.scheduled_round_pool, "round_pool", "Round pool management",
                settings.ROUND_POOL_INTERVAL_MINUTES, run_now=True,
            )
            self._add_interval_job(
                jobs.scheduled_round_expiry, "round_expiry", "Round expiry",
                settings.ROUND_EXPIRY_INTERVAL_MINUTES,
            )
            self._add_interval_job(
                jobs.scheduled_score_refresh, "score_refresh", "Score refresh",
                settings.SCORE_REFRESH_INTERVAL_MINUTES,
            )
            self._add_interval_job(
                jobs.scheduled_market_update, "market_update", "Meme market update",
                settings.MARKET_UPDATE_INTERVAL_MINUTES, run_now=True,
            )

            self.scheduler.start()
            self._unsubscribe = self.feed.subscribe("game_rounds", self._on_round_event)
            self.is_running = True
            logger.info(
                f"Scheduler started: round pool every {settings.ROUND_POOL_INTERVAL_MINUTES}m, "
                f"expiry every {settings.ROUND_EXPIRY_INTERVAL_MINUTES}m, "
                f"scores every {settings.SCORE_REFRESH_INTERVAL_MINUTES}m, "
                f"market every {settings.MARKET_UPDATE_INTERVAL_MINUTES}m"
            )
            return True
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}", exc_info=True)
            self.is_running = False
            return False

    def stop(self, wait: bool = True) -> bool:
        if not self.is_running or not self.scheduler:
            logger.warning("Scheduler is not running")
            return False

        logger.info("Stopping scheduler...")
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        self.scheduler.shutdown(wait=wait)
        self.scheduler = None
        self.is_running = False
        logger.info("Scheduler stopped successfully")
        return True

    def _add_interval_job(self, func: Callable, job_id: str, name: str, minutes: int, run_now: bool = False) -> None:
        kwargs = {}
        if run_now:
            kwargs["next_run_time"] = datetime.now(timezone.utc)
        self.scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **kwargs,
        )

    def _on_round_event(self, event: dict) -> None:
        """Top the pool up as soon as a round finishes."""
        if event.get("type") != "round_finished" or not self.scheduler:
            return
        logger.debug(f"Round {event.get('round_id')} finished, scheduling pool top-up")
        self.scheduler.add_job(
            func=jobs.scheduled_round_top_up,
            id=TOP_UP_JOB_ID,
            name="Round pool top-up",
            replace_existing=True,
            max_instances=1,
        )

    def _on_job_executed(self, event) -> None:
        if event.exception:
            logger.error(f"Job {event.job_id} raised an exception: {event.exception}")
        else:
            logger.debug(f"Job {event.job_id} executed successfully")

    def get_status(self) -> dict:
        status = {"is_running": self.is_running, "jobs": []}
        if self.is_running and self.scheduler:
            for job in self.scheduler.get_jobs():
                status["jobs"].append({
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                })
        return status


# Global scheduler instance
_scheduler_instance: Optional[Scheduler] = None


def start_scheduler() -> bool:
    global _scheduler_instance
    if _scheduler_instance is None:
        _scheduler_instance = Scheduler()
    return _scheduler_instance.start()


def stop_scheduler(wait: bool = True) -> bool:
    if _scheduler_instance is None:
        logger.warning("Scheduler instance does not exist")
        return False
    return _scheduler_instance.stop(wait)


def get_scheduler() -> Optional[Scheduler]:
    return _scheduler_instance
