"""Periodic jobs.

Each run_* function performs one invocation under the job's store-backed
lease, so overlapping invocations (a scheduled tick racing an admin trigger,
or two instances) never run the same job concurrently. The scheduled_*
wrappers open their own session and gateway and never raise.

Round expiry runs on its own short interval and lease. Its round_finished
events drive the fill-only top-up, which takes the round_pool lease; the
full round_pool cycle is the slower reconciliation pass.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from gamerit.database import SessionLocal
from gamerit.exceptions import AuthError, JobAlreadyRunning, PopulationCeilingReached, TransportError
from gamerit.models.round import GameRound
from gamerit.services import job_lock, meme_market, round_manager, score_refresher
from gamerit.services.change_feed import ChangeFeed
from gamerit.services.reddit_client import RedditClient

logger = logging.getLogger(__name__)

ROUND_POOL_JOB = "round_pool"
ROUND_EXPIRY_JOB = "round_expiry"
SCORE_REFRESH_JOB = "score_refresh"
MARKET_UPDATE_JOB = "market_update"


def run_round_pool(db: Session, gateway: RedditClient, feed: Optional[ChangeFeed] = None) -> round_manager.CycleResult:
    with job_lock.exclusive(db, ROUND_POOL_JOB):
        return round_manager.manage_round_pool(db, gateway, feed=feed)


def run_round_expiry(db: Session, gateway: RedditClient, feed: Optional[ChangeFeed] = None) -> list[dict]:
    """Finish and settle every round past its lifetime."""
    with job_lock.exclusive(db, ROUND_EXPIRY_JOB):
        gateway.get_access_token()
        return round_manager.expire_rounds(db, gateway, feed=feed)


def run_round_top_up(db: Session, gateway: RedditClient, feed: Optional[ChangeFeed] = None) -> list[GameRound]:
    """Create rounds up to the ceiling without expiring anything."""
    with job_lock.exclusive(db, ROUND_POOL_JOB):
        try:
            return round_manager.fill_round_pool(db, gateway, feed=feed)
        except PopulationCeilingReached as e:
            logger.info(f"Round pool top-up skipped: {e}")
            return []


def run_score_refresh(db: Session, gateway: RedditClient, feed: Optional[ChangeFeed] = None) -> dict:
    with job_lock.exclusive(db, SCORE_REFRESH_JOB):
        return score_refresher.refresh_active_rounds(db, gateway, feed=feed)


def run_market_update(
    db: Session, gateway: RedditClient, feed: Optional[ChangeFeed] = None
) -> meme_market.MarketUpdateResult:
    with job_lock.exclusive(db, MARKET_UPDATE_JOB):
        return meme_market.update_market(db, gateway, feed=feed)


def _run_scheduled(name: str, job: Callable, gateway: Optional[RedditClient] = None) -> None:
    db = SessionLocal()
    try:
        job(db, gateway or RedditClient())
    except JobAlreadyRunning:
        logger.info(f"Job {name} is already running elsewhere, skipping this tick")
    except AuthError as e:
        logger.error(f"Job {name} aborted, Reddit authentication failed: {e}")
    except TransportError as e:
        logger.error(f"Job {name} aborted, Reddit unreachable: {e}")
    except Exception as e:
        logger.error(f"Job {name} failed: {e}", exc_info=True)
    finally:
        db.close()


def scheduled_round_pool() -> None:
    _run_scheduled(ROUND_POOL_JOB, run_round_pool)


def scheduled_round_expiry() -> None:
    _run_scheduled(ROUND_EXPIRY_JOB, run_round_expiry)


def scheduled_round_top_up() -> None:
    _run_scheduled("round_top_up", run_round_top_up)


def scheduled_score_refresh() -> None:
    _run_scheduled(SCORE_REFRESH_JOB, run_score_refresh)


def scheduled_market_update() -> None:
    _run_scheduled(MARKET_UPDATE_JOB, run_market_update)
