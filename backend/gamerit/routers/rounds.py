"""Rounds router: active/previous rounds and admin lifecycle triggers."""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from gamerit import jobs
from gamerit.config import settings
from gamerit.database import get_db
from gamerit.exceptions import JobAlreadyRunning, PopulationCeilingReached
from gamerit.middleware.auth import require_admin
from gamerit.models.player import Player
from gamerit.models.round import GameRound
from gamerit.schemas.round import (
    RoundPost,
    RoundResponse,
    RoundCreateResponse,
    RoundCycleResponse,
    ScoreRefreshResponse,
)
from gamerit.services import job_lock, round_manager
from gamerit.services.reddit_client import RedditClient, get_reddit_client
from gamerit.timeutil import ensure_utc

router = APIRouter(prefix="/api/rounds", tags=["rounds"])


def _iso(value) -> Optional[str]:
    return ensure_utc(value).isoformat() if value else None


def _round_to_response(round_: GameRound) -> RoundResponse:
    """Convert a GameRound ORM model to a response schema."""
    def post(side: str) -> RoundPost:
        initial = getattr(round_, f"post_{side}_initial_score")
        current = getattr(round_, f"post_{side}_final_score")
        return RoundPost(
            id=getattr(round_, f"post_{side}_id"),
            title=getattr(round_, f"post_{side}_title"),
            author=getattr(round_, f"post_{side}_author"),
            subreddit=getattr(round_, f"post_{side}_subreddit"),
            initial_score=initial,
            current_score=current,
            delta=current - initial,
        )

    return RoundResponse(
        id=round_.id,
        status=round_.status,
        post_a=post("a"),
        post_b=post("b"),
        winner=round_.winner,
        created_at=_iso(round_.created_at),
        closes_at=_iso(ensure_utc(round_.created_at) + timedelta(hours=settings.ROUND_LIFETIME_HOURS)),
        scores_updated_at=_iso(round_.scores_updated_at),
        finished_at=_iso(round_.finished_at),
    )


@router.get("/active", response_model=list[RoundResponse])
def active_rounds(db: Session = Depends(get_db)):
    return [_round_to_response(r) for r in round_manager.list_active_rounds(db)]


@router.get("/previous", response_model=list[RoundResponse])
def previous_rounds(db: Session = Depends(get_db)):
    """The last 10 finished rounds."""
    return [_round_to_response(r) for r in round_manager.list_previous_rounds(db, limit=10)]


@router.get("/{round_id}", response_model=RoundResponse)
def get_round(round_id: str, db: Session = Depends(get_db)):
    round_ = round_manager.get_round(db, round_id)
    if not round_:
        raise HTTPException(status_code=404, detail="Round not found")
    return _round_to_response(round_)


@router.post("/create", response_model=RoundCreateResponse)
def create_round(
    db: Session = Depends(get_db),
    gateway: RedditClient = Depends(get_reddit_client),
    admin: Player = Depends(require_admin),
):
    """Create one round now, subject to the active-round ceiling (admin only)."""
    try:
        with job_lock.exclusive(db, jobs.ROUND_POOL_JOB):
            round_ = round_manager.create_round_now(db, gateway, actor_id=admin.id)
    except PopulationCeilingReached as e:
        return RoundCreateResponse(created=0, message=str(e))
    except JobAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))

    if round_ is None:
        return RoundCreateResponse(created=0, message="Not enough unused posts to create a round")
    return RoundCreateResponse(created=1, round=_round_to_response(round_), message="Round created")


@router.post("/manage", response_model=RoundCycleResponse)
def manage_rounds(
    db: Session = Depends(get_db),
    gateway: RedditClient = Depends(get_reddit_client),
    admin: Player = Depends(require_admin),
):
    """Run one expire-settle-fill cycle now (admin only)."""
    try:
        result = jobs.run_round_pool(db, gateway)
    except JobAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))
    return RoundCycleResponse(
        active_before=result.active_before,
        active_after=result.active_after,
        expired=result.expired,
        created=result.created,
        skipped_reason=result.skipped_reason,
    )


@router.post("/refresh-scores", response_model=ScoreRefreshResponse)
def refresh_scores(
    db: Session = Depends(get_db),
    gateway: RedditClient = Depends(get_reddit_client),
    admin: Player = Depends(require_admin),
):
    """Refresh live scores of all active rounds now (admin only)."""
    try:
        result = jobs.run_score_refresh(db, gateway)
    except JobAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ScoreRefreshResponse(updated_rounds=result["updated_rounds"], failed_rounds=result["failed_rounds"])
