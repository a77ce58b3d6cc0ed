"""Players router: profile, leaderboard, and welfare chips."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from gamerit.database import get_db
from gamerit.exceptions import PlayerNotFound
from gamerit.middleware.auth import get_current_player
from gamerit.models.player import Player
from gamerit.schemas.player import LeaderboardEntry, PlayerResponse, WelfareResponse
from gamerit.services import coin_service, progression

router = APIRouter(prefix="/api/players", tags=["players"])


def _player_to_response(player: Player) -> PlayerResponse:
    return PlayerResponse(
        id=player.id,
        reddit_username=player.reddit_username,
        avatar_url=player.avatar_url,
        points=player.points,
        xp=player.xp,
        level=player.level,
        next_level_xp=progression.xp_for_level(player.level + 1),
        meta_minutes=player.meta_minutes,
        last_welfare_claim=player.last_welfare_claim.isoformat() if player.last_welfare_claim else None,
        created_at=player.created_at.isoformat(),
    )


@router.get("/me", response_model=PlayerResponse)
def me(current_player: Player = Depends(get_current_player)):
    return _player_to_response(current_player)


@router.get("/leaderboard", response_model=list[LeaderboardEntry])
def leaderboard(db: Session = Depends(get_db)):
    """Top 10 players by points."""
    players = coin_service.get_leaderboard(db, limit=10)
    return [
        LeaderboardEntry(
            rank=i + 1,
            id=p.id,
            reddit_username=p.reddit_username,
            avatar_url=p.avatar_url,
            points=p.points,
            level=p.level,
        )
        for i, p in enumerate(players)
    ]


@router.post("/me/welfare", response_model=WelfareResponse)
def claim_welfare(
    db: Session = Depends(get_db),
    current_player: Player = Depends(get_current_player),
):
    """Claim welfare chips when broke (once per cooldown window)."""
    try:
        points = coin_service.claim_welfare(db, current_player.id)
    except PlayerNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return WelfareResponse(points=points, granted=points)
