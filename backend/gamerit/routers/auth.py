"""Auth router: session issuance for the Reddit OAuth callback."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from gamerit.database import get_db
from gamerit.middleware.auth import create_access_token, require_internal_key
from gamerit.schemas.player import SessionRequest, TokenResponse
from gamerit.services import player_service

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/session", response_model=TokenResponse)
def open_session(
    req: SessionRequest,
    db: Session = Depends(get_db),
    _: None = Depends(require_internal_key),
):
    """Upsert the player for a verified Reddit identity and issue a token."""
    player = player_service.get_or_create_player(db, req.reddit_id, req.reddit_username, req.avatar_url)
    token = create_access_token({"sub": player.id, "username": player.reddit_username})
    return TokenResponse(access_token=token, player_id=player.id)
