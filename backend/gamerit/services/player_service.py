"""Player accounts keyed by Reddit identity."""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamerit.config import settings
from gamerit.exceptions import PlayerNotFound
from gamerit.models.player import Player

logger = logging.getLogger(__name__)


def get_player(db: Session, player_id: str) -> Player:
    player = db.query(Player).filter(Player.id == player_id).first()
    if not player:
        raise PlayerNotFound("Player not found")
    return player


def get_or_create_player(
    db: Session,
    reddit_id: str,
    reddit_username: str,
    avatar_url: Optional[str] = None,
) -> Player:
    """Upsert on login: refresh username/avatar, or create with starting points."""
    player = db.query(Player).filter(Player.reddit_id == reddit_id).first()
    if player:
        player.reddit_username = reddit_username
        if avatar_url:
            player.avatar_url = avatar_url
        db.commit()
        db.refresh(player)
        return player

    player = Player(
        reddit_id=reddit_id,
        reddit_username=reddit_username,
        avatar_url=avatar_url,
        points=settings.STARTING_POINTS,
    )
    db.add(player)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent first login for the same identity.
        db.rollback()
        player = db.query(Player).filter(Player.reddit_id == reddit_id).first()
        if not player:
            raise
        return player
    db.refresh(player)
    logger.info(f"Created player u/{reddit_username} with {settings.STARTING_POINTS} points")
    return player
