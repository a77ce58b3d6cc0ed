"""Coin service: the Karma Chips points ledger.

Balance changes are single conditional UPDATE statements evaluated by the
store (points = points + delta), never read-modify-write from Python, so
concurrent bets, payouts and trades cannot lose updates or overdraw.
Ledger helpers stage changes in the caller's transaction and do not commit.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from gamerit.config import settings
from gamerit.exceptions import InsufficientFunds, InvalidAmount, PlayerNotFound, WelfareNotAvailable
from gamerit.models.player import Player
from gamerit.services.change_feed import feed as default_feed, ChangeFeed
from gamerit.timeutil import utcnow, ensure_utc

logger = logging.getLogger(__name__)


def get_balance(db: Session, player_id: str) -> int:
    """Get a player's current points balance."""
    player = db.query(Player).filter(Player.id == player_id).first()
    if not player:
        raise PlayerNotFound("Player not found")
    return player.points


def debit_points(db: Session, player_id: str, amount: int) -> None:
    """Atomically deduct points if and only if the balance covers them."""
    if amount <= 0:
        raise InvalidAmount("Amount must be a positive integer")
    updated = (
        db.query(Player)
        .filter(Player.id == player_id, Player.points >= amount)
        .update({Player.points: Player.points - amount}, synchronize_session=False)
    )
    if updated == 1:
        return
    player = db.query(Player).filter(Player.id == player_id).first()
    if not player:
        raise PlayerNotFound("Player not found")
    raise InsufficientFunds(required=amount, available=player.points)


def credit_points(db: Session, player_id: str, amount: int) -> None:
    """Atomically add points to a player's balance."""
    if amount < 0:
        raise InvalidAmount("Credit amount cannot be negative")
    if amount == 0:
        return
    updated = (
        db.query(Player)
        .filter(Player.id == player_id)
        .update({Player.points: Player.points + amount}, synchronize_session=False)
    )
    if updated != 1:
        raise PlayerNotFound("Player not found")


def claim_welfare(db: Session, player_id: str, feed: Optional[ChangeFeed] = None) -> int:
    """Grant welfare chips to a broke player, at most once per cooldown window.

    Returns the new balance.
    """
    now = utcnow()
    cutoff = now - timedelta(hours=settings.WELFARE_COOLDOWN_HOURS)
    updated = (
        db.query(Player)
        .filter(
            Player.id == player_id,
            Player.points <= 0,
            or_(Player.last_welfare_claim.is_(None), Player.last_welfare_claim < cutoff),
        )
        .update(
            {Player.points: settings.WELFARE_CHIPS, Player.last_welfare_claim: now},
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.rollback()
        player = db.query(Player).filter(Player.id == player_id).first()
        if not player:
            raise PlayerNotFound("Player not found")
        if player.points > 0:
            raise WelfareNotAvailable("You still have points remaining")
        last = ensure_utc(player.last_welfare_claim)
        raise WelfareNotAvailable(
            f"You can only claim welfare chips once every {settings.WELFARE_COOLDOWN_HOURS} hours"
            + (f" (last claim {last.isoformat()})" if last else "")
        )

    db.commit()
    logger.info(f"Granted {settings.WELFARE_CHIPS} welfare chips to player {player_id}")
    (feed or default_feed).publish("players", {"type": "welfare_claimed", "player_id": player_id})
    return settings.WELFARE_CHIPS


def get_leaderboard(db: Session, limit: int = 10) -> list[Player]:
    """Top players by points."""
    return (
        db.query(Player)
        .order_by(Player.points.desc(), Player.created_at.asc())
        .limit(limit)
        .all()
    )
