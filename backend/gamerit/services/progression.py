"""XP and levels.

Level L is reached at 100 * L * (L - 1) / 2 cumulative XP:
level 2 at 100, level 3 at 300, level 4 at 600, and so on.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from gamerit.exceptions import InvalidAmount, PlayerNotFound
from gamerit.models.player import Player
from gamerit.models.xp_transaction import XPTransaction

logger = logging.getLogger(__name__)

XP_PLACE_BET = 10
XP_BUY_STOCK = 5
XP_SELL_STOCK = 5
XP_PROFITABLE_SELL = 10


def xp_for_level(level: int) -> int:
    """Total XP needed to reach a level."""
    return 100 * level * (level - 1) // 2


def level_for_xp(xp: int) -> int:
    level = 1
    while xp_for_level(level + 1) <= xp:
        level += 1
    return level


def award_xp(db: Session, player_id: str, amount: int, reason: str, details: Optional[dict] = None) -> dict:
    """Stage an XP award in the caller's transaction. Returns the level change."""
    if amount <= 0:
        raise InvalidAmount("XP amount must be positive")

    updated = (
        db.query(Player)
        .filter(Player.id == player_id)
        .update({Player.xp: Player.xp + amount}, synchronize_session=False)
    )
    if updated != 1:
        raise PlayerNotFound("Player not found")

    player = db.query(Player).filter(Player.id == player_id).populate_existing().one()
    old_level = player.level
    new_level = level_for_xp(player.xp)
    if new_level != old_level:
        player.level = new_level
        logger.info(f"Player {player_id} levelled up: {old_level} -> {new_level}")

    db.add(XPTransaction(player_id=player_id, amount=amount, reason=reason, details=details or {}))
    return {
        "xp_awarded": amount,
        "new_xp": player.xp,
        "old_level": old_level,
        "new_level": new_level,
        "level_up": new_level > old_level,
    }
