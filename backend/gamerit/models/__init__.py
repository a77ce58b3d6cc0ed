"""SQLAlchemy ORM models."""

from gamerit.models.player import Player
from gamerit.models.round import GameRound
from gamerit.models.bet import Bet
from gamerit.models.meme_stock import MemeStock
from gamerit.models.portfolio import PlayerPortfolio
from gamerit.models.stock_transaction import StockTransaction
from gamerit.models.xp_transaction import XPTransaction
from gamerit.models.audit_log import AuditLog
from gamerit.models.job_lock import JobLock

__all__ = [
    "Player",
    "GameRound",
    "Bet",
    "MemeStock",
    "PlayerPortfolio",
    "StockTransaction",
    "XPTransaction",
    "AuditLog",
    "JobLock",
]
