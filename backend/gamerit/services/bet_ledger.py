"""Bet ledger: placing wagers on rounds and settling them.

Placement debits the stake and inserts the bet in one transaction; the debit
is a conditional UPDATE so a player can never stake more than they hold, even
under concurrent requests. Settlement pays winners 2x their stake exactly
once per round, guarded by the settled_at marker.
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from gamerit.config import settings
from gamerit.exceptions import DuplicateBet, InvalidAmount, RoundNotActive, RoundNotFound
from gamerit.models.bet import Bet
from gamerit.models.round import GameRound, ROUND_ACTIVE, ROUND_FINISHED
from gamerit.services import coin_service, progression
from gamerit.services.change_feed import feed as default_feed, ChangeFeed
from gamerit.timeutil import utcnow, ensure_utc

logger = logging.getLogger(__name__)

SIDES = ("A", "B")
PAYOUT_MULTIPLIER = 2


def place_bet(
    db: Session,
    round_id: str,
    player_id: str,
    side: str,
    amount: int,
    policy: Optional[str] = None,
    feed: Optional[ChangeFeed] = None,
) -> Bet:
    """Place a bet on one side of an active round.

    Steps, all within a single DB transaction:
    1. Validate side and amount
    2. Lock the round and check it is still open
    3. Enforce the bet policy (single bet per round, if configured)
    4. Debit the stake (conditional on sufficient balance)
    5. Insert the bet and award placement XP
    """
    side = (side or "").upper()
    if side not in SIDES:
        raise ValueError("Side must be 'A' or 'B'")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount("Bet amount must be a positive integer")
    policy = policy or settings.BET_POLICY

    try:
        round_ = (
            db.query(GameRound)
            .filter(GameRound.id == round_id)
            .with_for_update()
            .first()
        )
        if not round_:
            raise RoundNotFound("Round not found")
        if round_.status != ROUND_ACTIVE:
            raise RoundNotActive("Round is not active")
        closes_at = ensure_utc(round_.created_at) + timedelta(hours=settings.ROUND_LIFETIME_HOURS)
        if utcnow() >= closes_at:
            raise RoundNotActive("Round has closed and is awaiting settlement")

        if policy == "single":
            existing = (
                db.query(Bet.id)
                .filter(Bet.round_id == round_id, Bet.player_id == player_id)
                .first()
            )
            if existing:
                raise DuplicateBet("You have already placed a bet on this round")

        coin_service.debit_points(db, player_id, amount)

        bet = Bet(round_id=round_id, player_id=player_id, bet_on=side, amount=amount)
        db.add(bet)
        progression.award_xp(
            db, player_id, progression.XP_PLACE_BET, "Placed bet in Reddit Battle",
            {"round_id": round_id, "bet_on": side, "amount": amount},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(bet)
    logger.info(f"Player {player_id} bet {amount} on {side} in round {round_id}")
    (feed or default_feed).publish("players", {"type": "bet_placed", "player_id": player_id, "round_id": round_id})
    return bet


def settle_round(db: Session, round_id: str, commit: bool = True) -> list[dict]:
    """Pay out a finished round's winning bets, exactly once.

    Winners receive 2x their stake; losers receive nothing (their stake was
    debited at placement). The settled_at marker is claimed with a
    conditional UPDATE, so a second invocation settles nothing and returns
    an empty list.
    """
    round_ = db.query(GameRound).filter(GameRound.id == round_id).first()
    if not round_:
        raise RoundNotFound("Round not found")
    if round_.status != ROUND_FINISHED or round_.winner not in SIDES:
        raise RoundNotActive("Round must be finished with a winner before settlement")

    claimed = (
        db.query(GameRound)
        .filter(
            GameRound.id == round_id,
            GameRound.status == ROUND_FINISHED,
            GameRound.settled_at.is_(None),
        )
        .update({GameRound.settled_at: utcnow()}, synchronize_session=False)
    )
    if claimed != 1:
        logger.info(f"Round {round_id} already settled, skipping")
        return []

    winner = round_.winner
    bets = db.query(Bet).filter(Bet.round_id == round_id).all()
    payouts = []
    for bet in bets:
        if bet.bet_on != winner:
            continue
        winnings = bet.amount * PAYOUT_MULTIPLIER
        coin_service.credit_points(db, bet.player_id, winnings)
        payouts.append({
            "bet_id": bet.id,
            "player_id": bet.player_id,
            "amount": bet.amount,
            "payout": winnings,
        })

    logger.info(
        f"Settled round {round_id}: winner {winner}, {len(payouts)}/{len(bets)} winning bets, "
        f"{sum(p['payout'] for p in payouts)} chips paid"
    )
    if commit:
        db.commit()
    return payouts


def bet_outcome(bet: Bet, round_: GameRound) -> tuple[str, int]:
    """Outcome inferred from the round: (pending|won|lost, payout)."""
    if round_.status != ROUND_FINISHED or round_.winner not in SIDES:
        return "pending", 0
    if bet.bet_on == round_.winner:
        return "won", bet.amount * PAYOUT_MULTIPLIER
    return "lost", 0


def get_user_bets(db: Session, player_id: str, round_id: Optional[str] = None) -> list[Bet]:
    """A player's bets, most recent first, optionally for one round."""
    query = db.query(Bet).filter(Bet.player_id == player_id)
    if round_id:
        query = query.filter(Bet.round_id == round_id)
    return query.order_by(Bet.created_at.desc()).all()
