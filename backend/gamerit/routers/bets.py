"""Bets router: placing bets and bet history."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from gamerit.config import settings
from gamerit.database import get_db
from gamerit.exceptions import PlayerNotFound, RoundNotFound
from gamerit.middleware.auth import get_current_player
from gamerit.middleware.rate_limit import limiter
from gamerit.models.bet import Bet
from gamerit.models.player import Player
from gamerit.schemas.bet import BetCreate, BetResponse
from gamerit.services import bet_ledger

router = APIRouter(prefix="/api/bets", tags=["bets"])


def _bet_to_response(bet: Bet) -> BetResponse:
    outcome, payout = bet_ledger.bet_outcome(bet, bet.round)
    return BetResponse(
        id=bet.id,
        round_id=bet.round_id,
        bet_on=bet.bet_on,
        amount=bet.amount,
        outcome=outcome,
        payout=payout,
        created_at=bet.created_at.isoformat(),
    )


@router.post("", response_model=BetResponse, status_code=201)
@limiter.limit(settings.TRADE_RATE_LIMIT)
def place_bet(
    request: Request,
    req: BetCreate,
    db: Session = Depends(get_db),
    current_player: Player = Depends(get_current_player),
):
    """Stake chips on one side of an active round."""
    try:
        bet = bet_ledger.place_bet(db, req.round_id, current_player.id, req.bet_on, req.amount)
    except (RoundNotFound, PlayerNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _bet_to_response(bet)


@router.get("/my", response_model=list[BetResponse])
def my_bets(
    round_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_player: Player = Depends(get_current_player),
):
    """Current player's bets, most recent first."""
    bets = bet_ledger.get_user_bets(db, current_player.id, round_id)
    return [_bet_to_response(b) for b in bets]
