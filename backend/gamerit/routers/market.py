"""Market router: meme stocks, trading, portfolio, and admin refresh."""

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from gamerit import jobs
from gamerit.config import settings
from gamerit.database import get_db
from gamerit.exceptions import JobAlreadyRunning, PlayerNotFound, StockNotFound
from gamerit.middleware.auth import get_current_player, require_admin
from gamerit.middleware.rate_limit import limiter
from gamerit.models.meme_stock import MemeStock
from gamerit.models.player import Player
from gamerit.models.stock_transaction import StockTransaction
from gamerit.schemas.market import (
    BuyRequest,
    SellRequest,
    StockResponse,
    StockHistoryResponse,
    StockHistoryPoint,
    TransactionResponse,
    HoldingResponse,
    PortfolioResponse,
    MarketUpdateResponse,
)
from gamerit.services import job_lock, meme_market, trade_service
from gamerit.services.reddit_client import RedditClient, get_reddit_client
from gamerit.timeutil import ensure_utc

router = APIRouter(prefix="/api/market", tags=["market"])


def _stock_to_response(stock: MemeStock) -> StockResponse:
    created = ensure_utc(stock.created_at)
    return StockResponse(
        id=stock.id,
        meme_keyword=stock.meme_keyword,
        current_value=stock.current_value,
        is_active=stock.is_active,
        created_at=created.isoformat(),
        updated_at=ensure_utc(stock.updated_at).isoformat(),
        expires_at=(created + timedelta(days=settings.STOCK_LIFETIME_DAYS)).isoformat(),
    )


def _txn_to_response(txn: StockTransaction) -> TransactionResponse:
    return TransactionResponse(
        id=txn.id,
        stock_id=txn.stock_id,
        meme_keyword=txn.stock.meme_keyword,
        transaction_type=txn.transaction_type,
        shares=txn.shares,
        price_per_share=txn.price_per_share,
        total_amount=txn.total_amount,
        profit_loss=txn.profit_loss,
        created_at=txn.created_at.isoformat(),
    )


def _update_to_response(result: meme_market.MarketUpdateResult) -> MarketUpdateResponse:
    return MarketUpdateResponse(
        posts_analyzed=result.posts_analyzed,
        trending_keywords=result.trending_keywords,
        revalued=result.revalued,
        unchanged=result.unchanged,
        deactivated=result.deactivated,
        created=result.created,
        skipped_reason=result.skipped_reason,
    )


@router.get("/stocks", response_model=list[StockResponse])
def list_stocks(db: Session = Depends(get_db)):
    """Active meme stocks, most valuable first."""
    return [_stock_to_response(s) for s in meme_market.list_active_stocks(db)]


@router.get("/stocks/{stock_id}/history", response_model=StockHistoryResponse)
def stock_history(stock_id: str, db: Session = Depends(get_db)):
    try:
        stock = meme_market.get_stock(db, stock_id)
    except StockNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    return StockHistoryResponse(
        stock_id=stock.id,
        meme_keyword=stock.meme_keyword,
        history=[StockHistoryPoint(**point) for point in (stock.history or [])],
    )


@router.post("/buy", response_model=TransactionResponse, status_code=201)
@limiter.limit(settings.TRADE_RATE_LIMIT)
def buy(
    request: Request,
    req: BuyRequest,
    db: Session = Depends(get_db),
    current_player: Player = Depends(get_current_player),
):
    """Spend chips on whole shares at the current value."""
    try:
        txn = trade_service.buy_stock(db, current_player.id, req.stock_id, req.chips)
    except (StockNotFound, PlayerNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _txn_to_response(txn)


@router.post("/sell", response_model=TransactionResponse, status_code=201)
@limiter.limit(settings.TRADE_RATE_LIMIT)
def sell(
    request: Request,
    req: SellRequest,
    db: Session = Depends(get_db),
    current_player: Player = Depends(get_current_player),
):
    """Sell shares at the current value."""
    try:
        txn = trade_service.sell_stock(db, current_player.id, req.stock_id, req.shares)
    except (StockNotFound, PlayerNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _txn_to_response(txn)


@router.get("/portfolio/my", response_model=PortfolioResponse)
def my_portfolio(
    db: Session = Depends(get_db),
    current_player: Player = Depends(get_current_player),
):
    """Chips, holdings at last price, and total value."""
    portfolio = trade_service.get_portfolio_value(db, current_player.id)
    return PortfolioResponse(
        points=portfolio["points"],
        holdings_value=portfolio["holdings_value"],
        total_value=portfolio["total_value"],
        holdings=[HoldingResponse(**h) for h in portfolio["holdings"]],
    )


@router.get("/transactions/my", response_model=list[TransactionResponse])
def my_transactions(
    db: Session = Depends(get_db),
    current_player: Player = Depends(get_current_player),
):
    return [_txn_to_response(t) for t in trade_service.get_player_transactions(db, current_player.id)]


@router.post("/update", response_model=MarketUpdateResponse)
def update_market(
    db: Session = Depends(get_db),
    gateway: RedditClient = Depends(get_reddit_client),
    admin: Player = Depends(require_admin),
):
    """Full market cycle: revalue, expire, list new stocks (admin only)."""
    try:
        result = jobs.run_market_update(db, gateway)
    except JobAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _update_to_response(result)


@router.post("/refresh", response_model=MarketUpdateResponse)
def refresh_market(
    db: Session = Depends(get_db),
    gateway: RedditClient = Depends(get_reddit_client),
    admin: Player = Depends(require_admin),
):
    """Revalue active stocks only; never creates or expires (admin only)."""
    try:
        with job_lock.exclusive(db, jobs.MARKET_UPDATE_JOB):
            result = meme_market.refresh_market_values(db, gateway)
    except JobAlreadyRunning as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _update_to_response(result)
