"""Trade service: buying and selling meme stock shares, and portfolio views."""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gamerit.config import settings
from gamerit.exceptions import InsufficientShares, InvalidAmount, StockNotActive
from gamerit.models.meme_stock import MemeStock
from gamerit.models.portfolio import PlayerPortfolio
from gamerit.models.stock_transaction import StockTransaction
from gamerit.services import coin_service, progression
from gamerit.services.change_feed import feed as default_feed, ChangeFeed
from gamerit.services.meme_market import get_stock
from gamerit.timeutil import utcnow, ensure_utc

logger = logging.getLogger(__name__)


def _require_tradable(stock: MemeStock) -> None:
    if not stock.is_active:
        raise StockNotActive(f"Stock '{stock.meme_keyword}' is no longer trading")
    expires_at = ensure_utc(stock.created_at) + timedelta(days=settings.STOCK_LIFETIME_DAYS)
    if utcnow() >= expires_at:
        raise StockNotActive(f"Stock '{stock.meme_keyword}' has expired")


def _positive_int(value, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidAmount(f"{label} must be a positive integer")
    return value


def _lock_position(db: Session, player_id: str, stock_id: str) -> Optional[PlayerPortfolio]:
    return (
        db.query(PlayerPortfolio)
        .filter(PlayerPortfolio.player_id == player_id, PlayerPortfolio.stock_id == stock_id)
        .with_for_update()
        .first()
    )


def _add_shares(position: PlayerPortfolio, shares: int, price: int, now) -> None:
    old_shares = position.shares_owned
    total = old_shares + shares
    position.average_buy_price = (old_shares * position.average_buy_price + shares * price) / total
    position.shares_owned = total
    position.updated_at = now


def buy_stock(
    db: Session,
    player_id: str,
    stock_id: str,
    chips: int,
    feed: Optional[ChangeFeed] = None,
) -> StockTransaction:
    """Buy as many whole shares as the chips cover at the current value.

    Steps, all within a single DB transaction:
    1. Validate the stock is active and younger than its lifetime
    2. Compute shares = floor(chips / value); must be at least one
    3. Debit shares * value (conditional on sufficient balance)
    4. Update the materialized position with a share-weighted average price,
       folding into a concurrently created first position if the insert loses
    5. Insert the immutable transaction record and award XP
    Chips left over from the floor division are never debited.
    """
    _positive_int(chips, "Chips to spend")
    try:
        stock = get_stock(db, stock_id)
        _require_tradable(stock)
        price = stock.current_value
        shares = chips // price
        if shares <= 0:
            raise InvalidAmount(f"Not enough chips to buy a share (price {price})")
        cost = shares * price

        coin_service.debit_points(db, player_id, cost)

        position = _lock_position(db, player_id, stock_id)
        now = utcnow()
        if position:
            _add_shares(position, shares, price, now)
        else:
            try:
                with db.begin_nested():
                    db.add(PlayerPortfolio(
                        player_id=player_id,
                        stock_id=stock_id,
                        shares_owned=shares,
                        average_buy_price=float(price),
                        created_at=now,
                        updated_at=now,
                    ))
            except IntegrityError:
                # A concurrent first buy created the position; add to it instead.
                logger.info(f"Position for player {player_id} on {stock_id} appeared concurrently, retrying")
                position = _lock_position(db, player_id, stock_id)
                _add_shares(position, shares, price, now)

        txn = StockTransaction(
            player_id=player_id,
            stock_id=stock_id,
            transaction_type="buy",
            shares=shares,
            price_per_share=price,
            total_amount=cost,
        )
        db.add(txn)
        progression.award_xp(
            db, player_id, progression.XP_BUY_STOCK, "Bought meme stock",
            {"stock": stock.meme_keyword, "shares": shares, "price": price},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(txn)
    logger.info(f"Player {player_id} bought {shares} x {stock.meme_keyword} @ {price}")
    (feed or default_feed).publish("players", {"type": "stock_bought", "player_id": player_id, "stock_id": stock_id})
    return txn


def sell_stock(
    db: Session,
    player_id: str,
    stock_id: str,
    shares: int,
    feed: Optional[ChangeFeed] = None,
) -> StockTransaction:
    """Sell shares at the stock's current value.

    Inactive stocks can still be sold at their last value. The share
    decrement is conditional on holding enough, so an oversell changes
    neither shares nor balance. Cost basis for remaining shares is unchanged
    and the position row persists at zero shares.
    """
    _positive_int(shares, "Shares to sell")
    try:
        stock = get_stock(db, stock_id)
        price = stock.current_value

        position = (
            db.query(PlayerPortfolio)
            .filter(PlayerPortfolio.player_id == player_id, PlayerPortfolio.stock_id == stock_id)
            .first()
        )
        held = position.shares_owned if position else 0
        updated = (
            db.query(PlayerPortfolio)
            .filter(
                PlayerPortfolio.player_id == player_id,
                PlayerPortfolio.stock_id == stock_id,
                PlayerPortfolio.shares_owned >= shares,
            )
            .update(
                {
                    PlayerPortfolio.shares_owned: PlayerPortfolio.shares_owned - shares,
                    PlayerPortfolio.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise InsufficientShares(requested=shares, available=held)

        proceeds = shares * price
        profit_loss = proceeds - shares * position.average_buy_price
        coin_service.credit_points(db, player_id, proceeds)

        txn = StockTransaction(
            player_id=player_id,
            stock_id=stock_id,
            transaction_type="sell",
            shares=shares,
            price_per_share=price,
            total_amount=proceeds,
            profit_loss=profit_loss,
        )
        db.add(txn)
        if profit_loss > 0:
            progression.award_xp(
                db, player_id, progression.XP_PROFITABLE_SELL, "Profitable meme stock sale",
                {"stock": stock.meme_keyword, "shares": shares, "profit": profit_loss},
            )
        else:
            progression.award_xp(
                db, player_id, progression.XP_SELL_STOCK, "Sold meme stock",
                {"stock": stock.meme_keyword, "shares": shares},
            )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(txn)
    logger.info(
        f"Player {player_id} sold {shares} x {stock.meme_keyword} @ {price} (P&L {profit_loss:+.1f})"
    )
    (feed or default_feed).publish("players", {"type": "stock_sold", "player_id": player_id, "stock_id": stock_id})
    return txn


def get_player_portfolio(db: Session, player_id: str) -> list[dict]:
    """Open holdings with current value and unrealized P&L."""
    positions = (
        db.query(PlayerPortfolio)
        .filter(PlayerPortfolio.player_id == player_id, PlayerPortfolio.shares_owned > 0)
        .order_by(PlayerPortfolio.updated_at.desc())
        .all()
    )
    result = []
    for p in positions:
        stock = p.stock
        market_value = p.shares_owned * stock.current_value
        cost_basis = p.shares_owned * p.average_buy_price
        result.append({
            "id": p.id,
            "stock_id": stock.id,
            "meme_keyword": stock.meme_keyword,
            "is_active": stock.is_active,
            "shares_owned": p.shares_owned,
            "average_buy_price": round(p.average_buy_price, 2),
            "current_value": stock.current_value,
            "market_value": market_value,
            "unrealized_pnl": round(market_value - cost_basis, 2),
        })
    return result


def get_portfolio_value(db: Session, player_id: str) -> dict:
    """Chips plus holdings valued at each stock's last price."""
    points = coin_service.get_balance(db, player_id)
    holdings = get_player_portfolio(db, player_id)
    holdings_value = sum(h["market_value"] for h in holdings)
    return {
        "points": points,
        "holdings_value": holdings_value,
        "total_value": points + holdings_value,
        "holdings": holdings,
    }


def get_player_transactions(db: Session, player_id: str, limit: int = 50) -> list[StockTransaction]:
    return (
        db.query(StockTransaction)
        .filter(StockTransaction.player_id == player_id)
        .order_by(StockTransaction.created_at.desc())
        .limit(limit)
        .all()
    )
