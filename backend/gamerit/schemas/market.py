"""Meme market request/response schemas."""

from typing import Optional
from pydantic import BaseModel, Field


class StockResponse(BaseModel):
    id: str
    meme_keyword: str
    current_value: int
    is_active: bool
    created_at: str
    updated_at: str
    expires_at: str

    class Config:
        from_attributes = True


class StockHistoryPoint(BaseModel):
    timestamp: str
    value: int


class StockHistoryResponse(BaseModel):
    stock_id: str
    meme_keyword: str
    history: list[StockHistoryPoint]


class BuyRequest(BaseModel):
    stock_id: str
    chips: int = Field(gt=0)


class SellRequest(BaseModel):
    stock_id: str
    shares: int = Field(gt=0)


class TransactionResponse(BaseModel):
    id: str
    stock_id: str
    meme_keyword: str
    transaction_type: str  # buy | sell
    shares: int
    price_per_share: int
    total_amount: int
    profit_loss: Optional[float]
    created_at: str

    class Config:
        from_attributes = True


class HoldingResponse(BaseModel):
    id: str
    stock_id: str
    meme_keyword: str
    is_active: bool
    shares_owned: int
    average_buy_price: float
    current_value: int
    market_value: int
    unrealized_pnl: float


class PortfolioResponse(BaseModel):
    points: int
    holdings_value: int
    total_value: int
    holdings: list[HoldingResponse]


class MarketUpdateResponse(BaseModel):
    posts_analyzed: int
    trending_keywords: int
    revalued: list[str]
    unchanged: list[str]
    deactivated: list[str]
    created: list[str]
    skipped_reason: Optional[str]
