"""Meme stock market: keyword stocks priced from Reddit trend signals.

Update cycle:
1. Pull hot posts from the meme subreddits
2. Tokenize titles and aggregate per keyword (occurrences, score, distinct posts)
3. Revalue active stocks whose keyword is still significant
4. Deactivate stocks that have reached the stock lifetime
5. List new stocks from the strongest unrepresented keywords, up to the ceiling
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from gamerit.config import settings
from gamerit.exceptions import StockNotFound, TokenUnavailable, TransportError
from gamerit.models.meme_stock import MemeStock
from gamerit.services import audit
from gamerit.services.change_feed import feed as default_feed, ChangeFeed
from gamerit.services.reddit_client import RedditClient, RedditPost, PostFilter
from gamerit.timeutil import utcnow, ensure_utc

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"\b[a-zA-Z]{3,}\b")

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "this", "that", "these", "those", "i", "you", "he", "she",
    "it", "we", "they", "me", "him", "her", "us", "them", "my", "your", "his",
    "our", "their", "is", "are", "was", "were", "be", "been", "being", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "when", "where", "why", "how", "what", "who", "which",
    # Reddit vocabulary
    "reddit", "post", "comment", "upvote", "downvote", "karma", "edit", "update",
    # Generic adjectives and time words
    "new", "old", "first", "last", "best", "worst", "good", "bad", "great",
    "amazing", "awesome", "terrible", "just", "now", "today", "yesterday", "tomorrow",
})


@dataclass
class KeywordStats:
    count: int = 0
    total_score: int = 0
    post_ids: set[str] = field(default_factory=set)

    @property
    def posts(self) -> int:
        return len(self.post_ids)


@dataclass
class MarketUpdateResult:
    posts_analyzed: int = 0
    trending_keywords: int = 0
    revalued: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    deactivated: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None


def tokenize(title: str) -> list[str]:
    """Lowercased candidate keywords from a title, stop-words removed."""
    return [w for w in WORD_PATTERN.findall(title.lower()) if w not in STOP_WORDS]


def analyze_keywords(posts: list[RedditPost]) -> dict[str, KeywordStats]:
    """Aggregate occurrences, score and distinct posts per keyword.

    A post's score counts once per keyword no matter how often the keyword
    repeats in its title.
    """
    stats: dict[str, KeywordStats] = {}
    for post in posts:
        for word in tokenize(post.title):
            entry = stats.setdefault(word, KeywordStats())
            entry.count += 1
            if post.id not in entry.post_ids:
                entry.post_ids.add(post.id)
                entry.total_score += post.score
    return stats


def significant_keywords(stats: dict[str, KeywordStats]) -> list[tuple[str, KeywordStats]]:
    """Keywords eligible to back a stock, strongest (total score) first."""
    eligible = [
        (word, s) for word, s in stats.items()
        if s.posts >= settings.KEYWORD_MIN_POSTS and s.count >= settings.KEYWORD_MIN_COUNT
    ]
    return sorted(eligible, key=lambda item: (-item[1].total_score, item[0]))


def stock_value(total_score: int, posts: int) -> int:
    """Chips per share: max(floor, floor((total_score + posts * 10) / 100))."""
    return max(settings.STOCK_VALUE_FLOOR, (total_score + posts * 10) // 100)


def collect_meme_posts(gateway: RedditClient) -> list[RedditPost]:
    """Hot posts from every meme subreddit; a failing subreddit is skipped."""
    post_filter = PostFilter()
    posts: dict[str, RedditPost] = {}
    for subreddit in settings.split(settings.MEME_SUBREDDITS):
        try:
            listing = gateway.fetch_listing(subreddit, sort="hot", limit=settings.MEME_LISTING_LIMIT)
        except TokenUnavailable:
            raise
        except TransportError as e:
            logger.error(f"Error fetching from r/{subreddit}: {e}")
            continue
        accepted = post_filter.apply(listing)
        for post in accepted:
            posts.setdefault(post.id, post)
        logger.info(f"Fetched {len(accepted)} posts from r/{subreddit}")
    logger.info(f"Total posts collected: {len(posts)}")
    return list(posts.values())


def _is_expired(stock: MemeStock, now: datetime) -> bool:
    return ensure_utc(stock.created_at) <= now - timedelta(days=settings.STOCK_LIFETIME_DAYS)


def _revalue(db: Session, stocks: list[MemeStock], stats: dict[str, KeywordStats], now: datetime,
             result: MarketUpdateResult) -> None:
    significant = dict(significant_keywords(stats))
    for stock in stocks:
        keyword_stats = significant.get(stock.meme_keyword)
        if keyword_stats is None:
            # Not trending any more; it survives on its last value until expiry.
            stock.updated_at = now
            result.unchanged.append(stock.meme_keyword)
            logger.info(f"Keeping active stock {stock.meme_keyword} (not currently trending)")
            continue
        new_value = stock_value(keyword_stats.total_score, keyword_stats.posts)
        old_value = stock.current_value
        stock.current_value = new_value
        # Reassign so the JSON column registers the change.
        stock.history = list(stock.history or []) + [{"timestamp": now.isoformat(), "value": new_value}]
        stock.updated_at = now
        result.revalued.append(stock.meme_keyword)
        logger.info(f"Updated active stock {stock.meme_keyword}: {old_value} -> {new_value}")
    db.flush()


def _deactivate_expired(db: Session, now: datetime, result: MarketUpdateResult) -> None:
    cutoff = now - timedelta(days=settings.STOCK_LIFETIME_DAYS)
    expired = (
        db.query(MemeStock)
        .filter(MemeStock.is_active.is_(True), MemeStock.created_at <= cutoff)
        .all()
    )
    for stock in expired:
        updated = (
            db.query(MemeStock)
            .filter(MemeStock.id == stock.id, MemeStock.is_active.is_(True))
            .update(
                {MemeStock.is_active: False, MemeStock.deactivated_at: now, MemeStock.updated_at: now},
                synchronize_session=False,
            )
        )
        if updated == 1:
            audit.record(db, "meme_stock", stock.id, "deactivated",
                         new_data={"keyword": stock.meme_keyword, "final_value": stock.current_value})
            result.deactivated.append(stock.meme_keyword)
            logger.info(f"Deactivated expired stock: {stock.meme_keyword} (created {stock.created_at})")


def _list_new_stocks(db: Session, stats: dict[str, KeywordStats], now: datetime,
                     result: MarketUpdateResult) -> None:
    active_keywords = {
        k for (k,) in db.query(MemeStock.meme_keyword).filter(MemeStock.is_active.is_(True)).all()
    }
    slots = max(0, settings.STOCK_CEILING - len(active_keywords))
    if slots == 0:
        logger.info(f"No slots available for new stocks ({len(active_keywords)}/{settings.STOCK_CEILING} active)")
        return

    candidates = [
        (word, s) for word, s in significant_keywords(stats) if word not in active_keywords
    ][:slots]
    logger.info(f"Adding {len(candidates)} new stocks ({slots} slots available)")
    for keyword, keyword_stats in candidates:
        value = stock_value(keyword_stats.total_score, keyword_stats.posts)
        stock = MemeStock(
            meme_keyword=keyword,
            current_value=value,
            is_active=True,
            history=[{"timestamp": now.isoformat(), "value": value}],
            created_at=now,
            updated_at=now,
        )
        db.add(stock)
        db.flush()
        audit.record(db, "meme_stock", stock.id, "created", new_data={"keyword": keyword, "value": value})
        result.created.append(keyword)
        logger.info(f"Created new stock {keyword}: {value}")


def update_market(
    db: Session,
    gateway: RedditClient,
    create_new: bool = True,
    deactivate: bool = True,
    now: Optional[datetime] = None,
    feed: Optional[ChangeFeed] = None,
) -> MarketUpdateResult:
    """Run one market cycle in a single transaction.

    With create_new and deactivate off this is the display refresh: values
    only. If no posts could be fetched at all the cycle is abandoned rather
    than treating every keyword as having gone quiet.
    """
    now = now or utcnow()
    result = MarketUpdateResult()

    posts = collect_meme_posts(gateway)
    result.posts_analyzed = len(posts)
    if not posts:
        logger.warning("No meme posts fetched, skipping market update")
        result.skipped_reason = "no_posts"
        return result

    stats = analyze_keywords(posts)
    result.trending_keywords = len(significant_keywords(stats))
    logger.info(f"Found {result.trending_keywords} significant keywords")

    try:
        active = db.query(MemeStock).filter(MemeStock.is_active.is_(True)).all()
        live = [s for s in active if not _is_expired(s, now)]
        logger.info(f"Active stocks (< {settings.STOCK_LIFETIME_DAYS} days): {len(live)}")
        _revalue(db, live, stats, now, result)
        if deactivate:
            _deactivate_expired(db, now, result)
        if create_new:
            _list_new_stocks(db, stats, now, result)
        db.commit()
    except Exception:
        db.rollback()
        raise

    (feed or default_feed).publish("meme_stocks", {
        "type": "market_updated",
        "revalued": result.revalued,
        "deactivated": result.deactivated,
        "created": result.created,
    })
    return result


def refresh_market_values(
    db: Session,
    gateway: RedditClient,
    now: Optional[datetime] = None,
    feed: Optional[ChangeFeed] = None,
) -> MarketUpdateResult:
    """Manual refresh for display: revalue only, never create or expire."""
    return update_market(db, gateway, create_new=False, deactivate=False, now=now, feed=feed)


def list_active_stocks(db: Session) -> list[MemeStock]:
    return (
        db.query(MemeStock)
        .filter(MemeStock.is_active.is_(True))
        .order_by(MemeStock.current_value.desc(), MemeStock.meme_keyword.asc())
        .all()
    )


def get_stock(db: Session, stock_id: str) -> MemeStock:
    stock = db.query(MemeStock).filter(MemeStock.id == stock_id).first()
    if not stock:
        raise StockNotFound("Stock not found")
    return stock
