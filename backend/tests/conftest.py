"""Shared fixtures: in-memory database, player/round/stock factories, fake Reddit."""

import os
import sys
from datetime import timedelta

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import gamerit.models  # noqa: F401
from gamerit.database import Base
from gamerit.exceptions import AuthError, TokenUnavailable, TransportError
from gamerit.models.meme_stock import MemeStock
from gamerit.models.player import Player
from gamerit.models.round import GameRound, ROUND_ACTIVE
from gamerit.services.change_feed import ChangeFeed
from gamerit.services.reddit_client import RedditPost
from gamerit.timeutil import utcnow


def make_post(post_id: str, subreddit: str, score: int, title: str = None, **kwargs) -> RedditPost:
    return RedditPost(
        id=post_id,
        title=title or f"A perfectly ordinary post titled {post_id}",
        author=kwargs.pop("author", f"user_{post_id}"),
        subreddit=subreddit,
        score=score,
        **kwargs,
    )


class FakeRedditGateway:
    """In-memory stand-in for RedditClient with scriptable failures."""

    def __init__(self, listings: dict = None, posts: dict = None):
        self.listings = listings or {}  # subreddit -> [RedditPost]
        self.posts = posts or {}  # post id -> RedditPost (missing = deleted)
        self.failing_subreddits: set[str] = set()
        self.failing_posts: set[str] = set()
        self.auth_fails = False
        self.token_unavailable = False
        self.calls: list[tuple] = []

    def get_access_token(self) -> str:
        if self.auth_fails:
            raise AuthError("Reddit token endpoint rejected credentials (401)")
        if self.token_unavailable:
            raise TokenUnavailable("Token request timed out after 15.0s")
        return "fake-token"

    def fetch_listing(self, subreddit, sort="hot", limit=50, time_filter=None):
        self.get_access_token()
        self.calls.append(("listing", subreddit, sort, time_filter))
        if subreddit in self.failing_subreddits:
            raise TransportError(f"Reddit returned 503 for /r/{subreddit}/{sort}", status_code=503)
        return list(self.listings.get(subreddit, []))[:limit]

    def fetch_post_by_id(self, post_id):
        self.get_access_token()
        self.calls.append(("post", post_id))
        if post_id in self.failing_posts:
            raise TransportError(f"Request timeout: /api/info?id=t3_{post_id}")
        return self.posts.get(post_id)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def feed():
    return ChangeFeed()


@pytest.fixture
def gateway():
    return FakeRedditGateway()


@pytest.fixture
def make_player(db):
    counter = {"n": 0}

    def _make(points: int = 1000, username: str = None) -> Player:
        counter["n"] += 1
        n = counter["n"]
        player = Player(
            reddit_id=f"t2_player{n}",
            reddit_username=username or f"player{n}",
            points=points,
        )
        db.add(player)
        db.commit()
        db.refresh(player)
        return player

    return _make


@pytest.fixture
def make_round(db):
    counter = {"n": 0}

    def _make(
        a_score: int = 100,
        b_score: int = 100,
        a_sub: str = "funny",
        b_sub: str = "AskReddit",
        age_hours: float = 0,
        status: str = ROUND_ACTIVE,
    ) -> GameRound:
        counter["n"] += 1
        n = counter["n"]
        round_ = GameRound(
            status=status,
            post_a_id=f"pa{n}",
            post_a_title=f"Post A number {n} with a long enough title",
            post_a_author="alice",
            post_a_subreddit=a_sub,
            post_a_initial_score=a_score,
            post_a_final_score=a_score,
            post_b_id=f"pb{n}",
            post_b_title=f"Post B number {n} with a long enough title",
            post_b_author="bob",
            post_b_subreddit=b_sub,
            post_b_initial_score=b_score,
            post_b_final_score=b_score,
            created_at=utcnow() - timedelta(hours=age_hours),
        )
        db.add(round_)
        db.commit()
        db.refresh(round_)
        return round_

    return _make


@pytest.fixture
def make_stock(db):
    def _make(keyword: str, value: int = 40, age_days: float = 0, active: bool = True) -> MemeStock:
        created = utcnow() - timedelta(days=age_days)
        stock = MemeStock(
            meme_keyword=keyword,
            current_value=value,
            is_active=active,
            history=[{"timestamp": created.isoformat(), "value": value}],
            created_at=created,
            updated_at=created,
        )
        db.add(stock)
        db.commit()
        db.refresh(stock)
        return stock

    return _make


def age_round(db, round_: GameRound, hours: float) -> None:
    """Backdate a round's creation so it is due for expiry."""
    db.query(GameRound).filter(GameRound.id == round_.id).update(
        {GameRound.created_at: utcnow() - timedelta(hours=hours)},
        synchronize_session=False,
    )
    db.commit()
    db.refresh(round_)
