"""Reddit gateway: app-only OAuth, listings, single-post lookups and comments.

Every call is bounded by an explicit timeout. Failures are classified:
  - AuthError:       credentials missing or rejected by the token endpoint
  - TransportError:  timeout, connection failure, 429 or 5xx (retryable)
  - TokenUnavailable: a TransportError from the token endpoint itself; callers
                     abort the whole cycle instead of skipping one item
  - not found:       404 / empty result, returned as None or [] (not an error)
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from gamerit.config import settings
from gamerit.exceptions import AuthError, TokenUnavailable, TransportError

logger = logging.getLogger(__name__)

VALID_SORTS = ("hot", "new", "top", "rising", "controversial")
DELETED_MARKERS = ("[deleted]", "[removed]")


@dataclass
class RedditPost:
    """A submission as returned by listing and info endpoints."""
    id: str
    title: str
    author: str
    subreddit: str
    score: int
    permalink: str = ""
    created_utc: float = 0.0
    num_comments: int = 0
    over_18: bool = False
    stickied: bool = False
    selftext: str = ""
    removed: bool = False

    @classmethod
    def from_api(cls, data: dict) -> "RedditPost":
        author = data.get("author") or "[deleted]"
        selftext = data.get("selftext") or ""
        removed = (
            author in DELETED_MARKERS
            or bool(data.get("removed_by_category"))
            or selftext in DELETED_MARKERS
        )
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            author=author,
            subreddit=data.get("subreddit") or "",
            score=int(data.get("score") or 0),
            permalink=data.get("permalink") or "",
            created_utc=float(data.get("created_utc") or 0.0),
            num_comments=int(data.get("num_comments") or 0),
            over_18=bool(data.get("over_18")),
            stickied=bool(data.get("stickied")),
            selftext=selftext,
            removed=removed,
        )


@dataclass
class RedditComment:
    id: str
    body: str
    author: str
    score: int
    depth: int = 0
    permalink: str = ""
    created_utc: float = 0.0

    @property
    def removed(self) -> bool:
        return self.author in DELETED_MARKERS or self.body in DELETED_MARKERS


@dataclass
class SubredditInfo:
    name: str
    title: str
    description: str
    subscribers: int
    over_18: bool = False


@dataclass
class PostFilter:
    """Uniform content rules; thresholds are tuned per consumer.

    NSFW, stickied and deleted/removed posts are always excluded unless
    allow_nsfw is set for the NSFW part.
    """
    min_score: int = 0
    min_title_length: int = 0
    max_title_length: Optional[int] = None
    min_body_length: int = 0
    allow_nsfw: bool = False
    exclude_ids: set[str] = field(default_factory=set)

    def accepts(self, post: RedditPost) -> bool:
        if post.removed or post.stickied:
            return False
        if post.over_18 and not self.allow_nsfw:
            return False
        if post.id in self.exclude_ids:
            return False
        if post.score < self.min_score:
            return False
        if len(post.title) < self.min_title_length:
            return False
        if self.max_title_length is not None and len(post.title) > self.max_title_length:
            return False
        if self.min_body_length and len(post.selftext) < self.min_body_length:
            return False
        return True

    def apply(self, posts: list[RedditPost]) -> list[RedditPost]:
        return [p for p in posts if self.accepts(p)]


class RedditClient:
    """Thin client over Reddit's OAuth API using the client-credentials grant."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        token_timeout: Optional[float] = None,
        base_url: Optional[str] = None,
        token_url: Optional[str] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.REDDIT_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.REDDIT_CLIENT_SECRET
        self.user_agent = user_agent or settings.REDDIT_USER_AGENT
        self.session = session or requests.Session()
        self.timeout = timeout or settings.REDDIT_REQUEST_TIMEOUT
        self.token_timeout = token_timeout or settings.REDDIT_TOKEN_TIMEOUT
        self.base_url = (base_url or settings.REDDIT_API_BASE_URL).rstrip("/")
        self.token_url = token_url or settings.REDDIT_TOKEN_URL
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    # ── Auth ────────────────────────────────────────────────────────────────

    def get_access_token(self) -> str:
        """Return a cached app-only bearer token, fetching a new one when stale."""
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        if not self.client_id or not self.client_secret:
            raise AuthError("Reddit client credentials are not configured")

        try:
            response = self.session.post(
                self.token_url,
                auth=(self.client_id, self.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"User-Agent": self.user_agent},
                timeout=self.token_timeout,
            )
        except Timeout:
            raise TokenUnavailable(f"Token request timed out after {self.token_timeout}s")
        except (ConnectionError, RequestException) as e:
            raise TokenUnavailable(f"Token request failed: {e}")

        if response.status_code in (400, 401, 403):
            logger.error(f"Reddit token endpoint rejected credentials: {response.status_code}")
            raise AuthError(f"Reddit token endpoint rejected credentials ({response.status_code})")
        if response.status_code == 429 or response.status_code >= 500:
            raise TokenUnavailable(
                f"Reddit token endpoint unavailable ({response.status_code})",
                status_code=response.status_code,
            )
        if not response.ok:
            raise AuthError(f"Unexpected token response ({response.status_code})")

        try:
            payload = response.json()
        except ValueError:
            raise AuthError("Token endpoint returned malformed JSON")

        token = payload.get("access_token")
        if not token:
            raise AuthError(f"Token endpoint returned no access_token: {payload.get('error', 'unknown')}")

        expires_in = int(payload.get("expires_in") or 3600)
        self._token = token
        # Refresh a minute early so long cycles never send an expired token.
        self._token_expires_at = time.monotonic() + max(expires_in - 60, 0)
        logger.debug(f"Obtained Reddit access token (expires in {expires_in}s)")
        return token

    def invalidate_token(self) -> None:
        self._token = None
        self._token_expires_at = 0.0

    # ── Transport ───────────────────────────────────────────────────────────

    def _get(self, path: str, params: Optional[dict] = None, _retry_auth: bool = True) -> Optional[Any]:
        """GET an OAuth API path. Returns parsed JSON, or None for not-found."""
        token = self.get_access_token()
        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(
                url,
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "User-Agent": self.user_agent,
                },
                timeout=self.timeout,
            )
        except Timeout:
            logger.error(f"Request to {url} timed out after {self.timeout}s")
            raise TransportError(f"Request timeout: {url}")
        except (ConnectionError, RequestException) as e:
            logger.error(f"Network error for {url}: {e}")
            raise TransportError(f"Network error: {url}: {e}")

        status = response.status_code
        if status == 401 and _retry_auth:
            # Token revoked or expired early; fetch a fresh one once.
            self.invalidate_token()
            return self._get(path, params, _retry_auth=False)
        if status == 401:
            raise AuthError(f"Reddit rejected bearer token for {path}")
        if status in (403, 404):
            # Private, banned or missing: a normal not-found outcome.
            return None
        if status == 429 or status >= 500:
            raise TransportError(f"Reddit returned {status} for {path}", status_code=status)
        if not response.ok:
            raise TransportError(f"Reddit returned {status} for {path}", status_code=status)

        try:
            return response.json()
        except ValueError:
            raise TransportError(f"Malformed JSON from {path}")

    # ── Endpoints ───────────────────────────────────────────────────────────

    def fetch_listing(
        self,
        subreddit: str,
        sort: str = "hot",
        limit: int = 50,
        time_filter: Optional[str] = None,
    ) -> list[RedditPost]:
        """Fetch a subreddit listing. Unfiltered; consumers apply a PostFilter."""
        if sort not in VALID_SORTS:
            raise ValueError(f"Unsupported sort '{sort}'")
        params: dict = {"limit": limit, "raw_json": 1}
        if time_filter:
            params["t"] = time_filter

        data = self._get(f"/r/{subreddit}/{sort}", params)
        if not data:
            return []
        children = data.get("data", {}).get("children", [])
        return [
            RedditPost.from_api(child["data"])
            for child in children
            if child.get("kind") == "t3" and child.get("data", {}).get("id")
        ]

    def fetch_post_by_id(self, post_id: str) -> Optional[RedditPost]:
        """Look up a single post. None means deleted/removed/unknown upstream."""
        data = self._get("/api/info", {"id": f"t3_{post_id}", "raw_json": 1})
        if not data:
            return None
        children = data.get("data", {}).get("children", [])
        if not children or not children[0].get("data"):
            return None
        post = RedditPost.from_api(children[0]["data"])
        if post.removed:
            return None
        return post

    def fetch_comments(self, post_id: str, limit: int = 50, subreddit: Optional[str] = None) -> list[RedditComment]:
        """Fetch a post's comment tree flattened depth-first, skipping deleted bodies."""
        path = f"/r/{subreddit}/comments/{post_id}" if subreddit else f"/comments/{post_id}"
        data = self._get(path, {"limit": limit, "raw_json": 1})
        if not data or not isinstance(data, list) or len(data) < 2:
            return []

        comments: list[RedditComment] = []

        def walk(children: list, depth: int) -> None:
            for child in children:
                if len(comments) >= limit:
                    return
                if child.get("kind") != "t1":
                    continue
                d = child.get("data", {})
                comment = RedditComment(
                    id=d.get("id", ""),
                    body=d.get("body") or "",
                    author=d.get("author") or "[deleted]",
                    score=int(d.get("score") or 0),
                    depth=depth,
                    permalink=d.get("permalink") or "",
                    created_utc=float(d.get("created_utc") or 0.0),
                )
                if not comment.removed:
                    comments.append(comment)
                replies = d.get("replies")
                if isinstance(replies, dict):
                    walk(replies.get("data", {}).get("children", []), depth + 1)

        walk(data[1].get("data", {}).get("children", []), 0)
        return comments

    def fetch_subreddit(self, name: str) -> Optional[SubredditInfo]:
        data = self._get(f"/r/{name}/about", {"raw_json": 1})
        if not data or data.get("kind") != "t5":
            return None
        return _subreddit_from_api(data.get("data", {}))

    def search_subreddits(self, query: str, limit: int = 10) -> list[SubredditInfo]:
        """Search subreddits by name/topic, dropping NSFW and sorting by subscribers."""
        if not query or len(query.strip()) < 2:
            raise ValueError("Query must be at least 2 characters long")
        if limit < 1 or limit > 25:
            raise ValueError("Limit must be between 1 and 25")

        data = self._get("/subreddits/search", {"q": query.strip(), "limit": limit, "sort": "relevance"})
        if not data:
            return []
        results = [
            _subreddit_from_api(child.get("data", {}))
            for child in data.get("data", {}).get("children", [])
        ]
        results = [s for s in results if not s.over_18]
        return sorted(results, key=lambda s: s.subscribers, reverse=True)


def _subreddit_from_api(d: dict) -> SubredditInfo:
    name = d.get("display_name") or ""
    return SubredditInfo(
        name=name,
        title=d.get("title") or name,
        description=d.get("public_description") or "No description available",
        subscribers=int(d.get("subscribers") or 0),
        over_18=bool(d.get("over18")),
    )


def get_reddit_client() -> RedditClient:
    """FastAPI dependency; overridden in tests."""
    return RedditClient()
