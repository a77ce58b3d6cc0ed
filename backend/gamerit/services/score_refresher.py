"""Score refresher: keeps active rounds' live upvote counts current.

Each post is fetched independently: a deleted post keeps its last known
score and is reported as missing, and a transport failure on one post
neither blocks its sibling nor other rounds.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional

from sqlalchemy.orm import Session

from gamerit.exceptions import TokenUnavailable, TransportError
from gamerit.models.round import GameRound, ROUND_ACTIVE
from gamerit.services.change_feed import feed as default_feed, ChangeFeed
from gamerit.services.reddit_client import RedditClient
from gamerit.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PostScore:
    post_id: str
    previous_score: int
    current_score: int
    exists: bool = True
    error: Optional[str] = None


def fetch_post_score(gateway: RedditClient, post_id: str, last_known: int) -> PostScore:
    """Live score for one post, falling back to the last known score.

    TokenUnavailable propagates so a round is never finalized on fallback
    scores for every post.
    """
    try:
        post = gateway.fetch_post_by_id(post_id)
    except TokenUnavailable:
        raise
    except TransportError as e:
        logger.error(f"Error fetching post {post_id}: {e}")
        return PostScore(post_id, last_known, last_known, exists=True, error=str(e))

    if post is None:
        logger.info(f"Post {post_id} appears to be deleted or removed")
        return PostScore(post_id, last_known, last_known, exists=False)
    return PostScore(post_id, last_known, post.score)


def fetch_live_scores(gateway: RedditClient, round_: GameRound) -> tuple[PostScore, PostScore]:
    return (
        fetch_post_score(gateway, round_.post_a_id, round_.post_a_final_score),
        fetch_post_score(gateway, round_.post_b_id, round_.post_b_final_score),
    )


def refresh_round(db: Session, gateway: RedditClient, round_: GameRound) -> Optional[dict]:
    """Write both posts' live scores back in one update.

    Returns None when the round finished in the meantime; a finished round's
    scores belong to settlement.
    """
    score_a, score_b = fetch_live_scores(gateway, round_)
    updated = (
        db.query(GameRound)
        .filter(GameRound.id == round_.id, GameRound.status == ROUND_ACTIVE)
        .update(
            {
                GameRound.post_a_final_score: score_a.current_score,
                GameRound.post_b_final_score: score_b.current_score,
                GameRound.scores_updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    if updated != 1:
        logger.info(f"Round {round_.id} is no longer active, skipped score write")
        return None

    logger.info(
        f"Updated round {round_.id}: Post A: {score_a.previous_score} -> {score_a.current_score}, "
        f"Post B: {score_b.previous_score} -> {score_b.current_score}"
    )
    if not score_a.exists or not score_b.exists:
        logger.warning(
            f"Round {round_.id} has deleted posts - Post A exists: {score_a.exists}, "
            f"Post B exists: {score_b.exists}"
        )
    return {"round_id": round_.id, "post_a": asdict(score_a), "post_b": asdict(score_b)}


def refresh_active_rounds(db: Session, gateway: RedditClient, feed: Optional[ChangeFeed] = None) -> dict:
    """Refresh every active round, isolating failures per round.

    An AuthError or TokenUnavailable from the gateway aborts the whole pass (raised to the caller);
    anything else is logged against the round and the pass continues.
    """
    # Fail fast on credentials before touching any round.
    gateway.get_access_token()

    rounds = (
        db.query(GameRound)
        .filter(GameRound.status == ROUND_ACTIVE)
        .order_by(GameRound.created_at.asc())
        .all()
    )
    if not rounds:
        logger.info("No active rounds to update")
        return {"updated_rounds": 0, "failed_rounds": 0, "results": []}

    results = []
    failed = 0
    for round_ in rounds:
        try:
            result = refresh_round(db, gateway, round_)
        except TokenUnavailable:
            db.rollback()
            raise
        except TransportError as e:
            db.rollback()
            failed += 1
            logger.error(f"Error updating round {round_.id}: {e}")
            continue
        except Exception as e:
            db.rollback()
            failed += 1
            logger.error(f"Error updating round {round_.id}: {e}", exc_info=True)
            continue
        if result:
            results.append(result)

    logger.info(f"Score refresh complete: {len(results)} updated, {failed} failed")
    if results:
        (feed or default_feed).publish(
            "game_rounds",
            {"type": "scores_refreshed", "round_ids": [r["round_id"] for r in results]},
        )
    return {"updated_rounds": len(results), "failed_rounds": failed, "results": results}
