"""Round pool manager: keeps a ceiling of concurrently active betting rounds.

Cycle:
1. Expire: every active round older than the round lifetime has its scores
   finalized from Reddit, its winner computed, and its bets settled, all in
   one transaction per round.
2. Fill: sample candidate posts from curated subreddits, skip posts and
   subreddit pairings used recently, and create rounds until the ceiling is
   reached or the candidate pool runs dry.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from gamerit.config import settings
from gamerit.exceptions import AuthError, PopulationCeilingReached, TokenUnavailable, TransportError
from gamerit.models.round import GameRound, ROUND_ACTIVE, ROUND_FINISHED
from gamerit.services import audit, bet_ledger, score_refresher
from gamerit.services.change_feed import feed as default_feed, ChangeFeed
from gamerit.services.reddit_client import RedditClient, RedditPost, PostFilter
from gamerit.timeutil import utcnow

logger = logging.getLogger(__name__)

# (sort, time filter) combinations sampled per subreddit for variety.
CANDIDATE_SORTS = (("hot", None), ("top", "day"), ("top", "week"))


@dataclass
class CycleResult:
    active_before: int = 0
    active_after: int = 0
    expired: list[str] = field(default_factory=list)
    created: list[str] = field(default_factory=list)
    candidates: int = 0
    skipped_reason: Optional[str] = None


def count_active_rounds(db: Session) -> int:
    return db.query(GameRound).filter(GameRound.status == ROUND_ACTIVE).count()


def recent_exclusions(db: Session, window: Optional[int] = None) -> tuple[set[str], set[tuple[str, str]]]:
    """Post ids and subreddit pairs (both orderings) used by the last N rounds."""
    window = window or settings.RECENT_ROUNDS_WINDOW
    rows = (
        db.query(
            GameRound.post_a_id,
            GameRound.post_b_id,
            GameRound.post_a_subreddit,
            GameRound.post_b_subreddit,
        )
        .order_by(GameRound.created_at.desc())
        .limit(window)
        .all()
    )
    post_ids: set[str] = set()
    pairs: set[tuple[str, str]] = set()
    for a_id, b_id, a_sub, b_sub in rows:
        post_ids.update((a_id, b_id))
        pairs.add((a_sub.lower(), b_sub.lower()))
        pairs.add((b_sub.lower(), a_sub.lower()))
    return post_ids, pairs


def candidate_filter(exclude_ids: set[str]) -> PostFilter:
    return PostFilter(
        min_score=settings.ROUND_MIN_SCORE,
        min_title_length=settings.ROUND_MIN_TITLE_LENGTH,
        max_title_length=settings.ROUND_MAX_TITLE_LENGTH,
        exclude_ids=exclude_ids,
    )


def collect_candidates(
    gateway: RedditClient,
    exclude_ids: set[str],
    rng: Optional[random.Random] = None,
) -> list[RedditPost]:
    """Pull, filter and de-duplicate candidate posts across sampled subreddits.

    A failing subreddit/sort is logged and skipped. AuthError propagates:
    without a token nothing else in the cycle can succeed.
    """
    rng = rng or random.Random()
    subreddits = settings.split(settings.ROUND_SUBREDDITS)
    sample_size = min(settings.ROUND_SUBREDDITS_PER_CYCLE, len(subreddits))
    selected = rng.sample(subreddits, sample_size)
    logger.info(f"Fetching posts from: {', '.join(selected)}")

    post_filter = candidate_filter(exclude_ids)
    unique: dict[str, RedditPost] = {}
    for subreddit in selected:
        for sort, time_filter in CANDIDATE_SORTS:
            label = f"r/{subreddit}/{sort}" + (f"?t={time_filter}" if time_filter else "")
            try:
                posts = gateway.fetch_listing(
                    subreddit, sort=sort, limit=settings.ROUND_LISTING_LIMIT, time_filter=time_filter
                )
            except TokenUnavailable:
                raise
            except TransportError as e:
                logger.error(f"Error fetching from {label}: {e}")
                continue
            accepted = post_filter.apply(posts)
            for post in accepted:
                unique.setdefault(post.id, post)
            logger.debug(f"Found {len(accepted)} unused posts from {label}")

    logger.info(f"Total unique unused posts collected: {len(unique)}")
    return list(unique.values())


def choose_pair(
    candidates: list[RedditPost],
    used_pairs: set[tuple[str, str]],
) -> Optional[tuple[RedditPost, RedditPost]]:
    """Pick two posts for a round.

    Preference: the highest-scored pair from two different subreddits whose
    pairing has not been used recently. Fallback: the top post plus the first
    post from another subreddit, else the top two posts.
    """
    if len(candidates) < 2:
        return None
    ranked = sorted(candidates, key=lambda p: p.score, reverse=True)

    for i, post_a in enumerate(ranked):
        for post_b in ranked[i + 1:]:
            sub_a, sub_b = post_a.subreddit.lower(), post_b.subreddit.lower()
            if sub_a != sub_b and (sub_a, sub_b) not in used_pairs:
                return post_a, post_b

    post_a = ranked[0]
    for post_b in ranked[1:]:
        if post_b.subreddit.lower() != post_a.subreddit.lower():
            return post_a, post_b
    return post_a, ranked[1]


def create_round(db: Session, post_a: RedditPost, post_b: RedditPost, actor_id: Optional[str] = None) -> GameRound:
    """Insert an active round; both scores captured as initial and provisional final."""
    if post_a.id == post_b.id:
        raise ValueError("A round needs two distinct posts")
    round_ = GameRound(
        status=ROUND_ACTIVE,
        post_a_id=post_a.id,
        post_a_title=post_a.title,
        post_a_author=post_a.author,
        post_a_subreddit=post_a.subreddit,
        post_a_initial_score=post_a.score,
        post_a_final_score=post_a.score,
        post_b_id=post_b.id,
        post_b_title=post_b.title,
        post_b_author=post_b.author,
        post_b_subreddit=post_b.subreddit,
        post_b_initial_score=post_b.score,
        post_b_final_score=post_b.score,
    )
    db.add(round_)
    db.flush()
    audit.record(
        db, "round", round_.id, "created",
        new_data={
            "post_a": {"id": post_a.id, "subreddit": post_a.subreddit, "score": post_a.score},
            "post_b": {"id": post_b.id, "subreddit": post_b.subreddit, "score": post_b.score},
        },
        actor_id=actor_id,
    )
    db.commit()
    db.refresh(round_)
    logger.info(
        f"Created round {round_.id}: {post_a.id} from r/{post_a.subreddit} ({post_a.score}) "
        f"vs {post_b.id} from r/{post_b.subreddit} ({post_b.score})"
    )
    return round_


def fill_round_pool(
    db: Session,
    gateway: RedditClient,
    max_new: Optional[int] = None,
    rng: Optional[random.Random] = None,
    feed: Optional[ChangeFeed] = None,
    actor_id: Optional[str] = None,
) -> list[GameRound]:
    """Create rounds until the ceiling (or max_new) is reached.

    Raises PopulationCeilingReached when the pool is already full. Returns an
    empty list, without error, when fewer than two usable posts were found.
    """
    ceiling = settings.ROUND_CEILING
    active = count_active_rounds(db)
    if active >= ceiling:
        logger.info(f"Maximum rounds reached ({active}/{ceiling}), skipping creation")
        raise PopulationCeilingReached(active, ceiling)

    used_ids, used_pairs = recent_exclusions(db)
    logger.info(f"Found {len(used_ids)} previously used post IDs to avoid")
    pool = collect_candidates(gateway, used_ids, rng)
    if len(pool) < 2:
        logger.warning("Not enough unique unused posts found to create a round")
        return []

    wanted = ceiling - active
    if max_new is not None:
        wanted = min(wanted, max_new)

    created: list[GameRound] = []
    while len(created) < wanted:
        pair = choose_pair(pool, used_pairs)
        if pair is None:
            logger.info("Candidate pool exhausted")
            break
        post_a, post_b = pair
        # Re-check inside the loop: another instance may be filling too.
        if count_active_rounds(db) >= ceiling:
            logger.info("Ceiling reached by a concurrent cycle, stopping")
            break
        created.append(create_round(db, post_a, post_b, actor_id=actor_id))
        pool = [p for p in pool if p.id not in (post_a.id, post_b.id)]
        sub_a, sub_b = post_a.subreddit.lower(), post_b.subreddit.lower()
        used_pairs.update({(sub_a, sub_b), (sub_b, sub_a)})

    if created:
        (feed or default_feed).publish(
            "game_rounds", {"type": "rounds_created", "round_ids": [r.id for r in created]}
        )
    return created


def create_round_now(
    db: Session,
    gateway: RedditClient,
    rng: Optional[random.Random] = None,
    feed: Optional[ChangeFeed] = None,
    actor_id: Optional[str] = None,
) -> Optional[GameRound]:
    """Manual trigger: one new round, subject to the same ceiling."""
    created = fill_round_pool(db, gateway, max_new=1, rng=rng, feed=feed, actor_id=actor_id)
    return created[0] if created else None


def compute_winner(
    round_: GameRound,
    criterion: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> str:
    """A or B; ties are broken uniformly at random."""
    criterion = criterion or settings.WINNER_CRITERION
    if criterion == "absolute":
        score_a, score_b = round_.post_a_final_score, round_.post_b_final_score
    else:
        score_a = round_.post_a_final_score - round_.post_a_initial_score
        score_b = round_.post_b_final_score - round_.post_b_initial_score
    if score_a > score_b:
        return "A"
    if score_b > score_a:
        return "B"
    return (rng or random).choice(("A", "B"))


def finish_round(
    db: Session,
    round_: GameRound,
    gateway: Optional[RedditClient] = None,
    rng: Optional[random.Random] = None,
    feed: Optional[ChangeFeed] = None,
) -> Optional[dict]:
    """Finalize scores, pick the winner and settle, in that order.

    The active -> finished transition is a conditional UPDATE; if another
    invocation already made it, this one does nothing and returns None.
    AuthError and TokenUnavailable propagate so the round stays active.
    """
    if gateway is not None:
        score_a, score_b = score_refresher.fetch_live_scores(gateway, round_)
        round_.post_a_final_score = score_a.current_score
        round_.post_b_final_score = score_b.current_score

    winner = compute_winner(round_, rng=rng)
    finished_at = utcnow()
    transitioned = (
        db.query(GameRound)
        .filter(GameRound.id == round_.id, GameRound.status == ROUND_ACTIVE)
        .update(
            {
                GameRound.status: ROUND_FINISHED,
                GameRound.winner: winner,
                GameRound.post_a_final_score: round_.post_a_final_score,
                GameRound.post_b_final_score: round_.post_b_final_score,
                GameRound.finished_at: finished_at,
            },
            synchronize_session=False,
        )
    )
    if transitioned != 1:
        db.rollback()
        logger.info(f"Round {round_.id} was already finished by another invocation")
        return None

    # Make the ORM instance reflect the committed-to-be state for settlement.
    db.expire(round_)
    try:
        payouts = bet_ledger.settle_round(db, round_.id, commit=False)
        audit.record(
            db, "round", round_.id, "finished",
            new_data={
                "winner": winner,
                "post_a_final_score": round_.post_a_final_score,
                "post_b_final_score": round_.post_b_final_score,
                "payouts": len(payouts),
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"Round {round_.id}: Post {winner} wins "
        f"(A: {round_.post_a_initial_score} -> {round_.post_a_final_score}, "
        f"B: {round_.post_b_initial_score} -> {round_.post_b_final_score})"
    )
    (feed or default_feed).publish(
        "game_rounds", {"type": "round_finished", "round_id": round_.id, "winner": winner}
    )
    if payouts:
        (feed or default_feed).publish(
            "players", {"type": "payouts", "player_ids": sorted({p["player_id"] for p in payouts})}
        )
    return {"round_id": round_.id, "winner": winner, "payouts": payouts}


def expire_rounds(
    db: Session,
    gateway: Optional[RedditClient],
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
    feed: Optional[ChangeFeed] = None,
) -> list[dict]:
    """Finish every active round whose age has reached the round lifetime."""
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.ROUND_LIFETIME_HOURS)
    expired = (
        db.query(GameRound)
        .filter(GameRound.status == ROUND_ACTIVE, GameRound.created_at <= cutoff)
        .order_by(GameRound.created_at.asc())
        .all()
    )
    if not expired:
        logger.info("No rounds to end")
        return []

    logger.info(f"Found {len(expired)} expired rounds to process")
    finished = []
    for round_ in expired:
        try:
            result = finish_round(db, round_, gateway=gateway, rng=rng, feed=feed)
        except (AuthError, TokenUnavailable):
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Error processing round {round_.id}: {e}", exc_info=True)
            continue
        if result:
            finished.append(result)
    return finished


def manage_round_pool(
    db: Session,
    gateway: RedditClient,
    rng: Optional[random.Random] = None,
    feed: Optional[ChangeFeed] = None,
) -> CycleResult:
    """One full cycle: expire and settle, then top the pool back up.

    Idempotent: run again immediately, it finds nothing to expire and a full
    pool. Aborts cleanly (no partial state) when no access token can be
    obtained, checked before any round is touched.
    """
    result = CycleResult(active_before=count_active_rounds(db))
    try:
        gateway.get_access_token()
        finished = expire_rounds(db, gateway, rng=rng, feed=feed)
        result.expired = [f["round_id"] for f in finished]
        created = fill_round_pool(db, gateway, rng=rng, feed=feed)
        result.created = [r.id for r in created]
        if not created:
            result.skipped_reason = "no_candidates"
    except PopulationCeilingReached:
        result.skipped_reason = "ceiling_reached"
    except AuthError as e:
        logger.error(f"Round pool cycle aborted, Reddit auth failed: {e}")
        result.skipped_reason = "auth_error"
    except TokenUnavailable as e:
        logger.error(f"Round pool cycle aborted, Reddit token endpoint unreachable: {e}")
        result.skipped_reason = "token_unavailable"

    result.active_after = count_active_rounds(db)
    logger.info(
        f"Round pool cycle: {len(result.expired)} expired, {len(result.created)} created, "
        f"{result.active_before} -> {result.active_after} active"
    )
    return result


def list_active_rounds(db: Session) -> list[GameRound]:
    return (
        db.query(GameRound)
        .filter(GameRound.status == ROUND_ACTIVE)
        .order_by(GameRound.created_at.desc())
        .all()
    )


def list_previous_rounds(db: Session, limit: int = 10) -> list[GameRound]:
    return (
        db.query(GameRound)
        .filter(GameRound.status == ROUND_FINISHED)
        .order_by(GameRound.finished_at.desc(), GameRound.created_at.desc())
        .limit(limit)
        .all()
    )


def get_round(db: Session, round_id: str) -> Optional[GameRound]:
    return db.query(GameRound).filter(GameRound.id == round_id).first()
