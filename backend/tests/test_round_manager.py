"""Tests for the round pool: sampling, ceiling, expiry and settlement order."""

import random
from unittest.mock import MagicMock

import pytest
from requests.exceptions import Timeout

from conftest import FakeRedditGateway, age_round, make_post
from gamerit.config import settings
from gamerit.exceptions import AuthError, PopulationCeilingReached, TokenUnavailable
from gamerit.models.audit_log import AuditLog
from gamerit.models.player import Player
from gamerit.models.round import GameRound, ROUND_ACTIVE, ROUND_FINISHED
from gamerit.services import bet_ledger, round_manager
from gamerit.services.reddit_client import RedditClient


@pytest.fixture
def curated(monkeypatch):
    """Three curated subreddits, each with two eligible posts."""
    monkeypatch.setattr(settings, "ROUND_SUBREDDITS", "alpha,beta,gamma")
    monkeypatch.setattr(settings, "ROUND_SUBREDDITS_PER_CYCLE", 6)
    return FakeRedditGateway(listings={
        "alpha": [make_post("a1", "alpha", 500), make_post("a2", "alpha", 400)],
        "beta": [make_post("b1", "beta", 450), make_post("b2", "beta", 300)],
        "gamma": [make_post("g1", "gamma", 350), make_post("g2", "gamma", 200)],
    })


def _active(db):
    return db.query(GameRound).filter(GameRound.status == ROUND_ACTIVE).count()


class TestCandidateCollection:
    """Candidate pool building and filtering."""

    def test_samples_every_sort_per_subreddit(self, curated):
        round_manager.collect_candidates(curated, set(), random.Random(1))
        sorts = {(c[1], c[2], c[3]) for c in curated.calls}
        assert ("alpha", "hot", None) in sorts
        assert ("alpha", "top", "day") in sorts
        assert ("alpha", "top", "week") in sorts

    def test_deduplicates_across_sorts(self, curated):
        pool = round_manager.collect_candidates(curated, set(), random.Random(1))
        assert sorted(p.id for p in pool) == ["a1", "a2", "b1", "b2", "g1", "g2"]

    def test_excludes_recent_and_low_quality_posts(self, curated):
        curated.listings["alpha"] += [
            make_post("low", "alpha", 3),
            make_post("short", "alpha", 900, title="too short"),
            make_post("nsfw", "alpha", 900, over_18=True),
            make_post("pinned", "alpha", 900, stickied=True),
            make_post("gone", "alpha", 900, removed=True),
        ]
        pool = round_manager.collect_candidates(curated, {"a1"}, random.Random(1))
        ids = {p.id for p in pool}
        assert "a1" not in ids
        assert not ids & {"low", "short", "nsfw", "pinned", "gone"}

    def test_failing_subreddit_is_skipped(self, curated):
        curated.failing_subreddits.add("beta")
        pool = round_manager.collect_candidates(curated, set(), random.Random(1))
        assert sorted(p.id for p in pool) == ["a1", "a2", "g1", "g2"]

    def test_auth_error_propagates(self, curated):
        curated.auth_fails = True
        with pytest.raises(AuthError):
            round_manager.collect_candidates(curated, set(), random.Random(1))


class TestChoosePair:
    """Pair selection prefers fresh cross-subreddit pairings."""

    def test_prefers_top_pair_from_distinct_subreddits(self):
        posts = [make_post("a1", "alpha", 500), make_post("a2", "alpha", 480), make_post("b1", "beta", 100)]
        post_a, post_b = round_manager.choose_pair(posts, set())
        assert (post_a.id, post_b.id) == ("a1", "b1")

    def test_skips_recently_used_subreddit_pair(self):
        posts = [make_post("a1", "alpha", 500), make_post("b1", "beta", 400), make_post("g1", "gamma", 300)]
        used = {("alpha", "beta"), ("beta", "alpha")}
        post_a, post_b = round_manager.choose_pair(posts, used)
        assert (post_a.id, post_b.id) == ("a1", "g1")

    def test_falls_back_when_every_pair_is_stale(self):
        posts = [make_post("a1", "alpha", 500), make_post("a2", "alpha", 450), make_post("b1", "beta", 400)]
        used = {("alpha", "beta"), ("beta", "alpha")}
        post_a, post_b = round_manager.choose_pair(posts, used)
        assert (post_a.id, post_b.id) == ("a1", "b1")

    def test_same_subreddit_as_last_resort(self):
        posts = [make_post("a1", "alpha", 500), make_post("a2", "alpha", 450)]
        post_a, post_b = round_manager.choose_pair(posts, set())
        assert (post_a.id, post_b.id) == ("a1", "a2")

    def test_needs_two_posts(self):
        assert round_manager.choose_pair([make_post("a1", "alpha", 500)], set()) is None


class TestFillRoundPool:
    """Creation up to the ceiling."""

    def test_fills_until_candidates_exhausted(self, db, curated, feed):
        created = round_manager.fill_round_pool(db, curated, rng=random.Random(1), feed=feed)
        assert len(created) == 3
        used = [pid for r in created for pid in (r.post_a_id, r.post_b_id)]
        assert sorted(used) == ["a1", "a2", "b1", "b2", "g1", "g2"]
        for r in created:
            assert r.post_a_subreddit != r.post_b_subreddit
            assert r.post_a_initial_score == r.post_a_final_score
            assert r.post_b_initial_score == r.post_b_final_score

    def test_respects_ceiling(self, db, curated, feed, monkeypatch):
        monkeypatch.setattr(settings, "ROUND_CEILING", 2)
        round_manager.fill_round_pool(db, curated, rng=random.Random(1), feed=feed)
        assert _active(db) == 2
        with pytest.raises(PopulationCeilingReached):
            round_manager.fill_round_pool(db, curated, rng=random.Random(1), feed=feed)
        assert _active(db) == 2

    def test_manual_create_at_ceiling_is_noop(self, db, make_round, curated, feed):
        """Ten active rounds: a manual create changes nothing."""
        for _ in range(10):
            make_round()
        with pytest.raises(PopulationCeilingReached):
            round_manager.create_round_now(db, curated, feed=feed)
        assert _active(db) == 10

    def test_manual_create_makes_one_round(self, db, curated, feed):
        round_ = round_manager.create_round_now(db, curated, rng=random.Random(1), feed=feed)
        assert round_ is not None
        assert _active(db) == 1

    def test_recent_posts_are_not_reused(self, db, curated, feed):
        first = round_manager.create_round_now(db, curated, rng=random.Random(1), feed=feed)
        created = round_manager.fill_round_pool(db, curated, rng=random.Random(1), feed=feed)
        reused = {first.post_a_id, first.post_b_id} & {pid for r in created for pid in (r.post_a_id, r.post_b_id)}
        assert reused == set()

    def test_too_few_candidates_aborts_quietly(self, db, feed, monkeypatch):
        monkeypatch.setattr(settings, "ROUND_SUBREDDITS", "alpha")
        gateway = FakeRedditGateway(listings={"alpha": [make_post("a1", "alpha", 500)]})
        assert round_manager.fill_round_pool(db, gateway, feed=feed) == []
        assert _active(db) == 0

    def test_creation_is_audited_and_published(self, db, curated, feed):
        events = []
        feed.subscribe("game_rounds", events.append)
        created = round_manager.fill_round_pool(db, curated, rng=random.Random(1), feed=feed)
        assert db.query(AuditLog).filter(AuditLog.action == "created").count() == len(created)
        assert events[-1]["type"] == "rounds_created"


class TestWinner:
    """Winner computation."""

    def _round(self, a_initial, a_final, b_initial, b_final):
        return GameRound(
            post_a_initial_score=a_initial, post_a_final_score=a_final,
            post_b_initial_score=b_initial, post_b_final_score=b_final,
        )

    def test_delta_winner(self):
        """B ends lower but grew more."""
        r = self._round(100, 300, 500, 900)
        assert round_manager.compute_winner(r, "delta") == "B"
        r = self._round(100, 600, 500, 900)
        assert round_manager.compute_winner(r, "delta") == "A"

    def test_absolute_winner(self):
        r = self._round(100, 600, 500, 900)
        assert round_manager.compute_winner(r, "absolute") == "B"

    def test_tie_uses_rng(self):
        r = self._round(100, 200, 300, 400)
        winners = {round_manager.compute_winner(r, "delta", random.Random(seed)) for seed in range(20)}
        assert winners == {"A", "B"}


class TestExpiry:
    """Expiry finalizes scores, then picks the winner, then settles."""

    def test_expired_round_finishes_and_settles(self, db, make_player, make_round, feed):
        player = make_player(points=100)
        round_ = make_round(a_score=100, b_score=200)
        bet_ledger.place_bet(db, round_.id, player.id, "A", 50, feed=feed)
        age_round(db, round_, hours=25)
        gateway = FakeRedditGateway(posts={
            round_.post_a_id: make_post(round_.post_a_id, "funny", 300),
            round_.post_b_id: make_post(round_.post_b_id, "AskReddit", 350),
        })

        finished = round_manager.expire_rounds(db, gateway, feed=feed)
        assert [f["round_id"] for f in finished] == [round_.id]

        db.expire_all()
        stored = db.query(GameRound).filter(GameRound.id == round_.id).one()
        assert stored.status == ROUND_FINISHED
        assert stored.post_a_final_score == 300
        assert stored.post_b_final_score == 350
        assert stored.winner == "A"  # +200 vs +150
        assert stored.settled_at is not None
        assert db.query(Player).filter(Player.id == player.id).one().points == 150

    def test_young_rounds_untouched(self, db, make_round, feed, gateway):
        make_round(age_hours=23)
        assert round_manager.expire_rounds(db, gateway, feed=feed) == []
        assert _active(db) == 1

    def test_deleted_post_keeps_last_score(self, db, make_round, feed):
        round_ = make_round(a_score=100, b_score=100)
        age_round(db, round_, hours=30)
        gateway = FakeRedditGateway(posts={round_.post_b_id: make_post(round_.post_b_id, "AskReddit", 150)})
        round_manager.expire_rounds(db, gateway, feed=feed)
        db.expire_all()
        stored = db.query(GameRound).filter(GameRound.id == round_.id).one()
        assert stored.post_a_final_score == 100
        assert stored.winner == "B"

    def test_finish_publishes_event(self, db, make_round, feed, gateway):
        events = []
        feed.subscribe("game_rounds", events.append)
        round_ = make_round(a_score=10, b_score=5)
        age_round(db, round_, hours=25)
        gateway.posts = {
            round_.post_a_id: make_post(round_.post_a_id, "funny", 10),
            round_.post_b_id: make_post(round_.post_b_id, "AskReddit", 50),
        }
        round_manager.expire_rounds(db, gateway, feed=feed)
        assert {"type": "round_finished", "round_id": round_.id, "winner": "B"} in events

    def test_token_outage_leaves_round_active(self, db, make_player, make_round, feed, gateway):
        player = make_player(points=100)
        round_ = make_round(a_score=100, b_score=100)
        bet_ledger.place_bet(db, round_.id, player.id, "A", 50, feed=feed)
        age_round(db, round_, hours=25)
        gateway.token_unavailable = True

        with pytest.raises(TokenUnavailable):
            round_manager.expire_rounds(db, gateway, feed=feed)

        db.expire_all()
        stored = db.query(GameRound).filter(GameRound.id == round_.id).one()
        assert stored.status == ROUND_ACTIVE
        assert stored.winner is None
        assert db.query(Player).filter(Player.id == player.id).one().points == 50


class TestManageCycle:
    """Full expire-then-fill cycle."""

    def test_cycle_replaces_expired_round(self, db, make_round, curated, feed):
        old = make_round(a_sub="delta", b_sub="epsilon")
        age_round(db, old, hours=48)
        result = round_manager.manage_round_pool(db, curated, rng=random.Random(1), feed=feed)
        assert result.expired == [old.id]
        assert len(result.created) == 3
        assert result.active_after == 3

    def test_cycle_is_idempotent_at_ceiling(self, db, make_round, curated, feed):
        for _ in range(10):
            make_round()
        result = round_manager.manage_round_pool(db, curated, feed=feed)
        assert result.skipped_reason == "ceiling_reached"
        assert result.active_before == result.active_after == 10

    def test_auth_failure_aborts_cleanly(self, db, make_round, curated, feed):
        round_ = make_round()
        age_round(db, round_, hours=25)
        curated.auth_fails = True
        result = round_manager.manage_round_pool(db, curated, feed=feed)
        assert result.skipped_reason == "auth_error"
        assert result.created == []
        db.expire_all()
        assert db.query(GameRound).filter(GameRound.id == round_.id).one().status == ROUND_ACTIVE

    def test_token_timeout_aborts_before_expiry(self, db, make_round, feed):
        """A timed-out token request stops the cycle before any round is finished."""
        round_ = make_round(a_score=100, b_score=100)
        age_round(db, round_, hours=25)
        session = MagicMock()
        session.post.side_effect = Timeout()
        client = RedditClient(client_id="id", client_secret="secret", session=session)

        result = round_manager.manage_round_pool(db, client, rng=random.Random(3), feed=feed)

        assert result.skipped_reason == "token_unavailable"
        assert result.expired == []
        assert result.created == []
        assert session.post.call_count == 1
        session.get.assert_not_called()
        db.expire_all()
        stored = db.query(GameRound).filter(GameRound.id == round_.id).one()
        assert stored.status == ROUND_ACTIVE
        assert stored.winner is None

    def test_previous_rounds_lists_finished(self, db, make_round, feed, gateway):
        round_ = make_round()
        age_round(db, round_, hours=25)
        round_manager.expire_rounds(db, gateway, feed=feed)
        assert [r.id for r in round_manager.list_previous_rounds(db)] == [round_.id]
        assert round_manager.list_active_rounds(db) == []
