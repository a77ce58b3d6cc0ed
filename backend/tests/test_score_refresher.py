"""Tests for live score refresh of active rounds."""

import pytest

from conftest import FakeRedditGateway, make_post
from gamerit.exceptions import AuthError, TokenUnavailable
from gamerit.models.round import GameRound, ROUND_FINISHED
from gamerit.services import score_refresher


def _stored(db, round_id):
    db.expire_all()
    return db.query(GameRound).filter(GameRound.id == round_id).one()


class TestFetchPostScore:
    """Per-post lookup outcomes."""

    def test_live_score(self):
        gateway = FakeRedditGateway(posts={"p1": make_post("p1", "funny", 250)})
        score = score_refresher.fetch_post_score(gateway, "p1", 100)
        assert score.current_score == 250
        assert score.previous_score == 100
        assert score.exists is True

    def test_deleted_post_keeps_last_known(self):
        score = score_refresher.fetch_post_score(FakeRedditGateway(), "gone", 120)
        assert score.current_score == 120
        assert score.exists is False

    def test_transport_error_keeps_last_known(self):
        gateway = FakeRedditGateway()
        gateway.failing_posts.add("p1")
        score = score_refresher.fetch_post_score(gateway, "p1", 90)
        assert score.current_score == 90
        assert score.exists is True
        assert score.error

    def test_token_outage_is_not_swallowed(self):
        """Without a token no post can be fetched; the caller must abort."""
        gateway = FakeRedditGateway(posts={"p1": make_post("p1", "funny", 250)})
        gateway.token_unavailable = True
        with pytest.raises(TokenUnavailable):
            score_refresher.fetch_post_score(gateway, "p1", 90)


class TestRefreshActiveRounds:
    """Batch refresh isolates failures per round and per post."""

    def test_updates_both_posts(self, db, make_round, feed):
        round_ = make_round(a_score=100, b_score=200)
        gateway = FakeRedditGateway(posts={
            round_.post_a_id: make_post(round_.post_a_id, "funny", 150),
            round_.post_b_id: make_post(round_.post_b_id, "AskReddit", 260),
        })
        result = score_refresher.refresh_active_rounds(db, gateway, feed=feed)
        assert result["updated_rounds"] == 1
        stored = _stored(db, round_.id)
        assert (stored.post_a_final_score, stored.post_b_final_score) == (150, 260)
        assert (stored.post_a_initial_score, stored.post_b_initial_score) == (100, 200)
        assert stored.scores_updated_at is not None

    def test_failed_post_does_not_block_sibling(self, db, make_round, feed):
        round_ = make_round(a_score=100, b_score=200)
        gateway = FakeRedditGateway(posts={round_.post_b_id: make_post(round_.post_b_id, "AskReddit", 999)})
        gateway.failing_posts.add(round_.post_a_id)
        score_refresher.refresh_active_rounds(db, gateway, feed=feed)
        stored = _stored(db, round_.id)
        assert stored.post_a_final_score == 100
        assert stored.post_b_final_score == 999

    def test_deleted_post_reported(self, db, make_round, feed):
        round_ = make_round(a_score=100, b_score=200)
        gateway = FakeRedditGateway(posts={round_.post_a_id: make_post(round_.post_a_id, "funny", 130)})
        result = score_refresher.refresh_active_rounds(db, gateway, feed=feed)
        entry = result["results"][0]
        assert entry["post_b"]["exists"] is False
        assert _stored(db, round_.id).post_b_final_score == 200

    def test_every_active_round_refreshed(self, db, make_round, feed):
        rounds = [make_round(a_score=10, b_score=10) for _ in range(3)]
        posts = {}
        for r in rounds:
            posts[r.post_a_id] = make_post(r.post_a_id, "funny", 20)
            posts[r.post_b_id] = make_post(r.post_b_id, "AskReddit", 30)
        result = score_refresher.refresh_active_rounds(db, FakeRedditGateway(posts=posts), feed=feed)
        assert result["updated_rounds"] == 3
        assert result["failed_rounds"] == 0

    def test_finished_rounds_are_left_alone(self, db, make_round, feed):
        round_ = make_round(a_score=100, b_score=100, status=ROUND_FINISHED)
        gateway = FakeRedditGateway(posts={round_.post_a_id: make_post(round_.post_a_id, "funny", 500)})
        result = score_refresher.refresh_active_rounds(db, gateway, feed=feed)
        assert result["updated_rounds"] == 0
        assert _stored(db, round_.id).post_a_final_score == 100

    def test_auth_failure_aborts_pass(self, db, make_round, feed):
        make_round()
        gateway = FakeRedditGateway()
        gateway.auth_fails = True
        with pytest.raises(AuthError):
            score_refresher.refresh_active_rounds(db, gateway, feed=feed)

    def test_publishes_refresh_event(self, db, make_round, feed):
        events = []
        feed.subscribe("game_rounds", events.append)
        round_ = make_round()
        score_refresher.refresh_active_rounds(db, FakeRedditGateway(), feed=feed)
        assert events == [{"type": "scores_refreshed", "round_ids": [round_.id]}]
