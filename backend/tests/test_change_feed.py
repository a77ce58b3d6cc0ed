"""Tests for the change feed."""

from gamerit.services.change_feed import ChangeFeed


class TestChangeFeed:
    """Reference-counted subscriptions."""

    def test_listener_attached_once_and_detached_last(self):
        attached, detached = [], []
        feed = ChangeFeed(on_attach=attached.append, on_detach=detached.append)
        unsub_a = feed.subscribe("game_rounds", lambda e: None)
        unsub_b = feed.subscribe("game_rounds", lambda e: None)
        assert attached == ["game_rounds"]
        assert feed.subscriber_count("game_rounds") == 2

        unsub_a()
        assert detached == []
        unsub_b()
        assert detached == ["game_rounds"]
        assert feed.subscriber_count("game_rounds") == 0

    def test_resubscribe_does_not_stack(self):
        attached = []
        feed = ChangeFeed(on_attach=attached.append)
        for _ in range(3):
            unsubscribe = feed.subscribe("players", lambda e: None)
            unsubscribe()
        assert attached == ["players"] * 3
        assert feed.subscriber_count("players") == 0

    def test_double_unsubscribe_is_harmless(self):
        detached = []
        feed = ChangeFeed(on_detach=detached.append)
        unsubscribe = feed.subscribe("players", lambda e: None)
        unsubscribe()
        unsubscribe()
        assert detached == ["players"]

    def test_publish_reaches_topic_subscribers_only(self):
        feed = ChangeFeed()
        rounds, players = [], []
        feed.subscribe("game_rounds", rounds.append)
        feed.subscribe("players", players.append)
        feed.publish("game_rounds", {"type": "round_finished"})
        assert rounds == [{"type": "round_finished"}]
        assert players == []

    def test_failing_subscriber_does_not_break_others(self):
        feed = ChangeFeed()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        feed.subscribe("meme_stocks", broken)
        feed.subscribe("meme_stocks", received.append)
        feed.publish("meme_stocks", {"type": "market_updated"})
        assert received == [{"type": "market_updated"}]
