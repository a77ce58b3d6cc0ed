"""Tests for scheduler wiring: interval jobs and the round_finished top-up."""

from unittest.mock import MagicMock

import pytest

from gamerit import jobs, scheduler
from gamerit.scheduler import Scheduler, TOP_UP_JOB_ID


@pytest.fixture
def background(monkeypatch):
    instance = MagicMock()
    monkeypatch.setattr(scheduler, "BackgroundScheduler", MagicMock(return_value=instance))
    return instance


@pytest.fixture
def running(background, feed):
    sched = Scheduler(feed=feed)
    assert sched.start()
    yield sched
    if sched.is_running:
        sched.stop(wait=False)


def _job_ids(background):
    return [c.kwargs["id"] for c in background.add_job.call_args_list]


class TestScheduler:
    """Job registration and change feed subscription."""

    def test_registers_interval_jobs(self, running, background, feed):
        assert _job_ids(background) == ["round_pool", "round_expiry", "score_refresh", "market_update"]
        funcs = [c.kwargs["func"] for c in background.add_job.call_args_list]
        assert jobs.scheduled_round_expiry in funcs
        background.start.assert_called_once()
        assert feed.subscriber_count("game_rounds") == 1

    def test_round_finished_schedules_top_up(self, running, background, feed):
        background.add_job.reset_mock()
        feed.publish("game_rounds", {"type": "round_finished", "round_id": "r1", "winner": "A"})
        background.add_job.assert_called_once()
        kwargs = background.add_job.call_args.kwargs
        assert kwargs["func"] is jobs.scheduled_round_top_up
        assert kwargs["id"] == TOP_UP_JOB_ID
        assert kwargs["replace_existing"] is True

    def test_other_events_are_ignored(self, running, background, feed):
        background.add_job.reset_mock()
        feed.publish("game_rounds", {"type": "rounds_created", "round_ids": ["r2"]})
        background.add_job.assert_not_called()

    def test_stop_detaches_and_shuts_down(self, running, background, feed):
        assert running.stop(wait=False)
        background.shutdown.assert_called_once_with(wait=False)
        assert feed.subscriber_count("game_rounds") == 0
        feed.publish("game_rounds", {"type": "round_finished", "round_id": "r1", "winner": "B"})
        assert not running.is_running

    def test_double_start_is_rejected(self, running):
        assert running.start() is False
