"""Tests for the session lifecycle manager."""

import tempfile
from unittest.mock import MagicMock

import pytest

from stattracker.errors import (
    AggregationConflict,
    RemoteStoreError,
    SessionCreationError,
    SessionStateError,
)
from stattracker.events import Actor
from stattracker.session import SessionManager, SessionState
from stattracker.settings import TrackerSettings
from stattracker.snapshot import SnapshotStore


def _record_ten(tracker):
    """Ten events covering scoring, rebounds, fouls and turnovers."""
    tracker.record_event("fg_made", Actor.player(1), metadata={"pip": True}, prompt=False)
    tracker.record_event("three_made", Actor.player(2), prompt=False)
    tracker.record_event("fg_missed", Actor.opponent("7"), prompt=False)
    tracker.record_event("rebound", Actor.player(3), metadata={"reboundType": "defensive"})
    tracker.record_event("ft_made", Actor.player(3))
    tracker.record_event("ft_missed", Actor.player(3), prompt=False)
    tracker.record_event("turnover", Actor.opponent("7"), prompt=False)
    tracker.record_event("fg_made", Actor.player(6), metadata={"pip": False}, prompt=False)
    tracker.record_event("foul", Actor.player(4), metadata={"isOffensive": False})
    tracker.record_event("assist", Actor.player(5))


class TestStart:
    """Tests for starting sessions."""

    def test_start_new_creates_session(self, manager, session_store):
        """Test that a new session is active and bound to its event."""
        live = manager.start_new("cal-1")

        assert live.state == SessionState.ACTIVE
        assert live.handle.event_id == "cal-1"
        assert session_store.find_session("cal-1")["isActive"] is True

    def test_start_new_offline_fails(self, manager, session_store):
        """Test that sessions cannot start without the remote store."""
        session_store.online = False

        with pytest.raises(SessionCreationError):
            manager.start_new("cal-1")
        assert manager.state == SessionState.UNINITIALIZED

    def test_recorded_events_are_mirrored(self, manager, session_store):
        """Test that every recorded event reaches the session store."""
        live = manager.start_new("cal-1")
        _record_ten(live.tracker)

        fetched = session_store.fetch_session(live.handle.session_key)

        assert len(fetched["events"]) == 10


class TestCheckpoint:
    """Tests for checkpoint and end aggregation."""

    def test_checkpoint_creates_game_record(self, manager, game_store):
        """Test the first checkpoint writes the score and non-zero lines."""
        live = manager.start_new("cal-1")
        _record_ten(live.tracker)

        handle = manager.checkpoint_aggregate(live)

        game = game_store.get_game(handle.game_id)
        assert game["homeScore"] == 8
        assert game["awayScore"] == 0
        assert game["result"] == "WIN"
        assert game["opponentName"] == "Rivals"
        assert set(game["playerStats"]) == {1, 2, 3, 4, 5, 6}
        assert live.state == SessionState.CHECKPOINTED

    def test_checkpoint_is_repeatable(self, manager, game_store):
        """Test that repeated checkpoints update one record."""
        live = manager.start_new("cal-1")
        _record_ten(live.tracker)
        first = manager.checkpoint_aggregate(live)
        live.tracker.record_event("ft_made", Actor.player(1))
        second = manager.checkpoint_aggregate(live)

        assert first.game_id == second.game_id
        assert len(game_store) == 1
        assert game_store.get_game(first.game_id)["homeScore"] == 9

    def test_resume_idempotence(self, manager, game_store):
        """Test that resume plus checkpoint keeps the single game record."""
        live = manager.start_new("cal-1")
        _record_ten(live.tracker)
        handle = manager.checkpoint_aggregate(live)
        first = game_store.get_game(handle.game_id)

        resumed = manager.resume("cal-1")
        again = manager.checkpoint_aggregate(resumed)

        assert again.game_id == handle.game_id
        assert len(game_store) == 1
        assert game_store.get_game(handle.game_id) == first
        assert resumed.tracker.get_team_stats() == live.tracker.get_team_stats()

    def test_external_edit_overwritten_by_default(self, manager, game_store):
        """Test last-writer-wins on a conflicting game record."""
        live = manager.start_new("cal-1")
        _record_ten(live.tracker)
        handle = manager.checkpoint_aggregate(live)
        game_store.update_game_score(handle.game_id, 99, 98, "WIN")

        manager.checkpoint_aggregate(live)

        assert game_store.get_game(handle.game_id)["homeScore"] == 8

    def test_external_edit_raises_with_policy(
        self, session_store, game_store, roster_store, clock
    ):
        """Test the raise policy for conflicting game records."""
        settings = TrackerSettings(aggregation_conflict_policy="raise")
        manager = SessionManager(session_store, game_store, roster_store, settings=settings, clock=clock)
        live = manager.start_new("cal-1")
        _record_ten(live.tracker)
        handle = manager.checkpoint_aggregate(live)
        game_store.update_game_score(handle.game_id, 99, 98, "WIN")

        with pytest.raises(AggregationConflict):
            manager.checkpoint_aggregate(live)

    def test_end_and_aggregate(self, manager, session_store):
        """Test that ending deactivates the session and freezes the tracker."""
        live = manager.start_new("cal-1")
        _record_ten(live.tracker)

        manager.end_and_aggregate(live)

        assert live.state == SessionState.ENDED
        assert session_store.find_session("cal-1")["isActive"] is False
        with pytest.raises(SessionStateError):
            live.tracker.record_event("ft_made", Actor.player(1))
        with pytest.raises(SessionStateError):
            manager.checkpoint_aggregate(live)


class TestResume:
    """Tests for resuming sessions."""

    def test_resume_ended_is_read_only(self, manager):
        """Test that an ended session resumes read-only."""
        live = manager.start_new("cal-1")
        _record_ten(live.tracker)
        manager.end_and_aggregate(live)

        resumed = manager.resume("cal-1")

        assert resumed.state == SessionState.ENDED
        assert resumed.read_only is True
        assert resumed.tracker.get_team_stats().total_points == 8

    def test_resume_ended_with_start_over(self, manager, session_store):
        """Test that start_over reactivates an ended session."""
        live = manager.start_new("cal-1")
        _record_ten(live.tracker)
        manager.end_and_aggregate(live)

        resumed = manager.resume("cal-1", start_over=True)
        resumed.tracker.record_event("ft_made", Actor.player(1))

        assert resumed.read_only is False
        assert session_store.find_session("cal-1")["isActive"] is True
        assert resumed.tracker.game_state.home_score == 9

    def test_resume_missing_session(self, manager):
        """Test that resuming an unknown event is rejected."""
        with pytest.raises(SessionStateError):
            manager.resume("cal-404")

    def test_resume_offline_from_snapshot(self, session_store, game_store, roster_store, clock):
        """Test that an offline resume uses the local snapshot and re-queues events."""
        with tempfile.TemporaryDirectory() as tmpdir:
            manager = SessionManager(
                session_store, game_store, roster_store, snapshot_store=SnapshotStore(tmpdir), clock=clock
            )
            live = manager.start_new("cal-1")
            _record_ten(live.tracker)
            live.autosaver.save()
            session_store.online = False

            resumed = manager.resume("cal-1")

            assert resumed.tracker.get_team_stats().total_points == 8
            assert resumed.reconciler.status().pending == len(resumed.tracker.log)

            session_store.online = True
            result = resumed.reconciler.flush(force=True)

            assert result.remaining == 0
            fetched = session_store.fetch_session(live.handle.session_key)
            assert len(fetched["events"]) == 10

    def test_resume_keeps_lineup_before_checkpoint(self, manager):
        """Test that lineups and substitutions survive a resume with no checkpoint."""
        live = manager.start_new("cal-1")
        live.tracker.lock_lineup([1, 2, 3, 4, 5])
        live.tracker.substitute(6, 1)
        live.tracker.record_event("fg_made", Actor.player(6), metadata={"pip": False}, prompt=False)

        resumed = manager.resume("cal-1")

        assert sorted(resumed.tracker.lineups.on_court) == [2, 3, 4, 5, 6]
        assert resumed.tracker.get_team_stats().bench_points == 2
        resumed.tracker.start_clock()
        assert resumed.tracker.game_state.is_playing is True

    def test_resume_derives_period_from_log(self, manager, session_store):
        """Test that a stored game state older than the last quarter change is caught up."""
        live = manager.start_new("cal-1")
        live.tracker.lock_lineup([1, 2, 3, 4, 5])
        live.tracker.start_clock()
        stale = live.tracker.session_state()["gameState"]
        live.tracker.next_quarter()
        live.tracker.next_quarter()
        live.tracker.record_event("foul", Actor.player(1), metadata={"isOffensive": False})
        session_store.update_session(live.handle.session_id, {"gameState": stale})

        resumed = manager.resume("cal-1")

        assert resumed.tracker.game_state.quarter == 3
        assert resumed.tracker.game_state.home_team_fouls == 1

    def test_resume_records_primary_waiting_on_prompt(self, manager, session_store):
        """Test that a basket left on the paint prompt is logged and mirrored on resume."""
        live = manager.start_new("cal-1")
        live.tracker.lock_lineup([1, 2, 3, 4, 5])
        live.tracker.start_clock()
        made_id = live.tracker.record_event("fg_made", Actor.player(1))

        resumed = manager.resume("cal-1")

        assert made_id in resumed.tracker.log
        assert resumed.tracker.get_team_stats().total_points == 2
        fetched = session_store.fetch_session(live.handle.session_key)
        assert made_id in [e["id"] for e in fetched["events"]]
        assert fetched["pendingEvent"] is None

    def test_resume_falls_back_when_session_fetch_fails(
        self, session_store, game_store, roster_store, clock
    ):
        """Test that a failing session fetch resumes from the local snapshot."""
        with tempfile.TemporaryDirectory() as tmpdir:
            manager = SessionManager(
                session_store, game_store, roster_store, snapshot_store=SnapshotStore(tmpdir), clock=clock
            )
            live = manager.start_new("cal-1")
            _record_ten(live.tracker)
            live.autosaver.save()
            session_store.fetch_session = MagicMock(side_effect=RemoteStoreError("timed out"))

            resumed = manager.resume("cal-1")

            assert resumed.tracker.get_team_stats().total_points == 8
            assert resumed.reconciler.is_online is False

    def test_resume_falls_back_when_roster_fails(
        self, session_store, game_store, roster_store, clock
    ):
        """Test that a failing roster lookup resumes from the local snapshot."""
        with tempfile.TemporaryDirectory() as tmpdir:
            manager = SessionManager(
                session_store, game_store, roster_store, snapshot_store=SnapshotStore(tmpdir), clock=clock
            )
            live = manager.start_new("cal-1")
            _record_ten(live.tracker)
            live.autosaver.save()
            roster_store.list_players = MagicMock(side_effect=RemoteStoreError("timed out"))

            resumed = manager.resume("cal-1")

            assert resumed.tracker.get_team_stats().total_points == 8
            assert len(resumed.tracker.roster) == 8

    def test_resume_offline_without_snapshot(self, manager, session_store):
        """Test that offline resume with no snapshot fails loudly."""
        manager.start_new("cal-1")
        session_store.online = False

        with pytest.raises(SessionCreationError):
            manager.resume("cal-1")


class TestDiscard:
    """Tests for discarding sessions."""

    def test_discard_removes_sessions(self, manager, game_store):
        """Test that discard deletes without aggregating."""
        manager.start_new("cal-1")

        assert manager.discard("cal-1") == 1
        assert len(game_store) == 0
        with pytest.raises(SessionStateError):
            manager.resume("cal-1")
