"""Tests for home lineup intervals and opponent court slots."""

import pytest

from stattracker.errors import InvalidEventError, InvalidSubstitution
from stattracker.events import Actor, EventType, GameEvent
from stattracker.lineups import Lineup, LineupTracker, OpponentState


def _made(n, player_id, event_type=EventType.FG_MADE):
    return GameEvent(
        id=f"e{n}",
        timestamp=float(n),
        quarter=1,
        event_type=event_type,
        actor=Actor.player(player_id),
    )


class TestLineupTracker:
    """Tests for LineupTracker."""

    def test_lock_sets_starters(self):
        """Test that the first lock fixes the starting five."""
        tracker = LineupTracker()
        lineup = tracker.lock([1, 2, 3, 4, 5], at=0.0, quarter=1, events=[])

        assert tracker.starters == frozenset({1, 2, 3, 4, 5})
        assert tracker.current is lineup
        assert lineup.is_open

    def test_lock_requires_five_distinct(self):
        """Test that duplicate or short lineups are rejected."""
        tracker = LineupTracker()

        with pytest.raises(InvalidSubstitution):
            tracker.lock([1, 2, 3, 4], at=0.0, quarter=1, events=[])
        with pytest.raises(InvalidSubstitution):
            tracker.lock([1, 1, 2, 3, 4], at=0.0, quarter=1, events=[])

    def test_substitute_closes_with_plus_minus(self):
        """Test that the outgoing lineup keeps the plus-minus from its interval."""
        tracker = LineupTracker()
        tracker.lock([1, 2, 3, 4, 5], at=0.0, quarter=1, events=[])
        events = [_made(1, 1), _made(2, 2, EventType.THREE_MADE)]

        new = tracker.substitute(6, 1, at=3.0, quarter=1, events=events)

        first = tracker.lineups[0]
        assert first.end == 3.0
        assert first.plus_minus == 5
        assert new.players == (6, 2, 3, 4, 5)
        assert tracker.substitutions[0]["playerIn"] == 6
        assert tracker.starters == frozenset({1, 2, 3, 4, 5})

    def test_substitute_errors(self):
        """Test substitutions that do not match the court."""
        tracker = LineupTracker()

        with pytest.raises(InvalidSubstitution):
            tracker.substitute(6, 1, at=1.0, quarter=1, events=[])

        tracker.lock([1, 2, 3, 4, 5], at=0.0, quarter=1, events=[])
        with pytest.raises(InvalidSubstitution):
            tracker.substitute(6, 7, at=1.0, quarter=1, events=[])
        with pytest.raises(InvalidSubstitution):
            tracker.substitute(2, 1, at=1.0, quarter=1, events=[])

    def test_bulk_substitute_opens_one_lineup(self):
        """Test that a multi-player swap opens a single lineup."""
        tracker = LineupTracker()
        tracker.lock([1, 2, 3, 4, 5], at=0.0, quarter=1, events=[])

        lineup = tracker.bulk_substitute([6, 7, 8], [1, 2, 3], at=5.0, quarter=2, events=[])

        assert len(tracker.lineups) == 2
        assert sorted(lineup.players) == [4, 5, 6, 7, 8]
        assert lineup.quarter == 2
        assert len(tracker.substitutions) == 3

    def test_bulk_substitute_mismatched_counts(self):
        """Test that unequal in/out lists are rejected."""
        tracker = LineupTracker()
        tracker.lock([1, 2, 3, 4, 5], at=0.0, quarter=1, events=[])

        with pytest.raises(InvalidSubstitution):
            tracker.bulk_substitute([6, 7], [1], at=5.0, quarter=1, events=[])

    def test_effectiveness(self):
        """Test per-lineup production and plus-minus per minute."""
        tracker = LineupTracker()
        lineup = tracker.lock([1, 2, 3, 4, 5], at=0.0, quarter=1, events=[])
        events = [_made(10, 1), _made(20, 9), _made(30, 2)]

        result = tracker.effectiveness(lineup, events, now=120.0)

        assert result["totalPoints"] == 4
        assert result["totalPlusMinus"] == 4
        assert result["minutesPlayed"] == 2.0
        assert result["efficiency"] == 2.0

    def test_round_trip(self):
        """Test that saved lineups restore with the id counter advanced."""
        tracker = LineupTracker()
        tracker.lock([1, 2, 3, 4, 5], at=0.0, quarter=1, events=[])
        tracker.substitute(6, 1, at=3.0, quarter=1, events=[])

        restored = LineupTracker()
        restored.load(tracker.to_dict())
        lineup = restored.substitute(7, 2, at=4.0, quarter=1, events=[])

        assert restored.starters == tracker.starters
        assert lineup.id == "lineup-3"
        assert Lineup.from_dict(tracker.lineups[0].to_dict()) == tracker.lineups[0]


class TestOpponentState:
    """Tests for OpponentState."""

    def test_set_and_lock(self):
        """Test that a locked starting five cannot be edited."""
        state = OpponentState()
        state.set_starting_five([1, 2, 3, 4, 5])
        state.lock_starting_five()

        assert state.locked_starters == ("1", "2", "3", "4", "5")
        with pytest.raises(InvalidEventError):
            state.set_starting_five(["6", "7", "8", "9", "10"])

    def test_lock_without_five(self):
        """Test that locking needs a full starting five."""
        with pytest.raises(InvalidEventError):
            OpponentState().lock_starting_five()

    def test_first_substitution_locks_starters(self):
        """Test that subbing an opponent freezes their starting five."""
        state = OpponentState()
        state.set_starting_five(["1", "2", "3", "4", "5"])

        state.substitute("3", "30")

        assert state.on_court == ["1", "2", "30", "4", "5"]
        assert state.starting_five_locked is True

    def test_substitute_errors(self):
        """Test opponent substitutions that do not match the court."""
        state = OpponentState()
        state.set_starting_five(["1", "2", "3", "4", "5"])

        with pytest.raises(InvalidEventError):
            state.substitute("9", "10")
        with pytest.raises(InvalidEventError):
            state.substitute("1", "2")

    def test_fouls_by_jersey_skips_deleted(self):
        """Test per-jersey foul counts ignore tombstones and home players."""
        foul = GameEvent(
            id="f1", timestamp=1.0, quarter=1, event_type=EventType.FOUL, actor=Actor.opponent("8")
        )
        events = [
            foul,
            GameEvent(
                id="f2", timestamp=2.0, quarter=1, event_type=EventType.FOUL, actor=Actor.opponent("8")
            ).tombstoned(),
            GameEvent(
                id="f3", timestamp=3.0, quarter=1, event_type=EventType.FOUL, actor=Actor.player(1)
            ),
        ]

        assert OpponentState.fouls_by_jersey(events) == {"8": 1}

    def test_round_trip(self):
        """Test dict conversion."""
        state = OpponentState()
        state.set_starting_five(["1", "2", "3", "4", "5"])

        assert OpponentState.from_dict(state.to_dict()) == state
        assert OpponentState.from_dict(None) == OpponentState()
