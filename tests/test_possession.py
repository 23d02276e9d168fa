"""Tests for the possession window state machine."""

from stattracker.events import Actor, EventType, GameEvent
from stattracker.possession import PossessionTracker

HOME_PLAYER = Actor.player(1)
OPPONENT = Actor.opponent("9")


def _observe(tracker, event_type, actor, **metadata):
    event = GameEvent(
        id=f"{event_type.value}-{id(metadata)}",
        timestamp=0.0,
        quarter=1,
        event_type=event_type,
        actor=actor,
        metadata=metadata,
    )
    return tracker.observe(event)


class TestSecondChance:
    """Tests for second-chance windows."""

    def test_offensive_rebound_then_score_is_tagged(self):
        """Test miss, own rebound, make yields an scp tag."""
        tracker = PossessionTracker()
        _observe(tracker, EventType.FG_MISSED, HOME_PLAYER)
        _observe(tracker, EventType.REBOUND, HOME_PLAYER)

        assert _observe(tracker, EventType.FG_MADE, HOME_PLAYER) == {"scp": True}

    def test_window_closes_after_made_basket(self):
        """Test that a second basket on a new possession is not tagged."""
        tracker = PossessionTracker()
        _observe(tracker, EventType.FG_MISSED, HOME_PLAYER)
        _observe(tracker, EventType.REBOUND, HOME_PLAYER)
        _observe(tracker, EventType.FG_MADE, HOME_PLAYER)

        assert _observe(tracker, EventType.FG_MADE, HOME_PLAYER) == {}

    def test_free_throws_extend_the_trip(self):
        """Test that both free throws after an offensive rebound are tagged."""
        tracker = PossessionTracker()
        _observe(tracker, EventType.THREE_MISSED, HOME_PLAYER)
        _observe(tracker, EventType.REBOUND, HOME_PLAYER)

        assert _observe(tracker, EventType.FT_MADE, HOME_PLAYER) == {"scp": True}
        assert _observe(tracker, EventType.FT_MADE, HOME_PLAYER) == {"scp": True}

    def test_defensive_rebound_opens_nothing(self):
        """Test that the opponent rebounding a home miss opens no window."""
        tracker = PossessionTracker()
        _observe(tracker, EventType.FG_MISSED, HOME_PLAYER)
        _observe(tracker, EventType.REBOUND, OPPONENT)

        assert _observe(tracker, EventType.FG_MADE, OPPONENT) == {}

    def test_quarter_boundary_resets(self):
        """Test that a quarter marker closes every window."""
        tracker = PossessionTracker()
        _observe(tracker, EventType.FG_MISSED, HOME_PLAYER)
        _observe(tracker, EventType.REBOUND, HOME_PLAYER)
        tracker.observe(
            GameEvent(id="q", timestamp=0.0, quarter=1, event_type=EventType.QUARTER_STOPPED)
        )

        assert _observe(tracker, EventType.FG_MADE, HOME_PLAYER) == {}


class TestPointsOffTurnovers:
    """Tests for points-off-turnover windows."""

    def test_opponent_turnover_then_score(self):
        """Test that a home score after an opponent turnover is tagged."""
        tracker = PossessionTracker()
        _observe(tracker, EventType.TURNOVER, OPPONENT)

        assert _observe(tracker, EventType.FG_MADE, HOME_PLAYER) == {"pto": True}

    def test_home_steal_opens_window(self):
        """Test that a steal opens the stealing team's window."""
        tracker = PossessionTracker()
        _observe(tracker, EventType.STEAL, HOME_PLAYER)

        assert _observe(tracker, EventType.THREE_MADE, HOME_PLAYER) == {"pto": True}

    def test_opponent_steal_interrupts(self):
        """Test that an opponent steal before the score cancels the tag."""
        tracker = PossessionTracker()
        _observe(tracker, EventType.TURNOVER, OPPONENT)
        _observe(tracker, EventType.STEAL, OPPONENT)

        assert _observe(tracker, EventType.FG_MADE, HOME_PLAYER) == {}

    def test_missed_shot_interrupts(self):
        """Test that a shot attempt before the score closes the window."""
        tracker = PossessionTracker()
        _observe(tracker, EventType.TURNOVER, OPPONENT)
        _observe(tracker, EventType.FG_MISSED, HOME_PLAYER)
        _observe(tracker, EventType.REBOUND, HOME_PLAYER)

        assert _observe(tracker, EventType.FG_MADE, HOME_PLAYER) == {"scp": True}

    def test_block_interrupts(self):
        """Test that a block closes the window."""
        tracker = PossessionTracker()
        _observe(tracker, EventType.TURNOVER, OPPONENT)
        _observe(tracker, EventType.BLOCK, OPPONENT)

        assert _observe(tracker, EventType.FG_MADE, HOME_PLAYER) == {}


class TestRebuild:
    """Tests for rebuilding state from a log."""

    def test_rebuild_matches_incremental_state(self):
        """Test that rebuild reproduces the incremental state."""
        events = [
            GameEvent(id="1", timestamp=1.0, quarter=1, event_type=EventType.FG_MISSED, actor=OPPONENT),
            GameEvent(id="2", timestamp=2.0, quarter=1, event_type=EventType.REBOUND, actor=OPPONENT),
        ]
        incremental = PossessionTracker()
        for event in events:
            incremental.observe(event)

        rebuilt = PossessionTracker()
        rebuilt.rebuild(events)

        assert rebuilt.state() == incremental.state()
        assert rebuilt.state()["secondChanceWindowOpen"] == {"home": False, "away": True}
