"""Possession windows for second-chance and points-off-turnover tagging."""

from typing import Iterable, Optional

from .events import (
    AWAY,
    FIELD_GOALS_MADE,
    HOME,
    MISSED_SHOTS,
    QUARTER_EVENTS,
    EventType,
    GameEvent,
    other_side,
)


class PossessionTracker:
    """
    Per-event state machine evaluated when an event is created.

    For each team it keeps a second-chance window (opened by an offensive
    rebound of the team's own miss) and a points-off-turnover window (opened
    when the team forces a turnover). ``observe`` returns the tags to bake into
    the new event's metadata and advances the state.
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.second_chance_open = {HOME: False, AWAY: False}
        self.points_off_turnover_open = {HOME: False, AWAY: False}
        self.last_possession: Optional[str] = None
        self.pending_miss: Optional[str] = None

    def rebuild(self, events: Iterable[GameEvent]) -> None:
        """Re-derive the window state from chronological, non-deleted events."""
        self.reset()
        for event in events:
            if not event.is_deleted:
                self.observe(event)

    def observe(self, event: GameEvent) -> dict:
        """
        Advance the state machine by one event.

        Args:
            event: The event being recorded (chronologically last)

        Returns:
            Metadata tags for the event: ``{"scp": True}`` and/or ``{"pto": True}``
        """
        etype = event.event_type
        tags: dict = {}

        if etype in QUARTER_EVENTS:
            self.reset()
            return tags

        side = event.side
        if side not in (HOME, AWAY) or event.actor is None:
            return tags
        opp = other_side(side)

        if event.is_scoring:
            if self.second_chance_open[side]:
                tags["scp"] = True
            if self.points_off_turnover_open[side]:
                tags["pto"] = True
            self.pending_miss = None
            self._close_all(opp)
            if etype in FIELD_GOALS_MADE:
                # Made basket ends the possession; free throws keep the trip open
                self._close_all(side)
                self.last_possession = opp
            return tags

        if etype in MISSED_SHOTS:
            self.pending_miss = side
            self._close_points_off_turnover()
            self.last_possession = side
        elif etype == EventType.REBOUND:
            if self.pending_miss == side:
                self.second_chance_open[side] = True
            self.second_chance_open[opp] = False
            self.pending_miss = None
            self._close_points_off_turnover()
            self.last_possession = side
        elif etype == EventType.BLOCK:
            self._close_points_off_turnover()
        elif etype == EventType.STEAL:
            self.pending_miss = None
            self.second_chance_open[opp] = False
            self.points_off_turnover_open[side] = True
            self.points_off_turnover_open[opp] = False
            self.last_possession = side
        elif etype == EventType.TURNOVER:
            self.pending_miss = None
            self.second_chance_open[side] = False
            self.points_off_turnover_open[opp] = True
            self.points_off_turnover_open[side] = False
            self.last_possession = opp
        return tags

    def _close_all(self, side: str) -> None:
        self.second_chance_open[side] = False
        self.points_off_turnover_open[side] = False

    def _close_points_off_turnover(self) -> None:
        self.points_off_turnover_open[HOME] = False
        self.points_off_turnover_open[AWAY] = False

    def state(self) -> dict:
        return {
            "secondChanceWindowOpen": dict(self.second_chance_open),
            "pointsOffTurnoverWindowOpen": dict(self.points_off_turnover_open),
            "lastPossessionTeam": self.last_possession,
            "pendingMiss": self.pending_miss,
        }
