"""The live game aggregate root: one mutation entry point per operator action."""

import logging
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Iterable, Optional

from .aggregate import AggregateResult, Player, StatLine, TeamStats, aggregate
from .disambiguation import DisambiguationEngine, EventDraft
from .errors import InvalidEventError, InvalidSubstitution, SessionStateError
from .event_log import EventLog
from .events import (
    ACTOR_REQUIRED,
    AWAY,
    HOME,
    Actor,
    EventType,
    GameEvent,
    new_event_id,
)
from .game_state import GameState
from .lineups import LINEUP_SIZE, LineupTracker, OpponentState
from .possession import PossessionTracker
from .settings import TrackerSettings

logger = logging.getLogger(__name__)

# Recorded through their own methods rather than record_event
_MANAGED_TYPES = frozenset({
    EventType.SUBSTITUTION_IN,
    EventType.SUBSTITUTION_OUT,
    EventType.TIMEOUT,
    EventType.QUARTER_STARTED,
    EventType.QUARTER_STOPPED,
    EventType.DELETED_EVENT,
})

_SHOT_VALUES = {EventType.FG_MADE: 2, EventType.THREE_MADE: 3, EventType.FT_MADE: 1}


class LiveGameTracker:
    """
    Holds the event log, lineups, opponent slots and scoreboard for one game.

    Every mutation appends to the log (or tombstones an entry) and then
    re-runs the full aggregation, so the stats returned by the getters are
    always a complete fold of the current log.

    Args:
        roster: Rostered home players (identity only)
        settings: Game rules and policy weights
        clock: Wall-clock source for event timestamps
        id_factory: Event id generator
        read_only: Reject every mutation (ended session opened for export)
    """

    def __init__(
        self,
        roster: Iterable[Player],
        settings: Optional[TrackerSettings] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = new_event_id,
        read_only: bool = False,
    ):
        self.settings = settings or TrackerSettings()
        self._clock = clock
        self._id_factory = id_factory
        self.read_only = read_only

        self.roster: dict[int, Player] = {p.id: p.identity() for p in roster}
        self.log = EventLog(id_factory=id_factory, clock=clock)
        self.possession = PossessionTracker()
        self.lineups = LineupTracker(self.settings)
        self.opponent = OpponentState()
        self.game_state = GameState.new(self.settings)
        self.engine = DisambiguationEngine(self._commit, self._validate, id_factory)

        self._history: deque = deque(maxlen=self.settings.history_depth)
        self._open_action: Optional[dict] = None
        self._workflow_action: Optional[dict] = None
        self._listeners: list[Callable[[GameEvent], None]] = []
        self._state_listeners: list[Callable[[dict], None]] = []
        self._result: AggregateResult = aggregate([], self.roster.values(), settings=self.settings)

    # -- listeners --------------------------------------------------------

    def subscribe(self, listener: Callable[[GameEvent], None]) -> None:
        """Call ``listener`` with every event appended to the log."""
        self._listeners.append(listener)

    def subscribe_state(self, listener: Callable[[dict], None]) -> None:
        """Call ``listener`` with ``session_state()`` after lineup, clock and period changes."""
        self._state_listeners.append(listener)

    def session_state(self) -> dict:
        """Non-log state a resumed session needs, plus any primary awaiting a metadata answer."""
        draft = self.engine.unrecorded_draft
        return {
            **self._capture_state(),
            "pendingEvent": draft.to_dict() if draft else None,
        }

    # -- recording --------------------------------------------------------

    def record_event(
        self,
        event_type,
        actor: Optional[Actor] = None,
        value: Optional[int] = None,
        metadata: Optional[dict] = None,
        prompt: bool = True,
    ) -> str:
        """
        Record a stat event, routing it through disambiguation when needed.

        Args:
            event_type: EventType or its string value
            actor: Player or opponent jersey the event is credited to
            value: Shot value for made baskets (optional)
            metadata: Answers known up front (``pip``, ``isOffensive``, ...)
            prompt: Start the follow-up prompts for this event type

        Returns:
            Id of the primary event

        Raises:
            InvalidEventError: if the event cannot be recorded (log untouched)
        """
        try:
            event_type = EventType(event_type)
        except ValueError:
            raise InvalidEventError(f"Unknown event type {event_type!r}") from None
        if event_type in _MANAGED_TYPES:
            raise InvalidEventError(f"{event_type.value} is recorded by its own operation")

        draft = EventDraft(event_type, actor, value, dict(metadata or {}))
        self._validate(draft)
        if self.engine.pending is not None:
            self.abandon_prompt()

        with self._action("stat") as entry:
            event_id = self.engine.start(draft, prompt=prompt)
        self._workflow_action = entry if self.engine.pending is not None else None
        if self.engine.pending is not None:
            self._publish_state()
        return event_id

    def pending_prompt(self) -> Optional[dict]:
        pending = self.engine.pending
        return pending.prompt() if pending else None

    def answer_prompt(self, answer=None) -> Optional[str]:
        """Answer the pending prompt; ``None`` means "no" for that step."""
        self._require_writable()
        with self._resume_workflow():
            return self.engine.answer(answer)

    def cancel_prompt(self) -> None:
        with self._resume_workflow():
            self.engine.cancel()

    def abandon_prompt(self) -> None:
        with self._resume_workflow():
            self.engine.abandon()

    @property
    def gaps(self) -> list:
        return list(self.engine.gaps)

    def call_timeout(self, team: str) -> str:
        self._require_open()
        if team not in (HOME, AWAY):
            raise InvalidEventError(f"Unknown team {team!r}")
        if self.game_state.timeouts_remaining(team) <= 0:
            raise InvalidEventError(f"No timeouts remaining for {team}")
        with self._action("timeout"):
            self.game_state.is_playing = False
            event_id = self._commit(EventDraft(EventType.TIMEOUT, metadata={"team": team}))
        self._publish_state()
        return event_id

    # -- clock and periods ------------------------------------------------

    def start_clock(self) -> None:
        """
        Start (or resume) the game clock.

        Raises:
            InvalidSubstitution: unless exactly five home players are on court
        """
        self._require_open()
        on_court = len(self.lineups.on_court)
        if on_court != LINEUP_SIZE:
            raise InvalidSubstitution(
                f"Exactly {LINEUP_SIZE} players must be on court to start the clock, found {on_court}"
            )
        with self._action("clock"):
            if not self._quarter_started():
                self._commit(EventDraft(EventType.QUARTER_STARTED))
            self.game_state.is_playing = True
            self.game_state.is_game_started = True
        self._publish_state()

    def stop_clock(self) -> None:
        self._require_writable()
        self.game_state.is_playing = False
        self._publish_state()

    def tick(self, seconds: int) -> int:
        """Run the game clock down while it is playing."""
        if self.game_state.is_playing:
            self.game_state.clock_seconds = max(0, self.game_state.clock_seconds - int(seconds))
            if self.game_state.clock_seconds == 0:
                self.game_state.is_playing = False
        return self.game_state.clock_seconds

    def next_quarter(self) -> int:
        """Close the current period and move to the next one (overtime past regulation)."""
        self._require_open()
        with self._action("quarter"):
            self._commit(EventDraft(EventType.QUARTER_STOPPED))
            self.game_state.advance_quarter(self.settings)
        self._refresh()
        self._publish_state()
        return self.game_state.quarter

    def end_game(self) -> GameState:
        self._require_writable()
        if self.engine.pending is not None:
            self.abandon_prompt()
        self.game_state.is_playing = False
        self.game_state.is_game_ended = True
        self.lineups.close(self._clock(), self.log.chronological())
        self._refresh()
        self._publish_state()
        return self.game_state

    def _quarter_started(self) -> bool:
        return any(
            e.event_type == EventType.QUARTER_STARTED and e.quarter == self.game_state.quarter
            for e in self.log.chronological()
        )

    # -- lineups ----------------------------------------------------------

    def lock_lineup(self, player_ids: Iterable[int]) -> None:
        """Put five players on court; the first lock fixes the starting five."""
        player_ids = list(player_ids)
        self._check_rostered(player_ids)
        with self._action("lineup"):
            self.lineups.lock(
                player_ids, self._clock(), self.game_state.quarter, self.log.chronological()
            )
        self._refresh()
        self._publish_state()

    def substitute(self, player_in: int, player_out: int) -> None:
        self._check_rostered([player_in, player_out])
        with self._action("substitution"):
            at = self._clock()
            self.lineups.substitute(
                player_in, player_out, at, self.game_state.quarter, self.log.chronological()
            )
            self._record_substitution(Actor.player(player_in), Actor.player(player_out))
        self._refresh()
        self._publish_state()

    def bulk_substitute(self, players_in: Iterable[int], players_out: Iterable[int]) -> None:
        players_in, players_out = list(players_in), list(players_out)
        self._check_rostered(players_in + players_out)
        with self._action("substitution"):
            self.lineups.bulk_substitute(
                players_in,
                players_out,
                self._clock(),
                self.game_state.quarter,
                self.log.chronological(),
            )
            for player_in, player_out in zip(players_in, players_out):
                self._record_substitution(Actor.player(player_in), Actor.player(player_out))
        self._refresh()
        self._publish_state()

    def set_opponent_starting_five(self, jerseys: Iterable) -> None:
        self._require_writable()
        self.opponent.set_starting_five(jerseys)
        self._publish_state()

    def lock_opponent_starting_five(self) -> None:
        with self._action("lineup"):
            self.opponent.lock_starting_five()
        self._refresh()
        self._publish_state()

    def substitute_opponent(self, jersey_out, jersey_in) -> None:
        self._require_open()
        with self._action("substitution"):
            self.opponent.substitute(jersey_out, jersey_in)
            self._record_substitution(Actor.opponent(jersey_in), Actor.opponent(jersey_out))
        self._refresh()
        self._publish_state()

    def _record_substitution(self, actor_in: Actor, actor_out: Actor) -> None:
        out_id = self._commit(EventDraft(EventType.SUBSTITUTION_OUT, actor_out))
        self._commit(EventDraft(EventType.SUBSTITUTION_IN, actor_in, metadata={"linkedEventId": out_id}))

    def _check_rostered(self, player_ids: Iterable[int]) -> None:
        self._require_open()
        unknown = [p for p in player_ids if p not in self.roster]
        if unknown:
            raise InvalidSubstitution(f"Players {unknown} are not on the roster")

    # -- deletion and undo ------------------------------------------------

    def delete_event(self, event_id: str) -> GameEvent:
        """
        Tombstone an event and append the ``deleted_event`` audit record.

        Returns:
            The event as it was before deletion
        """
        self._require_writable()
        if event_id not in self.log:
            raise InvalidEventError(f"Unknown event {event_id}")
        target = self.log.get(event_id)
        if target.is_deleted:
            raise InvalidEventError(f"Event {event_id} is already deleted")
        if target.event_type == EventType.DELETED_EVENT:
            raise InvalidEventError("Audit records cannot be deleted")
        prior = self._tombstone(event_id)
        logger.info("Deleted event %s (%s)", event_id, target.event_type.value)
        self._rebuild()
        return prior

    def undo_last_deleted_event(self) -> Optional[str]:
        """Restore the most recently deleted event; returns the restored copy's id."""
        self._require_writable()
        restored = self.log.restore_last()
        if restored is None:
            return None
        self._notify(restored)
        self._rebuild()
        return restored.id

    def undo_last_action(self) -> Optional[str]:
        """
        Revert the most recent operator action.

        Events the action created are tombstoned (with audit records) and the
        lineup and opponent state captured before it is restored. The game
        clock and play state are left as they are now; the period is only
        rolled back when the undone action was a quarter change.

        Returns:
            The kind of action undone, or None when the history is empty
        """
        self._require_writable()
        if not self._history:
            return None
        entry = self._history.pop()
        kind = entry["kind"]
        if entry is self._workflow_action:
            self.engine.discard()
            self._workflow_action = None
        for event_id in reversed(entry["eventIds"]):
            if event_id in self.log and not self.log.get(event_id).is_deleted:
                self._tombstone(event_id)

        live = self.game_state
        self._restore_state(entry["state"])
        if kind == "quarter":
            before = self.game_state
            live.quarter = before.quarter
            live.is_overtime = before.is_overtime
            live.overtime_number = before.overtime_number
        self.game_state = live
        self._rebuild()
        self._publish_state()
        logger.info("Undid %s action (%d events)", kind, len(entry["eventIds"]))
        return kind

    @property
    def history_depth(self) -> int:
        return len(self._history)

    def _tombstone(self, event_id: str) -> GameEvent:
        prior = self.log.delete(event_id)
        audit = GameEvent(
            id=self._id_factory(),
            timestamp=self._clock(),
            quarter=self.game_state.quarter,
            event_type=EventType.DELETED_EVENT,
            metadata={"deletedEventId": event_id},
        )
        self.log.append(audit)
        self._notify(audit)
        return prior

    # -- replay and snapshots ---------------------------------------------

    def replay(self, events: Iterable[GameEvent]) -> None:
        """Replace the whole log and recompute everything from it."""
        self.engine.discard()
        self._workflow_action = None
        self._history.clear()
        self.log.replay(events)
        self._rebuild()

    def restore_state(self, data: dict) -> None:
        """
        Hydrate from a snapshot or a fetched session (events, game state, lineups).

        The period never trails the log: a stored game state older than the
        last quarter change is moved forward to the period the events imply.
        A primary event that was still waiting on a metadata prompt is recorded
        without that answer.
        """
        self.replay(GameEvent.from_dict(item) for item in data.get("events", []))
        self._restore_state({
            "gameState": data.get("gameState"),
            "lineups": data.get("lineups"),
            "opponent": data.get("opponent"),
        })
        self._catch_up_period()
        pending = data.get("pendingEvent")
        if pending and pending.get("id") not in self.log:
            draft = EventDraft.from_dict(pending)
            self._commit(draft)
            logger.info(
                "Recorded %s %s left waiting on a prompt", draft.event_type.value, draft.event_id
            )
        self._refresh()

    def _catch_up_period(self) -> None:
        # Audit records carry the period of the undo, not of the play
        events = [e for e in self.log.chronological() if e.event_type != EventType.DELETED_EVENT]
        if not events:
            return
        stopped = sum(1 for e in events if e.event_type == EventType.QUARTER_STOPPED)
        quarter = max(stopped + 1, max(e.quarter for e in events))
        state = self.game_state
        if any(e.event_type == EventType.QUARTER_STARTED for e in events):
            state.is_game_started = True
        if quarter > state.quarter:
            state.quarter = quarter - 1
            state.advance_quarter(self.settings)

    def snapshot(self) -> dict:
        return {
            "savedAt": self._clock(),
            "roster": [p.to_dict() for p in self.roster.values()],
            "events": self.log.to_list(),
            **self.session_state(),
        }

    @classmethod
    def from_snapshot(cls, data: dict, **kwargs) -> "LiveGameTracker":
        roster = [Player.from_dict(item) for item in data.get("roster", [])]
        tracker = cls(roster, **kwargs)
        tracker.restore_state(data)
        return tracker

    def _capture_state(self) -> dict:
        return {
            "gameState": self.game_state.to_dict(),
            "lineups": self.lineups.to_dict(),
            "opponent": self.opponent.to_dict(),
        }

    def _restore_state(self, state: dict) -> None:
        if state.get("gameState"):
            self.game_state = GameState.from_dict(state["gameState"])
        if state.get("lineups"):
            self.lineups.load(state["lineups"])
        if state.get("opponent") is not None:
            self.opponent = OpponentState.from_dict(state["opponent"])

    # -- getters ----------------------------------------------------------

    @property
    def result(self) -> AggregateResult:
        return self._result

    def get_player_stats(self) -> list[Player]:
        return self._result.players

    def get_team_stats(self) -> TeamStats:
        return self._result.team

    def get_opponent_stats(self) -> TeamStats:
        return self._result.opponent

    def get_opponent_lines(self) -> dict[str, StatLine]:
        return self._result.opponent_lines

    def get_opponent_fouls(self) -> dict[str, int]:
        return OpponentState.fouls_by_jersey(self.log)

    def events(self, newest_first: bool = True) -> list[GameEvent]:
        if newest_first:
            return self.log.newest_first()
        return self.log.chronological()

    def lineup_effectiveness(self) -> list[dict]:
        events = self.log.chronological()
        now = self._clock()
        return [self.lineups.effectiveness(lineup, events, now) for lineup in self.lineups.lineups]

    # -- internals --------------------------------------------------------

    def _require_writable(self) -> None:
        if self.read_only:
            raise SessionStateError("This game is open read-only")

    def _require_open(self) -> None:
        self._require_writable()
        if self.game_state.is_game_ended:
            raise SessionStateError("The game has ended")

    def _validate(self, draft: EventDraft) -> None:
        self._require_open()
        actor = draft.actor
        if draft.event_type in ACTOR_REQUIRED and actor is None:
            raise InvalidEventError(f"{draft.event_type.value} needs a player or jersey")
        if actor is not None:
            if not isinstance(actor, Actor):
                raise InvalidEventError(f"Expected an Actor, got {actor!r}")
            if actor.is_opponent and not (actor.jersey or "").strip():
                raise InvalidEventError("Opponent events need a jersey number")
            if not actor.is_opponent and actor.player_id not in self.roster:
                raise InvalidEventError(f"Player {actor.player_id} is not on the roster")
        expected = _SHOT_VALUES.get(draft.event_type)
        if draft.value is not None and draft.value != expected:
            raise InvalidEventError(
                f"Invalid value {draft.value!r} for {draft.event_type.value}"
            )

    def _commit(self, draft: EventDraft) -> str:
        """Append a validated draft, tagging it with the possession windows."""
        event = GameEvent(
            id=draft.event_id or self._id_factory(),
            timestamp=self._clock(),
            quarter=self.game_state.quarter,
            event_type=draft.event_type,
            actor=draft.actor,
            value=draft.value,
            game_time=self.game_state.elapsed_in_quarter(self.settings),
            metadata=dict(draft.metadata),
        )
        tags = self.possession.observe(event)
        if tags:
            event = replace(event, metadata={**event.metadata, **tags})
        event_id = self.log.append(event)
        if self._open_action is not None:
            self._open_action["eventIds"].append(event_id)
        self._refresh()
        self._notify(event)
        return event_id

    def _notify(self, event: GameEvent) -> None:
        for listener in self._listeners:
            listener(event)

    @contextmanager
    def _action(self, kind: str):
        self._require_writable()
        entry = {"kind": kind, "eventIds": [], "state": self._capture_state()}
        previous = self._open_action
        self._open_action = entry
        try:
            yield entry
        finally:
            self._open_action = previous
        self._history.append(entry)

    @contextmanager
    def _resume_workflow(self):
        previous = self._open_action
        held_back = self.engine.unrecorded_draft is not None
        self._open_action = self._workflow_action
        try:
            yield
        finally:
            self._open_action = previous
            if self.engine.pending is None:
                self._workflow_action = None
        if held_back:
            self._publish_state()

    def _publish_state(self) -> None:
        if not self._state_listeners:
            return
        state = self.session_state()
        for listener in self._state_listeners:
            listener(state)

    def _rebuild(self) -> None:
        self.possession.rebuild(self.log.chronological())
        self._refresh()

    def _refresh(self) -> None:
        self._result = aggregate(
            self.log,
            self.roster.values(),
            starters=self.lineups.starters,
            opponent_starters=self.opponent.locked_starters,
            settings=self.settings,
            current_quarter=self.game_state.quarter,
        )
        on_court = set(self.lineups.on_court)
        for player in self._result.players:
            player.is_on_court = player.id in on_court
            player.is_starter = player.id in self.lineups.starters
        self.game_state.sync_from(self._result, self.log, self.settings)
