"""Session lifecycle: start, resume, checkpoint, end and discard."""

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional

from .errors import (
    AggregationConflict,
    RemoteStoreError,
    SessionCreationError,
    SessionStateError,
)
from .snapshot import Autosaver, SnapshotStore
from .settings import TrackerSettings
from .sync import Reconciler
from .tracker import LiveGameTracker

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    ACTIVE = "active"
    CHECKPOINTED = "checkpointed"
    ENDED = "ended"


@dataclass(frozen=True)
class SessionHandle:
    """Identity of a live session, threaded through every lifecycle call."""

    session_key: str
    session_id: int
    event_id: object
    game_id: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "sessionKey": self.session_key,
            "sessionId": self.session_id,
            "eventId": self.event_id,
            "gameId": self.game_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionHandle":
        return cls(
            session_key=data["sessionKey"],
            session_id=data["sessionId"],
            event_id=data["eventId"],
            game_id=data.get("gameId"),
        )


@dataclass
class LiveSession:
    handle: SessionHandle
    tracker: LiveGameTracker
    reconciler: Reconciler
    autosaver: Optional[Autosaver] = None
    state: SessionState = SessionState.ACTIVE
    baseline: Optional[dict] = field(default=None, repr=False)

    @property
    def read_only(self) -> bool:
        return self.tracker.read_only

    def snapshot(self) -> dict:
        return {**self.tracker.snapshot(), "session": self.handle.to_dict()}


def _game_fingerprint(game: Optional[dict]) -> Optional[dict]:
    """Comparable view of a persisted game record (JSON-safe keys)."""
    if game is None:
        return None
    return {
        "homeScore": game.get("homeScore"),
        "awayScore": game.get("awayScore"),
        "result": game.get("result"),
        "playerStats": {str(k): v for k, v in (game.get("playerStats") or {}).items()},
    }


class SessionManager:
    """
    Creates and drives live sessions against the remote stores.

    Args:
        session_store: Live-session records and event logs
        game_store: Persisted game records
        roster_store: Roster and event calendar
        snapshot_store: Local durable cache (optional)
        settings: Tracker settings shared by every session
        clock: Time source
    """

    def __init__(
        self,
        session_store,
        game_store,
        roster_store,
        snapshot_store: Optional[SnapshotStore] = None,
        settings: Optional[TrackerSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.session_store = session_store
        self.game_store = game_store
        self.roster_store = roster_store
        self.snapshot_store = snapshot_store
        self.settings = settings or TrackerSettings()
        self._clock = clock
        self.state = SessionState.UNINITIALIZED

    def start_new(self, event_id) -> LiveSession:
        """
        Create a session for an event and an empty tracker bound to it.

        Raises:
            SessionCreationError: if the remote store cannot be reached
        """
        self.state = SessionState.STARTING
        try:
            session_key = self.session_store.create_session(event_id)
            record = self.session_store.fetch_session(session_key)["session"]
            roster = self.roster_store.list_players()
        except RemoteStoreError as e:
            self.state = SessionState.UNINITIALIZED
            raise SessionCreationError(f"Cannot start a session for event {event_id}: {e}") from e

        handle = SessionHandle(session_key, record["sessionId"], event_id)
        tracker = LiveGameTracker(roster, settings=self.settings, clock=self._clock)
        live = self._bind(handle, tracker)
        logger.info("Started session %s for event %s", session_key, event_id)
        return live

    def resume(self, event_id, start_over: bool = False) -> LiveSession:
        """
        Re-hydrate the most recent session for an event.

        The remote event log is preferred; when the remote store is unreachable
        the local snapshot is used and its events are queued for re-sync. An
        ended session resumes read-only unless ``start_over`` is set. A session
        that was already aggregated is re-aggregated into the same game record.
        """
        try:
            record = self.session_store.find_session(event_id)
        except RemoteStoreError as e:
            logger.warning("Remote store unreachable, resuming %s from snapshot: %s", event_id, e)
            return self._resume_offline(event_id)
        if record is None:
            raise SessionStateError(f"No session to resume for event {event_id}")

        try:
            fetched = self.session_store.fetch_session(record["sessionKey"])
            roster = self.roster_store.list_players()
        except RemoteStoreError as e:
            logger.warning(
                "Cannot load session %s, resuming from snapshot: %s", record["sessionKey"], e
            )
            return self._resume_offline(event_id)
        ended = not record["isActive"]
        if ended and start_over:
            self.session_store.set_session_active(record["sessionId"], True)
            ended = False

        handle = SessionHandle(
            record["sessionKey"], record["sessionId"], event_id, record.get("gameId")
        )
        tracker = LiveGameTracker(roster, settings=self.settings, clock=self._clock)
        tracker.restore_state(fetched)
        if start_over:
            tracker.game_state.is_game_ended = False
        tracker.read_only = ended

        live = self._bind(handle, tracker)
        self._resend_unsynced(live, fetched)
        if handle.game_id is not None:
            live.baseline = _game_fingerprint(self.game_store.get_game(handle.game_id))
            if ended:
                live.state = SessionState.ENDED
            else:
                self._aggregate(live)
                live.state = SessionState.CHECKPOINTED
        elif ended:
            live.state = SessionState.ENDED
        logger.info(
            "Resumed session %s for event %s (%d events, %s)",
            handle.session_key,
            event_id,
            len(tracker.log),
            live.state.value,
        )
        return live

    def checkpoint_aggregate(self, live: LiveSession) -> SessionHandle:
        """Persist the current aggregation and keep the session active."""
        if live.state == SessionState.ENDED:
            raise SessionStateError("Ended sessions cannot be checkpointed")
        handle = self._aggregate(live)
        live.state = SessionState.CHECKPOINTED
        self.state = live.state
        return handle

    def end_and_aggregate(self, live: LiveSession) -> SessionHandle:
        """Persist the final aggregation and close the session for good."""
        if live.state == SessionState.ENDED:
            raise SessionStateError("Session has already ended")
        if not live.tracker.game_state.is_game_ended:
            live.tracker.end_game()
        handle = self._aggregate(live)
        self.session_store.set_session_active(handle.session_id, False)
        live.tracker.read_only = True
        live.state = SessionState.ENDED
        self.state = live.state
        if self.snapshot_store is not None:
            self.snapshot_store.clear_snapshot(handle.event_id)
        logger.info("Ended session %s (game %s)", handle.session_key, handle.game_id)
        return handle

    def discard(self, event_id) -> int:
        """Delete every session for an event without aggregating."""
        removed = self.session_store.delete_sessions(event_id)
        if self.snapshot_store is not None:
            self.snapshot_store.clear_snapshot(event_id)
        self.state = SessionState.UNINITIALIZED
        logger.info("Discarded %d session(s) for event %s", removed, event_id)
        return removed

    def _bind(self, handle: SessionHandle, tracker: LiveGameTracker) -> LiveSession:
        reconciler = Reconciler(
            self.session_store, handle.session_id, settings=self.settings, clock=self._clock
        )
        live = LiveSession(handle=handle, tracker=tracker, reconciler=reconciler)
        tracker.subscribe(reconciler.mirror)
        tracker.subscribe_state(reconciler.push_state)
        if self.snapshot_store is not None:
            live.autosaver = Autosaver(
                self.snapshot_store,
                handle.event_id,
                live.snapshot,
                settings=self.settings,
                clock=self._clock,
            )
            tracker.subscribe(live.autosaver.touch)
            tracker.subscribe_state(live.autosaver.touch)
        self.state = SessionState.ACTIVE
        return live

    def _resume_offline(self, event_id) -> LiveSession:
        snapshot = self.snapshot_store.load_snapshot(event_id) if self.snapshot_store else None
        if snapshot is None or "session" not in snapshot:
            raise SessionCreationError(
                f"Remote store unreachable and no local snapshot for event {event_id}"
            )
        handle = SessionHandle.from_dict(snapshot["session"])
        tracker = LiveGameTracker.from_snapshot(
            snapshot, settings=self.settings, clock=self._clock
        )
        live = self._bind(handle, tracker)
        live.reconciler.is_online = False
        for event in tracker.log:
            live.reconciler.enqueue(event)
        live.reconciler.push_state(tracker.session_state(), deliver=False)
        if handle.game_id is not None:
            live.state = SessionState.CHECKPOINTED
        return live

    def _resend_unsynced(self, live: LiveSession, fetched: dict) -> None:
        """Send events the restore added to the log (a recovered prompt primary)."""
        stored = {item["id"] for item in fetched.get("events", [])}
        missing = [event for event in live.tracker.log if event.id not in stored]
        if not missing:
            return
        for event in missing:
            live.reconciler.enqueue(event)
        live.reconciler.flush(force=True)
        live.reconciler.push_state(live.tracker.session_state())

    def _aggregate(self, live: LiveSession) -> SessionHandle:
        """
        Write the tracker's full fold to the persisted-game store.

        The first call creates the game record; later calls (including after a
        resume) find and update the same record. A record that changed since
        this session last wrote it is an AggregationConflict, resolved by the
        configured policy.
        """
        tracker = live.tracker
        handle = live.handle
        sync = live.reconciler.flush(force=True)
        if sync.remaining:
            logger.warning("Aggregating with %d events not yet synced", sync.remaining)

        game_id = handle.game_id
        if game_id is None:
            existing = self.game_store.find_game(handle.event_id)
            if existing is not None:
                game_id = existing["id"]
                live.baseline = _game_fingerprint(existing)
        if game_id is None:
            meta = self.roster_store.get_event_metadata(handle.event_id)
            game_id = self.game_store.create_game_record(handle.event_id, meta["opponentName"])
            live.baseline = _game_fingerprint(self.game_store.get_game(game_id))
        else:
            self._check_conflict(game_id, live)

        persisted = set(live.baseline["playerStats"]) if live.baseline else set()
        result = tracker.result
        for player in result.players:
            if player.stats.has_stats or str(player.id) in persisted:
                self.game_store.upsert_player_game_stats(game_id, player.id, player.stats.to_dict())
        state = tracker.game_state
        self.game_store.update_game_score(game_id, state.home_score, state.away_score, state.result)

        self.session_store.update_session(
            handle.session_id, {"gameId": game_id, **tracker.session_state()}
        )

        live.baseline = _game_fingerprint(self.game_store.get_game(game_id))
        live.handle = replace(handle, game_id=game_id)
        if live.autosaver is not None:
            live.autosaver.save()
        return live.handle

    def _check_conflict(self, game_id: int, live: LiveSession) -> None:
        if live.baseline is None:
            return
        found = _game_fingerprint(self.game_store.get_game(game_id))
        if found == live.baseline:
            return
        conflict = AggregationConflict(game_id, live.baseline, found)
        if self.settings.aggregation_conflict_policy == "raise":
            raise conflict
        logger.warning("Overwriting externally modified game record: %s", conflict)
