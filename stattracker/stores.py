"""In-process session, roster and persisted-game stores.

These hold their records in memory and behave like the remote services:
records are copied on the way in and out, duplicate event ids are ignored,
and an ``online`` flag simulates losing connectivity.
"""

import copy
import itertools
import time
import uuid
from typing import Callable, Iterable, Optional

from .aggregate import Player
from .errors import RemoteStoreError


class _Connectivity:
    def __init__(self):
        self.online = True

    def _check_online(self) -> None:
        if not self.online:
            raise RemoteStoreError(f"{type(self).__name__} is unreachable")


class InMemorySessionStore(_Connectivity):
    """Live-session records keyed by session key, with their event logs."""

    def __init__(self, clock: Callable[[], float] = time.time):
        super().__init__()
        self._clock = clock
        self._ids = itertools.count(1)
        self._sessions: dict[str, dict] = {}
        self._events: dict[int, list[dict]] = {}

    def create_session(self, event_id) -> str:
        self._check_online()
        now = self._clock()
        session_key = uuid.uuid4().hex
        session_id = next(self._ids)
        self._sessions[session_key] = {
            "sessionKey": session_key,
            "sessionId": session_id,
            "eventId": event_id,
            "gameId": None,
            "isActive": True,
            "createdAt": now,
            "updatedAt": now,
            "state": {},
        }
        self._events[session_id] = []
        return session_key

    def find_session(self, event_id) -> Optional[dict]:
        """Most recently created session for an event, or None."""
        self._check_online()
        matches = [s for s in self._sessions.values() if s["eventId"] == event_id]
        if not matches:
            return None
        latest = max(matches, key=lambda s: (s["createdAt"], s["sessionId"]))
        return self._summary(latest)

    def fetch_session(self, session_key: str) -> dict:
        self._check_online()
        record = self._sessions.get(session_key)
        if record is None:
            raise KeyError(f"Unknown session {session_key}")
        state = copy.deepcopy(record["state"])
        return {
            "session": self._summary(record),
            "events": copy.deepcopy(self._events[record["sessionId"]]),
            "gameState": state.get("gameState"),
            "lineups": state.get("lineups"),
            "opponent": state.get("opponent"),
            "pendingEvent": state.get("pendingEvent"),
        }

    def append_event(self, session_id: int, event: dict) -> bool:
        """
        Append an event record.

        Returns:
            False when an event with the same id was already stored
        """
        self._check_online()
        events = self._events.get(session_id)
        if events is None:
            raise KeyError(f"Unknown session {session_id}")
        if any(e["id"] == event["id"] for e in events):
            return False
        events.append(copy.deepcopy(event))
        return True

    def update_session(self, session_id: int, partial_state: dict) -> None:
        self._check_online()
        record = self._by_id(session_id)
        partial_state = copy.deepcopy(partial_state)
        if "gameId" in partial_state:
            record["gameId"] = partial_state.pop("gameId")
        record["state"].update(partial_state)
        record["updatedAt"] = self._clock()

    def set_session_active(self, session_id: int, active: bool) -> None:
        self._check_online()
        record = self._by_id(session_id)
        record["isActive"] = bool(active)
        record["updatedAt"] = self._clock()

    def delete_sessions(self, event_id) -> int:
        self._check_online()
        doomed = [k for k, s in self._sessions.items() if s["eventId"] == event_id]
        for key in doomed:
            record = self._sessions.pop(key)
            self._events.pop(record["sessionId"], None)
        return len(doomed)

    def _by_id(self, session_id: int) -> dict:
        for record in self._sessions.values():
            if record["sessionId"] == session_id:
                return record
        raise KeyError(f"Unknown session {session_id}")

    @staticmethod
    def _summary(record: dict) -> dict:
        return {k: copy.deepcopy(v) for k, v in record.items() if k != "state"}


class InMemoryGameStore(_Connectivity):
    """Persisted game records with per-player stat lines."""

    def __init__(self):
        super().__init__()
        self._ids = itertools.count(1)
        self._games: dict[int, dict] = {}

    def create_game_record(self, event_id, opponent_name: str) -> int:
        self._check_online()
        game_id = next(self._ids)
        self._games[game_id] = {
            "id": game_id,
            "eventId": event_id,
            "opponentName": opponent_name,
            "homeScore": 0,
            "awayScore": 0,
            "result": None,
            "playerStats": {},
        }
        return game_id

    def upsert_player_game_stats(self, game_id: int, player_id: int, stats: dict) -> None:
        self._check_online()
        self._game(game_id)["playerStats"][player_id] = copy.deepcopy(stats)

    def update_game_score(self, game_id: int, home_score: int, away_score: int, result: str) -> None:
        self._check_online()
        game = self._game(game_id)
        game["homeScore"] = home_score
        game["awayScore"] = away_score
        game["result"] = result

    def find_game(self, event_id) -> Optional[dict]:
        self._check_online()
        for game in self._games.values():
            if game["eventId"] == event_id:
                return copy.deepcopy(game)
        return None

    def get_game(self, game_id: int) -> Optional[dict]:
        self._check_online()
        game = self._games.get(game_id)
        return copy.deepcopy(game) if game else None

    def _game(self, game_id: int) -> dict:
        try:
            return self._games[game_id]
        except KeyError:
            raise KeyError(f"Unknown game {game_id}") from None

    def __len__(self) -> int:
        return len(self._games)


class StaticRosterStore(_Connectivity):
    """Fixed roster and event calendar."""

    def __init__(self, players: Iterable[Player], events: Optional[dict] = None):
        super().__init__()
        self._players = [p.identity() for p in players]
        self._events = dict(events or {})

    def list_players(self) -> list[Player]:
        self._check_online()
        return [p.identity() for p in self._players]

    def get_event_metadata(self, event_id) -> dict:
        self._check_online()
        meta = self._events.get(event_id, {})
        return {
            "name": meta.get("name", f"Event {event_id}"),
            "opponentName": meta.get("opponentName", "Opponent"),
        }
