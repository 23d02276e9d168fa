"""Home lineups (five-player intervals) and the opponent's jersey slots."""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .aggregate import plus_minus_between, stat_deltas
from .errors import InvalidEventError, InvalidSubstitution
from .events import EventType, GameEvent
from .settings import TrackerSettings

LINEUP_SIZE = 5


@dataclass
class Lineup:
    """Five players on court for a contiguous wall-clock interval."""

    id: str
    players: tuple
    start: float
    end: Optional[float] = None
    plus_minus: int = 0
    quarter: int = 1

    @property
    def is_open(self) -> bool:
        return self.end is None

    def duration(self, now: float) -> float:
        return (self.end if self.end is not None else now) - self.start

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "players": list(self.players),
            "startTime": self.start,
            "endTime": self.end,
            "plusMinus": self.plus_minus,
            "quarter": self.quarter,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Lineup":
        return cls(
            id=str(data["id"]),
            players=tuple(int(p) for p in data["players"]),
            start=float(data["startTime"]),
            end=float(data["endTime"]) if data.get("endTime") is not None else None,
            plus_minus=int(data.get("plusMinus", 0)),
            quarter=int(data.get("quarter", 1)),
        )


def _check_five(player_ids: Iterable[int]) -> tuple:
    players = tuple(player_ids)
    if len(players) != LINEUP_SIZE or len(set(players)) != LINEUP_SIZE:
        raise InvalidSubstitution(
            f"A lineup needs exactly {LINEUP_SIZE} different players, got {len(set(players))}"
        )
    return players


class LineupTracker:
    """
    Lineup history for the home team.

    The first lock (or first substitution) fixes the starting five. Exactly one
    lineup is open at a time; closing it snapshots its plus-minus from the
    events that fell inside its interval.
    """

    def __init__(self, settings: Optional[TrackerSettings] = None):
        self.settings = settings or TrackerSettings()
        self.lineups: list[Lineup] = []
        self.starters: frozenset = frozenset()
        self.substitutions: list[dict] = []
        self._counter = 0

    @property
    def current(self) -> Optional[Lineup]:
        for lineup in reversed(self.lineups):
            if lineup.is_open:
                return lineup
        return None

    @property
    def on_court(self) -> tuple:
        current = self.current
        return current.players if current else ()

    @property
    def starters_locked(self) -> bool:
        return bool(self.starters)

    def _next_id(self) -> str:
        self._counter += 1
        return f"lineup-{self._counter}"

    def lock(self, player_ids: Iterable[int], at: float, quarter: int, events) -> Lineup:
        """Start a lineup from scratch (initial lock or bulk substitution)."""
        players = _check_five(player_ids)
        self.close(at, events)
        if not self.starters:
            self.starters = frozenset(players)
        lineup = Lineup(id=self._next_id(), players=players, start=at, quarter=quarter)
        self.lineups.append(lineup)
        return lineup

    def substitute(
        self, player_in: int, player_out: int, at: float, quarter: int, events
    ) -> Lineup:
        current = self.current
        if current is None:
            raise InvalidSubstitution("No lineup on court to substitute into")
        if player_out not in current.players:
            raise InvalidSubstitution(f"Player {player_out} is not on court")
        if player_in in current.players:
            raise InvalidSubstitution(f"Player {player_in} is already on court")
        players = tuple(player_in if p == player_out else p for p in current.players)
        if not self.starters:
            self.starters = frozenset(current.players)
        self.close(at, events)
        lineup = Lineup(id=self._next_id(), players=players, start=at, quarter=quarter)
        self.lineups.append(lineup)
        self.substitutions.append({
            "playerIn": player_in,
            "playerOut": player_out,
            "timestamp": at,
            "quarter": quarter,
            "lineupId": lineup.id,
        })
        return lineup

    def bulk_substitute(
        self, players_in: Iterable[int], players_out: Iterable[int], at: float, quarter: int, events
    ) -> Lineup:
        """Swap several players at one stoppage, opening a single new lineup."""
        players_in, players_out = list(players_in), list(players_out)
        current = self.current
        if current is None:
            raise InvalidSubstitution("No lineup on court to substitute into")
        if len(players_in) != len(players_out):
            raise InvalidSubstitution("Substitution needs as many players in as out")
        missing = [p for p in players_out if p not in current.players]
        if missing:
            raise InvalidSubstitution(f"Players {missing} are not on court")
        staying = [p for p in current.players if p not in players_out]
        players = _check_five(staying + players_in)
        if not self.starters:
            self.starters = frozenset(current.players)
        self.close(at, events)
        lineup = Lineup(id=self._next_id(), players=players, start=at, quarter=quarter)
        self.lineups.append(lineup)
        for player_in, player_out in zip(players_in, players_out):
            self.substitutions.append({
                "playerIn": player_in,
                "playerOut": player_out,
                "timestamp": at,
                "quarter": quarter,
                "lineupId": lineup.id,
            })
        return lineup

    def close(self, at: float, events) -> Optional[Lineup]:
        current = self.current
        if current is None:
            return None
        current.end = at
        current.plus_minus = plus_minus_between(
            events, current.players, current.start, current.end, self.settings
        )
        return current

    def live_plus_minus(self, lineup: Lineup, events) -> int:
        if not lineup.is_open:
            return lineup.plus_minus
        return plus_minus_between(events, lineup.players, lineup.start, None, self.settings)

    def effectiveness(self, lineup: Lineup, events: Iterable[GameEvent], now: float) -> dict:
        """Production of a lineup's members while that lineup was on court."""
        members = set(lineup.players)
        totals = {"points": 0, "rebounds": 0, "assists": 0, "turnovers": 0}
        for event in events:
            if event.is_deleted or event.actor is None or event.actor.is_opponent:
                continue
            if event.actor.player_id not in members:
                continue
            if event.timestamp < lineup.start:
                continue
            if lineup.end is not None and event.timestamp >= lineup.end:
                continue
            deltas = stat_deltas(event, self.settings)
            for key in totals:
                totals[key] += deltas.get(key, 0)
        minutes = round(lineup.duration(now) / 60, 1)
        plus_minus = self.live_plus_minus(lineup, events)
        return {
            "lineupId": lineup.id,
            "players": list(lineup.players),
            "totalPoints": totals["points"],
            "totalRebounds": totals["rebounds"],
            "totalAssists": totals["assists"],
            "totalTurnovers": totals["turnovers"],
            "totalPlusMinus": plus_minus,
            "minutesPlayed": minutes,
            "efficiency": round(plus_minus / minutes, 2) if minutes > 0 else 0.0,
        }

    def to_dict(self) -> dict:
        return {
            "lineups": [lineup.to_dict() for lineup in self.lineups],
            "starters": sorted(self.starters),
            "substitutions": list(self.substitutions),
        }

    def load(self, data: dict) -> None:
        self.lineups = [Lineup.from_dict(item) for item in data.get("lineups", [])]
        self.starters = frozenset(int(p) for p in data.get("starters", []))
        self.substitutions = list(data.get("substitutions", []))
        self._counter = len(self.lineups)


@dataclass
class OpponentState:
    """
    Opponent court slots keyed by jersey number.

    Opponents are not rostered, only tracked by the jerseys in the five court
    slots. The starting five can be edited until it is locked.
    """

    on_court: list = field(default_factory=list)
    starting_five: tuple = ()
    starting_five_locked: bool = False

    def set_starting_five(self, jerseys: Iterable) -> None:
        if self.starting_five_locked:
            raise InvalidEventError("Opponent starting five is locked")
        jerseys = [str(j) for j in jerseys]
        if len(jerseys) != LINEUP_SIZE or len(set(jerseys)) != LINEUP_SIZE:
            raise InvalidEventError(
                f"Opponent starting five needs {LINEUP_SIZE} different jerseys"
            )
        self.starting_five = tuple(jerseys)
        self.on_court = list(jerseys)

    def lock_starting_five(self) -> None:
        if len(self.starting_five) != LINEUP_SIZE:
            raise InvalidEventError("Set the opponent starting five before locking it")
        self.starting_five_locked = True

    def substitute(self, jersey_out, jersey_in) -> None:
        jersey_out, jersey_in = str(jersey_out), str(jersey_in)
        if jersey_out not in self.on_court:
            raise InvalidEventError(f"Opponent #{jersey_out} is not on court")
        if jersey_in in self.on_court:
            raise InvalidEventError(f"Opponent #{jersey_in} is already on court")
        self.on_court[self.on_court.index(jersey_out)] = jersey_in
        if not self.starting_five_locked and self.starting_five:
            self.starting_five_locked = True

    @property
    def locked_starters(self) -> tuple:
        return self.starting_five if self.starting_five_locked else ()

    @staticmethod
    def fouls_by_jersey(events: Iterable[GameEvent]) -> dict[str, int]:
        """Personal fouls per opponent jersey (independent of court slots)."""
        fouls: dict[str, int] = {}
        for event in events:
            if event.is_deleted or event.actor is None or not event.actor.is_opponent:
                continue
            if event.event_type == EventType.FOUL:
                fouls[event.actor.jersey] = fouls.get(event.actor.jersey, 0) + 1
        return fouls

    def to_dict(self) -> dict:
        return {
            "onCourt": list(self.on_court),
            "startingFive": list(self.starting_five),
            "startingFiveLocked": self.starting_five_locked,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "OpponentState":
        data = data or {}
        return cls(
            on_court=[str(j) for j in data.get("onCourt", [])],
            starting_five=tuple(str(j) for j in data.get("startingFive", [])),
            starting_five_locked=bool(data.get("startingFiveLocked", False)),
        )
