"""Game event records: the single source of truth for every derived stat."""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

HOME = "home"
AWAY = "away"


class EventType(str, Enum):
    FG_MADE = "fg_made"
    FG_MISSED = "fg_missed"
    THREE_MADE = "three_made"
    THREE_MISSED = "three_missed"
    FT_MADE = "ft_made"
    FT_MISSED = "ft_missed"
    REBOUND = "rebound"
    ASSIST = "assist"
    STEAL = "steal"
    BLOCK = "block"
    TURNOVER = "turnover"
    FOUL = "foul"
    CHARGE_TAKEN = "charge_taken"
    DEFLECTION = "deflection"
    SUBSTITUTION_IN = "substitution_in"
    SUBSTITUTION_OUT = "substitution_out"
    TIMEOUT = "timeout"
    QUARTER_STARTED = "quarter_started"
    QUARTER_STOPPED = "quarter_stopped"
    DELETED_EVENT = "deleted_event"


MADE_SHOTS = frozenset({EventType.FG_MADE, EventType.THREE_MADE, EventType.FT_MADE})
MISSED_SHOTS = frozenset({EventType.FG_MISSED, EventType.THREE_MISSED, EventType.FT_MISSED})
FIELD_GOALS_MADE = frozenset({EventType.FG_MADE, EventType.THREE_MADE})
QUARTER_EVENTS = frozenset({EventType.QUARTER_STARTED, EventType.QUARTER_STOPPED})

# Event types that must name a player or opponent jersey
ACTOR_REQUIRED = frozenset(
    t
    for t in EventType
    if t not in QUARTER_EVENTS and t not in (EventType.TIMEOUT, EventType.DELETED_EVENT)
)


def other_side(side: str) -> str:
    return AWAY if side == HOME else HOME


@dataclass(frozen=True)
class Actor:
    """Who an event is credited to: a rostered player or an opponent jersey."""

    kind: str
    player_id: Optional[int] = None
    jersey: Optional[str] = None

    PLAYER = "player"
    OPPONENT = "opponent"

    @classmethod
    def player(cls, player_id: int) -> "Actor":
        return cls(kind=cls.PLAYER, player_id=int(player_id))

    @classmethod
    def opponent(cls, jersey) -> "Actor":
        return cls(kind=cls.OPPONENT, jersey=str(jersey))

    @property
    def is_opponent(self) -> bool:
        return self.kind == self.OPPONENT

    @property
    def side(self) -> str:
        return AWAY if self.is_opponent else HOME

    @property
    def key(self):
        """Player id for home players, jersey string for opponents."""
        return self.jersey if self.is_opponent else self.player_id

    def to_dict(self) -> dict:
        if self.is_opponent:
            return {"kind": self.kind, "jerseyNumber": self.jersey}
        return {"kind": self.kind, "playerId": self.player_id}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Actor"]:
        if not data:
            return None
        if data.get("kind") == cls.OPPONENT:
            return cls.opponent(data["jerseyNumber"])
        return cls.player(data["playerId"])


def new_event_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class GameEvent:
    """
    One recorded game action.

    Events are immutable once created. The only state change an event ever
    sees is the ``is_deleted`` tombstone, applied by producing a replaced copy.
    ``timestamp`` is the wall-clock recording time and is the ordering key;
    ``game_time`` is informational (seconds elapsed in the quarter).
    """

    id: str
    timestamp: float
    quarter: int
    event_type: EventType
    actor: Optional[Actor] = None
    value: Optional[int] = None
    game_time: int = 0
    metadata: dict = field(default_factory=dict)
    is_deleted: bool = False

    @property
    def side(self) -> Optional[str]:
        """Team the event belongs to, or None for game-level events."""
        if self.actor is not None:
            return self.actor.side
        return self.metadata.get("team")

    @property
    def points(self) -> int:
        """Points this event puts on the board (0 for non-scoring events)."""
        if self.event_type == EventType.FG_MADE:
            return int(self.value) if self.value else 2
        if self.event_type == EventType.THREE_MADE:
            return 3
        if self.event_type == EventType.FT_MADE:
            return 1
        return 0

    @property
    def is_scoring(self) -> bool:
        return self.event_type in MADE_SHOTS

    def tombstoned(self) -> "GameEvent":
        return replace(self, is_deleted=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "quarter": self.quarter,
            "gameTimeOffset": self.game_time,
            "eventType": self.event_type.value,
            "actor": self.actor.to_dict() if self.actor else None,
            "value": self.value,
            "metadata": dict(self.metadata),
            "isDeleted": self.is_deleted,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GameEvent":
        return cls(
            id=str(data["id"]),
            timestamp=float(data["timestamp"]),
            quarter=int(data.get("quarter", 1)),
            event_type=EventType(data["eventType"]),
            actor=Actor.from_dict(data.get("actor")),
            value=data.get("value"),
            game_time=int(data.get("gameTimeOffset", 0) or 0),
            metadata=dict(data.get("metadata") or {}),
            is_deleted=bool(data.get("isDeleted", False)),
        )
