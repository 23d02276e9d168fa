"""Box-score aggregation: one fold function with an exact inverse."""

import logging
from dataclasses import dataclass, field, fields, replace
from typing import Iterable, Optional

from .events import EventType, GameEvent
from .settings import TrackerSettings

logger = logging.getLogger(__name__)


def _pct(made: int, attempted: int) -> float:
    """Shooting percentage with zero attempts reported as 0.0."""
    if attempted <= 0:
        return 0.0
    return round(made / attempted * 100, 1)


@dataclass
class StatLine:
    """Counting stats for one player, one opponent jersey, or a whole team."""

    points: int = 0
    rebounds: int = 0
    offensive_rebounds: int = 0
    defensive_rebounds: int = 0
    assists: int = 0
    steals: int = 0
    blocks: int = 0
    fouls: int = 0
    turnovers: int = 0
    fg_made: int = 0
    fg_attempted: int = 0
    two_made: int = 0
    two_attempted: int = 0
    three_made: int = 0
    three_attempted: int = 0
    ft_made: int = 0
    ft_attempted: int = 0
    plus_minus: int = 0
    charges_taken: int = 0
    deflections: int = 0
    points_in_paint: int = 0

    @property
    def fg_percentage(self) -> float:
        return _pct(self.fg_made, self.fg_attempted)

    @property
    def two_percentage(self) -> float:
        return _pct(self.two_made, self.two_attempted)

    @property
    def three_percentage(self) -> float:
        return _pct(self.three_made, self.three_attempted)

    @property
    def ft_percentage(self) -> float:
        return _pct(self.ft_made, self.ft_attempted)

    @property
    def has_stats(self) -> bool:
        return any(
            getattr(self, f.name) != 0 for f in fields(self) if f.name != "plus_minus"
        )

    def add(self, deltas: dict, direction: int = 1) -> None:
        for name, amount in deltas.items():
            setattr(self, name, getattr(self, name) + direction * amount)

    def merge(self, other: "StatLine") -> None:
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))

    def efficiency(self, weights: dict) -> int:
        """Configurable efficiency rating (coaching convention)."""
        components = {
            "points": self.points,
            "rebounds": self.rebounds,
            "assists": self.assists,
            "steals": self.steals,
            "blocks": self.blocks,
            "missed_fg": self.fg_attempted - self.fg_made,
            "missed_ft": self.ft_attempted - self.ft_made,
            "turnovers": self.turnovers,
            "fouls": self.fouls,
        }
        return sum(weights.get(name, 0) * value for name, value in components.items())

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["fg_percentage"] = self.fg_percentage
        data["three_percentage"] = self.three_percentage
        data["ft_percentage"] = self.ft_percentage
        return data


@dataclass
class Player:
    """
    Roster identity plus a derived stat line.

    ``stats`` is never edited directly; it is rebuilt by folding the event log.
    """

    id: int
    name: str
    jersey_number: str = ""
    position: str = ""
    is_on_court: bool = False
    is_starter: bool = False
    stats: StatLine = field(default_factory=StatLine)

    def identity(self) -> "Player":
        """Copy without stats."""
        return replace(self, stats=StatLine())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "jerseyNumber": self.jersey_number,
            "position": self.position,
            "isOnCourt": self.is_on_court,
            "isStarter": self.is_starter,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Player":
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            jersey_number=str(data.get("jerseyNumber", data.get("number", "")) or ""),
            position=data.get("position", "") or "",
            is_on_court=bool(data.get("isOnCourt", False)),
            is_starter=bool(data.get("isStarter", False)),
        )


@dataclass
class TeamStats:
    """Team totals plus possession analytics."""

    totals: StatLine = field(default_factory=StatLine)
    bench_points: int = 0
    second_chance_points: int = 0
    points_off_turnovers: int = 0
    team_fouls: int = 0

    @property
    def total_points(self) -> int:
        return self.totals.points

    @property
    def points_in_paint(self) -> int:
        return self.totals.points_in_paint

    @property
    def fg_percentage(self) -> float:
        return self.totals.fg_percentage

    @property
    def three_percentage(self) -> float:
        return self.totals.three_percentage

    @property
    def ft_percentage(self) -> float:
        return self.totals.ft_percentage

    @property
    def assist_to_turnover(self) -> float:
        if self.totals.turnovers == 0:
            return 0.0
        return round(self.totals.assists / self.totals.turnovers, 2)

    def to_dict(self) -> dict:
        return {
            "totals": self.totals.to_dict(),
            "totalPoints": self.total_points,
            "benchPoints": self.bench_points,
            "secondChancePoints": self.second_chance_points,
            "pointsOffTurnovers": self.points_off_turnovers,
            "pointsInPaint": self.points_in_paint,
            "teamFouls": self.team_fouls,
            "fgPercentage": self.fg_percentage,
            "threePercentage": self.three_percentage,
            "ftPercentage": self.ft_percentage,
            "assistToTurnover": self.assist_to_turnover,
        }


@dataclass
class AggregateResult:
    players: list[Player]
    team: TeamStats
    opponent: TeamStats
    opponent_lines: dict[str, StatLine]


def stat_deltas(event: GameEvent, settings: Optional[TrackerSettings] = None) -> dict:
    """
    Map one event to the counter increments it implies.

    Attempts are derived from makes and misses; the UI never records a
    separate attempt event. Game-level and roster events map to ``{}``.
    """
    settings = settings or TrackerSettings()
    etype = event.event_type
    meta = event.metadata

    if etype == EventType.FG_MADE:
        pts = event.points
        deltas = {
            "points": pts,
            "fg_made": 1,
            "fg_attempted": 1,
            "two_made": 1,
            "two_attempted": 1,
            "plus_minus": pts,
        }
        if meta.get("pip") is True:
            deltas["points_in_paint"] = pts
        return deltas
    if etype == EventType.FG_MISSED:
        return {"fg_attempted": 1, "two_attempted": 1}
    if etype == EventType.THREE_MADE:
        return {
            "points": 3,
            "fg_made": 1,
            "fg_attempted": 1,
            "three_made": 1,
            "three_attempted": 1,
            "plus_minus": 3,
        }
    if etype == EventType.THREE_MISSED:
        return {"fg_attempted": 1, "three_attempted": 1}
    if etype == EventType.FT_MADE:
        return {"points": 1, "ft_made": 1, "ft_attempted": 1, "plus_minus": 1}
    if etype == EventType.FT_MISSED:
        return {"ft_attempted": 1}
    if etype == EventType.REBOUND:
        if meta.get("reboundType") == "offensive" or meta.get("isOffensive") is True:
            return {"rebounds": 1, "offensive_rebounds": 1}
        return {"rebounds": 1, "defensive_rebounds": 1}
    if etype == EventType.ASSIST:
        return {"assists": 1}
    if etype == EventType.STEAL:
        return {"steals": 1, "plus_minus": settings.steal_plus_minus}
    if etype == EventType.TURNOVER:
        return {"turnovers": 1, "plus_minus": settings.turnover_plus_minus}
    if etype == EventType.BLOCK:
        return {"blocks": 1}
    if etype == EventType.FOUL:
        return {"fouls": 1}
    if etype == EventType.CHARGE_TAKEN:
        return {"charges_taken": 1, "plus_minus": settings.charge_plus_minus}
    if etype == EventType.DEFLECTION:
        return {"deflections": 1}
    return {}


def apply_event(
    line: StatLine,
    event: GameEvent,
    direction: int = 1,
    settings: Optional[TrackerSettings] = None,
) -> None:
    """
    Apply (direction=+1) or reverse (direction=-1) one event on a stat line.

    The same function serves live recording, deletion, restore, and replay.
    """
    if direction not in (1, -1):
        raise ValueError("direction must be +1 or -1")
    line.add(stat_deltas(event, settings), direction)


def is_team_foul(event: GameEvent) -> bool:
    """Personal fouls count toward team fouls unless marked offensive."""
    return event.event_type == EventType.FOUL and not event.metadata.get("isOffensive")


def half_of(quarter: int, settings: TrackerSettings) -> int:
    return 1 if quarter <= settings.halftime_after else 2


def _dedupe(events: Iterable[GameEvent]) -> list[GameEvent]:
    seen: set = set()
    unique = []
    for event in events:
        if event.id in seen:
            continue
        seen.add(event.id)
        unique.append(event)
    return unique


def chronological(events: Iterable[GameEvent]) -> list[GameEvent]:
    """Deduplicated, non-deleted events sorted oldest first (stable)."""
    unique = _dedupe(events)
    ordered = sorted(enumerate(unique), key=lambda item: (item[1].timestamp, item[0]))
    return [e for _, e in ordered if not e.is_deleted]


def aggregate(
    events: Iterable[GameEvent],
    roster: Iterable[Player],
    starters: Optional[Iterable[int]] = None,
    opponent_starters: Optional[Iterable[str]] = None,
    settings: Optional[TrackerSettings] = None,
    current_quarter: Optional[int] = None,
) -> AggregateResult:
    """
    Fold the event log into player, team and opponent box scores.

    Pure: the same events and roster always give the same result. Events with
    duplicate ids are counted once and tombstoned events are skipped.

    Args:
        events: Event log contents in any order
        roster: Rostered players (identity and court status are kept, stats rebuilt)
        starters: Locked home starting five (player ids) for bench points
        opponent_starters: Locked opponent starting five (jerseys)
        settings: Policy weights and period structure
        current_quarter: Quarter used to pick the half for team fouls
            (defaults to the quarter of the latest event)

    Returns:
        AggregateResult with fresh Player copies and team/opponent TeamStats
    """
    settings = settings or TrackerSettings()
    players = {p.id: p.identity() for p in roster}
    opponent_lines: dict[str, StatLine] = {}
    team = TeamStats()
    opponent = TeamStats()
    home_starters = set(starters or ())
    away_starters = {str(j) for j in (opponent_starters or ())}

    ordered = chronological(events)
    if current_quarter is None:
        current_quarter = ordered[-1].quarter if ordered else 1
    current_half = half_of(current_quarter, settings)

    for event in ordered:
        if event.actor is None:
            continue
        deltas = stat_deltas(event, settings)
        side_stats = opponent if event.actor.is_opponent else team

        if event.actor.is_opponent:
            line = opponent_lines.setdefault(event.actor.jersey, StatLine())
            is_bench = bool(away_starters) and event.actor.jersey not in away_starters
        else:
            player = players.get(event.actor.player_id)
            if player is None:
                logger.warning(
                    "Skipping event %s for unknown player %s", event.id, event.actor.player_id
                )
                continue
            line = player.stats
            is_bench = bool(home_starters) and event.actor.player_id not in home_starters

        line.add(deltas)

        if event.is_scoring:
            pts = event.points
            if is_bench:
                side_stats.bench_points += pts
            if event.metadata.get("scp"):
                side_stats.second_chance_points += pts
            if event.metadata.get("pto"):
                side_stats.points_off_turnovers += pts
        if is_team_foul(event) and half_of(event.quarter, settings) == current_half:
            side_stats.team_fouls += 1

    for player in players.values():
        team.totals.merge(player.stats)
    for line in opponent_lines.values():
        opponent.totals.merge(line)

    return AggregateResult(
        players=list(players.values()),
        team=team,
        opponent=opponent,
        opponent_lines=opponent_lines,
    )


def plus_minus_between(
    events: Iterable[GameEvent],
    player_ids: Iterable[int],
    start: float,
    end: Optional[float] = None,
    settings: Optional[TrackerSettings] = None,
) -> int:
    """Sum of the given players' plus-minus accrued in ``[start, end)``."""
    members = set(player_ids)
    total = 0
    for event in chronological(events):
        if event.actor is None or event.actor.is_opponent:
            continue
        if event.actor.player_id not in members:
            continue
        if event.timestamp < start or (end is not None and event.timestamp >= end):
            continue
        total += stat_deltas(event, settings).get("plus_minus", 0)
    return total
