"""Scoreboard state: period, clock, scores, timeouts, team fouls."""

from dataclasses import asdict, dataclass, replace
from typing import Iterable

from .aggregate import AggregateResult
from .events import AWAY, HOME, EventType, GameEvent
from .settings import TrackerSettings


@dataclass
class GameState:
    """
    Fast-access scoreboard.

    Scores, team fouls and timeouts remaining are mirrored from the event fold
    by ``sync_from``; period, clock and the started/ended flags are owned here.
    """

    quarter: int = 1
    clock_seconds: int = 600
    home_score: int = 0
    away_score: int = 0
    home_timeouts: int = 4
    away_timeouts: int = 4
    home_team_fouls: int = 0
    away_team_fouls: int = 0
    is_overtime: bool = False
    overtime_number: int = 0
    is_playing: bool = False
    is_game_started: bool = False
    is_game_ended: bool = False

    @classmethod
    def new(cls, settings: TrackerSettings) -> "GameState":
        return cls(
            clock_seconds=settings.quarter_seconds,
            home_timeouts=settings.timeout_count,
            away_timeouts=settings.timeout_count,
        )

    def copy(self) -> "GameState":
        return replace(self)

    def elapsed_in_quarter(self, settings: TrackerSettings) -> int:
        length = settings.overtime_seconds if self.is_overtime else settings.quarter_seconds
        return max(0, length - self.clock_seconds)

    def timeouts_remaining(self, team: str) -> int:
        return self.home_timeouts if team == HOME else self.away_timeouts

    def advance_quarter(self, settings: TrackerSettings) -> None:
        """Move to the next period; past regulation every period is overtime."""
        self.quarter += 1
        self.is_playing = False
        if self.quarter > settings.total_quarters:
            self.is_overtime = True
            self.overtime_number = self.quarter - settings.total_quarters
            self.clock_seconds = settings.overtime_seconds
        else:
            self.clock_seconds = settings.quarter_seconds

    def sync_from(
        self, result: AggregateResult, events: Iterable[GameEvent], settings: TrackerSettings
    ) -> None:
        """Mirror derived values from the aggregation and the timeout events."""
        self.home_score = result.team.total_points
        self.away_score = result.opponent.total_points
        self.home_team_fouls = result.team.team_fouls
        self.away_team_fouls = result.opponent.team_fouls

        used = {HOME: 0, AWAY: 0}
        for event in events:
            if event.is_deleted or event.event_type != EventType.TIMEOUT:
                continue
            team = event.metadata.get("team")
            if team in used:
                used[team] += 1
        self.home_timeouts = max(0, settings.timeout_count - used[HOME])
        self.away_timeouts = max(0, settings.timeout_count - used[AWAY])

    @property
    def result(self) -> str:
        if self.home_score > self.away_score:
            return "WIN"
        if self.home_score < self.away_score:
            return "LOSS"
        return "TIE"

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "quarter": data["quarter"],
            "clockSeconds": data["clock_seconds"],
            "homeScore": data["home_score"],
            "awayScore": data["away_score"],
            "homeTimeouts": data["home_timeouts"],
            "awayTimeouts": data["away_timeouts"],
            "homeTeamFouls": data["home_team_fouls"],
            "awayTeamFouls": data["away_team_fouls"],
            "isOvertime": data["is_overtime"],
            "overtimeNumber": data["overtime_number"],
            "isPlaying": data["is_playing"],
            "isGameStarted": data["is_game_started"],
            "isGameEnded": data["is_game_ended"],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GameState":
        return cls(
            quarter=int(data.get("quarter", 1)),
            clock_seconds=int(data.get("clockSeconds", 600)),
            home_score=int(data.get("homeScore", 0)),
            away_score=int(data.get("awayScore", 0)),
            home_timeouts=int(data.get("homeTimeouts", 4)),
            away_timeouts=int(data.get("awayTimeouts", 4)),
            home_team_fouls=int(data.get("homeTeamFouls", 0)),
            away_team_fouls=int(data.get("awayTeamFouls", 0)),
            is_overtime=bool(data.get("isOvertime", False)),
            overtime_number=int(data.get("overtimeNumber", 0)),
            is_playing=bool(data.get("isPlaying", False)),
            is_game_started=bool(data.get("isGameStarted", False)),
            is_game_ended=bool(data.get("isGameEnded", False)),
        )
