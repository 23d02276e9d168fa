"""Chronological recompute of possession analytics and tabular box scores.

The live possession tracker tags scoring events as they are recorded. This
module independently rebuilds the same totals by scanning forward from each
miss and each forced turnover, which is what exports use and what the
consistency report compares against the live tags.
"""

from typing import Iterable, Optional

import pandas as pd

from .aggregate import Player, StatLine, chronological
from .events import AWAY, HOME, EventType, GameEvent, other_side

_FRAME_COLUMNS = [
    "id",
    "timestamp",
    "quarter",
    "eventType",
    "side",
    "actorKey",
    "points",
    "isFieldGoal",
    "pip",
    "scp",
    "pto",
]

_MISSES = {EventType.FG_MISSED.value, EventType.THREE_MISSED.value, EventType.FT_MISSED.value}
_MAKES = {EventType.FG_MADE.value, EventType.THREE_MADE.value, EventType.FT_MADE.value}
_QUARTER = {EventType.QUARTER_STARTED.value, EventType.QUARTER_STOPPED.value}


def events_frame(events: Iterable[GameEvent]) -> pd.DataFrame:
    """
    Build a chronological DataFrame of live (non-deleted) events.

    Args:
        events: Event log contents in any order

    Returns:
        DataFrame with one row per event, oldest first
    """
    rows = []
    for event in chronological(events):
        rows.append({
            "id": event.id,
            "timestamp": event.timestamp,
            "quarter": event.quarter,
            "eventType": event.event_type.value,
            "side": event.side,
            "actorKey": event.actor.key if event.actor else None,
            "points": event.points,
            "isFieldGoal": event.event_type in (EventType.FG_MADE, EventType.THREE_MADE),
            "pip": event.metadata.get("pip") is True,
            "scp": bool(event.metadata.get("scp")),
            "pto": bool(event.metadata.get("pto")),
        })
    return pd.DataFrame(rows, columns=_FRAME_COLUMNS)


def _find_offensive_rebound(rows: list, start: int, side: str) -> Optional[int]:
    """Index of the shooting team's own rebound after the miss at ``start``."""
    for k in range(start + 1, len(rows)):
        row = rows[k]
        etype = row.eventType
        if etype in _QUARTER:
            return None
        if etype == EventType.REBOUND.value:
            return k if row.side == side else None
        if etype in (EventType.STEAL.value, EventType.TURNOVER.value) or etype in _MAKES:
            return None
        if etype in _MISSES and row.side != side:
            return None
    return None


def _second_chance_ids(rows: list) -> set:
    counted: set = set()
    for i, row in enumerate(rows):
        if row.eventType not in _MISSES or row.side not in (HOME, AWAY):
            continue
        side = row.side
        opp = other_side(side)
        j = _find_offensive_rebound(rows, i, side)
        if j is None:
            continue
        for nxt in rows[j + 1:]:
            etype = nxt.eventType
            if etype in _QUARTER:
                break
            if etype in _MAKES:
                if nxt.side == side:
                    counted.add(nxt.id)
                    if nxt.isFieldGoal:
                        break
                    continue
                break
            if etype == EventType.REBOUND.value and nxt.side == opp:
                break
            if etype == EventType.STEAL.value and nxt.side == opp:
                break
            if etype == EventType.TURNOVER.value and nxt.side == side:
                break
    return counted


def _points_off_turnover_ids(rows: list) -> set:
    counted: set = set()
    for i, row in enumerate(rows):
        if row.eventType == EventType.TURNOVER.value and row.side in (HOME, AWAY):
            side = other_side(row.side)
        elif row.eventType == EventType.STEAL.value and row.side in (HOME, AWAY):
            side = row.side
        else:
            continue
        opp = other_side(side)
        for nxt in rows[i + 1:]:
            etype = nxt.eventType
            if etype in _QUARTER:
                break
            if etype in _MAKES:
                if nxt.side == side:
                    counted.add(nxt.id)
                    if nxt.isFieldGoal:
                        break
                    continue
                break
            if etype in _MISSES or etype in (EventType.REBOUND.value, EventType.BLOCK.value):
                break
            if etype == EventType.STEAL.value and nxt.side == opp:
                break
            if etype == EventType.TURNOVER.value and nxt.side == side:
                break
    return counted


def _side_totals(frame: pd.DataFrame, mask) -> dict:
    sums = frame[mask].groupby("side")["points"].sum()
    return {side: int(sums.get(side, 0)) for side in (HOME, AWAY)}


def scan_totals(
    events: Iterable[GameEvent],
    starters: Optional[Iterable[int]] = None,
    opponent_starters: Optional[Iterable[str]] = None,
) -> dict:
    """
    Recompute possession analytics from the raw log.

    Returns:
        Dict keyed by metric name, each a ``{"home": int, "away": int}`` map:
        secondChancePoints, pointsOffTurnovers, pointsInPaint, benchPoints
    """
    frame = events_frame(events)
    if frame.empty:
        zero = {HOME: 0, AWAY: 0}
        return {
            "secondChancePoints": dict(zero),
            "pointsOffTurnovers": dict(zero),
            "pointsInPaint": dict(zero),
            "benchPoints": dict(zero),
        }

    rows = list(frame.itertuples(index=False))
    scp_ids = _second_chance_ids(rows)
    pto_ids = _points_off_turnover_ids(rows)

    home_starters = set(starters or ())
    away_starters = {str(j) for j in (opponent_starters or ())}

    def _is_bench(row) -> bool:
        if row["points"] <= 0:
            return False
        if row["side"] == HOME:
            return bool(home_starters) and row["actorKey"] not in home_starters
        if row["side"] == AWAY:
            return bool(away_starters) and str(row["actorKey"]) not in away_starters
        return False

    return {
        "secondChancePoints": _side_totals(frame, frame["id"].isin(scp_ids)),
        "pointsOffTurnovers": _side_totals(frame, frame["id"].isin(pto_ids)),
        "pointsInPaint": _side_totals(frame, frame["pip"] & (frame["points"] > 0)),
        "benchPoints": _side_totals(frame, frame.apply(_is_bench, axis=1).astype(bool)),
    }


def consistency_report(events: Iterable[GameEvent]) -> dict:
    """
    Compare live-tagged scp/pto metadata with the chronological scan.

    Returns:
        Dict with per-metric ``tagged`` and ``scanned`` totals, the ids where
        the two disagree, and an overall ``consistent`` flag
    """
    events = list(events)
    frame = events_frame(events)
    report = {"consistent": True}
    if frame.empty:
        for metric in ("secondChancePoints", "pointsOffTurnovers"):
            report[metric] = {
                "tagged": {HOME: 0, AWAY: 0},
                "scanned": {HOME: 0, AWAY: 0},
                "mismatchedEventIds": [],
            }
        return report

    rows = list(frame.itertuples(index=False))
    checks = {
        "secondChancePoints": ("scp", _second_chance_ids(rows)),
        "pointsOffTurnovers": ("pto", _points_off_turnover_ids(rows)),
    }
    for metric, (tag, scanned_ids) in checks.items():
        tagged_ids = set(frame.loc[frame[tag], "id"])
        mismatched = sorted(tagged_ids ^ scanned_ids)
        report[metric] = {
            "tagged": _side_totals(frame, frame[tag]),
            "scanned": _side_totals(frame, frame["id"].isin(scanned_ids)),
            "mismatchedEventIds": mismatched,
        }
        if mismatched:
            report["consistent"] = False
    return report


def box_score_frame(
    players: Iterable[Player],
    efficiency_weights: Optional[dict] = None,
) -> pd.DataFrame:
    """Tabular box score for display, one row per player."""
    rows = []
    for player in players:
        s = player.stats
        row = {
            "Player": player.name,
            "#": player.jersey_number,
            "PTS": s.points,
            "REB": s.rebounds,
            "OREB": s.offensive_rebounds,
            "DREB": s.defensive_rebounds,
            "AST": s.assists,
            "STL": s.steals,
            "BLK": s.blocks,
            "TO": s.turnovers,
            "PF": s.fouls,
            "FG": f"{s.fg_made}-{s.fg_attempted}",
            "FG%": s.fg_percentage,
            "3P": f"{s.three_made}-{s.three_attempted}",
            "3P%": s.three_percentage,
            "FT": f"{s.ft_made}-{s.ft_attempted}",
            "FT%": s.ft_percentage,
            "+/-": s.plus_minus,
        }
        if efficiency_weights is not None:
            row["EFF"] = s.efficiency(efficiency_weights)
        rows.append(row)
    return pd.DataFrame(rows)


def opponent_frame(opponent_lines: dict[str, StatLine]) -> pd.DataFrame:
    """Opponent box score keyed by jersey number."""
    rows = [
        {
            "#": jersey,
            "PTS": line.points,
            "REB": line.rebounds,
            "AST": line.assists,
            "STL": line.steals,
            "TO": line.turnovers,
            "PF": line.fouls,
            "FG": f"{line.fg_made}-{line.fg_attempted}",
            "3P": f"{line.three_made}-{line.three_attempted}",
            "FT": f"{line.ft_made}-{line.ft_attempted}",
        }
        for jersey, line in sorted(opponent_lines.items())
    ]
    return pd.DataFrame(rows)
