"""Offline report for a saved game: re-aggregate a local snapshot and print it."""

import argparse
import logging
import sys
from datetime import datetime

from .analytics import box_score_frame, consistency_report, opponent_frame, scan_totals
from .events import AWAY, HOME
from .settings import load_settings
from .snapshot import SnapshotStore
from .tracker import LiveGameTracker


def _log_error(msg: str) -> None:
    """Log timestamped error to stderr."""
    timestamp = datetime.now().isoformat()
    print(f"[{timestamp}] {msg}", file=sys.stderr, flush=True)


def main(
    event_id: str | None = None,
    data_dir: str = "data",
    settings_path: str | None = None,
    prune_days: int | None = None,
    csv_path: str | None = None,
) -> int:
    """
    Rebuild a game's box score from its local snapshot.

    Args:
        event_id: Calendar event whose snapshot to load (optional when pruning)
        data_dir: Base data directory (default "data")
        settings_path: JSON settings file merged over the defaults
        prune_days: Delete snapshots older than this many days first
        csv_path: Also write the home box score to this CSV file

    Returns:
        Process exit code
    """
    settings = load_settings(settings_path)
    store = SnapshotStore(data_dir)

    if prune_days is not None:
        deleted = store.prune_snapshots(prune_days)
        print(f"Pruned {len(deleted)} snapshots older than {prune_days} days")

    if event_id is None:
        return 0

    print(f"Loading snapshot for event {event_id}...")
    snapshot = store.load_snapshot(event_id)
    if snapshot is None:
        _log_error(f"No snapshot found for event {event_id} in {data_dir}")
        return 1

    try:
        tracker = LiveGameTracker.from_snapshot(snapshot, settings=settings, read_only=True)
    except (KeyError, ValueError) as e:
        _log_error(f"Snapshot for event {event_id} is malformed: {e}")
        return 1

    events = tracker.events(newest_first=False)
    state = tracker.game_state
    print(f"Replayed {len(events)} events")
    print(
        f"Final: {state.home_score}-{state.away_score} ({state.result}), "
        f"quarter {state.quarter}{' OT' if state.is_overtime else ''}"
    )

    players = [p for p in tracker.get_player_stats() if p.stats.has_stats]
    box = box_score_frame(players, settings.efficiency_weights)
    print()
    print(box.to_string(index=False) if not box.empty else "No player stats recorded")

    opponents = opponent_frame(tracker.get_opponent_lines())
    if not opponents.empty:
        print()
        print(opponents.to_string(index=False))

    totals = scan_totals(
        events,
        starters=tracker.lineups.starters,
        opponent_starters=tracker.opponent.locked_starters,
    )
    print()
    for metric, by_side in totals.items():
        print(f"{metric}: home {by_side[HOME]}, away {by_side[AWAY]}")

    report = consistency_report(events)
    if report["consistent"]:
        print("Live possession tags match the chronological scan")
    else:
        for metric in ("secondChancePoints", "pointsOffTurnovers"):
            mismatched = report[metric]["mismatchedEventIds"]
            if mismatched:
                print(f"Warning: {metric} differs on events {', '.join(mismatched)}")

    if csv_path:
        box.to_csv(csv_path, index=False)
        print(f"Wrote box score to {csv_path}")

    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Live stat tracker snapshot report")
    parser.add_argument(
        "--event-id",
        type=str,
        default=None,
        help="Event id of the snapshot to report on",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default="data",
        help="Base data directory (default: data)",
    )
    parser.add_argument(
        "--settings",
        type=str,
        default=None,
        help="JSON settings file (default: built-in settings)",
    )
    parser.add_argument(
        "--prune-days",
        type=int,
        default=None,
        help="Delete local snapshots older than this many days",
    )
    parser.add_argument(
        "--csv",
        type=str,
        default=None,
        help="Write the home box score to this CSV file",
    )

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    sys.exit(
        main(
            event_id=args.event_id,
            data_dir=args.data_dir,
            settings_path=args.settings,
            prune_days=args.prune_days,
            csv_path=args.csv,
        )
    )
