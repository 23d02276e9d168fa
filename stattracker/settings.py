"""Tracker configuration with defaults matching the sideline app."""

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

CONFLICT_POLICIES = ("overwrite", "raise")


@dataclass(frozen=True)
class TrackerSettings:
    """Game rules, coaching policy weights, and sync/autosave tuning."""

    quarter_duration_minutes: int = 10
    total_quarters: int = 4
    overtime_duration_minutes: int = 4
    timeout_count: int = 4
    history_depth: int = 50

    # Coaching conventions, not rulebook values
    steal_plus_minus: int = 2
    turnover_plus_minus: int = -2
    charge_plus_minus: int = 2
    efficiency_weights: dict = field(
        default_factory=lambda: {
            "points": 1,
            "rebounds": 1,
            "assists": 1,
            "steals": 1,
            "blocks": 1,
            "missed_fg": -1,
            "missed_ft": -1,
            "turnovers": -1,
        }
    )

    autosave_interval: float = 30.0
    autosave_debounce: float = 2.0

    sync_max_retries: int = 5
    sync_retry_delays: tuple = (1.0, 2.0, 4.0, 8.0, 16.0)

    remote_timeout: float = 10.0
    remote_retries: int = 1
    remote_retry_delay: float = 5.0

    aggregation_conflict_policy: str = "overwrite"

    def __post_init__(self):
        if self.total_quarters < 1:
            raise ValueError("total_quarters must be at least 1")
        if self.aggregation_conflict_policy not in CONFLICT_POLICIES:
            raise ValueError(
                f"aggregation_conflict_policy must be one of {CONFLICT_POLICIES}"
            )

    @property
    def quarter_seconds(self) -> int:
        return self.quarter_duration_minutes * 60

    @property
    def overtime_seconds(self) -> int:
        return self.overtime_duration_minutes * 60

    @property
    def halftime_after(self) -> int:
        """Last quarter of the first half (team fouls reset after it)."""
        return max(1, self.total_quarters // 2)

    def retry_delay(self, attempt: int) -> float:
        """Backoff delay before retry number ``attempt`` (1-based)."""
        if not self.sync_retry_delays:
            return 0.0
        index = min(max(attempt, 1) - 1, len(self.sync_retry_delays) - 1)
        return float(self.sync_retry_delays[index])

    def replace(self, **changes) -> "TrackerSettings":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["sync_retry_delays"] = list(self.sync_retry_delays)
        return data


def load_settings(path: str | Path | None = None) -> TrackerSettings:
    """
    Load settings from a JSON file, merged over the defaults.

    Unknown keys are ignored (with a warning) so that settings files written by
    newer versions still load.

    Args:
        path: JSON settings file; ``None`` or a missing file yields defaults

    Returns:
        TrackerSettings instance
    """
    if path is None or not Path(path).exists():
        return TrackerSettings()

    with open(path) as f:
        raw = json.load(f)

    known = {f.name for f in dataclasses.fields(TrackerSettings)}
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning("Ignoring unknown settings keys: %s", ", ".join(unknown))

    values = {k: v for k, v in raw.items() if k in known}
    if "sync_retry_delays" in values:
        values["sync_retry_delays"] = tuple(values["sync_retry_delays"])
    if "efficiency_weights" in values:
        values["efficiency_weights"] = {
            **TrackerSettings().efficiency_weights,
            **values["efficiency_weights"],
        }
    return TrackerSettings(**values)
