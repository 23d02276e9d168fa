"""Exception taxonomy for the live stat tracker."""

from typing import Optional


class TrackerError(Exception):
    """Base class for every error raised by the tracker engine."""


class InvalidEventError(TrackerError):
    """An event failed validation and was rejected before reaching the log."""


class InvalidSubstitution(TrackerError):
    """The action would leave the home team with other than five on court."""


class SessionCreationError(TrackerError):
    """A session could not be created because the remote store is unreachable."""


class SessionStateError(TrackerError):
    """The operation is not allowed in the session's current lifecycle state."""


class RemoteStoreError(TrackerError):
    """Transport-level failure talking to a remote store."""


class RemoteMirrorFailure(TrackerError):
    """A locally recorded event did not reach the remote store and was queued."""

    def __init__(self, event_id: str, cause: Optional[str] = None):
        super().__init__(f"Event {event_id} queued for retry: {cause}")
        self.event_id = event_id
        self.cause = cause


class AggregationConflict(TrackerError):
    """The persisted game record changed underneath the local aggregation."""

    def __init__(self, game_id, expected: dict, found: dict):
        super().__init__(
            f"Game {game_id} was modified externally: expected {expected}, found {found}"
        )
        self.game_id = game_id
        self.expected = expected
        self.found = found


class DisambiguationAbandoned(TrackerError):
    """A prompt was left unanswered; the primary event stands without its link.

    Not raised. Instances are kept on the disambiguation engine as a record of
    linked-event gaps.
    """

    def __init__(self, event_id: str, step: str):
        super().__init__(f"Prompt {step} abandoned for event {event_id}")
        self.event_id = event_id
        self.step = step
