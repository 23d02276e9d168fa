"""Mirror locally recorded events to the session store, queueing on failure."""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import RemoteMirrorFailure, RemoteStoreError
from .events import GameEvent
from .settings import TrackerSettings

logger = logging.getLogger(__name__)


@dataclass
class QueuedEvent:
    payload: dict
    attempts: int = 0
    next_attempt_at: float = 0.0

    @property
    def event_id(self) -> str:
        return self.payload["id"]


@dataclass
class SyncStatus:
    """Non-blocking "pending sync" indicator."""

    is_online: bool
    pending: int
    failed: int
    last_sync_at: Optional[float]
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "isOnline": self.is_online,
            "pendingCount": self.pending,
            "failedCount": self.failed,
            "lastSyncAt": self.last_sync_at,
            "lastError": self.last_error,
        }


@dataclass
class SyncResult:
    sent: int
    remaining: int


class Reconciler:
    """
    Sends events to the session store in append order.

    Recording never waits on this class: ``mirror`` either delivers the event
    or queues it, and never raises for transport failures. Queued events are
    retried oldest first with exponential backoff; a later event is never sent
    ahead of an earlier queued one. Events that exhaust ``sync_max_retries``
    are counted as failed but stay queued.

    Args:
        store: Session store with ``append_event(session_id, event)``
        session_id: Target session
        settings: Retry policy
        clock: Time source for backoff scheduling
    """

    def __init__(
        self,
        store,
        session_id: int,
        settings: Optional[TrackerSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.session_id = session_id
        self.settings = settings or TrackerSettings()
        self._clock = clock
        self._queue: deque[QueuedEvent] = deque()
        self._pending_state: Optional[dict] = None
        self.is_online = True
        self.last_sync_at: Optional[float] = None
        self.last_error: Optional[str] = None

    def mirror(self, event: GameEvent) -> bool:
        """
        Mirror one event.

        Returns:
            True if the event reached the store now
        """
        self._queue.append(QueuedEvent(event.to_dict()))
        self.flush()
        delivered = all(item.event_id != event.id for item in self._queue)
        if not delivered:
            failure = RemoteMirrorFailure(event.id, self.last_error)
            logger.warning("%s (%d pending)", failure, len(self._queue))
        return delivered

    def push_state(self, state: dict, deliver: bool = True) -> bool:
        """
        Mirror the session's lineup and scoreboard state.

        Only the newest state is kept; it is written after every queued event
        so the stored state never describes events the store does not have.

        Args:
            deliver: Try the store now; otherwise just queue (offline resume)

        Returns:
            True if the state reached the store now
        """
        self._pending_state = state
        if deliver:
            self.flush()
        return self._pending_state is None

    def enqueue(self, event: GameEvent) -> None:
        """Queue an event without attempting delivery (offline resume)."""
        if event.id not in self.pending:
            self._queue.append(QueuedEvent(event.to_dict()))

    def flush(self, force: bool = False) -> SyncResult:
        """
        Retry queued events in order, stopping at the first failure.

        Args:
            force: Ignore backoff schedules (operator-triggered retry)
        """
        sent = 0
        now = self._clock()
        while self._queue:
            item = self._queue[0]
            if not force and item.next_attempt_at > now:
                break
            try:
                self.store.append_event(self.session_id, item.payload)
            except RemoteStoreError as e:
                item.attempts += 1
                item.next_attempt_at = now + self.settings.retry_delay(item.attempts)
                self.is_online = False
                self.last_error = str(e)
                if item.attempts == self.settings.sync_max_retries:
                    logger.error(
                        "Event %s failed to sync after %d attempts", item.event_id, item.attempts
                    )
                break
            self._queue.popleft()
            sent += 1
            self.is_online = True
            self.last_error = None
            self.last_sync_at = now
            if item.attempts:
                logger.debug("Flushed queued event %s", item.event_id)
        if not self._queue and self._pending_state is not None:
            self._send_state(now)
        return SyncResult(sent=sent, remaining=len(self._queue))

    def _send_state(self, now: float) -> None:
        try:
            self.store.update_session(self.session_id, self._pending_state)
        except RemoteStoreError as e:
            self.is_online = False
            self.last_error = str(e)
            logger.warning("Session state not synced: %s", e)
            return
        self._pending_state = None
        self.is_online = True
        self.last_error = None
        self.last_sync_at = now

    @property
    def has_pending_state(self) -> bool:
        return self._pending_state is not None

    @property
    def pending(self) -> list[str]:
        return [item.event_id for item in self._queue]

    def status(self) -> SyncStatus:
        failed = sum(1 for item in self._queue if item.attempts >= self.settings.sync_max_retries)
        return SyncStatus(
            is_online=self.is_online,
            pending=len(self._queue),
            failed=failed,
            last_sync_at=self.last_sync_at,
            last_error=self.last_error,
        )
