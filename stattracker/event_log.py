"""Append-only event log with tombstone deletes and restore-last."""

import time
from dataclasses import replace
from typing import Callable, Iterable, Iterator, Optional

from .events import EventType, GameEvent, new_event_id


class EventLog:
    """
    Insertion-ordered store of GameEvents.

    Two traversal orders are exposed and must not be confused: ``chronological``
    (oldest first, used by aggregation and possession logic) and
    ``newest_first`` (used for display). Both sort by timestamp, breaking ties
    by insertion position.
    """

    def __init__(
        self,
        id_factory: Callable[[], str] = new_event_id,
        clock: Callable[[], float] = time.time,
    ):
        self._id_factory = id_factory
        self._clock = clock
        self._events: list[GameEvent] = []
        self._index: dict[str, int] = {}
        self._deleted_stack: list[str] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[GameEvent]:
        return iter(list(self._events))

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._index

    def get(self, event_id: str) -> GameEvent:
        try:
            return self._events[self._index[event_id]]
        except KeyError:
            raise KeyError(f"Unknown event {event_id}") from None

    def append(self, event: GameEvent) -> str:
        """
        Append an event, assigning an id and timestamp if absent.

        Appending an id that is already present is a no-op (duplicate replays
        from the remote store must not double count).

        Returns:
            The event id
        """
        if not event.id:
            event = replace(event, id=self._id_factory())
        if event.id in self._index:
            return event.id
        if event.timestamp is None:
            event = replace(event, timestamp=self._clock())
        self._index[event.id] = len(self._events)
        self._events.append(event)
        return event.id

    def delete(self, event_id: str) -> GameEvent:
        """
        Tombstone an event.

        Returns:
            The event as it was before deletion (for undo capture)

        Raises:
            KeyError: if the id is unknown or already deleted
        """
        prior = self.get(event_id)
        if prior.is_deleted:
            raise KeyError(f"Event {event_id} is already deleted")
        self._events[self._index[event_id]] = prior.tombstoned()
        self._deleted_stack.append(event_id)
        return prior

    def restore_last(self) -> Optional[GameEvent]:
        """
        Un-delete the most recently deleted event under a fresh id.

        The restored copy keeps the original timestamp and sits directly after
        its tombstone, so chronological order is unchanged. The tombstone stays
        in place for the audit trail.

        Returns:
            The restored event, or None if nothing has been deleted
        """
        while self._deleted_stack:
            event_id = self._deleted_stack.pop()
            position = self._index.get(event_id)
            if position is None or not self._events[position].is_deleted:
                continue
            tombstone = self._events[position]
            restored = replace(
                tombstone,
                id=self._id_factory(),
                is_deleted=False,
                metadata={**tombstone.metadata, "restoredFrom": event_id},
            )
            self._events.insert(position + 1, restored)
            self._reindex()
            return restored
        return None

    def replay(self, events: Iterable[GameEvent]) -> None:
        """
        Replace the whole log (resume hydration).

        Duplicate ids keep their first occurrence. ``deleted_event`` audit
        records tombstone their targets so that deletions made on another
        load of the session are reproduced.
        """
        self._events = []
        self._index = {}
        self._deleted_stack = []
        for event in events:
            self.append(event)

        restored_ids = {
            e.metadata["restoredFrom"] for e in self._events if "restoredFrom" in e.metadata
        }
        for event in list(self._events):
            if event.event_type != EventType.DELETED_EVENT or event.is_deleted:
                continue
            target_id = event.metadata.get("deletedEventId")
            position = self._index.get(target_id)
            if position is not None and not self._events[position].is_deleted:
                self._events[position] = self._events[position].tombstoned()
            if position is not None and target_id not in restored_ids:
                self._deleted_stack.append(target_id)

    def _reindex(self) -> None:
        self._index = {e.id: i for i, e in enumerate(self._events)}

    def _ordered(self, include_deleted: bool, reverse: bool) -> list[GameEvent]:
        positioned = [
            (e.timestamp, i, e)
            for i, e in enumerate(self._events)
            if include_deleted or not e.is_deleted
        ]
        positioned.sort(key=lambda item: (item[0], item[1]), reverse=reverse)
        return [e for _, _, e in positioned]

    def chronological(self, include_deleted: bool = False) -> list[GameEvent]:
        return self._ordered(include_deleted, reverse=False)

    def newest_first(self, include_deleted: bool = False) -> list[GameEvent]:
        return self._ordered(include_deleted, reverse=True)

    @property
    def last_deleted_id(self) -> Optional[str]:
        return self._deleted_stack[-1] if self._deleted_stack else None

    def to_list(self) -> list[dict]:
        return [e.to_dict() for e in self._events]
