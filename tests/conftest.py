"""Shared test fixtures: roster, deterministic clock, trackers and stores."""

import itertools

import pytest

from stattracker.aggregate import Player
from stattracker.session import SessionManager
from stattracker.stores import InMemoryGameStore, InMemorySessionStore, StaticRosterStore
from stattracker.tracker import LiveGameTracker


class FakeClock:
    """Clock that advances ``step`` seconds on every read."""

    def __init__(self, start: float = 1_000.0, step: float = 1.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        value = self.now
        self.now += self.step
        return value

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def roster() -> list[Player]:
    """Eight rostered players; ids 1-5 start."""
    names = ["Ava", "Bea", "Cam", "Dee", "Eli", "Fay", "Gus", "Hal"]
    return [
        Player(id=i, name=name, jersey_number=str(10 + i), position="G" if i % 2 else "F")
        for i, name in enumerate(names, start=1)
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def clock_factory():
    return FakeClock


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: f"evt-{next(counter)}"


@pytest.fixture
def tracker(roster, clock, id_factory) -> LiveGameTracker:
    return LiveGameTracker(roster, clock=clock, id_factory=id_factory)


@pytest.fixture
def playing_tracker(tracker) -> LiveGameTracker:
    """Tracker with the starting five locked and the clock running."""
    tracker.lock_lineup([1, 2, 3, 4, 5])
    tracker.start_clock()
    return tracker


@pytest.fixture
def session_store(clock) -> InMemorySessionStore:
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def game_store() -> InMemoryGameStore:
    return InMemoryGameStore()


@pytest.fixture
def roster_store(roster) -> StaticRosterStore:
    return StaticRosterStore(roster, events={"cal-1": {"name": "Home opener", "opponentName": "Rivals"}})


@pytest.fixture
def manager(session_store, game_store, roster_store, clock) -> SessionManager:
    return SessionManager(session_store, game_store, roster_store, clock=clock)
