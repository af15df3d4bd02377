"""
Pytest fixtures for cardtable tests.
"""

import random
import time
from typing import Callable, List

import pytest

from cardtable.game.dispatcher import Dispatcher
from cardtable.game.table import GameState, Table
from cardtable.server.coordinator import Coordinator


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def table() -> Table:
    """A fresh table with the deck in the middle."""
    return Table()


@pytest.fixture
def broadcasts() -> List[GameState]:
    """Snapshots handed to the change listener, in order."""
    return []


@pytest.fixture
def dispatcher(table: Table, broadcasts: List[GameState]) -> Dispatcher:
    return Dispatcher(table=table, rng=random.Random(1234), on_change=broadcasts.append)


@pytest.fixture
def coordinator():
    """A running coordinator on loopback with ephemeral ports."""
    coord = Coordinator(bind="127.0.0.1", request_port=0, snapshot_port=0)
    coord.start()
    yield coord
    coord.stop()
