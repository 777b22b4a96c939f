import asyncio
from datetime import datetime

import pytest

from core.database.operations import create_db_engine, init_db
from core.notifications import Notifier
from core.storage.sql_store import SQLRowStore


class RecordingNotifier(Notifier):
    def __init__(self):
        self.calls = []

    def notify(self, title, body):
        self.calls.append((title, body))


class FixedClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now=datetime(2026, 10, 17, 9, 30)):
        self.now = now

    def __call__(self):
        return self.now


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SQLRowStore(engine)


@pytest.fixture
def bare_store():
    """A store whose tables were never created."""
    engine = create_db_engine("sqlite://")
    yield SQLRowStore(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()
