from datetime import datetime, timezone

import pytest

from lexicards.database import DeckDatabase


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    """An in-memory DeckDatabase, closed after the test."""
    database = DeckDatabase()
    yield database
    database.close()
