"""LexiCards: spaced repetition scheduling and study sessions for language-learning flashcards."""

__version__ = "0.1.0"

from .core import (
    Card,
    InvalidRatingError,
    LexiCardsError,
    PersistenceError,
    Rating,
    ReviewLog,
    ScheduleState,
    SM2Scheduler,
    schedule,
)
from .database import CardSource, DeckDatabase, DeckError, ScheduleStore
from .session import (
    NavigationStatus,
    QueueState,
    StudyMode,
    StudySession,
    advance,
    build_queue,
    go_back,
    rate,
)

__all__ = [
    "Card",
    "CardSource",
    "DeckDatabase",
    "DeckError",
    "InvalidRatingError",
    "LexiCardsError",
    "NavigationStatus",
    "PersistenceError",
    "QueueState",
    "Rating",
    "ReviewLog",
    "ScheduleState",
    "ScheduleStore",
    "SM2Scheduler",
    "StudyMode",
    "StudySession",
    "advance",
    "build_queue",
    "go_back",
    "rate",
    "schedule",
]
