"""Core classes for the LexiCards spaced repetition system."""

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

ALL_DECKS = "All"
DEFAULT_EASE = 2.5
MIN_EASE = 1.3

# Interval for a relearning card, in days (roughly half an hour).
RELEARN_INTERVAL = 0.02

NO_TRANSLATION = "(no translation)"


class LexiCardsError(Exception):
    """Base class for all LexiCards errors."""


class InvalidRatingError(LexiCardsError, ValueError):
    """Raised when a review rating is not one of the four known ratings."""


class PersistenceError(LexiCardsError):
    """Raised by a schedule store when a write could not be completed."""


class Rating(str, Enum):
    """Represents the learner's recall rating for a flashcard.

    Attributes:
        AGAIN: The learner forgot the card.
        HARD: The learner recalled the card with difficulty.
        GOOD: The learner recalled the card well.
        EASY: The learner recalled the card easily.
    """

    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"

    @classmethod
    def parse(cls, value: Union["Rating", str, int]) -> "Rating":
        """Converts user input into a Rating.

        Accepts a Rating, one of the literals "again", "hard", "good", "easy",
        or the keyboard shortcuts 1-4.

        Raises:
            InvalidRatingError: If the value is anything else.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise InvalidRatingError(f"Invalid rating: {value!r}")
        if isinstance(value, int):
            if 1 <= value <= len(_RATING_ORDER):
                return _RATING_ORDER[value - 1]
            raise InvalidRatingError(f"Invalid rating: {value!r}")
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                pass
        raise InvalidRatingError(f"Invalid rating: {value!r}")


_RATING_ORDER = (Rating.AGAIN, Rating.HARD, Rating.GOOD, Rating.EASY)

FIRST_REVIEW_INTERVALS: Dict[Rating, float] = {
    Rating.AGAIN: RELEARN_INTERVAL,
    Rating.HARD: 0.5,
    Rating.GOOD: 1.0,
    Rating.EASY: 3.0,
}

EASE_ADJUSTMENTS: Dict[Rating, float] = {
    Rating.AGAIN: -0.3,
    Rating.HARD: -0.15,
    Rating.GOOD: 0.0,
    Rating.EASY: 0.15,
}


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treats a naive datetime as UTC; aware datetimes are returned unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_deck_name(name: Optional[str]) -> str:
    """Normalizes a deck label for display and grouping.

    Underscores become spaces and every word is capitalized, so
    "infectious_disease" and "Infectious Disease" name the same deck.
    An empty name is the "All" deck.
    """
    if not name or not str(name).strip():
        return ALL_DECKS
    words = str(name).strip().replace("_", " ").split(" ")
    return " ".join(w[0].upper() + w[1:] if w else "" for w in words)


def is_all_decks(deck: Optional[str]) -> bool:
    return normalize_deck_name(deck) == ALL_DECKS


class Card(BaseModel):
    """Represents a flashcard.

    Attributes:
        id: Unique identifier for the card.
        deck_name: The deck the card belongs to.
        suspended: Whether the card is excluded from study.
        front: The prompt side of the card.
        back: The answer side of the card.
        langs: Optional translations of the term, keyed by language code
            (e.g. {"EN": "kidney", "ES": "riñón"}). Read by texts() to show
            the card in a translation direction.
        created_at: Timestamp when the card was created.
    """

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for the card",
    )
    deck_name: str = Field(default=ALL_DECKS, description="Deck the card belongs to")
    suspended: bool = Field(default=False, description="Excluded from study when true")
    front: str = Field(default="", description="Prompt side of the card")
    back: str = Field(default="", description="Answer side of the card")
    langs: Optional[Dict[str, str]] = Field(
        default=None, description="Translations keyed by language code"
    )
    created_at: datetime = Field(
        default_factory=utc_now, description="Card creation timestamp"
    )

    @field_validator("deck_name", mode="before")
    @classmethod
    def _normalize_deck(cls, v: Optional[str]) -> str:
        return normalize_deck_name(v)

    @field_validator("langs")
    @classmethod
    def _upper_lang_codes(cls, v: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if v is None:
            return None
        return {code.upper(): text for code, text in v.items()}

    @field_validator("created_at")
    @classmethod
    def _created_at_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    def texts(self, direction: Optional[Tuple[str, str]] = None) -> Tuple[str, str]:
        """Returns the (prompt, answer) pair to show for this card.

        With a direction such as ("EN", "ES") and a translation for the source
        language, the prompt is that translation and the answer is the target
        language text, or "(no translation)" if it is missing. Otherwise the
        front and back are used.
        """
        if direction and self.langs:
            source, target = (code.upper() for code in direction)
            if self.langs.get(source):
                return self.langs[source], self.langs.get(target) or NO_TRANSLATION
        return self.front, self.back

    def matches(self, search: Optional[str]) -> bool:
        """Case-insensitive substring match on either side of the card."""
        if not search:
            return True
        needle = search.lower()
        return needle in self.front.lower() or needle in self.back.lower()


class ScheduleState(BaseModel):
    """Scheduling data for one card.

    Attributes:
        repetitions: Successful review cycles since the last reset.
        ease: Multiplier controlling how fast intervals grow.
        interval_days: Days between the last review and the due date.
        due_at: When the card is next due.
        last_reviewed_at: Timestamp of the most recent review.
    """

    repetitions: int = Field(default=0, ge=0, description="Successful reviews since reset")
    ease: float = Field(default=DEFAULT_EASE, ge=MIN_EASE, description="Ease factor")
    interval_days: float = Field(default=0.0, ge=0, description="Interval in days")
    due_at: datetime = Field(default_factory=utc_now, description="Next review date")
    last_reviewed_at: Optional[datetime] = Field(
        default=None, description="Last review timestamp"
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("due_at", "last_reviewed_at")
    @classmethod
    def _utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return None if v is None else as_utc(v)

    @classmethod
    def initial(cls, now: Optional[datetime] = None) -> "ScheduleState":
        """A fresh schedule that is due immediately."""
        return cls(due_at=now or utc_now())


class ReviewLog(BaseModel):
    """Records details of a single scheduled review.

    Attributes:
        id: Unique identifier for the review log entry.
        card_id: The ID of the card that was reviewed.
        review_time: The timestamp when the review was completed.
        rating: The learner's rating.
        interval: The interval until the next review, in days.
        ease: The card's ease after this review.
    """

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique identifier for the review log",
    )
    card_id: str = Field(..., description="ID of the reviewed card")
    review_time: datetime = Field(..., description="When the review was completed")
    rating: Rating = Field(..., description="Learner's rating of recall")
    interval: float = Field(..., description="Interval until next review in days")
    ease: float = Field(..., description="Card ease after review")

    @field_validator("review_time")
    @classmethod
    def _review_time_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class SM2Scheduler:
    """Simplified SM-2 scheduler.

    Maps a schedule state and a rating to the next schedule state. The
    scheduler holds no state of its own and performs no I/O; persisting the
    result is up to the caller.
    """

    def review(
        self,
        state: ScheduleState,
        rating: Union[Rating, str, int],
        now: datetime,
    ) -> ScheduleState:
        """Computes the schedule that follows a review.

        Args:
            state: The card's current schedule.
            rating: The learner's rating.
            now: The time of the review.

        Returns:
            The new ScheduleState.

        Raises:
            InvalidRatingError: If the rating is not recognized.
        """
        rating = Rating.parse(rating)
        now = as_utc(now)

        if state.repetitions == 0:
            interval = FIRST_REVIEW_INTERVALS[rating]
            repetitions = 1
            ease = DEFAULT_EASE
        else:
            # floor only; easy may grow ease without bound
            ease = max(MIN_EASE, state.ease + EASE_ADJUSTMENTS[rating])
            interval, repetitions = self._next_interval(state, rating, ease)

        return ScheduleState(
            repetitions=repetitions,
            ease=ease,
            interval_days=interval,
            due_at=now + timedelta(days=interval),
            last_reviewed_at=now,
        )

    def _next_interval(
        self, state: ScheduleState, rating: Rating, ease: float
    ) -> Tuple[float, int]:
        previous = state.interval_days
        if rating == Rating.AGAIN:
            return RELEARN_INTERVAL, 0
        if rating == Rating.HARD:
            # ease is not applied here
            return float(max(1, _round_half_up(previous * 1.2))), state.repetitions + 1
        if rating == Rating.GOOD:
            interval = _round_half_up(previous * ease) if previous else 1
            return float(interval), state.repetitions + 1
        interval = _round_half_up(previous * (ease + 0.15)) if previous else 3
        return float(interval), state.repetitions + 1

    def review_card(
        self,
        card_id: str,
        state: ScheduleState,
        rating: Union[Rating, str, int],
        now: datetime,
    ) -> Tuple[ScheduleState, ReviewLog]:
        """Reviews a card and returns the new schedule with a log entry."""
        rating = Rating.parse(rating)
        updated = self.review(state, rating, now)
        review_log = ReviewLog(
            card_id=card_id,
            review_time=now,
            rating=rating,
            interval=updated.interval_days,
            ease=updated.ease,
        )
        logger.debug(
            "Reviewed card %s as %s: interval %.2f days, ease %.2f",
            card_id,
            rating.value,
            updated.interval_days,
            updated.ease,
        )
        return updated, review_log

    @staticmethod
    def is_due(state: ScheduleState, now: datetime) -> bool:
        return state.due_at <= as_utc(now)


_default_scheduler = SM2Scheduler()


def schedule(
    state: ScheduleState, rating: Union[Rating, str, int], now: datetime
) -> ScheduleState:
    """Module-level shortcut for SM2Scheduler().review."""
    return _default_scheduler.review(state, rating, now)


def is_due(state: ScheduleState, now: datetime) -> bool:
    return SM2Scheduler.is_due(state, now)
