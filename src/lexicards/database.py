"""Database module for storing decks, cards and schedules."""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import duckdb

from .core import (
    ALL_DECKS,
    Card,
    LexiCardsError,
    PersistenceError,
    ReviewLog,
    ScheduleState,
    as_utc,
    is_all_decks,
    normalize_deck_name,
    utc_now,
)

logger = logging.getLogger(__name__)

DEFAULT_DECKS = [ALL_DECKS, "Anatomy", "Pharm", "Path", "Phys", "Micro"]


class DeckError(LexiCardsError):
    """Raised for invalid deck or card management operations."""


class CardSource(ABC):
    """Enumerates the cards available for study."""

    @abstractmethod
    def list_cards(self, deck: Optional[str] = None) -> List[Card]:
        """Returns the cards in a deck.

        Args:
            deck: Deck name, or None / "All" for every deck.

        Returns:
            A list of Card objects, suspended cards included.
        """
        pass


class ScheduleStore(ABC):
    """Reads and writes per-card schedule states."""

    @abstractmethod
    def get_schedule(self, card_id: str) -> ScheduleState:
        """Returns the card's schedule, or a fresh one if none is stored."""
        pass

    @abstractmethod
    def put_schedule(self, card_id: str, state: ScheduleState) -> None:
        """Stores the card's schedule.

        Raises:
            PersistenceError: If the write fails.
        """
        pass

    def record_review(self, card_id: str, state: ScheduleState, review_log: ReviewLog) -> None:
        """Stores the schedule produced by a review.

        Stores that keep a review history override this to save the log too.
        """
        self.put_schedule(card_id, state)


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    # stored as naive UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


class DeckDatabase(CardSource, ScheduleStore):
    """Manages the DuckDB database for decks, cards, schedules and review logs.

    This class provides methods for creating tables, managing decks and
    cards, reading and writing schedule states, recording review history,
    and counting due cards.
    """

    def __init__(self, db_path: Optional[str] = None):
        """Initializes the DeckDatabase connection.

        Args:
            db_path: Optional path to a DuckDB file. If None, an in-memory database is used.
        """
        self.db_path = db_path or ":memory:"
        self.connection = duckdb.connect(self.db_path)
        self._create_tables()

    def _create_tables(self) -> None:
        """Creates the decks, cards, schedules and review_logs tables.

        The default decks are seeded the first time the schema is created.
        """
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS decks (
                name VARCHAR PRIMARY KEY,
                position INTEGER NOT NULL
            )
        """
        )

        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS cards (
                id VARCHAR PRIMARY KEY,
                deck_name VARCHAR NOT NULL,
                suspended BOOLEAN NOT NULL DEFAULT FALSE,
                front VARCHAR NOT NULL,
                back VARCHAR NOT NULL,
                langs VARCHAR,
                created_at TIMESTAMP NOT NULL
            )
        """
        )

        # Schedules table, one row per card
        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS schedules (
                card_id VARCHAR PRIMARY KEY,
                repetitions INTEGER NOT NULL DEFAULT 0,
                ease DOUBLE NOT NULL,
                interval_days DOUBLE NOT NULL DEFAULT 0,
                due_at TIMESTAMP NOT NULL,
                last_reviewed_at TIMESTAMP
            )
        """
        )

        self.connection.execute(
            """
            CREATE TABLE IF NOT EXISTS review_logs (
                id VARCHAR PRIMARY KEY,
                card_id VARCHAR NOT NULL,
                review_time TIMESTAMP NOT NULL,
                rating VARCHAR NOT NULL,
                interval DOUBLE NOT NULL,
                ease DOUBLE NOT NULL
            )
        """
        )

        count = self.connection.execute("SELECT COUNT(*) FROM decks").fetchone()[0]
        if count == 0:
            for position, name in enumerate(DEFAULT_DECKS):
                self.connection.execute(
                    "INSERT INTO decks (name, position) VALUES (?, ?)", (name, position)
                )

    # Decks

    def list_decks(self) -> List[str]:
        """Returns deck names with "All" first, in creation order."""
        results = self.connection.execute(
            "SELECT name FROM decks ORDER BY position"
        ).fetchall()
        return [result[0] for result in results]

    def add_deck(self, name: str) -> str:
        """Adds a deck if it does not exist yet.

        Returns:
            The normalized deck name.
        """
        if not name or not name.strip():
            raise DeckError("Deck name must not be empty")
        deck = normalize_deck_name(name)
        self._ensure_deck(deck)
        return deck

    def _ensure_deck(self, deck: str) -> None:
        exists = self.connection.execute(
            "SELECT 1 FROM decks WHERE name = ?", (deck,)
        ).fetchone()
        if exists:
            return
        position = self.connection.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 FROM decks"
        ).fetchone()[0]
        self.connection.execute(
            "INSERT INTO decks (name, position) VALUES (?, ?)", (deck, position)
        )
        logger.info("Added deck %s", deck)

    def rename_deck(self, old_name: str, new_name: str) -> str:
        """Renames a deck and moves its cards along with it.

        Raises:
            DeckError: If the deck is "All", unknown, or the new name is taken.
        """
        old_deck = normalize_deck_name(old_name)
        if old_deck == ALL_DECKS:
            raise DeckError("The All deck cannot be renamed")
        if not new_name or not new_name.strip():
            raise DeckError("Deck name must not be empty")
        new_deck = normalize_deck_name(new_name)
        decks = self.list_decks()
        if old_deck not in decks:
            raise DeckError(f"Unknown deck: {old_deck}")
        if new_deck in decks:
            raise DeckError(f"Deck already exists: {new_deck}")

        position = self.connection.execute(
            "SELECT position FROM decks WHERE name = ?", (old_deck,)
        ).fetchone()[0]
        self.connection.execute("DELETE FROM decks WHERE name = ?", (old_deck,))
        self.connection.execute(
            "INSERT INTO decks (name, position) VALUES (?, ?)", (new_deck, position)
        )
        self.connection.execute(
            "UPDATE cards SET deck_name = ? WHERE deck_name = ?", (new_deck, old_deck)
        )
        logger.info("Renamed deck %s to %s", old_deck, new_deck)
        return new_deck

    def delete_deck(self, name: str) -> None:
        """Deletes a deck. Its cards are moved to the All deck.

        Raises:
            DeckError: If the deck is "All".
        """
        deck = normalize_deck_name(name)
        if deck == ALL_DECKS:
            raise DeckError("The All deck cannot be deleted")
        self.connection.execute(
            "UPDATE cards SET deck_name = ? WHERE deck_name = ?", (ALL_DECKS, deck)
        )
        self.connection.execute("DELETE FROM decks WHERE name = ?", (deck,))

    # Cards

    def add_card(
        self,
        front: str,
        back: str,
        deck: Optional[str] = None,
        langs: Optional[Dict[str, str]] = None,
        now: Optional[datetime] = None,
    ) -> Card:
        """Adds a new card together with a schedule that is due right away.

        Args:
            front: The prompt side.
            back: The answer side.
            deck: Deck name; the All deck when omitted.
            langs: Optional translations keyed by language code.
            now: Creation time; the current UTC time when omitted.

        Returns:
            The created Card.
        """
        now = now or utc_now()
        card = Card(
            deck_name=normalize_deck_name(deck),
            front=front.strip(),
            back=back.strip(),
            langs=langs,
            created_at=now,
        )
        self._ensure_deck(card.deck_name)
        self.connection.execute(
            """
            INSERT INTO cards (id, deck_name, suspended, front, back, langs, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (
                card.id,
                card.deck_name,
                card.suspended,
                card.front,
                card.back,
                json.dumps(card.langs) if card.langs else None,
                _to_db(card.created_at),
            ),
        )
        self.put_schedule(card.id, ScheduleState.initial(now))
        return card

    def _card_from_row(self, result: Any) -> Card:
        return Card(
            id=result[0],
            deck_name=result[1],
            suspended=result[2],
            front=result[3],
            back=result[4],
            langs=json.loads(result[5]) if result[5] else None,
            created_at=_from_db(result[6]),
        )

    def get_card(self, card_id: str) -> Optional[Card]:
        """Retrieves a single card by its ID.

        Returns:
            The Card object if found, otherwise None.
        """
        result = self.connection.execute(
            """
            SELECT id, deck_name, suspended, front, back, langs, created_at
            FROM cards WHERE id = ?
        """,
            (card_id,),
        ).fetchone()

        if result:
            return self._card_from_row(result)
        return None

    def list_cards(self, deck: Optional[str] = None) -> List[Card]:
        if is_all_decks(deck):
            results = self.connection.execute(
                """
                SELECT id, deck_name, suspended, front, back, langs, created_at
                FROM cards ORDER BY created_at, id
            """
            ).fetchall()
        else:
            results = self.connection.execute(
                """
                SELECT id, deck_name, suspended, front, back, langs, created_at
                FROM cards WHERE deck_name = ? ORDER BY created_at, id
            """,
                (normalize_deck_name(deck),),
            ).fetchall()

        return [self._card_from_row(result) for result in results]

    def remove_card(self, card_id: str) -> None:
        """Deletes a card along with its schedule and review history."""
        self.connection.execute("DELETE FROM review_logs WHERE card_id = ?", (card_id,))
        self.connection.execute("DELETE FROM schedules WHERE card_id = ?", (card_id,))
        self.connection.execute("DELETE FROM cards WHERE id = ?", (card_id,))

    def move_card(self, card_id: str, deck: str) -> Card:
        """Moves a card to another deck, creating the deck if needed."""
        card = self._require_card(card_id)
        deck_name = normalize_deck_name(deck)
        self._ensure_deck(deck_name)
        self.connection.execute(
            "UPDATE cards SET deck_name = ? WHERE id = ?", (deck_name, card_id)
        )
        return card.model_copy(update={"deck_name": deck_name})

    def suspend_card(self, card_id: str, flag: bool = True) -> Card:
        """Suspends (or with flag=False, unsuspends) a card."""
        card = self._require_card(card_id)
        self.connection.execute(
            "UPDATE cards SET suspended = ? WHERE id = ?", (bool(flag), card_id)
        )
        return card.model_copy(update={"suspended": bool(flag)})

    def _require_card(self, card_id: str) -> Card:
        card = self.get_card(card_id)
        if card is None:
            raise DeckError(f"Unknown card: {card_id}")
        return card

    # Schedules

    def get_schedule(self, card_id: str) -> ScheduleState:
        result = self.connection.execute(
            """
            SELECT repetitions, ease, interval_days, due_at, last_reviewed_at
            FROM schedules WHERE card_id = ?
        """,
            (card_id,),
        ).fetchone()

        if result is None:
            return ScheduleState.initial(datetime.min.replace(tzinfo=timezone.utc))
        return ScheduleState(
            repetitions=result[0],
            ease=result[1],
            interval_days=result[2],
            due_at=_from_db(result[3]),
            last_reviewed_at=_from_db(result[4]),
        )

    def _write_schedule(self, card_id: str, state: ScheduleState) -> None:
        self.connection.execute(
            """
            INSERT OR REPLACE INTO schedules
            (card_id, repetitions, ease, interval_days, due_at, last_reviewed_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """,
            (
                card_id,
                state.repetitions,
                state.ease,
                state.interval_days,
                _to_db(state.due_at),
                _to_db(state.last_reviewed_at),
            ),
        )

    def put_schedule(self, card_id: str, state: ScheduleState) -> None:
        try:
            self._write_schedule(card_id, state)
        except duckdb.Error as e:
            raise PersistenceError(f"Could not save schedule for {card_id}: {e}") from e

    def record_review(self, card_id: str, state: ScheduleState, review_log: ReviewLog) -> None:
        """Stores a card's new schedule together with its review log entry.

        Both rows are written in one transaction: if either write fails,
        neither is kept.

        Raises:
            PersistenceError: If the transaction fails.
        """
        try:
            self.connection.begin()
            try:
                self._write_schedule(card_id, state)
                self.connection.execute(
                    """
                    INSERT INTO review_logs
                    (id, card_id, review_time, rating, interval, ease)
                    VALUES (?, ?, ?, ?, ?, ?)
                """,
                    (
                        review_log.id,
                        review_log.card_id,
                        _to_db(review_log.review_time),
                        review_log.rating.value,
                        review_log.interval,
                        review_log.ease,
                    ),
                )
                self.connection.commit()
            except duckdb.Error:
                self.connection.rollback()
                raise
        except duckdb.Error as e:
            raise PersistenceError(f"Could not save review of {card_id}: {e}") from e

    def get_review_history(self, card_id: Optional[str] = None) -> List[ReviewLog]:
        """Retrieves the review history, newest first.

        Args:
            card_id: Optional. If provided, filters the review history for a specific card.
        """
        if card_id:
            results = self.connection.execute(
                """
                SELECT id, card_id, review_time, rating, interval, ease
                FROM review_logs WHERE card_id = ?
                ORDER BY review_time DESC
            """,
                (card_id,),
            ).fetchall()
        else:
            results = self.connection.execute(
                """
                SELECT id, card_id, review_time, rating, interval, ease
                FROM review_logs ORDER BY review_time DESC
            """
            ).fetchall()

        return [
            ReviewLog(
                id=result[0],
                card_id=result[1],
                review_time=_from_db(result[2]),
                rating=result[3],
                interval=result[4],
                ease=result[5],
            )
            for result in results
        ]

    def get_counts(self, now: datetime, deck: Optional[str] = None) -> Dict[str, int]:
        """Counts study cards in a deck.

        Returns:
            A dictionary containing:
            - "due": Non-suspended cards whose due date has passed.
            - "total": All non-suspended cards.
        """
        query = """
            SELECT
                COUNT(*),
                COUNT(*) FILTER (WHERE s.due_at IS NULL OR s.due_at <= ?)
            FROM cards c LEFT JOIN schedules s ON s.card_id = c.id
            WHERE NOT c.suspended
        """
        params: List[Any] = [_to_db(now)]
        if not is_all_decks(deck):
            query += " AND c.deck_name = ?"
            params.append(normalize_deck_name(deck))

        total, due = self.connection.execute(query, params).fetchone()
        return {"due": due, "total": total}

    def get_review_summary(self, now: datetime) -> Dict[str, int]:
        """Summarizes recent study activity from the review history.

        Days are UTC calendar days. The streak counts consecutive days with at
        least one review, ending today, or yesterday if nothing has been
        reviewed yet today.

        Returns:
            A dictionary containing:
            - "today": Reviews made today.
            - "yesterday": Reviews made yesterday.
            - "week": Reviews over the last 7 days, today included.
            - "streak": Consecutive study days.
        """
        rows = self.connection.execute(
            """
            SELECT CAST(review_time AS DATE) AS day, COUNT(*)
            FROM review_logs
            GROUP BY day
        """
        ).fetchall()
        per_day = {day: count for day, count in rows}

        today = as_utc(now).astimezone(timezone.utc).date()
        yesterday = today - timedelta(days=1)
        week = sum(per_day.get(today - timedelta(days=i), 0) for i in range(7))

        streak = 0
        day = today if per_day.get(today) else yesterday
        while per_day.get(day):
            streak += 1
            day -= timedelta(days=1)

        return {
            "today": per_day.get(today, 0),
            "yesterday": per_day.get(yesterday, 0),
            "week": week,
            "streak": streak,
        }

    def close(self) -> None:
        """Closes the database connection."""
        self.connection.close()

    def __enter__(self) -> "DeckDatabase":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
