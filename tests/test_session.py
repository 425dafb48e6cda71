"""Unit tests for queue building, navigation and study sessions."""

import random
from datetime import datetime, timedelta
from typing import Dict, List
from unittest.mock import MagicMock

import pytest

from lexicards.core import Card, InvalidRatingError, PersistenceError, Rating, ScheduleState
from lexicards.database import DeckDatabase, ScheduleStore
from lexicards.session import (
    NavigationStatus,
    QueueState,
    StudyMode,
    StudySession,
    advance,
    build_queue,
    go_back,
    rate,
    start_queue,
)


def make_cards() -> List[Card]:
    return [
        Card(id="a", deck_name="Anatomy", front="femur", back="thigh bone"),
        Card(id="b", deck_name="Anatomy", front="tibia", back="shin bone"),
        Card(id="c", deck_name="Pharm", front="aspirin", back="NSAID"),
        Card(id="d", deck_name="Pharm", front="heparin", back="anticoagulant"),
        Card(id="e", deck_name="Anatomy", front="ulna", back="forearm bone", suspended=True),
    ]


def make_schedules(now: datetime) -> Dict[str, ScheduleState]:
    return {
        "a": ScheduleState(due_at=now - timedelta(hours=1)),
        "b": ScheduleState(due_at=now - timedelta(days=2)),
        "c": ScheduleState(due_at=now + timedelta(days=1)),
        "d": ScheduleState(due_at=now - timedelta(hours=1)),
        "e": ScheduleState(due_at=now - timedelta(days=9)),
    }


@pytest.fixture
def store(now: datetime) -> MagicMock:
    store = MagicMock(spec=ScheduleStore)
    store.get_schedule.return_value = ScheduleState(
        repetitions=3, ease=2.5, interval_days=6, due_at=now
    )
    return store


class TestBuildQueue:
    def test_due_mode_orders_oldest_first(self, now: datetime) -> None:
        schedules = make_schedules(now)

        queue = build_queue(make_cards(), schedules.__getitem__, "All", StudyMode.DUE, now)

        # a and d share a due date; id breaks the tie
        assert queue == ["b", "a", "d"]

    def test_due_mode_never_includes_future_or_suspended(self, now: datetime) -> None:
        schedules = make_schedules(now)

        queue = build_queue(make_cards(), schedules.__getitem__, None, "due", now)

        for card_id in queue:
            assert schedules[card_id].due_at <= now
        assert "c" not in queue
        assert "e" not in queue

    def test_deck_filter(self, now: datetime) -> None:
        schedules = make_schedules(now)

        queue = build_queue(make_cards(), schedules.__getitem__, "pharm", "due", now)

        assert queue == ["d"]

    def test_raw_deck_label_matches_its_deck(self, now: datetime) -> None:
        cards = [Card(id="a", deck_name="infectious_disease")]
        schedules = {"a": ScheduleState(due_at=now - timedelta(hours=1))}

        for deck in ("infectious_disease", "Infectious Disease"):
            for mode in ("due", "cram"):
                queue = build_queue(cards, schedules.__getitem__, deck, mode, now)
                assert queue == ["a"]

    def test_naive_now_is_treated_as_utc(self, now: datetime) -> None:
        schedules = make_schedules(now)

        queue = build_queue(
            make_cards(), schedules.__getitem__, "All", "due", now.replace(tzinfo=None)
        )

        assert queue == ["b", "a", "d"]

    def test_search_filter_matches_either_side(self, now: datetime) -> None:
        schedules = make_schedules(now)

        queue = build_queue(
            make_cards(), schedules.__getitem__, "All", "due", now, search="BONE"
        )

        assert queue == ["b", "a"]

    def test_cram_mode_ignores_due_dates(self, now: datetime) -> None:
        schedules = make_schedules(now)

        queue = build_queue(
            make_cards(), schedules.__getitem__, "All", StudyMode.CRAM, now, rng=random.Random(7)
        )

        assert sorted(queue) == ["a", "b", "c", "d"]

    def test_cram_mode_is_reproducible_with_seed(self, now: datetime) -> None:
        schedules = make_schedules(now)

        first = build_queue(make_cards(), schedules.__getitem__, "All", "cram", now, rng=random.Random(3))
        second = build_queue(make_cards(), schedules.__getitem__, "All", "cram", now, rng=random.Random(3))

        assert first == second

    def test_unknown_mode_is_rejected(self, now: datetime) -> None:
        with pytest.raises(ValueError):
            build_queue(make_cards(), make_schedules(now).__getitem__, "All", "learn", now)


class TestNavigation:
    def test_advance_shows_first_card(self) -> None:
        result = advance(start_queue(["a", "b"], StudyMode.DUE))

        assert result.status == NavigationStatus.OK
        assert result.card_id == "a"
        assert result.state.remaining == ("b",)
        assert result.state.history == ()

    def test_go_back_after_advance_restores_previous(self) -> None:
        before = QueueState(current="x", remaining=("a", "b", "c"), history=("w",))

        forward = advance(before)
        back = go_back(forward.state)

        assert back.status == NavigationStatus.OK
        assert back.card_id == "x"
        assert back.state.remaining == before.remaining
        assert back.state == before

    def test_go_back_without_history(self) -> None:
        state = QueueState(current="a", remaining=("b",))

        result = go_back(state)

        assert result.status == NavigationStatus.NO_HISTORY
        assert result.state is state
        assert result.card_id == "a"

    def test_advance_past_last_card_exhausts(self) -> None:
        state = QueueState(current="a", remaining=())

        result = advance(state)

        assert result.status == NavigationStatus.EXHAUSTED
        assert result.card_id is None
        assert result.state.exhausted
        assert result.state.history == ("a",)

    def test_advance_when_exhausted_is_noop(self) -> None:
        state = QueueState(history=("a",))

        result = advance(state)

        assert result.status == NavigationStatus.EXHAUSTED
        assert result.state is state

    def test_go_back_from_exhausted(self) -> None:
        exhausted = advance(QueueState(current="a")).state

        result = go_back(exhausted)

        assert result.card_id == "a"
        assert result.state.remaining == ()

    def test_empty_queue_starts_exhausted(self) -> None:
        assert start_queue([], StudyMode.DUE).exhausted


class TestRate:
    def test_due_mode_reschedules_and_advances(
        self, store: MagicMock, now: datetime
    ) -> None:
        state = QueueState(current="a", remaining=("b",))

        result = rate(state, "again", now, store)

        assert result.rated_card_id == "a"
        assert result.card_id == "b"
        assert result.state.history == ("a",)
        assert result.schedule.repetitions == 0
        assert result.schedule.ease == pytest.approx(2.2)
        assert result.persisted
        store.record_review.assert_called_once()
        card_id, saved, review_log = store.record_review.call_args[0]
        assert card_id == "a"
        assert saved == result.schedule
        assert review_log.card_id == "a"

    def test_persistence_failure_keeps_result(self, store: MagicMock, now: datetime) -> None:
        store.record_review.side_effect = PersistenceError("disk full")
        state = QueueState(current="a", remaining=("b",))

        result = rate(state, "good", now, store)

        assert not result.persisted
        assert isinstance(result.persist_error, PersistenceError)
        assert result.schedule.interval_days == 15
        assert result.card_id == "b"

    def test_cram_again_requeues_without_scheduling(
        self, store: MagicMock, now: datetime
    ) -> None:
        state = QueueState(
            mode=StudyMode.CRAM, current="x", remaining=("a", "b", "c", "d")
        )

        result = rate(state, "again", now, store)

        # inserted at index 2, then the queue moved on to "a"
        assert result.card_id == "a"
        assert result.state.remaining == ("b", "x", "c", "d")
        assert result.schedule is None
        store.get_schedule.assert_not_called()
        store.record_review.assert_not_called()
        store.put_schedule.assert_not_called()

    def test_cram_again_near_end_of_queue(self, store: MagicMock, now: datetime) -> None:
        state = QueueState(mode=StudyMode.CRAM, current="x", remaining=("a",))

        result = rate(state, "again", now, store)

        assert result.card_id == "a"
        assert result.state.remaining == ("x",)

    def test_cram_good_just_advances(self, store: MagicMock, now: datetime) -> None:
        state = QueueState(mode=StudyMode.CRAM, current="x", remaining=("a", "b"))

        result = rate(state, "good", now, store)

        assert result.card_id == "a"
        assert result.state.remaining == ("b",)
        store.record_review.assert_not_called()

    def test_invalid_rating_changes_nothing(self, store: MagicMock, now: datetime) -> None:
        state = QueueState(current="a", remaining=("b",))

        with pytest.raises(InvalidRatingError):
            rate(state, "maybe", now, store)

        store.get_schedule.assert_not_called()
        store.record_review.assert_not_called()

    def test_rate_when_exhausted(self, store: MagicMock, now: datetime) -> None:
        state = QueueState(history=("a",))

        result = rate(state, "good", now, store)

        assert result.status == NavigationStatus.EXHAUSTED
        assert result.state is state
        store.record_review.assert_not_called()

    def test_rate_before_first_card(self, store: MagicMock, now: datetime) -> None:
        state = start_queue(["a", "b"], "due")

        result = rate(state, "good", now, store)

        assert result.status == NavigationStatus.NOT_STARTED
        assert result.state is state
        assert not result.state.exhausted
        assert result.rated_card_id is None
        store.get_schedule.assert_not_called()
        store.record_review.assert_not_called()

        after_advance = rate(advance(state).state, "good", now, store)
        assert after_advance.rated_card_id == "a"
        assert after_advance.card_id == "b"


class FlakyDatabase(DeckDatabase):
    """Fails the first review write, then behaves normally."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 1

    def record_review(self, card_id, state, review_log) -> None:
        if self.failures:
            self.failures -= 1
            raise PersistenceError("temporarily unavailable")
        super().record_review(card_id, state, review_log)


class TestStudySession:
    def _session(self, db: DeckDatabase, now: datetime, **kwargs) -> StudySession:
        return StudySession(db, db, clock=lambda: now, rng=random.Random(1), **kwargs)

    def test_due_session_runs_to_exhaustion(self, db: DeckDatabase, now: datetime) -> None:
        for word in ("hola", "adios", "gracias"):
            db.add_card(word, f"{word} in English", deck="spanish", now=now - timedelta(hours=1))
        session = self._session(db, now)

        first = session.start("Spanish")
        assert first.status == NavigationStatus.OK
        assert session.progress() == (1, 3)

        while not session.exhausted:
            session.rate("good")

        assert session.current_card is None
        assert db.get_counts(now, "Spanish") == {"due": 0, "total": 3}
        assert len(db.get_review_history()) == 3

    def test_empty_deck_is_exhausted(self, db: DeckDatabase, now: datetime) -> None:
        session = self._session(db, now)

        result = session.start("Anatomy")

        assert result.status == NavigationStatus.EXHAUSTED
        assert session.exhausted

    def test_previous_and_next(self, db: DeckDatabase, now: datetime) -> None:
        db.add_card("uno", "one", now=now - timedelta(days=2))
        db.add_card("dos", "two", now=now - timedelta(days=1))
        session = self._session(db, now)

        session.start()
        assert session.current_card.front == "uno"
        assert session.previous().status == NavigationStatus.NO_HISTORY

        session.next()
        assert session.current_card.front == "dos"
        session.previous()
        assert session.current_card.front == "uno"

    def test_cram_session_keeps_schedules(self, db: DeckDatabase, now: datetime) -> None:
        card = db.add_card("uno", "one", now=now + timedelta(days=5))
        before = db.get_schedule(card.id)
        session = self._session(db, now)

        session.start(mode="cram")
        assert session.current_card.id == card.id
        session.rate("again")

        assert db.get_schedule(card.id) == before
        assert db.get_review_history() == []

    def test_failed_write_is_retried(self, now: datetime) -> None:
        db = FlakyDatabase()
        try:
            card = db.add_card("uno", "one", now=now - timedelta(hours=1))
            session = self._session(db, now)
            session.start()

            result = session.rate("easy")

            assert not result.persisted
            assert session.exhausted
            assert session.pending_writes == {card.id: result.schedule}
            assert db.get_schedule(card.id).repetitions == 0
            assert db.get_review_history() == []

            assert session.retry_failed_writes() == 0
            assert db.get_schedule(card.id) == result.schedule
            assert session.pending_writes == {}

            history = db.get_review_history()
            assert len(history) == 1
            assert history[0].id == result.review_log.id
            assert history[0].rating == Rating.EASY
        finally:
            db.close()

    def test_change_filter_rebuilds_only_on_change(
        self, db: DeckDatabase, now: datetime
    ) -> None:
        db.add_card("uno", "one", now=now + timedelta(days=1))
        session = self._session(db, now)
        session.start("All", "due")
        assert session.exhausted

        assert session.change_filter("all", StudyMode.DUE) is None

        result = session.change_filter("All", "cram")
        assert result.status == NavigationStatus.OK
        assert session.current_card.front == "uno"

    def test_navigation_before_start_fails(self, db: DeckDatabase, now: datetime) -> None:
        session = self._session(db, now)

        assert session.is_idle
        with pytest.raises(RuntimeError):
            session.next()
