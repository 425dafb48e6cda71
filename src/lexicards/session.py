"""Study session queues: card selection, ordering and navigation."""

import logging
import random
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .core import (
    Card,
    PersistenceError,
    Rating,
    ReviewLog,
    ScheduleState,
    SM2Scheduler,
    is_all_decks,
    normalize_deck_name,
    utc_now,
)
from .database import CardSource, ScheduleStore

logger = logging.getLogger(__name__)

DEFAULT_REQUEUE_OFFSET = 2

Clock = Callable[[], datetime]
ScheduleLookup = Callable[[str], ScheduleState]


class StudyMode(str, Enum):
    """How a study session picks its cards.

    Attributes:
        DUE: Only cards whose due date has passed, oldest first.
        CRAM: Every card in the deck, shuffled; schedules are left alone.
    """

    DUE = "due"
    CRAM = "cram"


class NavigationStatus(str, Enum):
    """Outcome of moving through a queue.

    Attributes:
        OK: A card is on screen.
        EXHAUSTED: No card is on screen and none remain.
        NO_HISTORY: There is no earlier card to go back to.
        NOT_STARTED: Cards remain but none has been shown yet; call advance.
    """

    OK = "ok"
    EXHAUSTED = "exhausted"
    NO_HISTORY = "no_history"
    NOT_STARTED = "not_started"


class QueueState(BaseModel):
    """Immutable snapshot of a session queue.

    Attributes:
        mode: The study mode the queue was built for.
        current: The card on screen, or None.
        remaining: Cards still to come, front first.
        history: Cards already shown, most recent last.
    """

    mode: StudyMode = Field(default=StudyMode.DUE, description="Study mode")
    current: Optional[str] = Field(default=None, description="Card on screen")
    remaining: Tuple[str, ...] = Field(default=(), description="Cards still to come")
    history: Tuple[str, ...] = Field(default=(), description="Cards already shown")

    model_config = ConfigDict(frozen=True)

    @property
    def exhausted(self) -> bool:
        return self.current is None and not self.remaining


class NavigationResult(BaseModel):
    """Outcome of advance or go_back."""

    status: NavigationStatus
    card_id: Optional[str] = None
    state: QueueState

    model_config = ConfigDict(frozen=True)


class RateResult(BaseModel):
    """Outcome of rating the current card.

    Attributes:
        status: Navigation status after the queue moved on.
        rated_card_id: The card that was rated, None if there was none.
        card_id: The card now on screen.
        state: The queue after rating.
        schedule: The new schedule in due mode; None in cram mode.
        review_log: The log entry for the review in due mode; None in cram mode.
        persist_error: Set when the new schedule could not be stored. The
            schedule above is still valid and can be written again later.
    """

    status: NavigationStatus
    rated_card_id: Optional[str] = None
    card_id: Optional[str] = None
    state: QueueState
    schedule: Optional[ScheduleState] = None
    review_log: Optional[ReviewLog] = None
    persist_error: Optional[PersistenceError] = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def persisted(self) -> bool:
        return self.persist_error is None


def build_queue(
    cards: Iterable[Card],
    schedule_lookup: ScheduleLookup,
    deck: Optional[str],
    mode: Union[StudyMode, str],
    now: datetime,
    search: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> List[str]:
    """Selects and orders the cards for a study session.

    Args:
        cards: Candidate cards.
        schedule_lookup: Returns the schedule for a card id.
        deck: Deck to restrict to; None, "" or "All" means every deck.
        mode: StudyMode.DUE or StudyMode.CRAM.
        now: Reference time for due checks.
        search: Optional text that the front or back must contain.
        rng: Random source for cram shuffling.

    Returns:
        Ordered card ids.
    """
    mode = StudyMode(mode)
    deck_name = None if is_all_decks(deck) else normalize_deck_name(deck)

    eligible = [
        card
        for card in cards
        if not card.suspended
        and (deck_name is None or card.deck_name == deck_name)
        and card.matches(search)
    ]

    if mode == StudyMode.CRAM:
        ids = [card.id for card in eligible]
        (rng or random.Random()).shuffle(ids)
        return ids

    due: List[Tuple[datetime, str]] = []
    for card in eligible:
        state = schedule_lookup(card.id)
        if SM2Scheduler.is_due(state, now):
            due.append((state.due_at, card.id))
    due.sort()
    return [card_id for _, card_id in due]


def start_queue(card_ids: Iterable[str], mode: Union[StudyMode, str]) -> QueueState:
    """An Active queue with nothing on screen yet; call advance to show the first card."""
    return QueueState(mode=StudyMode(mode), remaining=tuple(card_ids))


def advance(state: QueueState) -> NavigationResult:
    """Moves to the next card, remembering the current one for go_back."""
    if state.exhausted:
        return NavigationResult(status=NavigationStatus.EXHAUSTED, state=state)

    history = state.history
    if state.current is not None:
        history = history + (state.current,)

    if not state.remaining:
        new_state = state.model_copy(update={"current": None, "history": history})
        return NavigationResult(status=NavigationStatus.EXHAUSTED, state=new_state)

    new_state = state.model_copy(
        update={
            "current": state.remaining[0],
            "remaining": state.remaining[1:],
            "history": history,
        }
    )
    return NavigationResult(
        status=NavigationStatus.OK, card_id=new_state.current, state=new_state
    )


def go_back(state: QueueState) -> NavigationResult:
    """Returns to the previously shown card."""
    if not state.history:
        return NavigationResult(
            status=NavigationStatus.NO_HISTORY, card_id=state.current, state=state
        )

    remaining = state.remaining
    if state.current is not None:
        remaining = (state.current,) + remaining

    new_state = state.model_copy(
        update={
            "current": state.history[-1],
            "remaining": remaining,
            "history": state.history[:-1],
        }
    )
    return NavigationResult(
        status=NavigationStatus.OK, card_id=new_state.current, state=new_state
    )


def rate(
    state: QueueState,
    rating: Union[Rating, str, int],
    now: datetime,
    store: ScheduleStore,
    scheduler: Optional[SM2Scheduler] = None,
    requeue_offset: int = DEFAULT_REQUEUE_OFFSET,
) -> RateResult:
    """Applies a rating to the current card and moves on.

    In due mode the card is rescheduled and the new schedule is stored. In
    cram mode nothing is stored; an "again" puts the card back into the queue
    `requeue_offset` places from the front so it comes up again soon.

    When no card is on screen nothing changes and the status is EXHAUSTED,
    or NOT_STARTED if the queue still has cards that advance would show.

    Raises:
        InvalidRatingError: If the rating is not recognized. Nothing changes.
    """
    rating = Rating.parse(rating)

    if state.current is None:
        if state.exhausted:
            return RateResult(status=NavigationStatus.EXHAUSTED, state=state)
        return RateResult(status=NavigationStatus.NOT_STARTED, state=state)

    card_id = state.current

    if state.mode == StudyMode.CRAM:
        if rating == Rating.AGAIN:
            remaining = list(state.remaining)
            remaining.insert(requeue_offset, card_id)
            state = state.model_copy(update={"remaining": tuple(remaining)})
        nav = advance(state)
        return RateResult(
            status=nav.status,
            rated_card_id=card_id,
            card_id=nav.card_id,
            state=nav.state,
        )

    scheduler = scheduler or SM2Scheduler()
    new_schedule, review_log = scheduler.review_card(
        card_id, store.get_schedule(card_id), rating, now
    )

    persist_error = None
    try:
        store.record_review(card_id, new_schedule, review_log)
    except PersistenceError as e:
        logger.warning("Review of card %s was not saved: %s", card_id, e)
        persist_error = e

    nav = advance(state)
    return RateResult(
        status=nav.status,
        rated_card_id=card_id,
        card_id=nav.card_id,
        state=nav.state,
        schedule=new_schedule,
        review_log=review_log,
        persist_error=persist_error,
    )


class StudySession:
    """A learner's study session over a card source and schedule store.

    Keeps the current queue, rebuilds it whenever the deck, mode or search
    filter changes, and remembers reviews whose schedules could not be saved
    so they can be written again with retry_failed_writes.
    """

    def __init__(
        self,
        cards: CardSource,
        store: ScheduleStore,
        clock: Clock = utc_now,
        scheduler: Optional[SM2Scheduler] = None,
        rng: Optional[random.Random] = None,
        requeue_offset: int = DEFAULT_REQUEUE_OFFSET,
    ):
        self.cards = cards
        self.store = store
        self.clock = clock
        self.scheduler = scheduler or SM2Scheduler()
        self.rng = rng or random.Random()
        self.requeue_offset = requeue_offset

        self.deck: Optional[str] = None
        self.mode: StudyMode = StudyMode.DUE
        self.search: Optional[str] = None
        self.state: Optional[QueueState] = None
        self._cards_by_id: Dict[str, Card] = {}
        # card id -> (latest unsaved schedule, review logs not yet stored)
        self._pending: Dict[str, Tuple[ScheduleState, List[ReviewLog]]] = {}

    @property
    def is_idle(self) -> bool:
        return self.state is None

    @property
    def exhausted(self) -> bool:
        return self.state is not None and self.state.exhausted

    @property
    def current_card(self) -> Optional[Card]:
        if self.state is None or self.state.current is None:
            return None
        return self._cards_by_id.get(self.state.current)

    @property
    def pending_writes(self) -> Dict[str, ScheduleState]:
        return {card_id: schedule for card_id, (schedule, _) in self._pending.items()}

    def _lookup(self, card_id: str) -> ScheduleState:
        if card_id in self._pending:
            return self._pending[card_id][0]
        return self.store.get_schedule(card_id)

    def start(
        self,
        deck: Optional[str] = None,
        mode: Union[StudyMode, str] = StudyMode.DUE,
        search: Optional[str] = None,
    ) -> NavigationResult:
        """Builds a fresh queue and shows its first card."""
        self.deck = deck
        self.mode = StudyMode(mode)
        self.search = search or None

        cards = self.cards.list_cards(None if is_all_decks(deck) else deck)
        self._cards_by_id = {card.id: card for card in cards}
        card_ids = build_queue(
            cards,
            self._lookup,
            deck,
            self.mode,
            self.clock(),
            search=self.search,
            rng=self.rng,
        )
        logger.debug(
            "Built %s queue for deck %s with %d cards",
            self.mode.value,
            normalize_deck_name(deck),
            len(card_ids),
        )
        self.state = start_queue(card_ids, self.mode)
        return self.next()

    def change_filter(
        self,
        deck: Optional[str] = None,
        mode: Union[StudyMode, str] = StudyMode.DUE,
        search: Optional[str] = None,
    ) -> Optional[NavigationResult]:
        """Rebuilds the queue if any filter differs from the current one.

        Returns:
            The navigation result of the rebuilt queue, or None if nothing changed.
        """
        unchanged = (
            self.state is not None
            and normalize_deck_name(deck) == normalize_deck_name(self.deck)
            and StudyMode(mode) == self.mode
            and (search or None) == self.search
        )
        if unchanged:
            return None
        return self.start(deck, mode, search)

    def _require_state(self) -> QueueState:
        if self.state is None:
            raise RuntimeError("Study session has not been started")
        return self.state

    def next(self) -> NavigationResult:
        result = advance(self._require_state())
        self.state = result.state
        return result

    def previous(self) -> NavigationResult:
        result = go_back(self._require_state())
        self.state = result.state
        return result

    def rate(self, rating: Union[Rating, str, int]) -> RateResult:
        """Rates the current card and moves on.

        A failed write does not stop the session: the new schedule is kept in
        memory, used for the rest of the session and returned with the error.
        """
        result = rate(
            self._require_state(),
            rating,
            self.clock(),
            _PendingAwareStore(self),
            self.scheduler,
            self.requeue_offset,
        )
        self.state = result.state

        card_id = result.rated_card_id
        if result.schedule is not None and card_id is not None:
            _, logs = self._pending.get(card_id, (None, []))
            if not result.persisted:
                logs = logs + [result.review_log]
            if logs:
                self._pending[card_id] = (result.schedule, logs)
        return result

    def retry_failed_writes(self) -> int:
        """Writes the reviews that failed to save earlier.

        Each card's review logs are stored oldest first, together with the
        card's latest schedule. Logs stored before a failure are not written
        again.

        Returns:
            The number of cards still unsaved.
        """
        for card_id, (schedule, logs) in list(self._pending.items()):
            try:
                while logs:
                    self.store.record_review(card_id, schedule, logs[0])
                    logs.pop(0)
            except PersistenceError as e:
                logger.warning("Retry for card %s failed: %s", card_id, e)
                continue
            del self._pending[card_id]
        return len(self._pending)

    def progress(self) -> Tuple[int, int]:
        """Returns (seen, total) for the current queue."""
        if self.state is None:
            return 0, 0
        seen = len(self.state.history) + (1 if self.state.current is not None else 0)
        return seen, seen + len(self.state.remaining)


class _PendingAwareStore(ScheduleStore):
    """Reads unsaved schedules from the session before asking the store."""

    def __init__(self, session: StudySession):
        self._session = session

    def get_schedule(self, card_id: str) -> ScheduleState:
        return self._session._lookup(card_id)

    def put_schedule(self, card_id: str, state: ScheduleState) -> None:
        self._session.store.put_schedule(card_id, state)

    def record_review(self, card_id: str, state: ScheduleState, review_log: ReviewLog) -> None:
        self._session.store.record_review(card_id, state, review_log)
