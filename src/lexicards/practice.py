"""Learn (multiple choice) and match (pairs) practice rounds.

Practice rounds reuse the deck selection of study sessions but never touch
schedules: they are for drilling, not for spaced repetition.
"""

import random
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from .core import Card, LexiCardsError, is_all_decks, normalize_deck_name

DEFAULT_CHOICES = 4
DEFAULT_PAIRS = 6

Direction = Tuple[str, str]


class NotEnoughCardsError(LexiCardsError):
    """Raised when a deck is too small for a practice round."""


def _pool(cards: Iterable[Card], deck: Optional[str]) -> List[Card]:
    deck_name = None if is_all_decks(deck) else normalize_deck_name(deck)
    return [
        card
        for card in cards
        if not card.suspended and (deck_name is None or card.deck_name == deck_name)
    ]


class Question(BaseModel):
    """A multiple choice question.

    Attributes:
        card_id: The card being asked about.
        prompt: The front of the card, or its source language text.
        answer: The back of the card, or its target language text.
        choices: The answer mixed with distractors, shuffled.
    """

    card_id: str = Field(..., description="Card being asked about")
    prompt: str = Field(..., description="Front of the card")
    answer: str = Field(..., description="Back of the card")
    choices: List[str] = Field(..., description="Shuffled answer options")


class LearnRound(BaseModel):
    """A sequence of questions with a running score."""

    questions: List[Question]
    position: int = 0
    score: int = 0

    @property
    def current(self) -> Optional[Question]:
        if self.position >= len(self.questions):
            return None
        return self.questions[self.position]

    @property
    def done(self) -> bool:
        return self.current is None

    def answer(self, choice: str) -> bool:
        """Checks a choice against the current question and moves on.

        Returns:
            True if the choice was correct.
        """
        question = self.current
        if question is None:
            raise LexiCardsError("The learn round is already finished")
        correct = choice == question.answer
        if correct:
            self.score += 1
        self.position += 1
        return correct


def build_learn_round(
    cards: Iterable[Card],
    rng: Optional[random.Random] = None,
    deck: Optional[str] = None,
    choices: int = DEFAULT_CHOICES,
    direction: Optional[Direction] = None,
) -> LearnRound:
    """Builds a multiple choice round over a deck.

    Distractors are the answers of other cards, from any deck. With a
    direction such as ("EN", "ES") cards are shown through their translations
    (see Card.texts).

    Raises:
        NotEnoughCardsError: If the deck has fewer than `choices` cards.
    """
    rng = rng or random.Random()
    all_cards = [card for card in cards if not card.suspended]
    pool = _pool(all_cards, deck)
    if len(pool) < choices:
        raise NotEnoughCardsError(f"Need at least {choices} cards, found {len(pool)}")

    order = pool[:]
    rng.shuffle(order)

    texts = {card.id: card.texts(direction) for card in all_cards}

    questions = []
    for card in order:
        prompt, answer = texts[card.id]
        wrongs = list(
            dict.fromkeys(
                texts[other.id][1]
                for other in all_cards
                if other.id != card.id and texts[other.id][1] not in ("", answer)
            )
        )
        rng.shuffle(wrongs)
        options = [answer] + wrongs[: choices - 1]
        rng.shuffle(options)
        questions.append(
            Question(card_id=card.id, prompt=prompt, answer=answer, choices=options)
        )
    return LearnRound(questions=questions)


class MatchTile(BaseModel):
    """One tile on the match board; side is "front" or "back"."""

    card_id: str
    side: str
    text: str


class MatchRound(BaseModel):
    """A board of shuffled tiles to be paired up."""

    tiles: List[MatchTile]
    matched: List[str] = Field(default_factory=list)

    @property
    def pairs(self) -> int:
        return len(self.tiles) // 2

    @property
    def complete(self) -> bool:
        return len(self.matched) == self.pairs

    def pick(self, first: int, second: int) -> bool:
        """Tries to match the tiles at two board positions.

        Returns:
            True if the tiles are the two sides of the same card.
        """
        a, b = self.tiles[first], self.tiles[second]
        if a.card_id in self.matched:
            return False
        if a.card_id == b.card_id and a.side != b.side:
            self.matched.append(a.card_id)
            return True
        return False


def build_match_round(
    cards: Iterable[Card],
    rng: Optional[random.Random] = None,
    deck: Optional[str] = None,
    pairs: int = DEFAULT_PAIRS,
    direction: Optional[Direction] = None,
) -> MatchRound:
    """Builds a match board from up to `pairs` random cards of a deck."""
    rng = rng or random.Random()
    pool = _pool(cards, deck)
    rng.shuffle(pool)

    tiles = []
    for card in pool[:pairs]:
        front, back = card.texts(direction)
        tiles.append(MatchTile(card_id=card.id, side="front", text=front))
        tiles.append(MatchTile(card_id=card.id, side="back", text=back))
    rng.shuffle(tiles)
    return MatchRound(tiles=tiles)
