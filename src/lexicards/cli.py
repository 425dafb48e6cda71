"""Command-line interface for LexiCards."""

import argparse
import logging
import sys
from typing import Dict, List, Optional, Tuple

from .config import Settings, load_settings
from .core import InvalidRatingError, Rating, utc_now
from .database import DeckDatabase
from .session import NavigationStatus, StudyMode, StudySession

RATING_PROMPT = "Rate your recall (1=Again, 2=Hard, 3=Good, 4=Easy, b=Back, q=Quit): "


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="LexiCards: spaced repetition flashcards for language learning"
    )
    parser.add_argument("--db", help="DuckDB file (default: LEXICARDS_DB_PATH)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Add card command
    add_parser = subparsers.add_parser("add", help="Add a new card")
    add_parser.add_argument("front", help="Term or prompt")
    add_parser.add_argument("back", help="Definition or translation")
    add_parser.add_argument("--deck", default="All", help="Deck for the card")
    add_parser.add_argument(
        "--lang",
        action="append",
        default=[],
        metavar="CODE=TEXT",
        help="Translation of the term, e.g. ES=riñón (repeatable)",
    )

    # Review command
    review_parser = subparsers.add_parser("review", help="Study cards")
    review_parser.add_argument("--deck", default="All", help="Deck to study")
    review_parser.add_argument(
        "--mode",
        choices=[mode.value for mode in StudyMode],
        default=StudyMode.DUE.value,
        help="due: scheduled reviews; cram: every card, shuffled",
    )
    review_parser.add_argument("--search", help="Only cards containing this text")
    review_parser.add_argument(
        "--direction",
        metavar="FROM:TO",
        help="Show cards through their translations, e.g. EN:ES",
    )

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Show counts and study streak")
    stats_parser.add_argument("--deck", default="All", help="Deck to count")

    subparsers.add_parser("decks", help="List decks")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        langs = parse_langs(getattr(args, "lang", []))
        direction = parse_direction(getattr(args, "direction", None))
    except ValueError as e:
        parser.error(str(e))

    settings = load_settings()
    logging.basicConfig(level=settings.log_level)

    db = DeckDatabase(args.db or settings.db_path)

    try:
        if args.command == "add":
            add_card(db, args.front, args.back, args.deck, langs)
        elif args.command == "review":
            review_cards(
                db,
                settings,
                args.deck,
                args.mode,
                args.search,
                direction,
            )
        elif args.command == "stats":
            show_stats(db, args.deck)
        elif args.command == "decks":
            list_decks(db)
    finally:
        db.close()


def parse_langs(values: List[str]) -> Optional[Dict[str, str]]:
    """Turns ["ES=riñón", ...] into {"ES": "riñón", ...}."""
    langs = {}
    for value in values:
        code, sep, text = value.partition("=")
        if not sep or not code.strip() or not text.strip():
            raise ValueError(f"Invalid --lang value: {value!r} (expected CODE=TEXT)")
        langs[code.strip().upper()] = text.strip()
    return langs or None


def parse_direction(value: Optional[str]) -> Optional[Tuple[str, str]]:
    if not value:
        return None
    source, sep, target = value.partition(":")
    if not sep or not source.strip() or not target.strip():
        raise ValueError(f"Invalid --direction value: {value!r} (expected FROM:TO)")
    return source.strip().upper(), target.strip().upper()


def add_card(
    db: DeckDatabase,
    front: str,
    back: str,
    deck: str,
    langs: Optional[Dict[str, str]] = None,
) -> None:
    """Add a new card to the database."""
    if not front.strip() or not back.strip():
        print("Please provide both front and back.")
        return

    card = db.add_card(front, back, deck, langs=langs)
    print(f"Added card to {card.deck_name}: {card.front}")


def review_cards(
    db: DeckDatabase,
    settings: Settings,
    deck: str,
    mode: str,
    search: Optional[str] = None,
    direction: Optional[Tuple[str, str]] = None,
) -> None:
    """Run an interactive study session."""
    session = StudySession(db, db, requeue_offset=settings.cram_requeue_offset)
    session.start(deck, mode, search)

    if session.exhausted:
        print("No cards to study!")
        return

    while not session.exhausted:
        card = session.current_card
        seen, total = session.progress()
        print(f"\n--- Card {seen}/{total} [{card.deck_name}] ---")
        prompt, answer_text = card.texts(direction)
        print(prompt)
        input("Press Enter to reveal...")
        print(answer_text)

        answer = input(RATING_PROMPT).strip().lower()
        if answer == "q":
            break
        if answer == "b":
            if session.previous().status == NavigationStatus.NO_HISTORY:
                print("Nothing to go back to.")
            continue

        try:
            rating = Rating.parse(int(answer) if answer.isdigit() else answer)
        except InvalidRatingError:
            print("Please enter 1-4 or again/hard/good/easy")
            continue

        result = session.rate(rating)
        if result.schedule is not None:
            print(f"Next review: {result.schedule.due_at.strftime('%Y-%m-%d %H:%M')}")
        if not result.persisted:
            print("Warning: review could not be saved, will retry.")
            session.retry_failed_writes()

    if session.pending_writes:
        print(f"{len(session.pending_writes)} reviews could not be saved.")
    print("Session finished.")


def show_stats(db: DeckDatabase, deck: str) -> None:
    """Show due and total counts, recent reviews and the study streak."""
    now = utc_now()
    counts = db.get_counts(now, deck)
    summary = db.get_review_summary(now)

    print("=== Study Statistics ===")
    print(f"Due: {counts['due']}")
    print(f"Total: {counts['total']}")
    print(f"Total reviews: {len(db.get_review_history())}")
    print(f"Reviewed today: {summary['today']}")
    print(f"Reviewed yesterday: {summary['yesterday']}")
    print(f"Reviewed last 7 days: {summary['week']}")
    print(f"Day streak: {summary['streak']}")


def list_decks(db: DeckDatabase) -> None:
    for deck in db.list_decks():
        counts = db.get_counts(utc_now(), deck)
        print(f"{deck}: {counts['due']} due / {counts['total']} total")


if __name__ == "__main__":
    main()
