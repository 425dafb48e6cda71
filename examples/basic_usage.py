#!/usr/bin/env python3
"""Basic usage example for LexiCards."""

from datetime import timedelta

from lexicards import DeckDatabase, StudyMode, StudySession
from lexicards.core import utc_now


def main() -> None:
    """Demonstrate a study session over an in-memory deck."""
    print("LexiCards Basic Usage Example")
    print("=" * 50)

    db = DeckDatabase()

    try:
        print("\nCreating sample cards...")

        cards_data = [
            ("myocardial infarction", "infarto de miocardio", "cardiology"),
            ("appendicitis", "apendicitis", "emergency"),
            ("suture", "sutura", "procedures"),
        ]

        for front, back, deck in cards_data:
            card = db.add_card(front, back, deck=deck)
            print(f"   Added: {card.front} ({card.deck_name})")

        counts = db.get_counts(utc_now())
        print(f"\nDue: {counts['due']} / Total: {counts['total']}")

        session = StudySession(db, db)
        session.start(mode=StudyMode.DUE)

        for rating in ("good", "again", "easy"):
            card = session.current_card
            result = session.rate(rating)
            print(f"\n{card.front} -> {rating}")
            print(f"   Next review: {result.schedule.due_at.strftime('%Y-%m-%d %H:%M')}")
            print(f"   Interval: {result.schedule.interval_days} days")

        tomorrow = utc_now() + timedelta(days=1)
        counts = db.get_counts(tomorrow)
        print(f"\nDue by tomorrow: {counts['due']}")
        print(f"Total reviews: {len(db.get_review_history())}")
        summary = db.get_review_summary(utc_now())
        print(f"Reviewed today: {summary['today']} / day streak: {summary['streak']}")

    finally:
        db.close()


if __name__ == "__main__":
    main()
