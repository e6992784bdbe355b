import logging
import math
import random
from typing import List, Dict, Optional
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from app.cards.models import Flashcard, StudySession
from app.cards.spaced_repetition import (
    as_utc,
    calculate_next_review,
    get_due_cards,
    get_quality_score,
    sort_cards_by_priority,
    utcnow,
)

logger = logging.getLogger(__name__)


class StudyMode:
    DUE = "due"
    NORMAL = "normal"
    SHUFFLE = "shuffle"
    LEARNING = "learning"

    ALL = (DUE, NORMAL, SHUFFLE, LEARNING)


class StudyService:
    """Service for building study queues and recording answers."""

    @staticmethod
    def build_study_queue(
        deck_id: int,
        db: Session,
        mode: str = StudyMode.NORMAL,
        card_ids: Optional[List[int]] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Flashcard]:
        """
        Build the ordered list of cards for a study session.

        Modes:
            due: only cards whose review date has arrived, most urgent first
            normal: every card in the deck, most urgent first
            shuffle: every card in the deck, random order
            learning: only the given card_ids (cards still being learned)

        Raises:
            ValueError: unknown mode, or learning mode without card_ids
        """
        if mode not in StudyMode.ALL:
            raise ValueError(f"Invalid study mode: {mode}")

        now = now or utcnow()
        query = db.query(Flashcard).filter(Flashcard.deck_id == deck_id)

        if mode == StudyMode.LEARNING:
            if not card_ids:
                raise ValueError("card_ids are required for learning mode")
            query = query.filter(Flashcard.id.in_(card_ids))

        cards = query.all()

        if mode == StudyMode.SHUFFLE:
            random.shuffle(cards)
        else:
            if mode == StudyMode.DUE:
                cards = get_due_cards(cards, now=now)
            cards = sort_cards_by_priority(cards, now=now)

        if limit is not None:
            cards = cards[:limit]

        logger.info(f"Built {mode} study queue for deck {deck_id} with {len(cards)} cards")
        return cards

    @staticmethod
    def save_card_response(
        card: Flashcard,
        was_correct: bool,
        response_time_ms: Optional[float],
        db: Session,
        now: Optional[datetime] = None,
    ) -> Dict:
        """
        Record an answer and reschedule the card with SM-2.

        Args:
            card: The answered flashcard
            was_correct: Whether the user knew the card
            response_time_ms: How long the user took to answer (optional)
            db: Database session
            now: Reference time, defaults to the current UTC time

        Returns:
            The new scheduling data. If saving it fails, a counters-only
            fallback is written instead and "fallback" is set.
        """
        now = now or utcnow()
        # Non-finite timings are dropped like a missing timing
        if response_time_ms is not None and not math.isfinite(response_time_ms):
            response_time_ms = None
        response_time = round(response_time_ms) if response_time_ms is not None else None

        try:
            quality = get_quality_score(was_correct, response_time_ms)
            result = calculate_next_review(card.review_state(), quality, now=now)

            difficulty_before = card.difficulty
            card.difficulty = result.difficulty
            card.next_review_date = result.next_review_date
            card.review_count = result.review_count
            card.correct_count = result.correct_count
            card.last_review_date = now

            db.add(StudySession(
                deck_id=card.deck_id,
                flashcard_id=card.id,
                was_correct=was_correct,
                response_time_ms=response_time,
                difficulty_before=difficulty_before,
                difficulty_after=result.difficulty,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error saving study data for card {card.id}: {e}")
            return StudyService._save_fallback_response(card, was_correct, response_time, db, now)

        logger.info(f"Card {card.id} scheduled in {result.interval} days (quality {quality})")
        return {
            "saved": True,
            "fallback": False,
            "quality": quality,
            "interval": result.interval,
            "difficulty": result.difficulty,
            "next_review_date": result.next_review_date,
            "review_count": result.review_count,
            "correct_count": result.correct_count,
        }

    @staticmethod
    def _save_fallback_response(
        card: Flashcard,
        was_correct: bool,
        response_time: Optional[int],
        db: Session,
        now: datetime,
    ) -> Dict:
        """Bump the counters without rescheduling; never raises."""
        try:
            card.review_count = (card.review_count or 0) + 1
            if was_correct:
                card.correct_count = (card.correct_count or 0) + 1
            card.last_review_date = now

            db.add(StudySession(
                deck_id=card.deck_id,
                flashcard_id=card.id,
                was_correct=was_correct,
                response_time_ms=response_time,
                difficulty_before=card.difficulty,
                difficulty_after=card.difficulty,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Fallback save also failed for card {card.id}: {e}")
            return {"saved": False, "fallback": True}

        logger.warning(f"Card {card.id} saved without rescheduling")
        return {
            "saved": True,
            "fallback": True,
            "review_count": card.review_count,
            "correct_count": card.correct_count,
        }

    @staticmethod
    def get_study_stats(deck_id: int, db: Session, now: Optional[datetime] = None) -> Dict:
        """
        Get study statistics for a deck.

        Returns:
            {
                "total": cards in the deck,
                "new": cards never reviewed,
                "due": cards due for review,
                "reviewed_today": cards reviewed since midnight (UTC),
                "accuracy": share of correct answers in the session log
            }
        """
        now = as_utc(now) if now is not None else utcnow()
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        cards = db.query(Flashcard).filter(Flashcard.deck_id == deck_id).all()

        new_count = sum(1 for card in cards if not card.review_count)
        due_count = len(get_due_cards(cards, now=now))
        reviewed_today = sum(
            1 for card in cards
            if card.last_review_date is not None and as_utc(card.last_review_date) >= today_start
        )

        answered = db.query(func.count(StudySession.id)).filter(
            StudySession.deck_id == deck_id
        ).scalar() or 0
        correct = db.query(func.count(StudySession.id)).filter(
            StudySession.deck_id == deck_id,
            StudySession.was_correct.is_(True)
        ).scalar() or 0

        return {
            "total": len(cards),
            "new": new_count,
            "due": due_count,
            "reviewed_today": reviewed_today,
            "accuracy": round(correct / answered, 4) if answered else 0.0,
        }

    @staticmethod
    def get_session_history(deck_id: int, db: Session, limit: int = 50) -> List[StudySession]:
        """Latest answers recorded for a deck, newest first."""
        return (
            db.query(StudySession)
            .filter(StudySession.deck_id == deck_id)
            .order_by(StudySession.created_at.desc(), StudySession.id.desc())
            .limit(limit)
            .all()
        )
