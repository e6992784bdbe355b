"""
SM-2 spaced repetition scheduling.

Pure functions only: callers read review state from storage, pass it in,
and persist what comes back. Every function that needs the current time
accepts an optional ``now`` so tests can pin the clock.
"""
import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from fractions import Fraction
from functools import cmp_to_key
from typing import Any, Iterable, List, Optional, Union

INITIAL_DIFFICULTY = 2.5
MIN_DIFFICULTY = 1.3
MIN_QUALITY = 0
MAX_QUALITY = 5
PASSING_QUALITY = 3

FIRST_INTERVAL = 1  # days
SECOND_INTERVAL = 6  # days

# Intervals too long for a datetime schedule the card here
MAX_REVIEW_DATE = datetime.max.replace(tzinfo=timezone.utc)

DateLike = Union[datetime, str]


@dataclass(frozen=True)
class ReviewState:
    """Review data stored per flashcard."""
    difficulty: float = INITIAL_DIFFICULTY
    review_count: int = 0
    correct_count: int = 0
    last_review_date: Optional[datetime] = None


@dataclass(frozen=True)
class SchedulingResult:
    difficulty: float
    interval: int
    next_review_date: datetime
    review_count: int
    correct_count: int


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: DateLike) -> datetime:
    """
    Normalize a datetime or ISO-8601 string to an aware UTC datetime.

    Naive values are taken to be UTC already (that is how they are stored).
    Raises ValueError for strings that are not ISO-8601.
    """
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _round_half_up(value: float) -> int:
    # round() is banker's rounding; intervals round .5 up
    return math.floor(value + 0.5)


def _grow_interval(interval: int, difficulty: float) -> int:
    """Multiply an interval by the difficulty, rounding half up."""
    try:
        product = interval * difficulty
    except OverflowError:
        product = math.inf
    if math.isinf(product):
        # Past float range: same rounding, exact arithmetic
        return math.floor(interval * Fraction(difficulty) + Fraction(1, 2))
    return _round_half_up(product)


def _add_days(now: datetime, days: int) -> datetime:
    """
    Add calendar days in the timezone of ``now``, then normalize to UTC.

    Saturates at MAX_REVIEW_DATE instead of overflowing.
    """
    try:
        return as_utc(now + timedelta(days=days))
    except OverflowError:
        return MAX_REVIEW_DATE


def _round_difficulty(value: float) -> float:
    return math.floor(value * 100 + 0.5) / 100


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def _clamp_quality(quality: float) -> float:
    if not isinstance(quality, (int, float)) or math.isnan(quality):
        return MIN_QUALITY
    return max(MIN_QUALITY, min(MAX_QUALITY, quality))


def _count(value: Any) -> int:
    if not _is_number(value):
        return 0
    return max(0, int(value))


def _field(card: Any, name: str) -> Any:
    if isinstance(card, Mapping):
        return card[name]
    return getattr(card, name)


def get_quality_score(was_correct: bool, response_time_ms: Optional[float] = None) -> int:
    """
    Convert a user response to an SM-2 quality score.

    Args:
        was_correct: Whether the user answered correctly
        response_time_ms: Response time in milliseconds (optional)

    Returns:
        Quality score (0-5)
            0 = Complete blackout
            3 = Correct with difficulty, or slow
            4 = Correct with hesitation (default without timing)
            5 = Perfect response
    """
    if not was_correct:
        return 0

    # Zero or non-finite timing is treated the same as no timing at all
    if response_time_ms and math.isfinite(response_time_ms):
        if response_time_ms < 3000:
            return 5
        if response_time_ms < 5000:
            return 4
        return 3

    return 4


def _previous_interval(correct_count: int, difficulty: float) -> int:
    """
    Rebuild the interval that preceded ``correct_count`` successes.

    Interval history is not stored, so the 1 -> 6 -> x difficulty growth is
    replayed with the current difficulty.
    """
    if correct_count <= 1:
        return FIRST_INTERVAL
    interval = SECOND_INTERVAL
    for _ in range(3, correct_count + 1):
        interval = _grow_interval(interval, difficulty)
    return interval


def calculate_next_review(
    state: ReviewState,
    quality: float,
    now: Optional[datetime] = None,
) -> SchedulingResult:
    """
    Calculate the next review parameters using the SM-2 algorithm.

    Args:
        state: Current review data of the flashcard
        quality: Quality of response (0-5, where 3+ is correct)
        now: Reference time, defaults to the current UTC time

    Returns:
        SchedulingResult with the updated difficulty, interval in days,
        next review date and counters
    """
    quality = _clamp_quality(quality)
    review_count = _count(state.review_count)
    correct_count = _count(state.correct_count)

    difficulty = state.difficulty
    if review_count == 0 or not _is_number(difficulty):
        difficulty = INITIAL_DIFFICULTY

    difficulty = max(
        MIN_DIFFICULTY,
        difficulty + (0.1 - (5 - quality) * (0.08 + (5 - quality) * 0.02)),
    )

    if quality < PASSING_QUALITY:
        # Failed - back to one day, correct count untouched
        interval = FIRST_INTERVAL
    else:
        correct_count += 1
        if correct_count == 1:
            interval = FIRST_INTERVAL
        elif correct_count == 2:
            interval = SECOND_INTERVAL
        else:
            previous = _previous_interval(correct_count - 1, difficulty)
            interval = _grow_interval(previous, difficulty)

    if now is None:
        now = utcnow()
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    return SchedulingResult(
        difficulty=_round_difficulty(difficulty),
        interval=interval,
        next_review_date=_add_days(now, interval),
        review_count=review_count + 1,
        correct_count=correct_count,
    )


def is_card_due(next_review_date: DateLike, now: Optional[datetime] = None) -> bool:
    """Check if a flashcard is due for review (due exactly at ``now`` counts)."""
    now = as_utc(now) if now is not None else utcnow()
    return now >= as_utc(next_review_date)


def get_due_cards(cards: Iterable[Any], now: Optional[datetime] = None) -> List[Any]:
    """
    Get the cards that are due for review, keeping their original order.

    Cards may be mappings or objects exposing ``next_review_date``.
    """
    now = as_utc(now) if now is not None else utcnow()
    return [card for card in cards if is_card_due(_field(card, "next_review_date"), now)]


def sort_cards_by_priority(cards: Iterable[Any], now: Optional[datetime] = None) -> List[Any]:
    """
    Sort flashcards by review priority.

    Overdue cards come before cards that are not due yet. Inside each of
    those two groups the oldest card (by ``created_at``) comes first.
    ``difficulty`` is not part of the ordering.

    Returns a new list; the input is left untouched.
    """
    now = as_utc(now) if now is not None else utcnow()

    def overdue_seconds(card: Any) -> float:
        return (now - as_utc(_field(card, "next_review_date"))).total_seconds()

    def compare(a: Any, b: Any) -> float:
        a_overdue = overdue_seconds(a)
        b_overdue = overdue_seconds(b)

        if (a_overdue >= 0) == (b_overdue >= 0):
            a_created = as_utc(_field(a, "created_at"))
            b_created = as_utc(_field(b, "created_at"))
            return (a_created - b_created).total_seconds()

        return b_overdue - a_overdue

    return sorted(cards, key=cmp_to_key(compare))
