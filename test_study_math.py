from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app.cards.spaced_repetition import (
    MAX_REVIEW_DATE,
    ReviewState,
    calculate_next_review,
    get_due_cards,
    get_quality_score,
    is_card_due,
    sort_cards_by_priority,
)

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def review_in_sequence(qualities, state=None):
    """Feed each result back in the way the study service does."""
    state = state or ReviewState(difficulty=2.5, review_count=0, correct_count=0)
    results = []
    for quality in qualities:
        result = calculate_next_review(state, quality, now=NOW)
        results.append(result)
        state = ReviewState(
            difficulty=result.difficulty,
            review_count=result.review_count,
            correct_count=result.correct_count,
        )
    return results


# ============== QUALITY SCORE ==============

@pytest.mark.parametrize("response_time, expected", [
    (2999, 5),
    (3000, 4),
    (4999, 4),
    (5000, 3),
    (9999, 3),
    (10000, 3),
    (60000, 3),
])
def test_quality_score_from_response_time(response_time, expected):
    assert get_quality_score(True, response_time) == expected


def test_quality_score_without_timing_defaults_to_good():
    assert get_quality_score(True) == 4
    assert get_quality_score(True, None) == 4
    assert get_quality_score(True, 0) == 4
    assert get_quality_score(True, float("nan")) == 4
    assert get_quality_score(True, float("inf")) == 4


@pytest.mark.parametrize("response_time", [None, 0, 500, 4000, 20000])
def test_wrong_answer_is_always_blackout(response_time):
    assert get_quality_score(False, response_time) == 0


# ============== NEXT REVIEW ==============

def test_first_review_good_answer():
    result = calculate_next_review(ReviewState(2.5, 0, 0), 4, now=NOW)

    assert result.interval == 1
    assert result.review_count == 1
    assert result.correct_count == 1
    assert result.difficulty == 2.5
    assert result.next_review_date == NOW + timedelta(days=1)


def test_first_review_ignores_stored_difficulty():
    result = calculate_next_review(ReviewState(difficulty=1.3, review_count=0, correct_count=0), 5, now=NOW)
    assert result.difficulty == 2.6


def test_two_perfect_answers_give_six_days():
    first, second = review_in_sequence([5, 5])

    assert first.interval == 1
    assert first.difficulty == 2.6
    assert second.interval == 6
    assert second.difficulty == 2.7
    assert second.correct_count == 2
    assert second.next_review_date == NOW + timedelta(days=6)


def test_third_success_multiplies_by_difficulty():
    third = review_in_sequence([5, 5, 5])[-1]

    assert third.difficulty == 2.8
    assert third.interval == round(6 * third.difficulty)
    assert third.interval == 17


def test_fourth_success_replays_previous_interval_with_current_difficulty():
    fourth = review_in_sequence([5, 5, 5, 5])[-1]

    # previous interval rebuilt as round(6 * 2.9) = 17, not the stored 17 from 2.8
    assert fourth.difficulty == 2.9
    assert fourth.interval == 49
    assert fourth.review_count == 4


@pytest.mark.parametrize("quality", [0, 1, 2])
def test_failure_resets_interval(quality):
    state = ReviewState(difficulty=2.5, review_count=8, correct_count=7)
    result = calculate_next_review(state, quality, now=NOW)

    assert result.interval == 1
    assert result.correct_count == 7
    assert result.review_count == 9
    assert result.difficulty < 2.5


def test_failure_lowers_difficulty_by_formula():
    result = calculate_next_review(ReviewState(2.5, 5, 4), 0, now=NOW)
    assert result.difficulty == 1.7


def test_success_after_failure_keeps_growing_from_correct_count():
    # correct_count is never reset, so the next success is the third one
    state = ReviewState(difficulty=2.5, review_count=3, correct_count=2)
    result = calculate_next_review(state, 4, now=NOW)

    assert result.correct_count == 3
    assert result.interval == 15


def test_difficulty_never_drops_below_floor():
    state = ReviewState(difficulty=1.3, review_count=10, correct_count=3)
    for quality in range(0, 6):
        result = calculate_next_review(state, quality, now=NOW)
        assert result.difficulty >= 1.3


def test_interval_is_positive_integer():
    for state in [ReviewState(2.5, 0, 0), ReviewState(1.3, 20, 15), ReviewState(3.1, 4, 1)]:
        for quality in range(0, 6):
            result = calculate_next_review(state, quality, now=NOW)
            assert isinstance(result.interval, int)
            assert result.interval >= 1


def test_quality_out_of_range_is_clamped():
    state = ReviewState(difficulty=2.5, review_count=2, correct_count=1)

    assert calculate_next_review(state, 9, now=NOW) == calculate_next_review(state, 5, now=NOW)
    assert calculate_next_review(state, -4, now=NOW) == calculate_next_review(state, 0, now=NOW)
    assert calculate_next_review(state, float("nan"), now=NOW) == calculate_next_review(state, 0, now=NOW)


def test_bad_counters_and_difficulty_are_corrected():
    state = ReviewState(difficulty=float("inf"), review_count=-3, correct_count=-1)
    result = calculate_next_review(state, 4, now=NOW)

    assert result.difficulty == 2.5
    assert result.review_count == 1
    assert result.correct_count == 1
    assert result.interval == 1


def test_difficulty_rounded_to_two_decimals():
    result = calculate_next_review(ReviewState(2.123, 1, 1), 4, now=NOW)
    assert result.difficulty == 2.12


def test_next_review_date_uses_current_time_by_default():
    before = datetime.now(timezone.utc)
    result = calculate_next_review(ReviewState(2.5, 0, 0), 4)
    after = datetime.now(timezone.utc)

    assert before + timedelta(days=1) <= result.next_review_date <= after + timedelta(days=1)


# ============== DUE CARDS ==============

def test_card_due_exactly_now_is_due():
    assert is_card_due(NOW, now=NOW)
    assert is_card_due(NOW - timedelta(days=3), now=NOW)
    assert not is_card_due(NOW + timedelta(microseconds=1), now=NOW)


def test_is_card_due_accepts_strings_and_naive_datetimes():
    assert is_card_due("2024-03-10T12:00:00Z", now=NOW)
    assert is_card_due("2024-03-10T11:59:59+00:00", now=NOW)
    assert not is_card_due("2024-03-10T13:00:00", now=NOW)
    assert is_card_due(datetime(2024, 3, 10, 12, 0), now=NOW)


def test_is_card_due_rejects_garbage_dates():
    with pytest.raises(ValueError):
        is_card_due("next tuesday", now=NOW)


def test_get_due_cards_keeps_order_and_input():
    cards = [
        {"id": 1, "next_review_date": "2024-03-12T00:00:00Z"},
        {"id": 2, "next_review_date": "2024-03-01T00:00:00Z"},
        {"id": 3, "next_review_date": "2024-03-10T12:00:00Z"},
        {"id": 4, "next_review_date": "2024-04-01T00:00:00Z"},
    ]
    snapshot = list(cards)

    due = get_due_cards(cards, now=NOW)

    assert [card["id"] for card in due] == [2, 3]
    assert cards == snapshot
    assert get_due_cards(due, now=NOW) == due
    assert get_due_cards([], now=NOW) == []


def test_get_due_cards_reads_attributes():
    class Card:
        def __init__(self, next_review_date):
            self.next_review_date = next_review_date

    cards = [Card(NOW - timedelta(hours=1)), Card(NOW + timedelta(hours=1))]
    assert get_due_cards(cards, now=NOW) == [cards[0]]


# ============== PRIORITY SORT ==============

def make_card(card_id, due_in_days, created_days_ago, difficulty=2.5):
    return {
        "id": card_id,
        "next_review_date": NOW + timedelta(days=due_in_days),
        "created_at": NOW - timedelta(days=created_days_ago),
        "difficulty": difficulty,
    }


def test_overdue_cards_sorted_oldest_created_first():
    cards = [
        make_card("recent", due_in_days=-5, created_days_ago=1),
        make_card("old", due_in_days=-1, created_days_ago=30),
    ]
    assert [c["id"] for c in sort_cards_by_priority(cards, now=NOW)] == ["old", "recent"]


def test_overdue_card_beats_not_yet_due_card():
    cards = [
        make_card("future", due_in_days=2, created_days_ago=100),
        make_card("overdue", due_in_days=-1, created_days_ago=1),
    ]
    assert [c["id"] for c in sort_cards_by_priority(cards, now=NOW)] == ["overdue", "future"]


def test_card_due_right_now_counts_as_overdue():
    cards = [
        make_card("later", due_in_days=1, created_days_ago=50),
        make_card("now", due_in_days=0, created_days_ago=1),
    ]
    assert [c["id"] for c in sort_cards_by_priority(cards, now=NOW)] == ["now", "later"]


def test_difficulty_does_not_affect_order():
    cards = [
        make_card("easy", due_in_days=-1, created_days_ago=2, difficulty=3.0),
        make_card("hard", due_in_days=-1, created_days_ago=1, difficulty=1.3),
    ]
    assert [c["id"] for c in sort_cards_by_priority(cards, now=NOW)] == ["easy", "hard"]


def test_mixed_queue_order_and_input_untouched():
    cards = [
        make_card("a", due_in_days=3, created_days_ago=5),
        make_card("b", due_in_days=-2, created_days_ago=3),
        make_card("c", due_in_days=1, created_days_ago=9),
        make_card("d", due_in_days=-7, created_days_ago=4),
    ]
    original_ids = [c["id"] for c in cards]

    ordered = sort_cards_by_priority(cards, now=NOW)

    assert [c["id"] for c in ordered] == ["d", "b", "c", "a"]
    assert [c["id"] for c in cards] == original_ids


def test_sort_is_stable_for_identical_cards():
    cards = [make_card(i, due_in_days=-1, created_days_ago=1) for i in range(5)]
    assert [c["id"] for c in sort_cards_by_priority(cards, now=NOW)] == [0, 1, 2, 3, 4]


# ============== LONG HISTORIES ==============

def test_thirty_perfect_answers_never_raise():
    results = review_in_sequence([5] * 30)
    days_left = (date.max - NOW.date()).days

    assert results[-1].review_count == 30
    assert results[-1].correct_count == 30
    for previous, result in zip(results, results[1:]):
        assert isinstance(result.interval, int)
        assert result.interval >= previous.interval
        assert result.difficulty > previous.difficulty

    for result in results:
        if result.interval <= days_left:
            assert result.next_review_date == NOW + timedelta(days=result.interval)
        else:
            assert result.next_review_date == MAX_REVIEW_DATE
    assert results[-1].next_review_date == MAX_REVIEW_DATE


def test_long_history_at_difficulty_floor():
    result = calculate_next_review(ReviewState(1.3, 150, 120), 4, now=NOW)

    assert result.difficulty == 1.3
    assert result.correct_count == 121
    assert isinstance(result.interval, int)
    assert result.interval > 10 ** 9
    assert result.next_review_date == MAX_REVIEW_DATE


def test_interval_past_float_range_stays_exact_integer():
    result = calculate_next_review(ReviewState(5.0, 600, 500), 5, now=NOW)

    assert isinstance(result.interval, int)
    assert result.interval > 10 ** 308
    assert result.next_review_date == MAX_REVIEW_DATE


# ============== TIMEZONES ==============

def test_next_review_adds_calendar_days_across_dst():
    # New York switches to daylight time on 2024-03-10
    local_now = datetime(2024, 3, 9, 12, 0, tzinfo=ZoneInfo("America/New_York"))

    result = calculate_next_review(ReviewState(2.5, 0, 0), 4, now=local_now)

    assert result.next_review_date == datetime(2024, 3, 10, 16, 0, tzinfo=timezone.utc)
    assert result.next_review_date.tzinfo == timezone.utc


def test_naive_now_is_treated_as_utc():
    result = calculate_next_review(ReviewState(2.5, 0, 0), 4, now=datetime(2024, 3, 10, 12, 0))
    assert result.next_review_date == NOW + timedelta(days=1)
