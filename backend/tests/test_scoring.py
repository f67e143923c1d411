"""Tests for completion scoring."""

import pytest

from app.services.scoring import (
    accuracy,
    percentage_score,
    performance_band,
    recommendations,
    round_half_up,
)


def _outcome(is_correct: bool) -> dict:
    return {"step_id": "s", "is_correct": is_correct}


@pytest.mark.parametrize(
    "value,expected",
    [(0.5, 1), (1.5, 2), (2.5, 3), (2.4999, 2), (66.66, 67), (0, 0)],
)
def test_round_half_up(value: float, expected: int) -> None:
    assert round_half_up(value) == expected


@pytest.mark.parametrize(
    "score,max_score,expected",
    [(10, 20, 50), (20, 20, 100), (0, 20, 0), (1, 3, 33), (2, 3, 67), (25, 20, 100), (5, 0, 0)],
)
def test_percentage_score(score: int, max_score: int, expected: int) -> None:
    assert percentage_score(score, max_score) == expected


def test_accuracy_counts_correct_steps() -> None:
    assert accuracy([_outcome(True), _outcome(False), _outcome(True)]) == 67
    assert accuracy([]) == 0


@pytest.mark.parametrize(
    "pct,band",
    [(100, "Excellent"), (90, "Excellent"), (89, "Good"), (80, "Good"), (79, "Satisfactory"),
     (70, "Satisfactory"), (60, "Needs Improvement"), (59, "Poor"), (0, "Poor")],
)
def test_performance_band_thresholds(pct: int, band: str) -> None:
    assert performance_band(pct) == band


def test_recommendations_for_perfect_fast_run_are_empty() -> None:
    assert recommendations(100, 300, 600, [_outcome(True)], "cardiology") == []


def test_recommendations_for_low_slow_run() -> None:
    advice = recommendations(50, 901, 600, [_outcome(True), _outcome(False)], "cardiology")

    assert advice == [
        "Review the case learning objectives",
        "Study more about cardiology",
        "Practice similar cases to improve speed",
        "Review clinical reasoning for diagnostic steps",
    ]


def test_speed_threshold_is_exclusive() -> None:
    assert recommendations(100, 900, 600, [], "neurology") == []
