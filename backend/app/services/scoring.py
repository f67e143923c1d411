"""Completion scoring: percentage, accuracy, performance band, recommendations."""

import math
from collections.abc import Sequence
from typing import Any

# Performance bands, highest first: (minimum percentage, label)
PERFORMANCE_BANDS: tuple[tuple[int, str], ...] = (
    (90, "Excellent"),
    (80, "Good"),
    (70, "Satisfactory"),
    (60, "Needs Improvement"),
)
LOWEST_BAND = "Poor"

LOW_SCORE_THRESHOLD = 70
SLOW_COMPLETION_FACTOR = 1.5


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (0.5 -> 1)."""
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def percentage_score(score: int, max_possible_score: int) -> int:
    """Score as a whole percentage of the maximum, clamped to [0, 100]."""
    if max_possible_score <= 0:
        return 0
    pct = round_half_up(100 * score / max_possible_score)
    return max(0, min(100, pct))


def accuracy(step_performance: Sequence[dict[str, Any]]) -> int:
    """Correct steps as a whole percentage of attempted steps."""
    attempted = len(step_performance)
    if attempted == 0:
        return 0
    correct = sum(1 for entry in step_performance if entry["is_correct"])
    return round_half_up(100 * correct / attempted)


def performance_band(pct: int) -> str:
    for threshold, label in PERFORMANCE_BANDS:
        if pct >= threshold:
            return label
    return LOWEST_BAND


def recommendations(
    pct: int,
    time_spent_seconds: int,
    expected_duration_seconds: int,
    step_performance: Sequence[dict[str, Any]],
    specialty: str,
) -> list[str]:
    """Deterministic improvement pointers for a finished session."""
    advice: list[str] = []

    if pct < LOW_SCORE_THRESHOLD:
        advice.append("Review the case learning objectives")
        advice.append(f"Study more about {specialty}")

    if time_spent_seconds > expected_duration_seconds * SLOW_COMPLETION_FACTOR:
        advice.append("Practice similar cases to improve speed")

    if any(not entry["is_correct"] for entry in step_performance):
        advice.append("Review clinical reasoning for diagnostic steps")

    return advice
