"""Mood context tokenizer.

Summarizes the current emotional state, the trend direction/magnitude and a
short trajectory narrative from a participant's memory records.

The numeric analysis (``linear_slope``, ``sign_change_rate``, ``classify_trend``)
is kept apart from the narrative formatting (``format_trajectory``,
``shorten_trajectory``) so either can change without touching the other.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Sequence
from datetime import datetime

from loguru import logger

from .config import MoodConfig
from .filters import sort_by_recency
from .models import (
    INSUFFICIENT_TRAJECTORY,
    NO_MOOD_HISTORY,
    CurrentMood,
    DataState,
    EmotionalMemoryRecord,
    MoodContext,
    MoodTrend,
    TrendDirection,
)

_TRAJECTORY_PHRASES: dict[str, str] = {
    "improving": "shows improvement",
    "declining": "shows some decline",
    "stable": "remains relatively stable",
    "volatile": "is fluctuating sharply",
}

_CLAUSE_END = re.compile(r"\s*[(;]|\.(?:\s|$)")


def _normalize(term: str) -> str:
    return term.strip().lower()


def linear_slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    mean_x = (n - 1) / 2
    mean_y = sum(values) / n
    numerator = sum((i - mean_x) * (v - mean_y) for i, v in enumerate(values))
    denominator = sum((i - mean_x) ** 2 for i in range(n))
    return numerator / denominator


def sign_change_rate(values: Sequence[float], min_swing: float = 0.0) -> float:
    """Fraction of consecutive non-zero deltas that flip sign.

    A flip only counts when either of its two deltas exceeds ``min_swing``.
    """
    deltas = [b - a for a, b in zip(values, values[1:]) if b != a]
    if len(deltas) < 2:
        return 0.0
    changes = sum(
        1
        for prev, curr in zip(deltas, deltas[1:])
        if prev * curr < 0 and max(abs(prev), abs(curr)) > min_swing
    )
    return changes / (len(deltas) - 1)


def classify_trend(
    scores: Sequence[float], config: MoodConfig
) -> tuple[TrendDirection, float]:
    """Classify an oldest-to-newest mood-score sequence.

    Volatility overrides improving/declining. Magnitude is the absolute
    trailing slope.
    """
    slope = linear_slope(scores[-config.trend_window :])
    magnitude = round(abs(slope), 2)

    if (
        len(scores) >= 3
        and sign_change_rate(scores, config.volatility_min_swing)
        > config.volatility_threshold
    ):
        return "volatile", magnitude
    if slope > config.improving_threshold:
        return "improving", magnitude
    if slope < config.declining_threshold:
        return "declining", magnitude
    return "stable", magnitude


def describe_timespan(oldest: datetime, newest: datetime) -> str:
    days = (newest - oldest).total_seconds() / 86400
    if days < 1:
        return "hours"
    if days < 7:
        return f"{math.ceil(days)}d"
    if days < 30:
        return f"{math.ceil(days / 7)}w"
    return f"{math.ceil(days / 30)}mo"


def format_trajectory(
    direction: str,
    magnitude: float,
    record_count: int,
    key_patterns: Sequence[str] = (),
    min_records: int = 3,
) -> str:
    """Render the trajectory narrative from already-computed trend values."""
    if record_count == 0:
        return NO_MOOD_HISTORY
    if record_count < min_records:
        return INSUFFICIENT_TRAJECTORY

    phrase = _TRAJECTORY_PHRASES.get(direction, _TRAJECTORY_PHRASES["stable"])
    overview = (
        f"Emotional trajectory {phrase} "
        f"(trend magnitude {magnitude:.2f} across {record_count} records)."
    )
    if key_patterns:
        overview += f" Key patterns: {', '.join(key_patterns)}."
    else:
        overview += " No distinct emotional patterns identified in recent history."
    return overview


def shorten_trajectory(text: str) -> str:
    """Reduce a narrative to its first clause."""
    match = _CLAUSE_END.search(text)
    if not match:
        return text
    clause = text[: match.start()].rstrip()
    return f"{clause}." if clause else text


class MoodTokenizer:
    """Generates mood context tokens for agent consumption."""

    def __init__(self, config: MoodConfig | None = None):
        self.config = config or MoodConfig()

    def generate(self, records: Sequence[EmotionalMemoryRecord]) -> MoodContext:
        """Generate mood context from memory records (any order)."""
        logger.info(f"Generating mood context from {len(records)} records")

        if not records:
            return MoodContext()

        newest_first = sort_by_recency(records)
        window = newest_first[: self.config.mood_window]

        scores = [r.mood_score for r in reversed(newest_first)]
        direction, magnitude = classify_trend(scores, self.config)
        if len(newest_first) < 2:
            duration = "single_point"
        else:
            duration = describe_timespan(
                newest_first[-1].timestamp, newest_first[0].timestamp
            )

        state = (
            DataState.AVAILABLE
            if len(records) >= self.config.min_trajectory_records
            else DataState.INSUFFICIENT
        )

        mood_context = MoodContext(
            current_mood=self._current_mood(window),
            mood_trend=MoodTrend(
                direction=direction, magnitude=magnitude, duration=duration
            ),
            recent_mood_tags=self._recent_mood_tags(window),
            trajectory_overview=format_trajectory(
                direction,
                magnitude,
                len(records),
                self._key_patterns(newest_first),
                self.config.min_trajectory_records,
            ),
            state=state,
        )

        logger.debug(
            f"Mood context: score={mood_context.current_mood.score}, "
            f"trend={direction}({magnitude}), state={state.value}"
        )
        return mood_context

    def _current_mood(self, window: list[EmotionalMemoryRecord]) -> CurrentMood:
        scorings = [r.emotional_analysis.mood_scoring for r in window]
        total_weight = sum(s.confidence for s in scorings)
        if total_weight > 0:
            score = sum(s.score * s.confidence for s in scorings) / total_weight
        else:
            score = sum(s.score for s in scorings) / len(scorings)

        counts: Counter[str] = Counter(
            _normalize(d) for s in scorings for d in s.descriptors if d.strip()
        )
        descriptors = [d for d, _ in counts.most_common(self.config.max_descriptors)]

        mean_confidence = total_weight / len(scorings)
        coverage = min(len(window) / self.config.mood_window, 1.0)

        return CurrentMood(
            score=round(score, 1),
            descriptors=descriptors or ["neutral"],
            confidence=round(mean_confidence * coverage, 2),
        )

    def _recent_mood_tags(self, window: list[EmotionalMemoryRecord]) -> list[str]:
        tags: dict[str, None] = {}
        for record in window:
            analysis = record.emotional_analysis
            for tag in (*analysis.mood_scoring.descriptors, *analysis.context.themes):
                if tag.strip():
                    tags.setdefault(_normalize(tag), None)
        return list(tags)[: self.config.max_mood_tags]

    @staticmethod
    def _key_patterns(records: list[EmotionalMemoryRecord]) -> list[str]:
        counts: Counter[str] = Counter(
            p.type.value for r in records for p in r.emotional_analysis.patterns
        )
        return [
            pattern.replace("_", " ")
            for pattern, count in counts.most_common()
            if count >= 2
        ][:3]
