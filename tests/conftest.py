"""
Agent Context Test Fixtures
Shared record factories for the component tests.
"""
import itertools
from datetime import datetime, timedelta, timezone

import pytest

from agent_context.models import (
    EmotionalAnalysis,
    EmotionalContext,
    EmotionalMemoryRecord,
    EmotionalPattern,
    MoodScoring,
    Participant,
    ProcessingMetadata,
    Significance,
)

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def make_record():
    """Factory for EmotionalMemoryRecord with neutral defaults.

    ``day`` offsets the timestamp from BASE_TIME; ids auto-increment.
    """
    counter = itertools.count(1)

    def _make(
        day=0,
        score=5.0,
        *,
        record_id=None,
        participant_ids=("alice",),
        descriptors=(),
        themes=(),
        significance=5.0,
        confidence=0.8,
        patterns=(),
        delta=None,
        dynamics=None,
        content="",
        primary_emotion="",
        processing_confidence=0.8,
    ):
        n = next(counter)
        return EmotionalMemoryRecord(
            id=record_id or f"rec-{n}",
            timestamp=BASE_TIME + timedelta(days=day),
            content=content,
            participants=[
                Participant(id=pid, name=pid.title()) for pid in participant_ids
            ],
            emotional_analysis=EmotionalAnalysis(
                context=EmotionalContext(
                    primary_emotion=primary_emotion, themes=list(themes)
                ),
                mood_scoring=MoodScoring(
                    score=score,
                    descriptors=list(descriptors),
                    confidence=confidence,
                    delta=delta,
                ),
                patterns=[
                    p if isinstance(p, EmotionalPattern)
                    else EmotionalPattern(type=p, significance=7.0)
                    for p in patterns
                ],
            ),
            relationship_dynamics=dynamics,
            significance=Significance(overall=significance),
            processing=ProcessingMetadata(confidence=processing_confidence),
        )

    return _make


@pytest.fixture
def make_series(make_record):
    """One record per day with the given mood scores (oldest first)."""

    def _series(scores, **kwargs):
        return [make_record(day=i, score=s, **kwargs) for i, s in enumerate(scores)]

    return _series
