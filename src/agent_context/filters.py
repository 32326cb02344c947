"""Participant relevance filters and stable record orderings.

Shared by the timeline builder and the context assembler so both agree on
which records belong to a participant.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from .config import TimeWindow
from .models import EmotionalMemoryRecord


def involves_participant(record: EmotionalMemoryRecord, participant_id: str) -> bool:
    return participant_id in record.participant_ids


def is_relationally_relevant(record: EmotionalMemoryRecord) -> bool:
    """True when support/mood-repair patterns or relationship dynamics are present."""
    return (
        record.relationship_dynamics is not None
        or record.emotional_analysis.has_support_pattern()
    )


def is_relevant(
    record: EmotionalMemoryRecord,
    participant_id: str,
    relationship_scoped: bool = False,
) -> bool:
    if not involves_participant(record, participant_id):
        return False
    if relationship_scoped:
        return is_relationally_relevant(record)
    return True


def filter_relevant(
    records: Iterable[EmotionalMemoryRecord],
    participant_id: str,
    relationship_scoped: bool = False,
) -> list[EmotionalMemoryRecord]:
    return [
        r for r in records if is_relevant(r, participant_id, relationship_scoped)
    ]


def sort_by_recency(
    records: Iterable[EmotionalMemoryRecord],
) -> list[EmotionalMemoryRecord]:
    """Most recent first. Equal timestamps keep their input order."""
    return sorted(records, key=lambda r: r.timestamp, reverse=True)


def sort_chronologically(
    records: Iterable[EmotionalMemoryRecord],
) -> list[EmotionalMemoryRecord]:
    """Oldest first. Equal timestamps keep their input order."""
    return sorted(records, key=lambda r: r.timestamp)


TIME_WINDOW_DAYS: dict[str, int] = {
    "week": 7,
    "month": 30,
    "quarter": 90,
    "year": 365,
}


def time_window_span(window: TimeWindow) -> timedelta:
    return timedelta(days=TIME_WINDOW_DAYS[window])


def within_time_window(
    records: Iterable[EmotionalMemoryRecord],
    window: TimeWindow,
) -> list[EmotionalMemoryRecord]:
    """Records no older than ``window`` before the newest record.

    The cutoff is anchored on the data, not the wall clock, so the result
    only depends on the input.
    """
    records = list(records)
    if not records:
        return []
    cutoff = max(r.timestamp for r in records) - time_window_span(window)
    return [r for r in records if r.timestamp >= cutoff]
