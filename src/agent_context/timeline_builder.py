"""Relational timeline builder.

Turns a participant's memory records into a chronological event sequence,
a ranked set of key moments, an aggregate relationship summary and the
per-period evolution of the relationship.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timedelta
from statistics import fmean

from loguru import logger

from .config import TimelineConfig, TimeWindow
from .filters import (
    filter_relevant,
    sort_chronologically,
    time_window_span,
    within_time_window,
)
from .models import (
    NO_RELATIONSHIP_DYNAMICS,
    NO_TIMELINE_EVENTS,
    NO_TRAJECTORY_TREND,
    SUPPORT_PATTERNS,
    DataState,
    DeltaType,
    EmotionalDeltaSummary,
    EmotionalMemoryRecord,
    KeyMoment,
    MoodDelta,
    PatternType,
    RelationshipEvolution,
    RelationshipMetrics,
    RelationshipQuality,
    TimelineEvent,
    TimelineSummary,
)

KEY_DELTA_TYPES = frozenset({DeltaType.MOOD_REPAIR, DeltaType.CELEBRATION})
MIN_PERIOD_RECORDS = 2
MAX_COMMUNICATION_PATTERNS = 5


def describe_mood_state(score: float) -> str:
    if score >= 8:
        return "very positive"
    if score >= 6:
        return "positive"
    if score >= 4:
        return "neutral"
    if score >= 2:
        return "concerning"
    return "very low"


def _signed_magnitude(delta: MoodDelta) -> float:
    if delta.direction == "negative":
        return -abs(delta.magnitude)
    return abs(delta.magnitude)


def _truncate(text: str, limit: int = 100) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def trajectory_trend(events: Sequence[TimelineEvent], window: int = 5) -> str:
    """Label the emotional direction of the most recent events."""
    if not events:
        return NO_TRAJECTORY_TREND
    recent = events[-window:]
    positive = sum(1 for e in recent if e.emotional_impact > 0.5)
    negative = sum(1 for e in recent if e.emotional_impact < -0.5)
    if positive > negative:
        return "positive trajectory"
    if negative > positive:
        return "challenging period"
    return "mixed emotional landscape"


def format_relationship_summary(
    metrics: RelationshipMetrics | None, record_count: int
) -> str:
    if metrics is None:
        return NO_RELATIONSHIP_DYNAMICS
    summary = (
        f"Relationship quality {metrics.average_quality:.1f}/10, "
        f"trust {metrics.average_trust:.1f}/10, "
        f"stability {metrics.average_stability:.2f} "
        f"across {record_count} records."
    )
    if metrics.top_patterns:
        summary += f" Frequent patterns: {', '.join(metrics.top_patterns)}."
    return summary


def format_timeline_overview(
    events: Sequence[TimelineEvent],
    key_moments: Sequence[KeyMoment],
    evolution: Sequence[RelationshipEvolution],
) -> str:
    """Narrative over the full event sequence, key moments and latest period."""
    if not events:
        return NO_TIMELINE_EVENTS

    count = len(events)
    overview = f"Timeline contains {count} emotional event{'s' if count != 1 else ''}"

    if key_moments:
        top = max(key_moments, key=lambda m: (m.significance, m.timestamp))
        overview += (
            f" with {len(key_moments)} key moment{'s' if len(key_moments) != 1 else ''}"
            f", including a significant {top.type.replace('_', ' ')} event"
        )

    if evolution:
        average = evolution[-1].quality.average
        if average > 7:
            overview += ". Recent relationship dynamics show positive trends"
        elif average < 4:
            overview += ". Recent relationship dynamics indicate some challenges"
        else:
            overview += ". Relationship dynamics remain stable"

    type_counts = Counter(e.type for e in events)
    dominant = [t.replace("_", " ") for t, _ in type_counts.most_common(2)]
    overview += f". Primary patterns: {' and '.join(dominant)}"

    return overview + "."


def relationship_periods(
    ordered: Sequence[EmotionalMemoryRecord], window: TimeWindow
) -> list[tuple[datetime, datetime]]:
    """Split the oldest..newest span into consecutive quarter-window periods."""
    if not ordered:
        return []

    newest = ordered[-1].timestamp
    size = time_window_span(window) / 4
    periods: list[tuple[datetime, datetime]] = []
    start = ordered[0].timestamp
    while start < newest:
        end = min(start + size, newest)
        periods.append((start, end))
        start = end + timedelta(microseconds=1)
    return periods


def relationship_quality(records: Sequence[EmotionalMemoryRecord]) -> RelationshipQuality:
    # Records without dynamics count as neutral quality
    average = fmean(
        r.relationship_dynamics.quality if r.relationship_dynamics else 5.0
        for r in records
    )
    support_count = sum(
        1
        for r in records
        for p in r.emotional_analysis.patterns
        if p.type in SUPPORT_PATTERNS
    )
    return RelationshipQuality(
        support_level=round(min(10.0, average * (1 + support_count * 0.1)), 2),
        communication_clarity=round(average, 2),
        emotional_intimacy=round(average * 0.9, 2),
        conflict_resolution=round(min(10.0, average * 1.1), 2),
    )


def communication_patterns(records: Sequence[EmotionalMemoryRecord]) -> list[str]:
    patterns: dict[str, None] = {}
    for record in records:
        if record.relationship_dynamics:
            for pattern in record.relationship_dynamics.patterns:
                if pattern.strip():
                    patterns.setdefault(pattern.strip().lower(), None)
        for pattern in record.emotional_analysis.patterns:
            patterns.setdefault(pattern.type.value.replace("_", " "), None)
    return list(patterns)[:MAX_COMMUNICATION_PATTERNS]


def relationship_milestones(records: Sequence[EmotionalMemoryRecord]) -> list[str]:
    milestones = []
    if any(r.significance.overall > 7 for r in records):
        milestones.append("Significant emotional exchange")
    if any(
        p.type is PatternType.GROWTH
        for r in records
        for p in r.emotional_analysis.patterns
    ):
        milestones.append("Personal growth moment")
    return milestones


def deduplicate_events(
    records: Sequence[EmotionalMemoryRecord], events: Sequence[TimelineEvent]
) -> tuple[list[EmotionalMemoryRecord], list[TimelineEvent]]:
    """Drop events repeating an earlier (timestamp, type, participants) triple.

    ``records`` and ``events`` are parallel; the kept records are returned
    alongside the kept events.
    """
    seen: set[tuple[datetime, str, tuple[str, ...]]] = set()
    kept_records: list[EmotionalMemoryRecord] = []
    kept_events: list[TimelineEvent] = []
    for record, event in zip(records, events):
        key = (event.timestamp, event.type, tuple(sorted(record.participant_ids)))
        if key in seen:
            continue
        seen.add(key)
        kept_records.append(record)
        kept_events.append(event)
    return kept_records, kept_events


class TimelineBuilder:
    """Builds a chronological, relationship-aware emotional timeline."""

    def __init__(self, config: TimelineConfig | None = None):
        self.config = config or TimelineConfig()

    def build(
        self, records: Sequence[EmotionalMemoryRecord], participant_id: str
    ) -> TimelineSummary:
        """Build the timeline for ``participant_id`` from records in any order.

        Only records within ``config.time_window`` of the participant's newest
        record are used. Records producing a duplicate event (same timestamp,
        event type and participants) are dropped.
        """
        logger.info(
            f"Building timeline for participant={participant_id} "
            f"from {len(records)} records"
        )

        relevant = filter_relevant(
            records, participant_id, self.config.relationship_scoped
        )
        relevant = within_time_window(relevant, self.config.time_window)
        if not relevant:
            return TimelineSummary()

        ordered = sort_chronologically(relevant)
        ordered, events = deduplicate_events(
            ordered, [self._to_event(record) for record in ordered]
        )
        key_moments = self._key_moments(ordered)
        metrics = self._relationship_metrics(ordered)
        evolution = (
            self._relationship_evolution(ordered)
            if self.config.include_relationship_evolution
            else []
        )

        timeline = TimelineSummary(
            recent_events=events[-self.config.max_recent_events :],
            key_moments=key_moments,
            relationship_summary=format_relationship_summary(metrics, len(ordered)),
            relationship_metrics=metrics,
            trajectory_trend=trajectory_trend(events),
            overview=format_timeline_overview(events, key_moments, evolution),
            relationship_evolution=evolution,
            state=DataState.AVAILABLE,
        )

        logger.debug(
            f"Timeline built: events={len(timeline.recent_events)}/{len(events)}, "
            f"key_moments={len(key_moments)}, periods={len(evolution)}"
        )
        return timeline

    def _to_event(self, record: EmotionalMemoryRecord) -> TimelineEvent:
        analysis = record.emotional_analysis
        delta = analysis.mood_scoring.delta
        dynamics = record.relationship_dynamics
        significance = record.significance.overall
        valence = record.mood_score - 5.0

        if delta is not None and abs(delta.magnitude) > 1:
            return TimelineEvent(
                record_id=record.id,
                timestamp=record.timestamp,
                type="mood_change",
                description=f"Mood {delta.direction} shift: {delta.type.value}",
                emotional_impact=_signed_magnitude(delta),
                significance=significance,
            )

        if dynamics is not None and dynamics.quality > 7:
            event_type = "relationship_shift"
            description = "Positive relationship dynamics observed"
        elif significance > 8:
            event_type = "significant_moment"
            description = _truncate(record.content) or "Significant emotional exchange"
        elif analysis.has_support_pattern():
            support = next(p for p in analysis.patterns if p.type in SUPPORT_PATTERNS)
            event_type = "support_exchange"
            description = f"Support interaction: {support.type.value}"
        else:
            event_type = "interaction"
            description = _truncate(record.content) or "Emotional exchange"

        return TimelineEvent(
            record_id=record.id,
            timestamp=record.timestamp,
            type=event_type,
            description=description,
            emotional_impact=valence,
            significance=significance,
        )

    def _key_moments(self, ordered: list[EmotionalMemoryRecord]) -> list[KeyMoment]:
        moments: list[KeyMoment] = []
        for record in ordered:
            delta = record.emotional_analysis.mood_scoring.delta
            key_delta = delta is not None and delta.type in KEY_DELTA_TYPES
            if record.significance.overall <= self.config.key_moment_threshold and not key_delta:
                continue

            score = record.mood_score
            if delta is not None:
                emotional_delta = EmotionalDeltaSummary(
                    before=[describe_mood_state(score - _signed_magnitude(delta))],
                    after=[describe_mood_state(score)],
                    magnitude=abs(delta.magnitude),
                )
                factors = list(delta.factors)
            else:
                emotional_delta = EmotionalDeltaSummary(after=[describe_mood_state(score)])
                factors = list(record.emotional_analysis.context.themes)

            moments.append(
                KeyMoment(
                    record_id=record.id,
                    timestamp=record.timestamp,
                    type=delta.type.value if key_delta else "significant_moment",
                    description=_truncate(record.content) or "Key emotional moment",
                    significance=record.significance.overall,
                    factors=factors,
                    emotional_delta=emotional_delta,
                )
            )

        if len(moments) > self.config.max_key_moments:
            ranked = sorted(
                moments, key=lambda m: (m.significance, m.timestamp), reverse=True
            )
            moments = sorted(
                ranked[: self.config.max_key_moments], key=lambda m: m.timestamp
            )
        return moments

    def _relationship_metrics(
        self, ordered: list[EmotionalMemoryRecord]
    ) -> RelationshipMetrics | None:
        dynamics = [r.relationship_dynamics for r in ordered if r.relationship_dynamics]
        if not dynamics:
            return None

        pattern_counts: Counter[str] = Counter(
            p.strip().lower() for d in dynamics for p in d.patterns if p.strip()
        )
        return RelationshipMetrics(
            average_quality=round(fmean(d.quality for d in dynamics), 1),
            average_trust=round(fmean(d.trust for d in dynamics), 1),
            average_stability=round(fmean(d.stability for d in dynamics), 2),
            top_patterns=[
                p for p, _ in pattern_counts.most_common(self.config.max_relationship_patterns)
            ],
        )

    def _relationship_evolution(
        self, ordered: list[EmotionalMemoryRecord]
    ) -> list[RelationshipEvolution]:
        evolution: list[RelationshipEvolution] = []
        for start, end in relationship_periods(ordered, self.config.time_window):
            period = [r for r in ordered if start <= r.timestamp <= end]
            if len(period) < MIN_PERIOD_RECORDS:
                continue
            evolution.append(
                RelationshipEvolution(
                    period_start=start,
                    period_end=end,
                    quality=relationship_quality(period),
                    communication_patterns=communication_patterns(period),
                    milestones=relationship_milestones(period),
                )
            )
        return evolution
