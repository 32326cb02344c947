"""Agent context data models.

Input side: ``EmotionalMemoryRecord`` as produced by the upstream extractor.
Output side: the per-component results and the ``AgentContextBundle``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import InvalidRecordError

NO_MOOD_HISTORY = "No emotional history available."
INSUFFICIENT_TRAJECTORY = "Insufficient data for trajectory analysis."
NO_TIMELINE_DATA = "No timeline data available."
NO_RELATIONSHIP_DYNAMICS = "No relationship dynamics recorded."
NO_TRAJECTORY_TREND = "no data available"
NO_TIMELINE_EVENTS = "No emotional events available for timeline construction."


# ---------------------------------------------------------------------------
# Input records
# ---------------------------------------------------------------------------


class ParticipantRole(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    MENTIONED = "mentioned"
    OBSERVER = "observer"


class PatternType(str, Enum):
    SUPPORT_SEEKING = "support_seeking"
    MOOD_REPAIR = "mood_repair"
    CELEBRATION = "celebration"
    VULNERABILITY = "vulnerability"
    GROWTH = "growth"


class DeltaType(str, Enum):
    MOOD_REPAIR = "mood_repair"
    CELEBRATION = "celebration"
    DECLINE = "decline"
    PLATEAU = "plateau"


SUPPORT_PATTERNS = frozenset({PatternType.SUPPORT_SEEKING, PatternType.MOOD_REPAIR})


class Participant(BaseModel):
    """A person taking part in (or referenced by) a conversation."""

    id: str
    name: str = ""
    role: ParticipantRole = ParticipantRole.PRIMARY


class EmotionalContext(BaseModel):
    primary_emotion: str = ""
    intensity: float = Field(default=5.0, ge=0.0, le=10.0)
    valence: str = "neutral"
    arousal: str = "medium"
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    themes: list[str] = Field(default_factory=list)


class MoodDelta(BaseModel):
    """A detected jump between temporally adjacent mood scores."""

    magnitude: float
    direction: Literal["positive", "negative", "neutral"] = "neutral"
    type: DeltaType
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    factors: list[str] = Field(default_factory=list)


class MoodScoring(BaseModel):
    score: float = Field(default=5.0, ge=0.0, le=10.0)
    descriptors: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    delta: MoodDelta | None = None


class EmotionalPattern(BaseModel):
    type: PatternType
    significance: float = Field(default=5.0, ge=0.0, le=10.0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class EmotionalAnalysis(BaseModel):
    context: EmotionalContext = Field(default_factory=EmotionalContext)
    mood_scoring: MoodScoring = Field(default_factory=MoodScoring)
    patterns: list[EmotionalPattern] = Field(default_factory=list)

    def has_support_pattern(self) -> bool:
        return any(p.type in SUPPORT_PATTERNS for p in self.patterns)


class RelationshipDynamics(BaseModel):
    """Relationship quality indicators attached to a record (0-10 scales)."""

    quality: float = Field(default=5.0, ge=0.0, le=10.0)
    trust: float = Field(default=5.0, ge=0.0, le=10.0)
    intimacy: float = Field(default=5.0, ge=0.0, le=10.0)
    patterns: list[str] = Field(default_factory=list)
    stability: float = Field(default=0.5, ge=0.0, le=1.0)


class SignificanceComponents(BaseModel):
    emotional_salience: float = Field(default=5.0, ge=0.0, le=10.0)
    relationship_impact: float = Field(default=5.0, ge=0.0, le=10.0)
    contextual_importance: float = Field(default=5.0, ge=0.0, le=10.0)
    temporal_relevance: float = Field(default=5.0, ge=0.0, le=10.0)


class Significance(BaseModel):
    overall: float = Field(default=5.0, ge=0.0, le=10.0)
    components: SignificanceComponents = Field(default_factory=SignificanceComponents)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    category: Literal["low", "medium", "high"] | None = None

    @model_validator(mode="after")
    def _derive_category(self) -> "Significance":
        if self.category is None:
            if self.overall >= 7:
                self.category = "high"
            elif self.overall >= 4:
                self.category = "medium"
            else:
                self.category = "low"
        return self


class ProcessingQuality(BaseModel):
    overall: float = Field(default=5.0, ge=0.0, le=10.0)
    emotional_richness: float = Field(default=5.0, ge=0.0, le=10.0)
    relationship_clarity: float = Field(default=5.0, ge=0.0, le=10.0)
    content_coherence: float = Field(default=5.0, ge=0.0, le=10.0)


class ProcessingMetadata(BaseModel):
    extracted_at: datetime | None = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    quality: ProcessingQuality = Field(default_factory=ProcessingQuality)


class EmotionalMemoryRecord(BaseModel):
    """An emotional memory produced by the upstream extractor.

    Only ``id`` and ``timestamp`` are required; everything else falls back to
    neutral defaults (mood score 5, empty themes/descriptors).
    """

    id: str = Field(min_length=1)
    timestamp: datetime
    content: str = ""
    participants: list[Participant] = Field(default_factory=list)
    emotional_analysis: EmotionalAnalysis = Field(default_factory=EmotionalAnalysis)
    relationship_dynamics: RelationshipDynamics | None = None
    significance: Significance = Field(default_factory=Significance)
    processing: ProcessingMetadata = Field(default_factory=ProcessingMetadata)

    @field_validator("timestamp")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def participant_ids(self) -> list[str]:
        return [p.id for p in self.participants]

    @property
    def mood_score(self) -> float:
        return self.emotional_analysis.mood_scoring.score


def coerce_record(raw: EmotionalMemoryRecord | Mapping[str, Any]) -> EmotionalMemoryRecord:
    """Validate a single record.

    Raises:
        InvalidRecordError: If the record cannot satisfy the model contract.
    """
    if isinstance(raw, EmotionalMemoryRecord):
        return raw
    if not isinstance(raw, Mapping):
        raise InvalidRecordError("record", f"unsupported type {type(raw).__name__}")
    try:
        return EmotionalMemoryRecord.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(loc) for loc in first["loc"]) or "record"
        raise InvalidRecordError(location, first["msg"]) from e


def coerce_records(
    records: Iterable[EmotionalMemoryRecord | Mapping[str, Any]],
) -> list[EmotionalMemoryRecord]:
    """Validate a batch, skipping records that violate the contract."""
    valid: list[EmotionalMemoryRecord] = []
    for index, raw in enumerate(records):
        try:
            valid.append(coerce_record(raw))
        except InvalidRecordError as e:
            logger.warning(f"Skipping memory record #{index}: {e}")
    return valid


# ---------------------------------------------------------------------------
# Component outputs
# ---------------------------------------------------------------------------


class DataState(str, Enum):
    """How much data backed a component output."""

    AVAILABLE = "available"
    INSUFFICIENT = "insufficient_data"
    EMPTY = "empty"


TrendDirection = Literal["improving", "declining", "stable", "volatile"]


class CurrentMood(BaseModel):
    score: float = 5.0
    descriptors: list[str] = Field(default_factory=lambda: ["neutral"])
    confidence: float = 0.0


class MoodTrend(BaseModel):
    direction: TrendDirection = "stable"
    magnitude: float = Field(default=0.0, ge=0.0)
    duration: str = "no_data"


class MoodContext(BaseModel):
    current_mood: CurrentMood = Field(default_factory=CurrentMood)
    mood_trend: MoodTrend = Field(default_factory=MoodTrend)
    recent_mood_tags: list[str] = Field(default_factory=list)
    trajectory_overview: str = NO_MOOD_HISTORY
    state: DataState = DataState.EMPTY


EventType = Literal[
    "mood_change",
    "relationship_shift",
    "significant_moment",
    "support_exchange",
    "interaction",
]


class TimelineEvent(BaseModel):
    record_id: str
    timestamp: datetime
    type: EventType
    description: str
    emotional_impact: float
    significance: float


class EmotionalDeltaSummary(BaseModel):
    before: list[str] = Field(default_factory=list)
    after: list[str] = Field(default_factory=list)
    magnitude: float = 0.0


class KeyMoment(BaseModel):
    record_id: str
    timestamp: datetime
    type: str
    description: str
    significance: float
    factors: list[str] = Field(default_factory=list)
    emotional_delta: EmotionalDeltaSummary = Field(default_factory=EmotionalDeltaSummary)


class RelationshipMetrics(BaseModel):
    average_quality: float
    average_trust: float
    average_stability: float
    top_patterns: list[str] = Field(default_factory=list)


class RelationshipQuality(BaseModel):
    support_level: float = 5.0
    communication_clarity: float = 5.0
    emotional_intimacy: float = 5.0
    conflict_resolution: float = 5.0

    @property
    def average(self) -> float:
        return (
            self.support_level
            + self.communication_clarity
            + self.emotional_intimacy
            + self.conflict_resolution
        ) / 4


class RelationshipEvolution(BaseModel):
    """Relationship quality and milestones within one time period."""

    period_start: datetime
    period_end: datetime
    quality: RelationshipQuality = Field(default_factory=RelationshipQuality)
    communication_patterns: list[str] = Field(default_factory=list)
    milestones: list[str] = Field(default_factory=list)


class TimelineSummary(BaseModel):
    recent_events: list[TimelineEvent] = Field(default_factory=list)
    key_moments: list[KeyMoment] = Field(default_factory=list)
    relationship_summary: str = NO_TIMELINE_DATA
    relationship_metrics: RelationshipMetrics | None = None
    trajectory_trend: str = NO_TRAJECTORY_TREND
    overview: str = NO_TIMELINE_EVENTS
    relationship_evolution: list[RelationshipEvolution] = Field(default_factory=list)
    state: DataState = DataState.EMPTY


Expressiveness = Literal["direct", "metaphorical", "analytical", "emotional"]


class CommunicationStyle(BaseModel):
    tone: list[str] = Field(default_factory=lambda: ["neutral"])
    expressiveness: Expressiveness = "direct"
    support_language: list[str] = Field(default_factory=list)


class VocabularyEvolution(BaseModel):
    period_start: datetime
    period_end: datetime
    new_terms: list[str] = Field(default_factory=list)
    increasing_terms: list[str] = Field(default_factory=list)
    decreasing_terms: list[str] = Field(default_factory=list)


class EmotionalVocabulary(BaseModel):
    themes: list[str] = Field(default_factory=list)
    mood_descriptors: list[str] = Field(default_factory=lambda: ["neutral"])
    relationship_terms: list[str] = Field(default_factory=list)
    communication_style: CommunicationStyle = Field(default_factory=CommunicationStyle)
    evolution: list[VocabularyEvolution] = Field(default_factory=list)
    state: DataState = DataState.EMPTY


class QualityMetrics(BaseModel):
    completeness: float = 0.0
    relevance: float = 0.0
    recency: float = 0.0
    coherence: float = 0.0


class ContextOptimization(BaseModel):
    token_count: int = 0
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    quality_metrics: QualityMetrics = Field(default_factory=QualityMetrics)
    applied_optimizations: list[str] = Field(default_factory=list)


Approach = Literal["supportive", "analytical", "celebratory", "empathetic"]
ResponseLength = Literal["brief", "moderate", "detailed"]


class Recommendations(BaseModel):
    tone: list[str] = Field(default_factory=lambda: ["balanced", "thoughtful"])
    approach: Approach = "supportive"
    emphasize: list[str] = Field(default_factory=lambda: ["current context"])
    avoid: list[str] = Field(default_factory=lambda: ["assumptions"])
    response_length: ResponseLength = "moderate"


class AgentContextBundle(BaseModel):
    """Structured context handed to the downstream conversational agent."""

    participant_id: str
    conversation_goal: str | None = None
    mood_context: MoodContext = Field(default_factory=MoodContext)
    timeline_summary: TimelineSummary = Field(default_factory=TimelineSummary)
    vocabulary: EmotionalVocabulary = Field(default_factory=EmotionalVocabulary)
    optimization: ContextOptimization = Field(default_factory=ContextOptimization)
    recommendations: Recommendations = Field(default_factory=Recommendations)

    def serialize_content(self) -> str:
        """JSON of everything except the optimization block (used for sizing)."""
        return self.model_dump_json(exclude={"optimization"})
