"""Context assembler.

Runs the mood tokenizer, timeline builder and vocabulary extractor over a
participant's records and merges their outputs into an ``AgentContextBundle``
with token sizing, relevance scoring and response recommendations.

Entry points:
- ``assemble_context``: build (or fetch from cache) a bundle
- ``optimize_context_size``: shrink a bundle to a token budget
- ``validate_context_quality``: score a bundle in [0, 1]
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

from loguru import logger

from .cache import ContextCache, InMemoryContextCache, NullContextCache
from .config import ContextEngineConfig, DetailLevel
from .filters import (
    filter_relevant,
    involves_participant,
    sort_by_recency,
    within_time_window,
)
from .models import (
    AgentContextBundle,
    ContextOptimization,
    DataState,
    EmotionalMemoryRecord,
    EmotionalVocabulary,
    MoodContext,
    QualityMetrics,
    Recommendations,
    TimelineSummary,
    coerce_records,
)
from .mood_tokenizer import MoodTokenizer, shorten_trajectory
from .timeline_builder import TimelineBuilder
from .token_counter import TokenCounter
from .vocabulary_extractor import VocabularyExtractor

RECENCY_DECAY = 0.85
BASIC_DETAIL_LIMIT = 5
VOCABULARY_LIMITS = (5, 3, 1)

SIZE_REDUCTION = "size_reduction"
VOCABULARY_TRIMMED = "vocabulary_trimmed"
TIMELINE_KEY_MOMENTS_ONLY = "timeline_key_moments_only"
TRAJECTORY_SHORTENED = "trajectory_shortened"


def build_cache_key(
    participant_id: str,
    conversation_goal: str | None,
    records: Sequence[EmotionalMemoryRecord],
    detail_level: DetailLevel,
) -> str:
    """Composite key: participant, goal, input fingerprint and detail level.

    The fingerprint is the record count plus the newest timestamp. Parts are
    JSON-encoded so delimiter characters inside ids or goals cannot collide.
    """
    newest = max((r.timestamp for r in records), default=None)
    return json.dumps(
        [
            participant_id,
            conversation_goal,
            len(records),
            newest.isoformat() if newest else None,
            detail_level,
        ],
        ensure_ascii=False,
    )


def recency_weighted_mean(values: Sequence[float], decay: float = RECENCY_DECAY) -> float:
    """Mean of newest-first ``values`` weighted by ``decay ** rank``."""
    if not values:
        return 0.0
    weights = [decay**rank for rank in range(len(values))]
    return sum(v * w for v, w in zip(values, weights)) / sum(weights)


def relevant_fraction(
    records: Sequence[EmotionalMemoryRecord],
    participant_id: str,
    threshold: float,
) -> float:
    """Share of records that involve the participant at or above ``threshold``."""
    if not records:
        return 0.0
    meeting = sum(
        1
        for r in records
        if involves_participant(r, participant_id)
        and r.significance.overall >= threshold * 10
    )
    return meeting / len(records)


def relevance_score(
    records: Sequence[EmotionalMemoryRecord],
    participant_id: str,
    threshold: float,
) -> float:
    """Blend of relevant-record fraction and recency-weighted record quality.

    Args:
        records: All valid records passed to the assembler
        participant_id: Participant the context is built for
        threshold: Relevance threshold in [0, 1]; compared against
            ``significance.overall / 10``

    Returns:
        Score in [0, 1], rounded to 2 decimals
    """
    if not records:
        return 0.0

    fraction = relevant_fraction(records, participant_id, threshold)
    involved = sort_by_recency(
        r for r in records if involves_participant(r, participant_id)
    )
    weighted_quality = recency_weighted_mean(
        [(r.significance.overall / 10) * r.processing.confidence for r in involved]
    )

    score = 0.5 * fraction + 0.5 * weighted_quality
    return round(min(max(score, 0.0), 1.0), 2)


def _clamp(value: float) -> float:
    return round(min(max(value, 0.0), 1.0), 2)


def quality_metrics(
    working_set: Sequence[EmotionalMemoryRecord],
    mood: MoodContext,
    timeline: TimelineSummary,
    vocabulary: EmotionalVocabulary,
    relevance_fraction: float,
) -> QualityMetrics:
    """Completeness, relevance, recency and coherence of an assembled context."""
    if not working_set:
        return QualityMetrics()

    state_weight = {
        DataState.AVAILABLE: 1.0,
        DataState.INSUFFICIENT: 0.5,
        DataState.EMPTY: 0.0,
    }
    completeness = (
        state_weight[mood.state]
        + state_weight[timeline.state]
        + state_weight[vocabulary.state]
    ) / 3

    newest_first = sort_by_recency(working_set)
    recency = recency_weighted_mean(
        [r.significance.components.temporal_relevance / 10 for r in newest_first]
    )
    coherence = sum(
        r.processing.quality.content_coherence / 10 for r in working_set
    ) / len(working_set)

    return QualityMetrics(
        completeness=_clamp(completeness),
        relevance=_clamp(relevance_fraction),
        recency=_clamp(recency),
        coherence=_clamp(coherence),
    )


def _extend_unique(target: list[str], items: Sequence[str]) -> None:
    for item in items:
        if item not in target:
            target.append(item)


class ContextAssembler:
    """Assembles agent context bundles from emotional memory records.

    Components:
    - Mood tokenizer (current mood, trend, trajectory narrative)
    - Timeline builder (events, key moments, relationship summary)
    - Vocabulary extractor (themes, descriptors, communication style)

    All collaborators are injectable; defaults are built from ``config``.
    """

    def __init__(
        self,
        config: ContextEngineConfig | None = None,
        mood_tokenizer: MoodTokenizer | None = None,
        timeline_builder: TimelineBuilder | None = None,
        vocabulary_extractor: VocabularyExtractor | None = None,
        cache: ContextCache | None = None,
        token_counter: TokenCounter | None = None,
    ):
        """Initialize context assembler.

        Args:
            config: Engine configuration (uses defaults if not provided)
            mood_tokenizer: Mood tokenizer leaf
            timeline_builder: Timeline builder leaf
            vocabulary_extractor: Vocabulary extractor leaf
            cache: Bundle cache; defaults to an in-memory cache, or a null
                cache when ``config.cache.enabled`` is False
            token_counter: Token estimator for bundle sizing
        """
        self.config = config or ContextEngineConfig()
        self.mood_tokenizer = mood_tokenizer or MoodTokenizer(self.config.mood)
        self.timeline_builder = timeline_builder or TimelineBuilder(self.config.timeline)
        self.vocabulary_extractor = vocabulary_extractor or VocabularyExtractor(
            self.config.vocabulary
        )
        if cache is None:
            cache = (
                InMemoryContextCache(maxsize=self.config.cache.max_entries)
                if self.config.cache.enabled
                else NullContextCache()
            )
        self.cache = cache
        self.token_counter = token_counter or TokenCounter()

        logger.debug(
            f"ContextAssembler initialized: cache={type(self.cache).__name__}, "
            f"assembler config: {self.config.assembler.model_dump()}"
        )

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    async def assemble_context(
        self,
        records: Sequence[EmotionalMemoryRecord | Mapping[str, Any]],
        participant_id: str,
        conversation_goal: str | None = None,
        detail_level: DetailLevel | None = None,
    ) -> AgentContextBundle:
        """Assemble a context bundle for ``participant_id``.

        Args:
            records: Memory records in any order; invalid entries are skipped.
                Unless ``include_historical`` is set, only records within
                ``time_window`` of the participant's newest record are used
            participant_id: Participant the context is built for
            conversation_goal: Free-text goal steering the recommendations
            detail_level: Overrides ``config.assembler.detail_level``

        Returns:
            AgentContextBundle (the cached one on a cache hit)
        """
        settings = self.config.assembler
        detail = detail_level or settings.detail_level

        valid = coerce_records(records)
        logger.info(
            f"Assembling context for participant={participant_id}: "
            f"{len(valid)}/{len(records)} valid records, detail={detail}"
        )

        key = build_cache_key(participant_id, conversation_goal, valid, detail)
        cached = await self._cache_get(key)
        if cached is not None:
            logger.debug(f"Context cache hit: {key}")
            return cached

        working = filter_relevant(
            valid, participant_id, self.config.timeline.relationship_scoped
        )
        if not settings.include_historical:
            working = within_time_window(working, settings.time_window)
        if settings.prioritize_recent:
            working = sort_by_recency(working)[: settings.recent_bias_limit]

        if not working:
            logger.info(
                f"No relevant records for participant={participant_id}, "
                "returning empty context"
            )
            bundle = self._finalize(
                AgentContextBundle(
                    participant_id=participant_id,
                    conversation_goal=conversation_goal,
                ),
                relevance=relevance_score(
                    valid, participant_id, settings.relevance_threshold
                ),
                metrics=QualityMetrics(),
            )
        else:
            bundle = self._assemble(
                working, valid, participant_id, conversation_goal, detail
            )

        await self._cache_set(key, bundle)
        return bundle

    def _assemble(
        self,
        working: list[EmotionalMemoryRecord],
        valid: list[EmotionalMemoryRecord],
        participant_id: str,
        conversation_goal: str | None,
        detail: DetailLevel,
    ) -> AgentContextBundle:
        mood = self.mood_tokenizer.generate(working)
        timeline = self.timeline_builder.build(working, participant_id)
        vocabulary = self.vocabulary_extractor.extract(
            working,
            participant_id,
            include_evolution=True if detail == "detailed" else None,
        )

        if detail == "basic":
            timeline, vocabulary = self._apply_basic_detail(timeline, vocabulary)

        threshold = self.config.assembler.relevance_threshold
        relevance = relevance_score(valid, participant_id, threshold)
        fraction = relevant_fraction(valid, participant_id, threshold)

        bundle = AgentContextBundle(
            participant_id=participant_id,
            conversation_goal=conversation_goal,
            mood_context=mood,
            timeline_summary=timeline,
            vocabulary=vocabulary,
            recommendations=self.generate_recommendations(
                mood, timeline, vocabulary, conversation_goal
            ),
        )
        return self._finalize(
            bundle,
            relevance=relevance,
            metrics=quality_metrics(working, mood, timeline, vocabulary, fraction),
        )

    def _finalize(
        self,
        bundle: AgentContextBundle,
        relevance: float,
        metrics: QualityMetrics,
    ) -> AgentContextBundle:
        """Attach optimization metadata to a freshly merged bundle."""
        bundle.optimization = ContextOptimization(
            token_count=self.estimate_tokens(bundle),
            relevance_score=relevance,
            quality_metrics=metrics,
        )
        logger.debug(
            f"Assembled context: tokens={bundle.optimization.token_count}, "
            f"relevance={relevance}, approach={bundle.recommendations.approach}"
        )
        return bundle

    @staticmethod
    def _apply_basic_detail(
        timeline: TimelineSummary, vocabulary: EmotionalVocabulary
    ) -> tuple[TimelineSummary, EmotionalVocabulary]:
        limit = BASIC_DETAIL_LIMIT
        timeline = timeline.model_copy(
            update={
                "recent_events": timeline.recent_events[-limit:],
                "relationship_evolution": timeline.relationship_evolution[-1:],
            }
        )
        vocabulary = vocabulary.model_copy(
            update={
                "themes": vocabulary.themes[:limit],
                "mood_descriptors": vocabulary.mood_descriptors[:limit],
                "relationship_terms": vocabulary.relationship_terms[:limit],
            }
        )
        return timeline, vocabulary

    def estimate_tokens(self, bundle: AgentContextBundle) -> int:
        """Token estimate of the bundle content (optimization block excluded)."""
        return self.token_counter.count(bundle.serialize_content())

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def generate_recommendations(
        self,
        mood: MoodContext,
        timeline: TimelineSummary,
        vocabulary: EmotionalVocabulary,
        conversation_goal: str | None = None,
    ) -> Recommendations:
        """Derive response guidance from the merged mood and timeline signals."""
        if not self.config.assembler.include_recommendations:
            return Recommendations()

        score = mood.current_mood.score
        direction = mood.mood_trend.direction
        goal = (conversation_goal or "").lower()

        tone = ["balanced", "thoughtful"]
        approach = "supportive"
        avoid = ["assumptions"]
        response_length = "moderate"

        low_mood = score <= 4 or direction == "declining"
        if low_mood:
            tone = ["supportive", "gentle", "understanding"]
            approach = "empathetic"
            avoid = ["criticism", "pressure", "complex topics"]
        elif score >= 7:
            tone = ["positive", "encouraging"]
            approach = "celebratory"

        if "analyze" in goal:
            approach = "analytical"
            response_length = "detailed"
        elif "celebrate" in goal and not low_mood:
            approach = "celebratory"

        if direction == "volatile" or score <= 3:
            response_length = "brief"
            _extend_unique(avoid, ["complex topics", "major decisions"])

        emphasize = list(vocabulary.themes[:3])
        if timeline.key_moments:
            emphasize.append("positive moments")

        return Recommendations(
            tone=tone,
            approach=approach,
            emphasize=emphasize or ["current context"],
            avoid=avoid,
            response_length=response_length,
        )

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    def optimize_context_size(
        self, bundle: AgentContextBundle, max_tokens: int | None = None
    ) -> AgentContextBundle:
        """Shrink a bundle until its token estimate fits ``max_tokens``.

        Reductions run in a fixed order and stop as soon as the budget is met:
        vocabulary caps (5, 3, then 1 term per list), timeline trimmed to key
        moments without relationship periods, then the trajectory narrative
        cut to its first clause.

        Args:
            bundle: Bundle to shrink (never mutated)
            max_tokens: Token ceiling (defaults to ``config.assembler.max_tokens``)

        Returns:
            The same bundle when already within budget, otherwise a reduced copy
            listing the applied reductions
        """
        limit = max_tokens if max_tokens is not None else self.config.assembler.max_tokens
        tokens = self.estimate_tokens(bundle)
        if tokens <= limit:
            logger.debug(f"Context within budget ({tokens}/{limit} tokens)")
            return bundle

        original_tokens = tokens
        working = bundle.model_copy(deep=True)
        applied = [SIZE_REDUCTION]

        for vocabulary_limit in VOCABULARY_LIMITS:
            working.vocabulary = self._cap_vocabulary(working.vocabulary, vocabulary_limit)
            if VOCABULARY_TRIMMED not in applied:
                applied.append(VOCABULARY_TRIMMED)
            tokens = self.estimate_tokens(working)
            if tokens <= limit:
                break

        if tokens > limit:
            working.timeline_summary = self._key_moments_only(working.timeline_summary)
            applied.append(TIMELINE_KEY_MOMENTS_ONLY)
            tokens = self.estimate_tokens(working)

        if tokens > limit:
            mood = working.mood_context
            working.mood_context = mood.model_copy(
                update={"trajectory_overview": shorten_trajectory(mood.trajectory_overview)}
            )
            applied.append(TRAJECTORY_SHORTENED)
            tokens = self.estimate_tokens(working)

        if tokens > limit:
            logger.warning(
                f"Context still over budget after all reductions: "
                f"{tokens}/{limit} tokens"
            )

        working.optimization = working.optimization.model_copy(
            update={"token_count": tokens, "applied_optimizations": applied}
        )
        logger.info(
            f"Optimized context for participant={bundle.participant_id}: "
            f"{original_tokens} -> {tokens} tokens, applied={applied}"
        )
        return working

    @staticmethod
    def _cap_vocabulary(
        vocabulary: EmotionalVocabulary, limit: int
    ) -> EmotionalVocabulary:
        style = vocabulary.communication_style
        return vocabulary.model_copy(
            update={
                "themes": vocabulary.themes[:limit],
                "mood_descriptors": vocabulary.mood_descriptors[:limit],
                "relationship_terms": vocabulary.relationship_terms[:limit],
                "communication_style": style.model_copy(
                    update={"support_language": style.support_language[:limit]}
                ),
                "evolution": vocabulary.evolution[:limit],
            }
        )

    @staticmethod
    def _key_moments_only(timeline: TimelineSummary) -> TimelineSummary:
        key_ids = {moment.record_id for moment in timeline.key_moments}
        return timeline.model_copy(
            update={
                "recent_events": [
                    e for e in timeline.recent_events if e.record_id in key_ids
                ],
                "relationship_evolution": [],
            }
        )

    # ------------------------------------------------------------------
    # Quality
    # ------------------------------------------------------------------

    @staticmethod
    def validate_context_quality(bundle: AgentContextBundle) -> float:
        """Score a bundle in [0, 1].

        Weights: 0.1 per non-empty component, 0.25 x relevance,
        0.25 x mood confidence, 0.2 when a key moment exists.
        """
        score = 0.0
        for state in (
            bundle.mood_context.state,
            bundle.timeline_summary.state,
            bundle.vocabulary.state,
        ):
            if state is not DataState.EMPTY:
                score += 0.1

        score += 0.25 * bundle.optimization.relevance_score
        score += 0.25 * bundle.mood_context.current_mood.confidence
        if bundle.timeline_summary.key_moments:
            score += 0.2

        return _clamp(score)

    # ------------------------------------------------------------------
    # Cache access
    # ------------------------------------------------------------------

    async def _cache_get(self, key: str) -> AgentContextBundle | None:
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning(f"Context cache read failed, recomputing ({key}): {e}")
            return None

    async def _cache_set(self, key: str, bundle: AgentContextBundle) -> None:
        try:
            await self.cache.set(key, bundle, self.config.cache.ttl_seconds)
        except Exception as e:
            logger.warning(f"Context cache write failed ({key}): {e}")
