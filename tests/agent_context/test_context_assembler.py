"""Tests for ContextAssembler assembly, optimization, caching and quality."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_context.assembler import (
    ContextAssembler,
    build_cache_key,
    recency_weighted_mean,
    relevance_score,
)
from agent_context.cache import InMemoryContextCache, NullContextCache
from agent_context.config import ContextEngineConfig
from agent_context.exceptions import CacheError
from agent_context.models import (
    NO_TIMELINE_DATA,
    CurrentMood,
    DataState,
    EmotionalVocabulary,
    KeyMoment,
    MoodContext,
    MoodTrend,
    Recommendations,
    RelationshipDynamics,
    TimelineSummary,
)
from agent_context.mood_tokenizer import MoodTokenizer
from agent_context.timeline_builder import TimelineBuilder
from agent_context.token_counter import TokenCounter
from agent_context.vocabulary_extractor import VocabularyExtractor


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def assembler():
    return ContextAssembler()


@pytest.fixture
def populated_records(make_record):
    """Six records for alice with themes, descriptors and key moments."""
    return [
        make_record(
            day=0,
            score=5,
            descriptors=["calm"],
            themes=["work"],
            significance=6.0,
            dynamics=RelationshipDynamics(quality=7, patterns=["supportive"]),
            content="Talked through a long week at work.",
        ),
        make_record(
            day=1,
            score=6,
            descriptors=["hopeful"],
            themes=["work", "family"],
            significance=7.0,
            content="Dinner with family helped a lot.",
        ),
        make_record(
            day=2,
            score=7,
            descriptors=["hopeful", "calm"],
            themes=["family"],
            significance=9.0,
            patterns=["growth"],
            content="Got the promotion and called home right away.",
        ),
        make_record(
            day=3,
            score=7,
            descriptors=["grateful"],
            themes=["friends"],
            patterns=["support_seeking"],
            content="A friend said I'm here for you when things got hard.",
        ),
        make_record(
            day=4,
            score=8,
            descriptors=["joyful"],
            themes=["family", "travel"],
            significance=8.0,
            content="Planning a trip feels like a fresh start.",
        ),
        make_record(
            day=5,
            score=6,
            descriptors=["calm"],
            themes=["travel"],
            significance=6.0,
            participant_ids=("alice", "bob"),
            content="Booked the tickets together.",
        ),
    ]


def _spied_assembler(config=None, cache=None):
    config = config or ContextEngineConfig()
    mood = MagicMock(wraps=MoodTokenizer(config.mood))
    timeline = MagicMock(wraps=TimelineBuilder(config.timeline))
    vocabulary = MagicMock(wraps=VocabularyExtractor(config.vocabulary))
    assembler = ContextAssembler(
        config,
        mood_tokenizer=mood,
        timeline_builder=timeline,
        vocabulary_extractor=vocabulary,
        cache=cache,
    )
    return assembler, mood, timeline, vocabulary


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_empty_records_yield_sentinel_bundle(assembler):
    bundle = await assembler.assemble_context([], "alice")

    assert bundle.participant_id == "alice"
    assert bundle.mood_context.current_mood.score == 5.0
    assert bundle.mood_context.current_mood.descriptors == ["neutral"]
    assert bundle.timeline_summary.relationship_summary == NO_TIMELINE_DATA
    assert bundle.vocabulary.themes == []
    assert bundle.recommendations == Recommendations()
    assert bundle.recommendations.approach == "supportive"
    assert bundle.optimization.relevance_score == 0.0
    assert assembler.validate_context_quality(bundle) < 0.5


@pytest.mark.asyncio
async def test_unrelated_records_yield_sentinel_bundle(assembler, make_record):
    records = [make_record(day=d, participant_ids=("bob",)) for d in range(4)]
    bundle = await assembler.assemble_context(records, "alice")

    assert bundle.timeline_summary.relationship_summary == NO_TIMELINE_DATA
    assert bundle.mood_context.state is DataState.EMPTY
    assert assembler.validate_context_quality(bundle) < 0.5


@pytest.mark.asyncio
async def test_populated_bundle(assembler, populated_records):
    bundle = await assembler.assemble_context(
        populated_records, "alice", conversation_goal="catch up"
    )

    assert bundle.conversation_goal == "catch up"
    assert bundle.mood_context.state is DataState.AVAILABLE
    assert len(bundle.timeline_summary.recent_events) == 6
    assert bundle.timeline_summary.key_moments
    assert "family" in bundle.vocabulary.themes
    assert 0.0 < bundle.optimization.relevance_score <= 1.0
    assert bundle.optimization.applied_optimizations == []
    assert assembler.validate_context_quality(bundle) > 0.5


@pytest.mark.asyncio
async def test_token_count_matches_serialized_content(assembler, populated_records):
    bundle = await assembler.assemble_context(populated_records, "alice")

    expected = TokenCounter().count(bundle.serialize_content())
    assert bundle.optimization.token_count == expected


@pytest.mark.asyncio
async def test_invalid_records_are_skipped(assembler, populated_records):
    records = [
        *populated_records,
        {"timestamp": "2024-03-02T10:00:00Z", "participants": [{"id": "alice"}]},
        {"id": "broken", "timestamp": "not a date"},
    ]
    bundle = await assembler.assemble_context(records, "alice")

    assert len(bundle.timeline_summary.recent_events) == len(populated_records)


@pytest.mark.asyncio
async def test_raw_mappings_are_accepted(assembler):
    records = [
        {
            "id": f"raw-{i}",
            "timestamp": f"2024-03-0{i + 1}T10:00:00Z",
            "participants": [{"id": "alice"}],
            "emotional_analysis": {"mood_scoring": {"score": 4 + i}},
        }
        for i in range(4)
    ]
    bundle = await assembler.assemble_context(records, "alice")

    assert bundle.mood_context.mood_trend.direction == "improving"


@pytest.mark.asyncio
async def test_recent_bias_limit(make_series):
    config = ContextEngineConfig(assembler={"recent_bias_limit": 3})
    assembler = ContextAssembler(config)

    bundle = await assembler.assemble_context(make_series([5] * 8), "alice")

    assert len(bundle.timeline_summary.recent_events) == 3


@pytest.mark.asyncio
async def test_basic_detail_caps_terms_and_events(assembler, make_record):
    records = [
        make_record(day=d, themes=[f"topic {d}", f"hobby {d}"]) for d in range(8)
    ]
    bundle = await assembler.assemble_context(records, "alice", detail_level="basic")

    assert len(bundle.vocabulary.themes) <= 5
    assert len(bundle.timeline_summary.recent_events) <= 5


@pytest.mark.asyncio
async def test_detailed_level_enables_evolution(assembler, make_record):
    records = [
        make_record(day=d, themes=["new hobby"] if d >= 7 else ["old job"])
        for d in range(12)
    ]

    standard = await assembler.assemble_context(records, "alice")
    detailed = await assembler.assemble_context(records, "alice", detail_level="detailed")

    assert standard.vocabulary.evolution == []
    assert detailed.vocabulary.evolution


@pytest.mark.asyncio
async def test_time_window_anchors_on_newest_record(make_record):
    records = [
        make_record(day=0, record_id="old"),
        make_record(day=40, record_id="recent"),
        make_record(day=45, record_id="newest"),
    ]

    scoped = await ContextAssembler().assemble_context(records, "alice")
    historical = await ContextAssembler(
        ContextEngineConfig(assembler={"include_historical": True})
    ).assemble_context(records, "alice")

    assert [e.record_id for e in scoped.timeline_summary.recent_events] == [
        "recent",
        "newest",
    ]
    assert len(historical.timeline_summary.recent_events) == 3


@pytest.mark.asyncio
async def test_time_window_is_configurable(make_record):
    records = [make_record(day=0), make_record(day=10)]
    config = ContextEngineConfig(assembler={"time_window": "week"})

    bundle = await ContextAssembler(config).assemble_context(records, "alice")

    assert len(bundle.timeline_summary.recent_events) == 1


# ---------------------------------------------------------------------------
# Caching
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cache_hit_skips_leaf_components(populated_records):
    assembler, mood, timeline, vocabulary = _spied_assembler()

    first = await assembler.assemble_context(populated_records, "alice", "catch up")
    second = await assembler.assemble_context(populated_records, "alice", "catch up")

    assert first.model_dump_json() == second.model_dump_json()
    assert mood.generate.call_count == 1
    assert timeline.build.call_count == 1
    assert vocabulary.extract.call_count == 1


@pytest.mark.asyncio
async def test_changed_inputs_miss_the_cache(populated_records, make_record):
    assembler, mood, _, _ = _spied_assembler()

    await assembler.assemble_context(populated_records, "alice")
    await assembler.assemble_context(populated_records, "alice", "celebrate")
    await assembler.assemble_context(
        [*populated_records, make_record(day=9)], "alice"
    )

    assert mood.generate.call_count == 3


@pytest.mark.asyncio
async def test_null_cache_always_recomputes(populated_records):
    assembler, mood, _, _ = _spied_assembler(cache=NullContextCache())

    await assembler.assemble_context(populated_records, "alice")
    await assembler.assemble_context(populated_records, "alice")

    assert mood.generate.call_count == 2


@pytest.mark.asyncio
async def test_failing_cache_degrades_to_recompute(populated_records):
    cache = AsyncMock()
    cache.get.side_effect = CacheError("backend down")
    cache.set.side_effect = CacheError("backend down")
    assembler, mood, _, _ = _spied_assembler(cache=cache)

    bundle = await assembler.assemble_context(populated_records, "alice")
    await assembler.assemble_context(populated_records, "alice")

    assert bundle.participant_id == "alice"
    assert mood.generate.call_count == 2
    assert cache.set.await_count == 2


def test_cache_selection_follows_config():
    enabled = ContextAssembler()
    disabled = ContextAssembler(ContextEngineConfig(cache={"enabled": False}))

    assert isinstance(enabled.cache, InMemoryContextCache)
    assert isinstance(disabled.cache, NullContextCache)


def test_cache_key_components(make_record):
    records = [make_record(day=0), make_record(day=2)]

    base = build_cache_key("alice", None, records, "standard")
    assert base != build_cache_key("alice", "celebrate", records, "standard")
    assert base != build_cache_key("alice", None, records, "basic")
    assert base != build_cache_key("alice", None, records[:1], "standard")
    assert base != build_cache_key("bob", None, records, "standard")
    assert base == build_cache_key("alice", None, list(reversed(records)), "standard")


def test_cache_key_parts_cannot_collide(make_record):
    records = [make_record(day=0)]

    assert build_cache_key("a|b", "c", records, "standard") != build_cache_key(
        "a", "b|c", records, "standard"
    )
    assert build_cache_key("alice", None, records, "standard") != build_cache_key(
        "alice", "", records, "standard"
    )


@pytest.mark.asyncio
async def test_delimiters_in_ids_do_not_share_cache_entries(assembler, make_record):
    records = [
        make_record(day=0, participant_ids=("a|b", "a")),
        make_record(day=1, participant_ids=("a|b", "a")),
    ]

    first = await assembler.assemble_context(records, "a|b", "c")
    second = await assembler.assemble_context(records, "a", "b|c")

    assert first.participant_id == "a|b"
    assert second.participant_id == "a"
    assert second.conversation_goal == "b|c"


@pytest.mark.asyncio
async def test_editing_a_returned_bundle_leaves_the_cache_intact(
    assembler, populated_records
):
    first = await assembler.assemble_context(populated_records, "alice")
    themes = list(first.vocabulary.themes)

    first.participant_id = "mallory"
    first.vocabulary.themes.append("edited")

    second = await assembler.assemble_context(populated_records, "alice")

    assert second.participant_id == "alice"
    assert second.vocabulary.themes == themes


# ---------------------------------------------------------------------------
# Optimization
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_optimize_within_budget_is_noop(assembler, populated_records):
    bundle = await assembler.assemble_context(populated_records, "alice")
    limit = bundle.optimization.token_count

    optimized = assembler.optimize_context_size(bundle, limit)

    assert optimized.optimization.token_count == bundle.optimization.token_count
    assert optimized.optimization.applied_optimizations == []
    assert optimized == bundle


@pytest.mark.asyncio
async def test_optimize_over_budget_reduces(assembler, populated_records):
    bundle = await assembler.assemble_context(populated_records, "alice")
    original_themes = list(bundle.vocabulary.themes)
    limit = bundle.optimization.token_count - 1

    optimized = assembler.optimize_context_size(bundle, limit)

    assert optimized.optimization.token_count <= bundle.optimization.token_count
    assert "size_reduction" in optimized.optimization.applied_optimizations
    assert len(optimized.vocabulary.themes) <= len(original_themes)
    # Input bundle untouched
    assert bundle.vocabulary.themes == original_themes
    assert bundle.optimization.applied_optimizations == []


@pytest.mark.asyncio
async def test_optimize_applies_all_reductions_in_order(assembler, populated_records):
    bundle = await assembler.assemble_context(populated_records, "alice")

    optimized = assembler.optimize_context_size(bundle, max_tokens=1)

    assert optimized.optimization.applied_optimizations == [
        "size_reduction",
        "vocabulary_trimmed",
        "timeline_key_moments_only",
        "trajectory_shortened",
    ]
    assert len(optimized.vocabulary.themes) <= 1
    key_ids = {m.record_id for m in optimized.timeline_summary.key_moments}
    assert {e.record_id for e in optimized.timeline_summary.recent_events} <= key_ids
    overview = optimized.mood_context.trajectory_overview
    assert "(" not in overview
    assert overview.endswith(".")
    assert optimized.optimization.token_count == assembler.estimate_tokens(optimized)


@pytest.mark.asyncio
async def test_optimize_defaults_to_configured_budget(populated_records):
    assembler = ContextAssembler(ContextEngineConfig(assembler={"max_tokens": 1}))
    bundle = await assembler.assemble_context(populated_records, "alice")

    optimized = assembler.optimize_context_size(bundle)

    assert "size_reduction" in optimized.optimization.applied_optimizations


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------


def _mood(score, direction="stable"):
    return MoodContext(
        current_mood=CurrentMood(score=score, descriptors=["calm"], confidence=0.8),
        mood_trend=MoodTrend(direction=direction, magnitude=0.5, duration="3d"),
        state=DataState.AVAILABLE,
    )


def _recommend(assembler, mood, goal=None, themes=(), key_moment=None):
    timeline = TimelineSummary(key_moments=[key_moment] if key_moment else [])
    vocabulary = EmotionalVocabulary(themes=list(themes))
    return assembler.generate_recommendations(mood, timeline, vocabulary, goal)


def test_low_mood_recommendations(assembler):
    rec = _recommend(assembler, _mood(3.5))

    assert rec.approach == "empathetic"
    assert rec.tone == ["supportive", "gentle", "understanding"]
    assert {"criticism", "pressure", "complex topics"} <= set(rec.avoid)
    assert rec.response_length == "moderate"


def test_declining_trend_is_treated_as_low_mood(assembler):
    assert _recommend(assembler, _mood(6, "declining")).approach == "empathetic"


def test_very_low_mood_keeps_responses_brief(assembler):
    rec = _recommend(assembler, _mood(2))

    assert rec.response_length == "brief"
    assert rec.avoid.count("complex topics") == 1
    assert "major decisions" in rec.avoid


def test_high_mood_recommendations(assembler):
    rec = _recommend(assembler, _mood(8))

    assert rec.approach == "celebratory"
    assert rec.tone == ["positive", "encouraging"]


def test_volatile_trend_keeps_responses_brief(assembler):
    rec = _recommend(assembler, _mood(6, "volatile"))

    assert rec.response_length == "brief"
    assert "complex topics" in rec.avoid


def test_goal_steers_approach(assembler):
    analyze = _recommend(assembler, _mood(5), goal="Help me analyze my week")
    celebrate = _recommend(assembler, _mood(5), goal="Celebrate the promotion")

    assert analyze.approach == "analytical"
    assert analyze.response_length == "detailed"
    assert celebrate.approach == "celebratory"


def test_default_recommendations(assembler):
    rec = _recommend(assembler, _mood(5.5))

    assert rec.tone == ["balanced", "thoughtful"]
    assert rec.approach == "supportive"
    assert rec.emphasize == ["current context"]
    assert rec.response_length == "moderate"


def test_emphasize_themes_and_moments(assembler, base_time):
    moment = KeyMoment(
        record_id="r1",
        timestamp=base_time,
        type="celebration",
        description="Promotion",
        significance=9.0,
    )
    rec = _recommend(
        assembler, _mood(6), themes=["work", "family", "travel", "music"], key_moment=moment
    )

    assert rec.emphasize == ["work", "family", "travel", "positive moments"]


def test_disabled_recommendations_use_defaults():
    assembler = ContextAssembler(
        ContextEngineConfig(assembler={"include_recommendations": False})
    )
    rec = _recommend(assembler, _mood(2, "volatile"), goal="analyze")

    assert rec == Recommendations()


# ---------------------------------------------------------------------------
# Relevance
# ---------------------------------------------------------------------------


def test_relevance_score(make_record):
    alice = [
        make_record(day=0, significance=8.0, processing_confidence=1.0),
        make_record(day=1, significance=8.0, processing_confidence=1.0),
    ]
    bob = [make_record(day=d, participant_ids=("bob",)) for d in range(2)]

    assert relevance_score(alice, "alice", 0.6) == 0.9
    assert relevance_score(alice + bob, "alice", 0.6) == 0.65
    assert relevance_score([], "alice", 0.6) == 0.0


def test_relevance_favours_recent_quality(make_record):
    records = [
        make_record(day=0, significance=0.0, processing_confidence=1.0),
        make_record(day=1, significance=10.0, processing_confidence=1.0),
    ]
    assert relevance_score(records, "alice", 0.6) == 0.52


def test_recency_weighted_mean():
    assert recency_weighted_mean([]) == 0.0
    assert recency_weighted_mean([1.0, 0.0]) == pytest.approx(1 / 1.85)
