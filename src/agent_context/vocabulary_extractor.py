"""Emotional vocabulary extraction.

Derives recurring themes, mood descriptors, relationship terms and
communication style from memory records, and tracks how that vocabulary
shifts between consecutive recency windows.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Sequence

from loguru import logger

from .config import VocabularyConfig
from .filters import sort_by_recency
from .models import (
    SUPPORT_PATTERNS,
    CommunicationStyle,
    DataState,
    EmotionalMemoryRecord,
    EmotionalVocabulary,
    Expressiveness,
    ParticipantRole,
    PatternType,
    VocabularyEvolution,
)

PATTERN_THEMES: dict[PatternType, str] = {
    PatternType.SUPPORT_SEEKING: "seeking support",
    PatternType.MOOD_REPAIR: "emotional recovery",
    PatternType.CELEBRATION: "celebration",
    PatternType.VULNERABILITY: "vulnerability",
    PatternType.GROWTH: "personal growth",
}

EMOTION_DESCRIPTORS: dict[str, str] = {
    "joy": "joyful",
    "sadness": "sad",
    "anger": "frustrated",
    "fear": "anxious",
    "surprise": "surprised",
    "love": "loving",
    "gratitude": "grateful",
}

RELATIONSHIP_PATTERN_TERMS: dict[str, str] = {
    "collaborative": "collaborative",
    "supportive": "supportive",
    "conflicted": "challenging",
    "distant": "distant",
    "intimate": "close",
}

ROLE_TERMS: dict[ParticipantRole, str] = {
    ParticipantRole.PRIMARY: "close connection",
    ParticipantRole.SECONDARY: "acquaintance",
    ParticipantRole.MENTIONED: "wider circle",
}

SUPPORT_PHRASES = (
    "i understand",
    "im here for you",
    "you can do this",
    "it will be okay",
    "i believe in you",
    "youre not alone",
    "take your time",
    "youre doing great",
)

# Checked in this order; the first category with a match wins.
_STYLE_INDICATORS: tuple[tuple[Expressiveness, tuple[str, ...]], ...] = (
    ("metaphorical", ("like", "as if", "reminds me", "similar to", "feels like")),
    ("analytical", ("because", "therefore", "analysis", "consider", "rational")),
    ("emotional", ("feel", "heart", "soul", "deeply", "overwhelming")),
)
_STYLE_ORDER: tuple[Expressiveness, ...] = (
    "direct",
    "metaphorical",
    "analytical",
    "emotional",
)

_THEME_STRIP = re.compile(r"[^\w\s]")
_DESCRIPTOR_STRIP = re.compile(r"[^\w]")


def _phrase_pattern(phrases: Iterable[str]) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(re.escape(p) for p in phrases) + r")\b")


_STYLE_PATTERNS = tuple(
    (style, _phrase_pattern(indicators)) for style, indicators in _STYLE_INDICATORS
)


def normalize_theme(theme: str) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    return " ".join(_THEME_STRIP.sub("", theme.lower()).split())


def normalize_descriptor(descriptor: str) -> str:
    return _DESCRIPTOR_STRIP.sub("", descriptor.lower())


def rank_terms(weights: dict[str, float]) -> list[str]:
    """Order terms by weight, highest first; ties keep first-seen order."""
    return [
        term
        for term, _ in sorted(weights.items(), key=lambda item: item[1], reverse=True)
    ]


def _add(weights: dict[str, float], term: str, amount: float) -> None:
    if term:
        weights[term] = weights.get(term, 0.0) + amount


def quality_terms(quality: float) -> list[str]:
    if quality >= 8:
        return ["strong", "positive"]
    if quality >= 6:
        return ["good", "stable"]
    if quality >= 4:
        return ["neutral"]
    return ["challenging", "strained"]


def expression_style(content: str) -> Expressiveness:
    text = content.lower()
    for style, pattern in _STYLE_PATTERNS:
        if pattern.search(text):
            return style
    return "direct"


def term_frequency(records: Iterable[EmotionalMemoryRecord]) -> Counter[str]:
    """Count normalized descriptors and themes across records."""
    frequency: Counter[str] = Counter()
    for record in records:
        analysis = record.emotional_analysis
        for descriptor in analysis.mood_scoring.descriptors:
            term = normalize_descriptor(descriptor)
            if term:
                frequency[term] += 1
        for theme in analysis.context.themes:
            term = normalize_theme(theme)
            if term:
                frequency[term] += 1
    return frequency


class VocabularyExtractor:
    """Extracts tone-consistent emotional vocabulary for a participant."""

    EVOLUTION_MIN_RECORDS = 10
    EVOLUTION_MIN_WINDOW = 5
    EVOLUTION_MIN_TAIL = 3
    EVOLUTION_RATIO = 1.5
    EVOLUTION_MAX_TERMS = 5

    def __init__(self, config: VocabularyConfig | None = None):
        self.config = config or VocabularyConfig()

    def extract(
        self,
        records: Sequence[EmotionalMemoryRecord],
        participant_id: str,
        include_evolution: bool | None = None,
    ) -> EmotionalVocabulary:
        """Extract vocabulary from records (any order).

        Args:
            records: Memory records for the participant
            participant_id: Participant the vocabulary describes (for logging)
            include_evolution: Per-call override of ``config.include_evolution``

        Returns:
            EmotionalVocabulary; neutral defaults with ``state=EMPTY`` when
            no record survives the scope filter
        """
        logger.info(
            f"Extracting vocabulary for participant={participant_id} "
            f"from {len(records)} records (scope={self.config.source_scope})"
        )

        scoped = self._apply_scope(records)
        if not scoped:
            return EmotionalVocabulary()

        if include_evolution is None:
            include_evolution = self.config.include_evolution

        limit = self.config.max_terms_per_category
        evolution = self._evolution(scoped) if include_evolution else []

        vocabulary = EmotionalVocabulary(
            themes=self._themes(scoped)[:limit],
            mood_descriptors=(self._mood_descriptors(scoped) or ["neutral"])[:limit],
            relationship_terms=self._relationship_terms(scoped)[:limit],
            communication_style=self._communication_style(scoped),
            evolution=evolution,
            state=DataState.AVAILABLE,
        )

        logger.debug(
            f"Vocabulary extracted: themes={len(vocabulary.themes)}, "
            f"descriptors={len(vocabulary.mood_descriptors)}, "
            f"evolution_periods={len(evolution)}"
        )
        return vocabulary

    def _apply_scope(
        self, records: Sequence[EmotionalMemoryRecord]
    ) -> list[EmotionalMemoryRecord]:
        newest_first = sort_by_recency(records)
        scope = self.config.source_scope
        if scope == "recent":
            return newest_first[: self.config.recent_limit]
        if scope == "significant":
            return [
                r
                for r in newest_first
                if r.significance.overall > self.config.significance_cutoff
            ]
        return newest_first

    def _themes(self, records: list[EmotionalMemoryRecord]) -> list[str]:
        weights: dict[str, float] = {}
        for record in records:
            analysis = record.emotional_analysis
            for theme in analysis.context.themes:
                _add(weights, normalize_theme(theme), 1.0)
            for pattern in analysis.patterns:
                _add(weights, PATTERN_THEMES.get(pattern.type, ""), pattern.significance)
        return rank_terms(weights)

    def _mood_descriptors(self, records: list[EmotionalMemoryRecord]) -> list[str]:
        weights: dict[str, float] = {}
        for record in records:
            scoring = record.emotional_analysis.mood_scoring
            weight = scoring.confidence * (record.significance.overall / 10)
            for descriptor in scoring.descriptors:
                _add(weights, normalize_descriptor(descriptor), weight)

            emotion = record.emotional_analysis.context.primary_emotion.strip().lower()
            _add(weights, EMOTION_DESCRIPTORS.get(emotion, ""), 1.0)
        return rank_terms(weights)

    def _relationship_terms(self, records: list[EmotionalMemoryRecord]) -> list[str]:
        weights: dict[str, float] = {}
        for record in records:
            dynamics = record.relationship_dynamics
            if dynamics is not None:
                for pattern in dynamics.patterns:
                    key = normalize_theme(pattern)
                    _add(weights, RELATIONSHIP_PATTERN_TERMS.get(key, key), 1.0)
                for term in quality_terms(dynamics.quality):
                    _add(weights, term, 1.0)

            for pattern in record.emotional_analysis.patterns:
                if pattern.type in SUPPORT_PATTERNS:
                    _add(weights, "supportive", pattern.significance)

            for participant in record.participants:
                _add(weights, ROLE_TERMS.get(participant.role, ""), 0.5)
        return rank_terms(weights)

    def _communication_style(
        self, records: list[EmotionalMemoryRecord]
    ) -> CommunicationStyle:
        tone_weights: dict[str, float] = {}
        style_counts: Counter[str] = Counter()
        support_language: dict[str, None] = {}

        for record in records:
            for tone in self._record_tones(record):
                _add(tone_weights, tone, 1.0)

            style_counts[expression_style(record.content)] += 1

            content = record.content.lower().replace("'", "").replace("\u2019", "")
            for phrase in SUPPORT_PHRASES:
                if phrase in content:
                    support_language.setdefault(phrase, None)
            if record.emotional_analysis.has_support_pattern():
                support_language.setdefault("encouragement", None)
                support_language.setdefault("validation", None)

        # max() keeps the first of equal counts, so ties resolve in _STYLE_ORDER
        expressiveness = max(_STYLE_ORDER, key=lambda style: style_counts[style])

        return CommunicationStyle(
            tone=rank_terms(tone_weights)[:5],
            expressiveness=expressiveness,
            support_language=list(support_language)[:8],
        )

    @staticmethod
    def _record_tones(record: EmotionalMemoryRecord) -> list[str]:
        tones: list[str] = []
        score = record.mood_score
        if score >= 7:
            tones += ["positive", "upbeat"]
        elif score <= 3:
            tones += ["concerned", "serious"]
        else:
            tones.append("balanced")

        if record.significance.overall >= 8:
            tones += ["important", "meaningful"]
        if record.emotional_analysis.has_support_pattern():
            tones += ["supportive", "caring"]
        return tones

    def _evolution(
        self, newest_first: list[EmotionalMemoryRecord]
    ) -> list[VocabularyEvolution]:
        """Compare term usage between adjacent recency windows (newest first)."""
        count = len(newest_first)
        if count < self.EVOLUTION_MIN_RECORDS:
            return []

        size = max(self.EVOLUTION_MIN_WINDOW, count // 4)
        windows = [
            newest_first[i : i + size]
            for i in range(0, count, size)
            if len(newest_first[i : i + size]) >= self.EVOLUTION_MIN_TAIL
        ]

        evolution: list[VocabularyEvolution] = []
        for newer, older in zip(windows, windows[1:]):
            newer_freq = term_frequency(newer)
            older_freq = term_frequency(older)

            new_terms = [t for t in newer_freq if t not in older_freq]
            increasing = [
                t
                for t, c in newer_freq.items()
                if c >= 2 and c > older_freq.get(t, 0) * self.EVOLUTION_RATIO
            ]
            decreasing = [
                t
                for t, c in older_freq.items()
                if c >= 2 and c > newer_freq.get(t, 0) * self.EVOLUTION_RATIO
            ]

            if not (new_terms or increasing or decreasing):
                continue

            evolution.append(
                VocabularyEvolution(
                    period_start=newer[-1].timestamp,
                    period_end=newer[0].timestamp,
                    new_terms=new_terms[: self.EVOLUTION_MAX_TERMS],
                    increasing_terms=increasing[: self.EVOLUTION_MAX_TERMS],
                    decreasing_terms=decreasing[: self.EVOLUTION_MAX_TERMS],
                )
            )
        return evolution
