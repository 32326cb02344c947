"""
Agent Context - Emotional context assembly for conversational agents

Turns a participant's emotional memory records into a token-budgeted
context bundle: current mood and trend, a relational timeline, emotional
vocabulary and response recommendations.
"""

from .models import (
    AgentContextBundle,
    DataState,
    EmotionalMemoryRecord,
    EmotionalVocabulary,
    MoodContext,
    Recommendations,
    TimelineSummary,
    coerce_record,
    coerce_records,
)
from .config import ContextEngineConfig, load_config
from .exceptions import AgentContextError, CacheError, InvalidRecordError
from .cache import ContextCache, InMemoryContextCache, NullContextCache
from .mood_tokenizer import MoodTokenizer
from .timeline_builder import TimelineBuilder
from .vocabulary_extractor import VocabularyExtractor
from .assembler import ContextAssembler
from .service import AgentContextService, RecordSource
from .token_counter import TokenCounter

__all__ = [
    "AgentContextBundle",
    "DataState",
    "EmotionalMemoryRecord",
    "EmotionalVocabulary",
    "MoodContext",
    "Recommendations",
    "TimelineSummary",
    "coerce_record",
    "coerce_records",
    "ContextEngineConfig",
    "load_config",
    "AgentContextError",
    "CacheError",
    "InvalidRecordError",
    "ContextCache",
    "InMemoryContextCache",
    "NullContextCache",
    "MoodTokenizer",
    "TimelineBuilder",
    "VocabularyExtractor",
    "ContextAssembler",
    "AgentContextService",
    "RecordSource",
    "TokenCounter",
]
