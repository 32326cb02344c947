"""Agent Context Service - Facade over the context assembler.

Fetches a participant's emotional memory records from an upstream store,
assembles the agent context bundle and fits it to a token budget.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from loguru import logger

from .assembler import ContextAssembler
from .config import ContextEngineConfig
from .models import AgentContextBundle, EmotionalMemoryRecord


class RecordSource(Protocol):
    """Upstream memory store supplying records for a participant."""

    async def fetch_records(
        self, participant_id: str
    ) -> Sequence[EmotionalMemoryRecord | Mapping[str, Any]]:
        """Return the participant's records in any order."""
        ...


class AgentContextService:
    """Main agent context facade.

    Provides:
    - Record retrieval from the upstream source
    - Context assembly (cached per participant, goal and record set)
    - Token-budget fitting of the assembled bundle
    - Bundle quality validation
    """

    def __init__(
        self,
        source: RecordSource,
        config: ContextEngineConfig | None = None,
        assembler: ContextAssembler | None = None,
    ):
        """Initialize agent context service.

        Args:
            source: Upstream record source
            config: Engine configuration (uses defaults if not provided)
            assembler: Pre-built assembler (built from ``config`` if omitted)
        """
        self.source = source
        self.config = config or ContextEngineConfig()
        self.assembler = assembler or ContextAssembler(self.config)

        logger.info(
            f"AgentContextService initialized: "
            f"max_tokens={self.config.assembler.max_tokens}, "
            f"cache_enabled={self.config.cache.enabled}"
        )

    async def build_context(
        self,
        participant_id: str,
        conversation_goal: str | None = None,
        max_tokens: int | None = None,
    ) -> AgentContextBundle:
        """Build a token-budgeted context bundle for a participant.

        Args:
            participant_id: Participant the context is built for
            conversation_goal: Free-text goal steering the recommendations
            max_tokens: Token budget (defaults to ``config.assembler.max_tokens``)

        Returns:
            AgentContextBundle within budget where the reductions allow
        """
        budget = max_tokens if max_tokens is not None else self.config.assembler.max_tokens

        try:
            records = await self.source.fetch_records(participant_id)
        except Exception as e:
            logger.warning(
                f"Record fetch failed for participant={participant_id}: {e}"
            )
            records = []

        bundle = await self.assembler.assemble_context(
            records, participant_id, conversation_goal
        )

        if bundle.optimization.token_count > budget:
            bundle = self.assembler.optimize_context_size(bundle, budget)

        logger.info(
            f"Context built for participant={participant_id}: "
            f"{bundle.optimization.token_count} tokens (budget {budget}), "
            f"{len(records)} records"
        )
        return bundle

    def validate(self, bundle: AgentContextBundle) -> float:
        """Score a bundle's quality in [0, 1]."""
        return self.assembler.validate_context_quality(bundle)
