"""
Description summarization for the entity graph.

Merged entity / relationship descriptions grow with every mention. Once a
merged description reaches the configured token threshold it is truncated to
the model's context window and compressed by one LLM call into a single
coherent paragraph.

Key features:
- Token-threshold trigger (short descriptions pass through untouched)
- Caching (same name + description hash -> cached summary)
- Statistics for logging
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from config.settings import LLMConfig
from core.llm import BaseLLMClient
from core.prompts import PROMPTS
from core.token_counter import TokenCounter
from core.utils import GRAPH_FIELD_SEP, split_string_by_multi_markers

logger = logging.getLogger(__name__)

SummaryTarget = Union[str, Tuple[str, str]]


@dataclass
class SummarizationResult:
    """Result of description summarization."""
    entity_name: str
    original_description: str
    summarized_description: str
    original_tokens: int
    summarized: bool


class DescriptionSummarizer:
    """
    LLM-based description summarizer for merged graph records.

    Usage:
        summarizer = DescriptionSummarizer(llm, config, counter)
        description = await summarizer.summarize('"APPLE"', merged_description)
    """

    def __init__(
        self,
        llm: BaseLLMClient,
        config: Optional[LLMConfig] = None,
        counter: Optional[TokenCounter] = None,
    ):
        self.llm = llm
        self.config = config or LLMConfig()
        self.counter = counter or TokenCounter(self.config.tiktoken_model_name)
        self._summary_cache: Dict[str, str] = {}
        self._stats = {
            "summarized": 0,
            "passed_through": 0,
            "cache_hits": 0,
        }

    @staticmethod
    def _display_name(target: SummaryTarget) -> str:
        if isinstance(target, tuple):
            return ", ".join(target)
        return target

    def _cache_key(self, name: str, description: str) -> str:
        return hashlib.md5(f"{name}\x00{description}".encode("utf-8")).hexdigest()

    async def summarize(self, target: SummaryTarget, description: str) -> str:
        return (await self.summarize_with_result(target, description)).summarized_description

    async def summarize_with_result(
        self, target: SummaryTarget, description: str
    ) -> SummarizationResult:
        """
        Summarize description when it reaches entity_summary_to_max_tokens.

        Args:
            target: Entity name, or (source, target) for a relationship
            description: GRAPH_FIELD_SEP-joined merged description
        """
        name = self._display_name(target)
        tokens = self.counter.encode(description)
        summary_max_tokens = self.config.entity_summary_to_max_tokens

        if len(tokens) < summary_max_tokens:
            self._stats["passed_through"] += 1
            return SummarizationResult(name, description, description, len(tokens), False)

        cache_key = self._cache_key(name, description)
        if cache_key in self._summary_cache:
            self._stats["cache_hits"] += 1
            summary = self._summary_cache[cache_key]
            return SummarizationResult(name, description, summary, len(tokens), True)

        use_description = self.counter.decode(tokens[: self.config.llm_model_max_token_size])
        prompt = PROMPTS["summarize_entity_descriptions"].format(
            entity_name=name,
            description_list=split_string_by_multi_markers(use_description, [GRAPH_FIELD_SEP]),
            language=self.config.language or PROMPTS["DEFAULT_LANGUAGE"],
        )
        logger.debug(f"Trigger summary: {name}")
        summary = await self.llm.complete(prompt, max_tokens=summary_max_tokens)

        self._summary_cache[cache_key] = summary
        self._stats["summarized"] += 1
        return SummarizationResult(name, description, summary, len(tokens), True)

    def get_stats(self) -> dict:
        return self._stats.copy()
