"""
Query analysis node: split the user query into high- and low-level keywords.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config.settings import LLMConfig, QueryMode
from core.llm import BaseLLMClient
from core.prompts import PROMPTS, select_examples
from core.utils import locate_json_string_body_from_string

logger = logging.getLogger(__name__)

_HIGH_LEVEL_KEYS = ("high_level_keywords", "highLevelKeywords", "highLevelKeyWords")
_LOW_LEVEL_KEYS = ("low_level_keywords", "lowLevelKeywords", "lowLevelKeyWords")


@dataclass
class QueryKeywords:
    """Keywords driving global (high-level) and local (low-level) retrieval."""

    high_level: List[str] = field(default_factory=list)
    low_level: List[str] = field(default_factory=list)

    @property
    def high_level_text(self) -> str:
        return ", ".join(self.high_level)

    @property
    def low_level_text(self) -> str:
        return ", ".join(self.low_level)

    def missing_for(self, mode: QueryMode) -> Optional[str]:
        """Name of a keyword category the mode needs but did not get."""
        if not self.high_level and not self.low_level:
            return "high_level_keywords and low_level_keywords"
        if mode.uses_low_level and not self.low_level:
            return "low_level_keywords"
        if mode.uses_high_level and not self.high_level:
            return "high_level_keywords"
        return None


def _first_list(data: Dict[str, Any], keys) -> List[str]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        if isinstance(value, str) and value.strip():
            return [part.strip() for part in value.split(",") if part.strip()]
    return []


def parse_keywords_response(response: str) -> Optional[QueryKeywords]:
    """Parse the keyword JSON out of a raw completion; None when it cannot be located."""
    try:
        keywords_data = json.loads(locate_json_string_body_from_string(response))
    except json.JSONDecodeError as e:
        logger.error(f"JSON parsing error: {e} {response!r}")
        return None
    if not isinstance(keywords_data, dict):
        logger.error(f"Keyword response is not a JSON object: {response!r}")
        return None
    return QueryKeywords(
        high_level=_first_list(keywords_data, _HIGH_LEVEL_KEYS),
        low_level=_first_list(keywords_data, _LOW_LEVEL_KEYS),
    )


async def extract_keywords(
    query: str,
    llm: BaseLLMClient,
    config: Optional[LLMConfig] = None,
) -> Optional[QueryKeywords]:
    """
    Ask the LLM for the query's keyword lists.

    Args:
        query: User query string
        llm: Completion client
        config: Language / example-count settings

    Returns:
        QueryKeywords, or None when the response held no parseable JSON
    """
    config = config or LLMConfig()
    examples = select_examples(
        PROMPTS["keywords_extraction_examples"], config.example_number
    ).format()
    kw_prompt = PROMPTS["keywords_extraction"].format(
        query=query,
        examples=examples,
        language=config.language or PROMPTS["DEFAULT_LANGUAGE"],
    )
    result = await llm.complete(kw_prompt)
    logger.info(f"Keyword extraction result: {result}")
    return parse_keywords_response(result)
