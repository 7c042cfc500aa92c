"""
Token counting utilities for chunking, summarization triggers and context budgets.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Callable, List, Sequence, TypeVar

import tiktoken

logger = logging.getLogger(__name__)

T = TypeVar("T")


@lru_cache(maxsize=8)
def _load_encoding(model_name: str):
    try:
        return tiktoken.encoding_for_model(model_name)
    except KeyError:
        try:
            return tiktoken.get_encoding(model_name)
        except ValueError:
            logger.warning(
                "Unknown tokenizer '%s'; falling back to cl100k_base", model_name
            )
            return tiktoken.get_encoding("cl100k_base")


class TokenCounter:
    """Count tokens with a fixed tokenizer and provide truncation helpers."""

    def __init__(self, model_name: str = "gpt-4") -> None:
        self.model_name = model_name
        self._encoder = _load_encoding(model_name)

    def count(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoder.encode(text, disallowed_special=()))

    def encode(self, text: str) -> List[int]:
        if not text:
            return []
        return self._encoder.encode(text, disallowed_special=())

    def decode(self, tokens: List[int]) -> str:
        if not tokens:
            return ""
        return self._encoder.decode(tokens)


def truncate_list_by_token_size(
    items: Sequence[T],
    key: Callable[[T], str],
    max_token_size: int,
    counter: TokenCounter,
) -> List[T]:
    """
    Greedy prefix of items whose cumulative key-token count fits the budget.

    Items are taken in the given order. The first item that would push the
    running total over max_token_size ends the scan; it and everything after
    it are dropped.
    """
    if max_token_size <= 0:
        return []
    kept: List[T] = []
    total = 0
    for item in items:
        total += counter.count(key(item) or "")
        if total > max_token_size:
            break
        kept.append(item)
    return kept
