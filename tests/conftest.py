import hashlib
import logging
import os
import re
import socket
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import numpy as np
import pytest

from core.base import StorageBundle
from core.cache import InMemoryKVStorage
from core.llm import BaseLLMClient
from core.networkx_graph import NetworkXGraphStorage
from core.prompts import PROMPTS
from core.token_counter import TokenCounter
from core.vector_db import InMemoryVectorStorage

LOG = logging.getLogger("tests.conftest")

EMBEDDING_DIM = 256


def pytest_configure(config):
    """Set test-friendly Neo4j defaults before collection/imports."""
    os.environ.setdefault("NEO4J_URI", "bolt://localhost:7687")
    os.environ.setdefault("NEO4J_USERNAME", "neo4j")
    os.environ.setdefault("NEO4J_PASSWORD", "password")


def _neo4j_reachable() -> bool:
    parsed = urlparse(os.environ.get("NEO4J_URI", "bolt://localhost:7687"))
    try:
        with socket.create_connection((parsed.hostname or "localhost", parsed.port or 7687), timeout=1.0):
            return True
    except OSError:
        return False


def pytest_collection_modifyitems(config, items):
    """Skip service-dependent suites when Neo4j is not reachable."""
    integration_items = [
        item for item in items if "integration" in Path(str(item.fspath)).parts
    ]
    if not integration_items or _neo4j_reachable():
        return

    LOG.warning("Neo4j not reachable; skipping integration tests")
    skip_marker = pytest.mark.skip(reason="Neo4j not reachable; skipping integration tests")
    for item in integration_items:
        item.add_marker(skip_marker)


class WhitespaceTokenCounter(TokenCounter):
    """One token per whitespace-separated word; no tokenizer download."""

    def __init__(self) -> None:
        self.model_name = "whitespace"
        self._vocab: List[str] = []
        self._index: Dict[str, int] = {}

    def encode(self, text: str) -> List[int]:
        if not text:
            return []
        ids = []
        for word in text.split():
            if word not in self._index:
                self._index[word] = len(self._vocab)
                self._vocab.append(word)
            ids.append(self._index[word])
        return ids

    def decode(self, tokens: List[int]) -> str:
        return " ".join(self._vocab[t] for t in tokens)

    def count(self, text: str) -> int:
        return len(text.split()) if text else 0


async def bag_of_words_embedding(texts: List[str]) -> np.ndarray:
    """Deterministic embedding: hashed, lower-cased word counts."""
    vectors = np.zeros((len(texts), EMBEDDING_DIM), dtype=np.float32)
    for row, text in enumerate(texts):
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            slot = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % EMBEDDING_DIM
            vectors[row, slot] += 1.0
    return vectors


class FakeLLM(BaseLLMClient):
    """
    Scripted completion client.

    `handler(prompt, system_prompt, history, options)` returns the completion;
    every call is recorded in `calls`.
    """

    model = "fake-llm"

    def __init__(self, handler: Optional[Callable[..., str]] = None):
        self.handler = handler or (lambda prompt, system_prompt, history, options: "")
        self.calls: List[Dict[str, Any]] = []

    async def complete(self, prompt, system_prompt=None, history=None, **options):
        self.calls.append(
            {"prompt": prompt, "system_prompt": system_prompt, "history": history, "options": options}
        )
        return self.handler(prompt, system_prompt, history, options)


def is_extraction_prompt(prompt: str) -> bool:
    return prompt.startswith("-Goal-")


def is_continue_prompt(prompt: str) -> bool:
    return prompt == PROMPTS["entity_continue_extraction"]


def is_loop_check_prompt(prompt: str) -> bool:
    return prompt == PROMPTS["entity_if_loop_extraction"]


def is_keywords_prompt(prompt: str) -> bool:
    return "high-level and low-level keywords" in prompt


def is_summary_prompt(prompt: str) -> bool:
    return "comprehensive summary of the data" in prompt


def tuple_records(*records: str, complete: bool = True) -> str:
    """Join records with the default delimiters, as a model would emit them."""
    body = PROMPTS["DEFAULT_RECORD_DELIMITER"].join(records)
    if complete:
        body += PROMPTS["DEFAULT_COMPLETION_DELIMITER"]
    return body


def entity_record(name: str, entity_type: str, description: str) -> str:
    d = PROMPTS["DEFAULT_TUPLE_DELIMITER"]
    return f'("entity"{d}"{name}"{d}"{entity_type}"{d}"{description}")'


def relationship_record(src: str, tgt: str, description: str, keywords: str, weight: Any) -> str:
    d = PROMPTS["DEFAULT_TUPLE_DELIMITER"]
    return f'("relationship"{d}"{src}"{d}"{tgt}"{d}"{description}"{d}"{keywords}"{d}{weight})'


@pytest.fixture
def counter():
    return WhitespaceTokenCounter()


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def storages():
    def _vdb(namespace, meta_fields):
        return InMemoryVectorStorage(
            namespace,
            bag_of_words_embedding,
            meta_fields=meta_fields,
            embedding_batch_num=4,
            cosine_better_than_threshold=0.1,
        )

    return StorageBundle(
        full_docs=InMemoryKVStorage("full_docs"),
        text_chunks=InMemoryKVStorage("text_chunks"),
        graph=NetworkXGraphStorage("chunk_entity_relation"),
        entities_vdb=_vdb("entities", {"entity_name"}),
        relationships_vdb=_vdb("relationships", {"src_id", "tgt_id"}),
        chunks_vdb=_vdb("chunks", {"full_doc_id"}),
        llm_response_cache=InMemoryKVStorage("llm_response_cache"),
    )
