"""
Token-window document chunking.

Each chunk is a TextChunk with a content-addressed id, so re-chunking the same
document yields the same ids and storage writes stay idempotent.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from core.token_counter import TokenCounter
from core.utils import compute_mdhash_id

logger = logging.getLogger(__name__)


@dataclass
class TextChunk:
    """A token-bounded slice of a source document."""

    id: str
    content: str
    tokens: int
    chunk_order_index: int
    full_doc_id: str

    def to_storage_payload(self) -> Dict[str, Any]:
        """Return the dict stored in the text-chunk KV namespace."""
        return {
            "content": self.content,
            "tokens": self.tokens,
            "chunk_order_index": self.chunk_order_index,
            "full_doc_id": self.full_doc_id,
        }


def chunk_by_token_size(
    content: str,
    counter: TokenCounter,
    overlap_token_size: int = 128,
    max_token_size: int = 1024,
) -> List[Dict[str, Any]]:
    """
    Slide a max_token_size window over the document's tokens.

    Consecutive windows share overlap_token_size tokens. Returns dicts with
    `tokens`, `content` (stripped) and `chunk_order_index` (0, 1, 2, ...).
    """
    if overlap_token_size >= max_token_size:
        raise ValueError(
            f"overlap_token_size ({overlap_token_size}) must be smaller than "
            f"max_token_size ({max_token_size})"
        )
    tokens = counter.encode(content)
    step = max_token_size - overlap_token_size
    results: List[Dict[str, Any]] = []
    for index, start in enumerate(range(0, len(tokens), step)):
        window = tokens[start:start + max_token_size]
        results.append(
            {
                "tokens": len(window),
                "content": counter.decode(window).strip(),
                "chunk_order_index": index,
            }
        )
        if start + max_token_size >= len(tokens):
            break
    return results


def chunk_document(
    doc_id: str,
    content: str,
    counter: TokenCounter,
    overlap_token_size: int = 128,
    max_token_size: int = 1024,
) -> Dict[str, TextChunk]:
    """Chunk one document and key the chunks by their content hash."""
    chunks: Dict[str, TextChunk] = {}
    for dp in chunk_by_token_size(
        content,
        counter,
        overlap_token_size=overlap_token_size,
        max_token_size=max_token_size,
    ):
        if not dp["content"]:
            continue
        chunk_id = compute_mdhash_id(dp["content"], prefix="chunk-")
        chunks[chunk_id] = TextChunk(
            id=chunk_id,
            content=dp["content"],
            tokens=dp["tokens"],
            chunk_order_index=dp["chunk_order_index"],
            full_doc_id=doc_id,
        )
    logger.debug(f"Document {doc_id} split into {len(chunks)} chunks")
    return chunks
