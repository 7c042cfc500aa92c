"""
Text embedding utilities using the OpenAI API.
"""

import hashlib
import logging
import threading
from typing import List, Optional

import httpx
import numpy as np
import openai
from cachetools import LRUCache

from core.llm import async_retry_with_exponential_backoff

logger = logging.getLogger(__name__)


def hash_text(text: str, model: str) -> str:
    """Generate cache key for text + model combination."""
    key = f"{model}:{text}"
    return hashlib.md5(key.encode("utf-8")).hexdigest()


class OpenAIEmbeddingClient:
    """Batch embedding client with an in-process embedding cache.

    Instances are callable, so one can be passed directly as the
    embedding function of a vector storage.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        embedding_dim: int = 1536,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        proxy: Optional[str] = None,
        cache_size: int = 10000,
        client: Optional[openai.AsyncOpenAI] = None,
    ):
        self.model = model
        self.embedding_dim = embedding_dim
        self._cache: LRUCache = LRUCache(maxsize=cache_size)
        self._cache_lock = threading.Lock()
        if client is not None:
            self._client = client
        else:
            http_client = httpx.AsyncClient(proxy=proxy) if proxy else None
            self._client = openai.AsyncOpenAI(
                api_key=api_key, base_url=base_url, http_client=http_client
            )

    async def __call__(self, texts: List[str]) -> np.ndarray:
        return await self.embed(texts)

    async def embed(self, texts: List[str]) -> np.ndarray:
        """Embed texts, serving repeats from the cache."""
        keys = [hash_text(text, self.model) for text in texts]
        vectors: List[Optional[List[float]]] = []
        with self._cache_lock:
            for key in keys:
                vectors.append(self._cache.get(key))

        missing = [i for i, vector in enumerate(vectors) if vector is None]
        if missing:
            logger.debug(f"Embedding cache MISS for {len(missing)}/{len(texts)} texts")
            fresh = await self._embed_direct([texts[i] for i in missing])
            with self._cache_lock:
                for i, vector in zip(missing, fresh):
                    vectors[i] = vector
                    self._cache[keys[i]] = vector

        return np.array(vectors, dtype=np.float32)

    @async_retry_with_exponential_backoff()
    async def _embed_direct(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings without caching (with retry logic)."""
        response = await self._client.embeddings.create(
            model=self.model, input=texts, encoding_format="float"
        )
        return [item.embedding for item in response.data]
