"""
Key-value storage backends: in-memory (cachetools) and on-disk (diskcache).

Both serve the three KV namespaces used by the pipeline: full documents,
text chunks and the LLM response cache.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import diskcache
from cachetools import LRUCache

from core.base import BaseKVStorage

logger = logging.getLogger(__name__)


class InMemoryKVStorage(BaseKVStorage):
    """In-memory KV namespace.

    Unbounded by default; pass max_size to wrap a cachetools LRUCache instead,
    which is what the LLM response cache uses. Operations run under an RLock
    so the store can be shared with executor threads.
    """

    def __init__(self, namespace: str, max_size: Optional[int] = None):
        self.namespace = namespace
        self._data = LRUCache(maxsize=max_size) if max_size else {}
        self._lock = threading.RLock()

    async def get_by_id(self, id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._data.get(id)

    async def get_by_ids(self, ids: List[str]) -> List[Optional[Dict[str, Any]]]:
        with self._lock:
            return [self._data.get(id) for id in ids]

    async def filter_keys(self, keys: List[str]) -> Set[str]:
        with self._lock:
            return {key for key in keys if key not in self._data}

    async def upsert(self, data: Dict[str, Dict[str, Any]]) -> None:
        with self._lock:
            for key, value in data.items():
                self._data[key] = value
        logger.debug(f"[{self.namespace}] upserted {len(data)} records")


class DiskKVStorage(BaseKVStorage):
    """KV namespace persisted with diskcache under working_dir/kv_<namespace>."""

    def __init__(self, namespace: str, working_dir: str):
        self.namespace = namespace
        cache_dir = Path(working_dir) / f"kv_{namespace}"
        cache_dir.mkdir(parents=True, exist_ok=True)
        self._backend = diskcache.Cache(directory=str(cache_dir))
        self._lock = threading.RLock()
        logger.info(f"Initialized disk KV store '{namespace}' at {cache_dir}")

    async def get_by_id(self, id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._backend.get(id)

    async def get_by_ids(self, ids: List[str]) -> List[Optional[Dict[str, Any]]]:
        with self._lock:
            return [self._backend.get(id) for id in ids]

    async def filter_keys(self, keys: List[str]) -> Set[str]:
        with self._lock:
            return {key for key in keys if key not in self._backend}

    async def upsert(self, data: Dict[str, Dict[str, Any]]) -> None:
        with self._lock:
            with self._backend.transact():
                for key, value in data.items():
                    self._backend.set(key, value)

    async def index_done_callback(self) -> None:
        # diskcache writes through; nothing buffered to flush.
        return None

    def close(self) -> None:
        """Close the backend."""
        with self._lock:
            self._backend.close()
