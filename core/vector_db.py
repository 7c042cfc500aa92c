"""
In-memory vector index with cosine similarity over numpy embeddings.

One instance backs each of the three indices (entities, relationships,
chunks). Embeddings come from the injected async embedding function; content
is embedded in batches of embedding_batch_num texts.
"""

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

import numpy as np

from core.base import BaseVectorStorage
from core.utils import compute_mdhash_id

logger = logging.getLogger(__name__)

EmbeddingFunc = Callable[[List[str]], Awaitable[np.ndarray]]


class InMemoryVectorStorage(BaseVectorStorage):
    """Brute-force cosine index; optionally persisted as JSON on index_done_callback."""

    def __init__(
        self,
        namespace: str,
        embedding_func: EmbeddingFunc,
        meta_fields: Optional[Set[str]] = None,
        embedding_batch_num: int = 32,
        cosine_better_than_threshold: float = 0.2,
        working_dir: Optional[str] = None,
    ):
        self.namespace = namespace
        self.embedding_func = embedding_func
        self.meta_fields = set(meta_fields or set())
        self.embedding_batch_num = embedding_batch_num
        self.cosine_better_than_threshold = cosine_better_than_threshold
        self._records: Dict[str, Dict[str, Any]] = {}
        self._vectors: Dict[str, np.ndarray] = {}
        self._lock = threading.RLock()
        self._file_path: Optional[Path] = None
        if working_dir:
            self._file_path = Path(working_dir) / f"vdb_{namespace}.json"
            self._load()

    def _load(self) -> None:
        if not self._file_path or not self._file_path.exists():
            return
        with open(self._file_path, "r", encoding="utf-8") as f:
            payload = json.load(f)
        for record in payload.get("data", []):
            record_id = record.pop("__id__")
            vector = np.asarray(record.pop("__vector__"), dtype=np.float32)
            self._records[record_id] = record
            self._vectors[record_id] = vector
        logger.info(f"Loaded {len(self._records)} vectors for '{self.namespace}'")

    async def upsert(self, data: Dict[str, Dict[str, Any]]) -> None:
        if not data:
            logger.warning(f"[{self.namespace}] upsert called with no data")
            return
        logger.info(f"[{self.namespace}] inserting {len(data)} vectors")
        ids = list(data.keys())
        contents = [data[record_id]["content"] for record_id in ids]
        batches = [
            contents[i:i + self.embedding_batch_num]
            for i in range(0, len(contents), self.embedding_batch_num)
        ]
        embeddings_list = await asyncio.gather(*[self.embedding_func(batch) for batch in batches])
        embeddings = np.concatenate([np.asarray(e, dtype=np.float32) for e in embeddings_list])
        if len(embeddings) != len(ids):
            raise ValueError(
                f"Embedding function returned {len(embeddings)} vectors for {len(ids)} records"
            )

        with self._lock:
            for record_id, vector in zip(ids, embeddings):
                record = {k: v for k, v in data[record_id].items() if k in self.meta_fields}
                self._records[record_id] = record
                self._vectors[record_id] = vector

    async def query(self, query: str, top_k: int) -> List[Dict[str, Any]]:
        with self._lock:
            if not self._vectors:
                return []
        query_vector = np.asarray((await self.embedding_func([query]))[0], dtype=np.float32)

        with self._lock:
            ids = list(self._vectors.keys())
            matrix = np.stack([self._vectors[record_id] for record_id in ids])
            records = [dict(self._records[record_id]) for record_id in ids]

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_vector)
        norms[norms == 0] = 1e-12
        scores = matrix @ query_vector / norms
        order = np.argsort(-scores)

        results: List[Dict[str, Any]] = []
        for idx in order[:top_k]:
            score = float(scores[idx])
            if score < self.cosine_better_than_threshold:
                break
            results.append({"id": ids[idx], "distance": score, **records[idx]})
        return results

    async def delete(self, ids: List[str]) -> None:
        with self._lock:
            for record_id in ids:
                self._records.pop(record_id, None)
                self._vectors.pop(record_id, None)

    async def delete_entity(self, entity_name: str) -> None:
        entity_id = compute_mdhash_id(entity_name, prefix="ent-")
        with self._lock:
            found = entity_id in self._records
        if found:
            await self.delete([entity_id])
            logger.info(f"Entity {entity_name} deleted from '{self.namespace}'")
        else:
            logger.info(f"No vector record found for entity {entity_name}")

    async def delete_relation(self, entity_name: str) -> None:
        with self._lock:
            relation_ids = [
                record_id
                for record_id, record in self._records.items()
                if record.get("src_id") == entity_name or record.get("tgt_id") == entity_name
            ]
        if relation_ids:
            await self.delete(relation_ids)
            logger.info(f"Deleted {len(relation_ids)} relation records for {entity_name}")
        else:
            logger.info(f"No relation records found for entity {entity_name}")

    async def index_done_callback(self) -> None:
        if not self._file_path:
            return
        with self._lock:
            payload = {
                "data": [
                    {"__id__": record_id, "__vector__": self._vectors[record_id].tolist(), **record}
                    for record_id, record in self._records.items()
                ]
            }
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._file_path, "w", encoding="utf-8") as f:
            json.dump(payload, f)
