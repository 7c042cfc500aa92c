"""
Storage capability interfaces.

Each storage kind (key-value, vector, graph) has one fixed async interface;
concrete backends are interchangeable and chosen when the pipeline is built.
Entity keys are canonical names (upper-case, quote-wrapped).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple


class StorageNamespace:
    """Common base: a named storage area with a flush hook."""

    namespace: str = ""

    async def index_done_callback(self) -> None:
        """Called once an ingestion batch has finished writing."""
        return None


class BaseKVStorage(StorageNamespace):
    """Key-value store used for full documents, text chunks and the LLM cache."""

    async def get_by_id(self, id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError()

    async def get_by_ids(self, ids: List[str]) -> List[Optional[Dict[str, Any]]]:
        raise NotImplementedError()

    async def filter_keys(self, keys: List[str]) -> Set[str]:
        """Return the subset of keys not yet present."""
        raise NotImplementedError()

    async def upsert(self, data: Dict[str, Dict[str, Any]]) -> None:
        raise NotImplementedError()


class BaseVectorStorage(StorageNamespace):
    """Similarity index over embedded record content."""

    meta_fields: Set[str] = set()

    async def query(self, query: str, top_k: int) -> List[Dict[str, Any]]:
        """Ranked hits, best first, each `{"id": ..., **metadata}`."""
        raise NotImplementedError()

    async def upsert(self, data: Dict[str, Dict[str, Any]]) -> None:
        """Records are `{id: {"content": str, **metadata}}`; ids overwrite."""
        raise NotImplementedError()

    async def delete_entity(self, entity_name: str) -> None:
        raise NotImplementedError()

    async def delete_relation(self, entity_name: str) -> None:
        raise NotImplementedError()


class BaseGraphStorage(StorageNamespace):
    """Entity graph keyed by canonical entity names."""

    async def has_node(self, node_id: str) -> bool:
        raise NotImplementedError()

    async def has_edge(self, source_node_id: str, target_node_id: str) -> bool:
        raise NotImplementedError()

    async def node_degree(self, node_id: str) -> int:
        raise NotImplementedError()

    async def edge_degree(self, src_id: str, tgt_id: str) -> int:
        raise NotImplementedError()

    async def get_node(self, node_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError()

    async def get_edge(
        self, source_node_id: str, target_node_id: str
    ) -> Optional[Dict[str, Any]]:
        raise NotImplementedError()

    async def get_node_edges(self, source_node_id: str) -> Optional[List[Tuple[str, str]]]:
        """Incident edges as `(node, neighbor)` pairs, or None for a missing node."""
        raise NotImplementedError()

    async def upsert_node(self, node_id: str, node_data: Dict[str, Any]) -> None:
        raise NotImplementedError()

    async def upsert_edge(
        self, source_node_id: str, target_node_id: str, edge_data: Dict[str, Any]
    ) -> None:
        raise NotImplementedError()

    async def delete_node(self, node_id: str) -> None:
        raise NotImplementedError()


@dataclass
class StorageBundle:
    """The storages one pipeline instance reads and writes."""

    full_docs: BaseKVStorage
    text_chunks: BaseKVStorage
    graph: BaseGraphStorage
    entities_vdb: BaseVectorStorage
    relationships_vdb: BaseVectorStorage
    chunks_vdb: BaseVectorStorage
    llm_response_cache: Optional[BaseKVStorage] = None

    def all(self) -> List[StorageNamespace]:
        storages: List[StorageNamespace] = [
            self.full_docs,
            self.text_chunks,
            self.llm_response_cache,
            self.entities_vdb,
            self.relationships_vdb,
            self.chunks_vdb,
            self.graph,
        ]
        return [s for s in storages if s is not None]
