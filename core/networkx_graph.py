"""
In-process graph storage on an undirected networkx graph.

Optionally persisted to GraphML under working_dir; the file is loaded on
construction and rewritten on index_done_callback.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx

from core.base import BaseGraphStorage

logger = logging.getLogger(__name__)


class NetworkXGraphStorage(BaseGraphStorage):
    """networkx-backed BaseGraphStorage; edges are unordered pairs."""

    def __init__(self, namespace: str = "chunk_entity_relation", working_dir: Optional[str] = None):
        self.namespace = namespace
        self._lock = threading.RLock()
        self._file_path: Optional[Path] = None
        self._graph = nx.Graph()
        if working_dir:
            self._file_path = Path(working_dir) / f"graph_{namespace}.graphml"
            if self._file_path.exists():
                self._graph = nx.read_graphml(self._file_path)
                logger.info(
                    f"Loaded graph from {self._file_path} with "
                    f"{self._graph.number_of_nodes()} nodes, {self._graph.number_of_edges()} edges"
                )

    @property
    def graph(self) -> nx.Graph:
        return self._graph

    async def has_node(self, node_id: str) -> bool:
        with self._lock:
            return self._graph.has_node(node_id)

    async def has_edge(self, source_node_id: str, target_node_id: str) -> bool:
        with self._lock:
            return self._graph.has_edge(source_node_id, target_node_id)

    async def get_node(self, node_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            if not self._graph.has_node(node_id):
                return None
            return dict(self._graph.nodes[node_id])

    async def get_edge(
        self, source_node_id: str, target_node_id: str
    ) -> Optional[Dict[str, Any]]:
        with self._lock:
            if not self._graph.has_edge(source_node_id, target_node_id):
                return None
            return dict(self._graph.edges[source_node_id, target_node_id])

    async def node_degree(self, node_id: str) -> int:
        with self._lock:
            if not self._graph.has_node(node_id):
                return 0
            return int(self._graph.degree(node_id))

    async def edge_degree(self, src_id: str, tgt_id: str) -> int:
        return await self.node_degree(src_id) + await self.node_degree(tgt_id)

    async def get_node_edges(self, source_node_id: str) -> Optional[List[Tuple[str, str]]]:
        with self._lock:
            if not self._graph.has_node(source_node_id):
                return None
            return [(source_node_id, neighbor) for neighbor in self._graph.neighbors(source_node_id)]

    async def upsert_node(self, node_id: str, node_data: Dict[str, Any]) -> None:
        with self._lock:
            self._graph.add_node(node_id, **node_data)

    async def upsert_edge(
        self, source_node_id: str, target_node_id: str, edge_data: Dict[str, Any]
    ) -> None:
        with self._lock:
            self._graph.add_edge(source_node_id, target_node_id, **edge_data)

    async def delete_node(self, node_id: str) -> None:
        with self._lock:
            if self._graph.has_node(node_id):
                self._graph.remove_node(node_id)
                logger.info(f"Node {node_id} deleted from the graph")
            else:
                logger.warning(f"Node {node_id} not found in the graph for deletion")

    async def index_done_callback(self) -> None:
        if not self._file_path:
            return
        with self._lock:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
            nx.write_graphml(self._graph, self._file_path)
