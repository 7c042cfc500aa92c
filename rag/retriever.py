"""
Retrieval context builder for the naive, local, global and hybrid modes.

Local mode starts from entities matched by low-level keywords and walks one
hop out; global mode starts from relationships matched by high-level keywords
and pulls in their endpoints. Hybrid runs both and unions the rendered tables
line by line. Every table is ranked and then truncated greedily against its
token budget.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from config.settings import QueryMode, QueryParam
from core.base import BaseGraphStorage, BaseKVStorage, BaseVectorStorage
from core.token_counter import TokenCounter, truncate_list_by_token_size
from core.utils import (
    GRAPH_FIELD_SEP,
    list_of_list_to_csv,
    process_combine_contexts,
    split_string_by_multi_markers,
)

logger = logging.getLogger(__name__)

CHUNK_SEPARATOR = "\n--New Chunk--\n"

ENTITY_HEADER = ["id", "entity", "type", "description", "rank"]
RELATION_HEADER = ["id", "source", "target", "description", "keywords", "weight", "rank"]
TEXT_UNIT_HEADER = ["id", "content"]


@dataclass
class ContextTables:
    """The three CSV tables produced by one retrieval branch."""

    entities: str = ""
    relations: str = ""
    text_units: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.entities or self.relations or self.text_units)

    def combine(self, low_level: "ContextTables") -> "ContextTables":
        """Line union with this (high-level) table's lines first."""
        return ContextTables(
            entities=process_combine_contexts(self.entities, low_level.entities),
            relations=process_combine_contexts(self.relations, low_level.relations),
            text_units=process_combine_contexts(self.text_units, low_level.text_units),
        )

    def render(self) -> str:
        return f"""
-----Entities-----
```csv
{self.entities}
```
-----Relationships-----
```csv
{self.relations}
```
-----Sources-----
```csv
{self.text_units}
```
"""


class ContextBuilder:
    """Assembles token-budgeted evidence for one query."""

    def __init__(
        self,
        graph: BaseGraphStorage,
        entities_vdb: BaseVectorStorage,
        relationships_vdb: BaseVectorStorage,
        chunks_vdb: BaseVectorStorage,
        text_chunks_db: BaseKVStorage,
        counter: TokenCounter,
    ):
        self.graph = graph
        self.entities_vdb = entities_vdb
        self.relationships_vdb = relationships_vdb
        self.chunks_vdb = chunks_vdb
        self.text_chunks_db = text_chunks_db
        self.counter = counter

    # ------------------------------------------------------------------
    # naive
    # ------------------------------------------------------------------

    async def build_naive_context(self, query: str, param: QueryParam) -> Optional[str]:
        """Concatenate the top-k chunks for the raw query; no graph access."""
        results = await self.chunks_vdb.query(query, top_k=param.top_k)
        if not results:
            return None

        chunks = await self.text_chunks_db.get_by_ids([r["id"] for r in results])
        chunks = [c for c in chunks if c is not None and c.get("content")]

        maybe_trun_chunks = truncate_list_by_token_size(
            chunks,
            key=lambda c: c["content"],
            max_token_size=param.max_token_for_text_unit,
            counter=self.counter,
        )
        logger.info(f"Truncate {len(chunks)} to {len(maybe_trun_chunks)} chunks")
        if not maybe_trun_chunks:
            return None
        return CHUNK_SEPARATOR.join(c["content"] for c in maybe_trun_chunks)

    # ------------------------------------------------------------------
    # keyword modes
    # ------------------------------------------------------------------

    async def build_query_context(
        self,
        ll_keywords: str,
        hl_keywords: str,
        param: QueryParam,
    ) -> Optional[str]:
        """
        Build the rendered context for local / global / hybrid.

        Returns None when every table came back empty.
        """
        handlers = {
            QueryMode.LOCAL: self._local_tables,
            QueryMode.GLOBAL: self._global_tables,
            QueryMode.HYBRID: self._hybrid_tables,
        }
        if param.mode not in handlers:
            raise ValueError(f"Mode {param.mode.value} does not use the knowledge graph")

        tables = await handlers[param.mode](ll_keywords, hl_keywords, param)
        if tables.is_empty:
            logger.warning(f"No context found for {param.mode.value} query")
            return None
        return tables.render()

    async def _local_tables(self, ll_keywords: str, hl_keywords: str, param: QueryParam) -> ContextTables:
        return await self.get_node_data(ll_keywords, param)

    async def _global_tables(self, ll_keywords: str, hl_keywords: str, param: QueryParam) -> ContextTables:
        return await self.get_edge_data(hl_keywords, param)

    async def _hybrid_tables(self, ll_keywords: str, hl_keywords: str, param: QueryParam) -> ContextTables:
        low_level, high_level = await asyncio.gather(
            self.get_node_data(ll_keywords, param),
            self.get_edge_data(hl_keywords, param),
        )
        if low_level.is_empty and not high_level.is_empty:
            logger.warning("Low level context is empty, falling back to global context only")
            return high_level
        if high_level.is_empty and not low_level.is_empty:
            logger.warning("High level context is empty, falling back to local context only")
            return low_level
        return high_level.combine(low_level)

    # ------------------------------------------------------------------
    # local: entities -> one-hop edges and chunks
    # ------------------------------------------------------------------

    async def get_node_data(self, keywords: str, param: QueryParam) -> ContextTables:
        if not keywords:
            return ContextTables()
        results = await self.entities_vdb.query(keywords, top_k=param.top_k)
        if not results:
            return ContextTables()

        names = [r["entity_name"] for r in results]
        node_datas, node_degrees = await asyncio.gather(
            asyncio.gather(*[self.graph.get_node(name) for name in names]),
            asyncio.gather(*[self.graph.node_degree(name) for name in names]),
        )
        if any(n is None for n in node_datas):
            logger.warning("Some nodes are missing, maybe the storage is damaged")

        node_datas_with_rank = [
            {**node, "entity_name": name, "rank": degree}
            for name, node, degree in zip(names, node_datas, node_degrees)
            if node is not None
        ]
        if not node_datas_with_rank:
            return ContextTables()

        use_text_units, use_relations = await asyncio.gather(
            self._find_most_related_text_unit_from_entities(node_datas_with_rank, param),
            self._find_most_related_edges_from_entities(node_datas_with_rank, param),
        )
        logger.info(
            f"Local query uses {len(node_datas_with_rank)} entities, "
            f"{len(use_relations)} relations, {len(use_text_units)} text units"
        )

        entities_section_list: List[List[Any]] = [ENTITY_HEADER]
        for i, n in enumerate(node_datas_with_rank):
            entities_section_list.append(
                [
                    i,
                    n["entity_name"],
                    n.get("entity_type") or "UNKNOWN",
                    n.get("description") or "UNKNOWN",
                    n["rank"],
                ]
            )

        relations_section_list: List[List[Any]] = [RELATION_HEADER]
        for i, e in enumerate(use_relations):
            relations_section_list.append(
                [
                    i,
                    e["src_tgt"][0],
                    e["src_tgt"][1],
                    e.get("description", ""),
                    e.get("keywords", ""),
                    e.get("weight", 0.0),
                    e["rank"],
                ]
            )

        text_units_section_list: List[List[Any]] = [TEXT_UNIT_HEADER]
        for i, t in enumerate(use_text_units):
            text_units_section_list.append([i, t["content"]])

        return ContextTables(
            entities=list_of_list_to_csv(entities_section_list),
            relations=list_of_list_to_csv(relations_section_list),
            text_units=list_of_list_to_csv(text_units_section_list),
        )

    async def _find_most_related_text_unit_from_entities(
        self, node_datas: List[Dict[str, Any]], param: QueryParam
    ) -> List[Dict[str, Any]]:
        """
        Chunks cited by the selected entities.

        Ordered by the citing entity's retrieval position, then by how many of
        that entity's one-hop neighbors also cite the chunk.
        """
        text_units = [
            split_string_by_multi_markers(dp.get("source_id", ""), [GRAPH_FIELD_SEP])
            for dp in node_datas
        ]
        edges = await asyncio.gather(
            *[self.graph.get_node_edges(dp["entity_name"]) for dp in node_datas]
        )

        all_one_hop_nodes: Dict[str, None] = {}
        for this_edges in edges:
            for e in this_edges or []:
                all_one_hop_nodes.setdefault(e[1], None)
        one_hop_names = list(all_one_hop_nodes.keys())
        one_hop_datas = await asyncio.gather(*[self.graph.get_node(name) for name in one_hop_names])
        all_one_hop_text_units_lookup = {
            name: set(split_string_by_multi_markers(data.get("source_id", ""), [GRAPH_FIELD_SEP]))
            for name, data in zip(one_hop_names, one_hop_datas)
            if data is not None
        }

        all_text_units_lookup: Dict[str, Dict[str, int]] = {}
        for index, (this_text_units, this_edges) in enumerate(zip(text_units, edges)):
            for c_id in this_text_units:
                if c_id in all_text_units_lookup:
                    continue
                relation_counts = 0
                for e in this_edges or []:
                    if c_id in all_one_hop_text_units_lookup.get(e[1], set()):
                        relation_counts += 1
                all_text_units_lookup[c_id] = {"order": index, "relation_counts": relation_counts}

        chunk_ids = list(all_text_units_lookup.keys())
        chunk_datas = await self.text_chunks_db.get_by_ids(chunk_ids)

        all_text_units = []
        for c_id, data in zip(chunk_ids, chunk_datas):
            if data is None or not data.get("content"):
                continue
            all_text_units.append({"id": c_id, "data": data, **all_text_units_lookup[c_id]})

        all_text_units.sort(key=lambda x: (x["order"], -x["relation_counts"]))
        all_text_units = truncate_list_by_token_size(
            all_text_units,
            key=lambda x: x["data"]["content"],
            max_token_size=param.max_token_for_text_unit,
            counter=self.counter,
        )
        return [t["data"] for t in all_text_units]

    async def _find_most_related_edges_from_entities(
        self, node_datas: List[Dict[str, Any]], param: QueryParam
    ) -> List[Dict[str, Any]]:
        all_related_edges = await asyncio.gather(
            *[self.graph.get_node_edges(dp["entity_name"]) for dp in node_datas]
        )

        all_edges: List[Tuple[str, str]] = []
        seen = set()
        for this_edges in all_related_edges:
            for e in this_edges or []:
                sorted_edge = tuple(sorted(e))
                if sorted_edge not in seen:
                    seen.add(sorted_edge)
                    all_edges.append(e)

        all_edges_pack, all_edges_degree = await asyncio.gather(
            asyncio.gather(*[self.graph.get_edge(e[0], e[1]) for e in all_edges]),
            asyncio.gather(*[self.graph.edge_degree(e[0], e[1]) for e in all_edges]),
        )
        all_edges_data = [
            {"src_tgt": k, "rank": d, **v}
            for k, v, d in zip(all_edges, all_edges_pack, all_edges_degree)
            if v is not None
        ]
        all_edges_data.sort(key=lambda x: (x["rank"], float(x.get("weight", 0.0))), reverse=True)
        return truncate_list_by_token_size(
            all_edges_data,
            key=lambda x: x.get("description", ""),
            max_token_size=param.max_token_for_local_context,
            counter=self.counter,
        )

    # ------------------------------------------------------------------
    # global: relationships -> endpoint entities and chunks
    # ------------------------------------------------------------------

    async def get_edge_data(self, keywords: str, param: QueryParam) -> ContextTables:
        if not keywords:
            return ContextTables()
        results = await self.relationships_vdb.query(keywords, top_k=param.top_k)
        if not results:
            return ContextTables()

        edge_datas, edge_degrees = await asyncio.gather(
            asyncio.gather(*[self.graph.get_edge(r["src_id"], r["tgt_id"]) for r in results]),
            asyncio.gather(*[self.graph.edge_degree(r["src_id"], r["tgt_id"]) for r in results]),
        )
        if any(e is None for e in edge_datas):
            logger.warning("Some edges are missing, maybe the storage is damaged")

        edge_datas_with_rank = [
            {"src_id": k["src_id"], "tgt_id": k["tgt_id"], "rank": d, **v}
            for k, v, d in zip(results, edge_datas, edge_degrees)
            if v is not None
        ]
        edge_datas_with_rank.sort(
            key=lambda x: (x["rank"], float(x.get("weight", 0.0))), reverse=True
        )
        edge_datas_with_rank = truncate_list_by_token_size(
            edge_datas_with_rank,
            key=lambda x: x.get("description", ""),
            max_token_size=param.max_token_for_global_context,
            counter=self.counter,
        )
        if not edge_datas_with_rank:
            return ContextTables()

        use_entities, use_text_units = await asyncio.gather(
            self._find_most_related_entities_from_relationships(edge_datas_with_rank, param),
            self._find_related_text_unit_from_relationships(edge_datas_with_rank, param),
        )
        logger.info(
            f"Global query uses {len(use_entities)} entities, "
            f"{len(edge_datas_with_rank)} relations, {len(use_text_units)} text units"
        )

        relations_section_list: List[List[Any]] = [RELATION_HEADER]
        for i, e in enumerate(edge_datas_with_rank):
            relations_section_list.append(
                [
                    i,
                    e["src_id"],
                    e["tgt_id"],
                    e.get("description", ""),
                    e.get("keywords", ""),
                    e.get("weight", 0.0),
                    e["rank"],
                ]
            )

        entities_section_list: List[List[Any]] = [ENTITY_HEADER]
        for i, n in enumerate(use_entities):
            entities_section_list.append(
                [
                    i,
                    n["entity_name"],
                    n.get("entity_type") or "UNKNOWN",
                    n.get("description") or "UNKNOWN",
                    n["rank"],
                ]
            )

        text_units_section_list: List[List[Any]] = [TEXT_UNIT_HEADER]
        for i, t in enumerate(use_text_units):
            text_units_section_list.append([i, t["content"]])

        return ContextTables(
            entities=list_of_list_to_csv(entities_section_list),
            relations=list_of_list_to_csv(relations_section_list),
            text_units=list_of_list_to_csv(text_units_section_list),
        )

    async def _find_most_related_entities_from_relationships(
        self, edge_datas: List[Dict[str, Any]], param: QueryParam
    ) -> List[Dict[str, Any]]:
        entity_names: Dict[str, None] = {}
        for e in edge_datas:
            entity_names.setdefault(e["src_id"], None)
            entity_names.setdefault(e["tgt_id"], None)
        names = list(entity_names.keys())

        node_datas, node_degrees = await asyncio.gather(
            asyncio.gather(*[self.graph.get_node(name) for name in names]),
            asyncio.gather(*[self.graph.node_degree(name) for name in names]),
        )
        node_datas_with_rank = [
            {**n, "entity_name": k, "rank": d}
            for k, n, d in zip(names, node_datas, node_degrees)
            if n is not None
        ]
        return truncate_list_by_token_size(
            node_datas_with_rank,
            key=lambda x: x.get("description", ""),
            max_token_size=param.max_token_for_local_context,
            counter=self.counter,
        )

    async def _find_related_text_unit_from_relationships(
        self, edge_datas: List[Dict[str, Any]], param: QueryParam
    ) -> List[Dict[str, Any]]:
        all_text_units_lookup: Dict[str, int] = {}
        for index, dp in enumerate(edge_datas):
            for c_id in split_string_by_multi_markers(dp.get("source_id", ""), [GRAPH_FIELD_SEP]):
                all_text_units_lookup.setdefault(c_id, index)

        chunk_ids = list(all_text_units_lookup.keys())
        chunk_datas = await self.text_chunks_db.get_by_ids(chunk_ids)
        all_text_units = [
            {"id": c_id, "data": data, "order": all_text_units_lookup[c_id]}
            for c_id, data in zip(chunk_ids, chunk_datas)
            if data is not None and data.get("content")
        ]
        all_text_units.sort(key=lambda x: x["order"])
        all_text_units = truncate_list_by_token_size(
            all_text_units,
            key=lambda x: x["data"]["content"],
            max_token_size=param.max_token_for_text_unit,
            counter=self.counter,
        )
        return [t["data"] for t in all_text_units]
