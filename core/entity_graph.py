"""
Graph merge engine: reconcile extracted candidates with the committed graph.

For one ingestion batch, candidates from every chunk are grouped per entity
name and per ordered (source, target) pair, and each group is merged exactly
once:
- types resolve to the most frequent value
- descriptions, keywords and source ids are unioned, never overwritten
- relationship weights are summed
- long descriptions are compressed by the DescriptionSummarizer
- missing relationship endpoints are created as UNKNOWN stubs

The merge result is written with a single upsert per key. Merges for distinct
keys run concurrently; there is no per-key lock, so two batches merging the
same name at the same time resolve last-write-wins in the graph store.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from core.base import BaseGraphStorage, BaseVectorStorage
from core.description_summarizer import DescriptionSummarizer
from core.entity_models import EntityData, ExtractionResult, RelationshipData
from core.utils import (
    GRAPH_FIELD_SEP,
    compute_mdhash_id,
    split_string_by_multi_markers,
)

logger = logging.getLogger(__name__)

UNKNOWN_ENTITY_TYPE = "UNKNOWN"


@dataclass
class EntityGraphStats:
    """Statistics about one merge batch."""
    entity_count: int
    relationship_count: int
    stub_entities: int
    summarized: int


def most_common_type(types: Iterable[str]) -> str:
    """
    Most frequent type.

    Ties resolve to the first tied value in sorted order, so the result only
    depends on the multiset of types and not on the order batches arrived in.
    This intentionally departs from first-seen tie-breaking.
    """
    counts = Counter(sorted(t for t in types if t))
    if not counts:
        return UNKNOWN_ENTITY_TYPE
    return counts.most_common(1)[0][0]


def union_fields(values: Iterable[str]) -> List[str]:
    """Distinct non-empty parts across GRAPH_FIELD_SEP-joined values, sorted."""
    parts = set()
    for value in values:
        parts.update(split_string_by_multi_markers(value or "", [GRAPH_FIELD_SEP]))
    return sorted(parts)


def join_fields(values: Iterable[str]) -> str:
    return GRAPH_FIELD_SEP.join(union_fields(values))


def entity_vector_id(entity_name: str) -> str:
    return compute_mdhash_id(entity_name, prefix="ent-")


def relationship_vector_id(src_id: str, tgt_id: str) -> str:
    return compute_mdhash_id(src_id + tgt_id, prefix="rel-")


class GraphMergeEngine:
    """
    Merge candidates into graph storage and refresh the vector indices.

    Usage:
        engine = GraphMergeEngine(graph, entity_vdb, relation_vdb, summarizer)
        merged = await engine.merge_extraction(extraction)
        if merged is None:
            ...  # no-op ingest
    """

    def __init__(
        self,
        graph: BaseGraphStorage,
        entities_vdb: Optional[BaseVectorStorage],
        relationships_vdb: Optional[BaseVectorStorage],
        summarizer: DescriptionSummarizer,
    ):
        self.graph = graph
        self.entities_vdb = entities_vdb
        self.relationships_vdb = relationships_vdb
        self.summarizer = summarizer
        self._stub_count = 0

    async def merge_nodes_then_upsert(
        self, entity_name: str, nodes_data: List[EntityData]
    ) -> EntityData:
        already_types: List[str] = []
        already_source_ids: List[str] = []
        already_description: List[str] = []

        already_node = await self.graph.get_node(entity_name)
        if already_node is not None:
            already_types.append(already_node.get("entity_type") or "")
            already_source_ids.append(already_node.get("source_id") or "")
            already_description.append(already_node.get("description") or "")

        entity_type = most_common_type([dp.entity_type for dp in nodes_data] + already_types)
        description = join_fields([dp.description for dp in nodes_data] + already_description)
        source_id = join_fields([dp.source_id for dp in nodes_data] + already_source_ids)

        description = await self.summarizer.summarize(entity_name, description)

        merged = EntityData(
            entity_name=entity_name,
            entity_type=entity_type,
            description=description,
            source_id=source_id,
        )
        await self.graph.upsert_node(entity_name, merged.to_node_data())
        logger.debug(f"Merged entity {entity_name} from {len(nodes_data)} candidates")
        return merged

    async def merge_edges_then_upsert(
        self, src_id: str, tgt_id: str, edges_data: List[RelationshipData]
    ) -> RelationshipData:
        already_weights: List[float] = []
        already_source_ids: List[str] = []
        already_description: List[str] = []
        already_keywords: List[str] = []

        already_edge = None
        if await self.graph.has_edge(src_id, tgt_id):
            already_edge = await self.graph.get_edge(src_id, tgt_id)
        if already_edge is not None:
            already_weights.append(float(already_edge.get("weight") or 0.0))
            already_source_ids.append(already_edge.get("source_id") or "")
            already_description.append(already_edge.get("description") or "")
            already_keywords.append(already_edge.get("keywords") or "")

        weight = sum([dp.weight for dp in edges_data] + already_weights)
        description = join_fields([dp.description for dp in edges_data] + already_description)
        keywords = join_fields([dp.keywords for dp in edges_data] + already_keywords)
        source_id = join_fields([dp.source_id for dp in edges_data] + already_source_ids)

        for need_insert_id in (src_id, tgt_id):
            if not await self.graph.has_node(need_insert_id):
                await self.graph.upsert_node(
                    need_insert_id,
                    {
                        "entity_type": UNKNOWN_ENTITY_TYPE,
                        "description": description,
                        "source_id": source_id,
                    },
                )
                self._stub_count += 1
                logger.debug(f"Created stub entity {need_insert_id} for edge {src_id} -> {tgt_id}")

        description = await self.summarizer.summarize((src_id, tgt_id), description)

        merged = RelationshipData(
            src_id=src_id,
            tgt_id=tgt_id,
            description=description,
            keywords=keywords,
            source_id=source_id,
            weight=weight,
        )
        await self.graph.upsert_edge(src_id, tgt_id, merged.to_edge_data())
        return merged

    async def merge_extraction(
        self, extraction: ExtractionResult
    ) -> Optional[Tuple[List[EntityData], List[RelationshipData]]]:
        """
        Merge one batch's candidates.

        Returns None without touching storage when the batch yielded no
        entities or no relationships.
        """
        if not extraction.maybe_nodes:
            logger.warning("Didn't extract any entities, maybe your LLM is not working")
            return None
        if not extraction.maybe_edges:
            logger.warning("Didn't extract any relationships, maybe your LLM is not working")
            return None

        self._stub_count = 0
        logger.info("Inserting entities into storage...")
        all_entities_data = await asyncio.gather(
            *[
                self.merge_nodes_then_upsert(name, candidates)
                for name, candidates in extraction.maybe_nodes.items()
            ]
        )

        logger.info("Inserting relationships into storage...")
        all_relationships_data = await asyncio.gather(
            *[
                self.merge_edges_then_upsert(src_id, tgt_id, candidates)
                for (src_id, tgt_id), candidates in extraction.maybe_edges.items()
            ]
        )

        await self.upsert_vectors(all_entities_data, all_relationships_data)

        stats = EntityGraphStats(
            entity_count=len(all_entities_data),
            relationship_count=len(all_relationships_data),
            stub_entities=self._stub_count,
            summarized=self.summarizer.get_stats()["summarized"],
        )
        logger.info(
            f"Merged {stats.entity_count} entities, {stats.relationship_count} relationships "
            f"({stats.stub_entities} stub entities)"
        )
        return list(all_entities_data), list(all_relationships_data)

    async def upsert_vectors(
        self,
        entities: List[EntityData],
        relationships: List[RelationshipData],
    ) -> None:
        if self.entities_vdb is not None and entities:
            await self.entities_vdb.upsert(
                {
                    entity_vector_id(dp.entity_name): {
                        "content": dp.entity_name + dp.description,
                        "entity_name": dp.entity_name,
                    }
                    for dp in entities
                }
            )

        if self.relationships_vdb is not None and relationships:
            await self.relationships_vdb.upsert(
                {
                    relationship_vector_id(dp.src_id, dp.tgt_id): {
                        "content": dp.keywords + dp.src_id + dp.tgt_id + dp.description,
                        "src_id": dp.src_id,
                        "tgt_id": dp.tgt_id,
                    }
                    for dp in relationships
                }
            )
