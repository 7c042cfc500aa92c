"""
Entity and Relationship data models for entity extraction and graph merging.

Extracted separately to avoid circular imports between the parser, the merge
engine and the storage backends.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class EntityData:
    """A candidate or committed entity, keyed by its canonical name."""

    entity_name: str
    entity_type: str
    description: str
    source_id: str

    def to_node_data(self) -> Dict[str, Any]:
        """Properties written to the graph node."""
        return {
            "entity_type": self.entity_type,
            "description": self.description,
            "source_id": self.source_id,
        }


@dataclass
class RelationshipData:
    """A candidate or committed relationship between two canonical entity names."""

    src_id: str
    tgt_id: str
    description: str
    keywords: str
    source_id: str
    weight: float = 1.0

    def __post_init__(self):
        self.weight = float(self.weight)

    @property
    def pair(self):
        return (self.src_id, self.tgt_id)

    def to_edge_data(self) -> Dict[str, Any]:
        """Properties written to the graph edge."""
        return {
            "weight": self.weight,
            "description": self.description,
            "keywords": self.keywords,
            "source_id": self.source_id,
        }


@dataclass
class ExtractionResult:
    """Candidates parsed from one chunk, grouped by entity name / ordered pair."""

    maybe_nodes: Dict[str, List[EntityData]] = field(default_factory=dict)
    maybe_edges: Dict[tuple, List[RelationshipData]] = field(default_factory=dict)
    chunk_key: Optional[str] = None

    def add_entity(self, entity: EntityData) -> None:
        self.maybe_nodes.setdefault(entity.entity_name, []).append(entity)

    def add_relationship(self, relationship: RelationshipData) -> None:
        self.maybe_edges.setdefault(relationship.pair, []).append(relationship)

    def extend(self, other: "ExtractionResult") -> None:
        for name, candidates in other.maybe_nodes.items():
            self.maybe_nodes.setdefault(name, []).extend(candidates)
        for pair, candidates in other.maybe_edges.items():
            self.maybe_edges.setdefault(pair, []).extend(candidates)
