"""
Neo4jGraphStorage against a live database (skipped when unreachable).
"""

import os
import uuid

import pytest
import pytest_asyncio

from core.graph_db import Neo4jGraphStorage


@pytest_asyncio.fixture
async def graph():
    storage = Neo4jGraphStorage(
        uri=os.environ["NEO4J_URI"],
        username=os.environ["NEO4J_USERNAME"],
        password=os.environ["NEO4J_PASSWORD"],
        database=os.environ.get("NEO4J_DATABASE"),
    )
    storage.ensure_connected()
    created = []
    yield storage, created
    for node_id in created:
        await storage.delete_node(node_id)
    storage.close()


def _node_id(label: str) -> str:
    return f'"TEST-{label}-{uuid.uuid4().hex[:8].upper()}"'


@pytest.mark.asyncio
async def test_node_and_edge_roundtrip(graph):
    storage, created = graph
    alice, acme = _node_id("ALICE"), _node_id("ACME")
    created.extend([alice, acme])

    await storage.upsert_node(alice, {"entity_type": "PERSON", "description": "Founder", "source_id": "chunk-1"})
    await storage.upsert_node(acme, {"entity_type": "ORGANIZATION", "description": "Company", "source_id": "chunk-1"})
    await storage.upsert_edge(
        alice, acme, {"weight": 2.0, "description": "founded", "keywords": "founding", "source_id": "chunk-1"}
    )

    assert await storage.has_node(alice)
    assert (await storage.get_node(alice))["entity_type"] == "PERSON"
    # Edges are undirected.
    assert await storage.has_edge(acme, alice)
    assert (await storage.get_edge(acme, alice))["weight"] == 2.0
    assert await storage.node_degree(alice) == 1
    assert await storage.edge_degree(alice, acme) == 2
    assert await storage.get_node_edges(alice) == [(alice, acme)]


@pytest.mark.asyncio
async def test_upsert_replaces_properties(graph):
    storage, created = graph
    node = _node_id("BOB")
    created.append(node)

    await storage.upsert_node(node, {"entity_type": "PERSON", "description": "old", "source_id": "a"})
    await storage.upsert_node(node, {"entity_type": "PERSON", "description": "new", "source_id": "a<SEP>b"})

    props = await storage.get_node(node)
    assert props["description"] == "new"
    assert props["source_id"] == "a<SEP>b"


@pytest.mark.asyncio
async def test_missing_entities(graph):
    storage, _ = graph
    missing = _node_id("MISSING")
    assert await storage.get_node(missing) is None
    assert await storage.get_node_edges(missing) is None
    assert await storage.node_degree(missing) == 0


@pytest.mark.asyncio
async def test_delete_node_removes_incident_edges(graph):
    storage, created = graph
    a, b = _node_id("A"), _node_id("B")
    created.append(b)

    await storage.upsert_node(a, {"entity_type": "X", "description": "a", "source_id": "s"})
    await storage.upsert_node(b, {"entity_type": "X", "description": "b", "source_id": "s"})
    await storage.upsert_edge(a, b, {"weight": 1.0, "description": "", "keywords": "", "source_id": "s"})

    await storage.delete_node(a)

    assert not await storage.has_node(a)
    assert not await storage.has_edge(a, b)
    assert await storage.get_node_edges(b) == []
