"""
Tests for retrieval context assembly across naive, local, global and hybrid modes.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from config.settings import QueryMode, QueryParam
from conftest import WhitespaceTokenCounter
from core.base import BaseGraphStorage
from core.entity_graph import entity_vector_id, relationship_vector_id
from core.utils import GRAPH_FIELD_SEP
from rag.retriever import CHUNK_SEPARATOR, ContextBuilder

CHUNK_1 = "Tim Cook is the CEO of Apple."
CHUNK_2 = "Apple sells the iPhone worldwide."

ENTITY_HEADER_LINE = "id,entity,type,description,rank"
TIM_COOK_ROW = '0,"TIM COOK",PERSON,Tim Cook leads Apple,1'


async def _populate(storages):
    graph = storages.graph
    await graph.upsert_node(
        '"APPLE"', {"entity_type": "ORGANIZATION", "description": "Apple designs phones", "source_id": "chunk-1"}
    )
    await graph.upsert_node(
        '"TIM COOK"',
        {"entity_type": "PERSON", "description": "Tim Cook leads Apple", "source_id": f"chunk-1{GRAPH_FIELD_SEP}chunk-2"},
    )
    await graph.upsert_node(
        '"IPHONE"', {"entity_type": "PRODUCT", "description": "iPhone is a smartphone", "source_id": "chunk-2"}
    )
    await graph.upsert_edge(
        '"TIM COOK"', '"APPLE"',
        {"weight": 9.0, "description": "Tim Cook is CEO of Apple", "keywords": "leadership", "source_id": "chunk-1"},
    )
    await graph.upsert_edge(
        '"APPLE"', '"IPHONE"',
        {"weight": 5.0, "description": "Apple sells the iPhone", "keywords": "product sales", "source_id": "chunk-2"},
    )

    await storages.entities_vdb.upsert(
        {
            entity_vector_id(name): {"content": name + description, "entity_name": name}
            for name, description in [
                ('"APPLE"', "Apple designs phones"),
                ('"TIM COOK"', "Tim Cook leads Apple"),
                ('"IPHONE"', "iPhone is a smartphone"),
            ]
        }
    )
    await storages.relationships_vdb.upsert(
        {
            relationship_vector_id('"TIM COOK"', '"APPLE"'): {
                "content": "leadership" + '"TIM COOK"' + '"APPLE"' + "Tim Cook is CEO of Apple",
                "src_id": '"TIM COOK"',
                "tgt_id": '"APPLE"',
            },
            relationship_vector_id('"APPLE"', '"IPHONE"'): {
                "content": "product sales" + '"APPLE"' + '"IPHONE"' + "Apple sells the iPhone",
                "src_id": '"APPLE"',
                "tgt_id": '"IPHONE"',
            },
        }
    )
    chunks = {
        "chunk-1": {"content": CHUNK_1, "full_doc_id": "doc-1", "tokens": 7, "chunk_order_index": 0},
        "chunk-2": {"content": CHUNK_2, "full_doc_id": "doc-1", "tokens": 5, "chunk_order_index": 1},
    }
    await storages.text_chunks.upsert(chunks)
    await storages.chunks_vdb.upsert(
        {k: {"content": v["content"], "full_doc_id": v["full_doc_id"]} for k, v in chunks.items()}
    )


@pytest_asyncio.fixture
async def builder(storages):
    await _populate(storages)
    return ContextBuilder(
        storages.graph,
        storages.entities_vdb,
        storages.relationships_vdb,
        storages.chunks_vdb,
        storages.text_chunks,
        WhitespaceTokenCounter(),
    )


class TestNaiveContext:
    @pytest.mark.asyncio
    async def test_naive_never_touches_graph(self, storages):
        await _populate(storages)
        # Every method of the bare interface raises.
        builder = ContextBuilder(
            BaseGraphStorage(),
            storages.entities_vdb,
            storages.relationships_vdb,
            storages.chunks_vdb,
            storages.text_chunks,
            WhitespaceTokenCounter(),
        )
        context = await builder.build_naive_context("iphone worldwide", QueryParam(mode="naive", top_k=1))
        assert context == CHUNK_2

    @pytest.mark.asyncio
    async def test_naive_joins_chunks_with_separator(self, builder):
        context = await builder.build_naive_context("apple", QueryParam(mode="naive", top_k=2))
        assert set(context.split(CHUNK_SEPARATOR)) == {CHUNK_1, CHUNK_2}

    @pytest.mark.asyncio
    async def test_naive_respects_text_unit_budget(self, builder):
        param = QueryParam(mode="naive", top_k=2, max_token_for_text_unit=8)
        context = await builder.build_naive_context("apple", param)
        assert CHUNK_SEPARATOR not in context

    @pytest.mark.asyncio
    async def test_naive_without_hits_is_none(self, builder):
        assert await builder.build_naive_context("zebra", QueryParam(mode="naive")) is None


class TestLocalContext:
    @pytest.mark.asyncio
    async def test_local_context_tables(self, builder):
        param = QueryParam(mode="local", top_k=1)
        context = await builder.build_query_context("tim cook", "", param)

        assert "-----Entities-----" in context
        assert TIM_COOK_ROW in context
        # One-hop relation ranked by the endpoints' combined degree.
        assert '0,"TIM COOK","APPLE",Tim Cook is CEO of Apple,leadership,9.0,3' in context
        # Chunk also cited by a neighbor comes first.
        assert f"0,{CHUNK_1}" in context
        assert f"1,{CHUNK_2}" in context

    @pytest.mark.asyncio
    async def test_local_text_units_truncated_greedily(self, builder):
        param = QueryParam(mode="local", top_k=1, max_token_for_text_unit=7)
        context = await builder.build_query_context("tim cook", "", param)
        assert CHUNK_1 in context
        assert CHUNK_2 not in context

    @pytest.mark.asyncio
    async def test_local_relations_use_local_budget(self, builder):
        param = QueryParam(mode="local", top_k=1, max_token_for_local_context=1)
        context = await builder.build_query_context("tim cook", "", param)
        assert "Tim Cook is CEO of Apple" not in context
        assert TIM_COOK_ROW in context

    @pytest.mark.asyncio
    async def test_local_without_keywords_is_none(self, builder):
        assert await builder.build_query_context("", "leadership", QueryParam(mode="local")) is None


class TestGlobalContext:
    @pytest.mark.asyncio
    async def test_global_context_tables(self, builder):
        param = QueryParam(mode="global", top_k=1)
        context = await builder.build_query_context("", "leadership", param)

        assert '0,"TIM COOK","APPLE",Tim Cook is CEO of Apple,leadership,9.0,3' in context
        assert '0,"TIM COOK",PERSON,Tim Cook leads Apple,1' in context
        assert '1,"APPLE",ORGANIZATION,Apple designs phones,2' in context
        assert f"0,{CHUNK_1}" in context
        assert CHUNK_2 not in context

    @pytest.mark.asyncio
    async def test_global_relations_use_global_budget(self, builder):
        param = QueryParam(mode="global", top_k=1, max_token_for_global_context=1)
        assert await builder.build_query_context("", "leadership", param) is None


class TestHybridContext:
    @pytest.mark.asyncio
    async def test_hybrid_unions_without_duplicates(self, builder):
        param = QueryParam(mode="hybrid", top_k=1)
        context = await builder.build_query_context("tim cook", "leadership", param)

        assert context.count(ENTITY_HEADER_LINE) == 1
        assert context.count(TIM_COOK_ROW) == 1
        # Global-only entity row and local-only source row both survive.
        assert '1,"APPLE",ORGANIZATION,Apple designs phones,2' in context
        assert f"1,{CHUNK_2}" in context

    @pytest.mark.asyncio
    async def test_hybrid_falls_back_to_global_when_local_empty(self, builder):
        hybrid = await builder.build_query_context("zebra", "leadership", QueryParam(mode="hybrid", top_k=1))
        global_only = await builder.build_query_context("zebra", "leadership", QueryParam(mode="global", top_k=1))
        assert hybrid == global_only

    @pytest.mark.asyncio
    async def test_hybrid_falls_back_to_local_when_global_empty(self, builder):
        hybrid = await builder.build_query_context("tim cook", "zebra", QueryParam(mode="hybrid", top_k=1))
        local_only = await builder.build_query_context("tim cook", "zebra", QueryParam(mode="local", top_k=1))
        assert hybrid == local_only

    @pytest.mark.asyncio
    async def test_all_empty_is_none(self, builder):
        assert await builder.build_query_context("zebra", "walrus", QueryParam(mode="hybrid")) is None


@pytest.mark.asyncio
async def test_naive_mode_rejected_by_graph_context(builder):
    with pytest.raises(ValueError):
        await builder.build_query_context("a", "b", QueryParam(mode=QueryMode.NAIVE))


def _node(entity_type, description, source_id):
    return {"entity_type": entity_type, "description": description, "source_id": source_id}


def _edge(weight, description, source_id):
    return {"weight": weight, "description": description, "keywords": "", "source_id": source_id}


def _bare_builder(storages, relationships_vdb=None):
    return ContextBuilder(
        storages.graph,
        storages.entities_vdb,
        relationships_vdb or storages.relationships_vdb,
        storages.chunks_vdb,
        storages.text_chunks,
        WhitespaceTokenCounter(),
    )


class TestRankingOrder:
    """Insertion order deliberately differs from the expected output order."""

    @pytest.mark.asyncio
    async def test_local_chunks_prefer_neighbor_cited_within_same_entity(self, storages):
        graph = storages.graph
        await graph.upsert_node('"E"', _node("X", "e", f"chunk-a{GRAPH_FIELD_SEP}chunk-b"))
        await graph.upsert_node('"N"', _node("X", "n", "chunk-b"))
        await graph.upsert_node('"F"', _node("X", "f", "chunk-c"))
        await graph.upsert_node('"M"', _node("X", "m", "chunk-c"))
        await graph.upsert_edge('"E"', '"N"', _edge(1.0, "e-n", "chunk-b"))
        await graph.upsert_edge('"F"', '"M"', _edge(1.0, "f-m", "chunk-c"))
        await storages.text_chunks.upsert(
            {c: {"content": f"text of {c}"} for c in ("chunk-a", "chunk-b", "chunk-c")}
        )
        node_datas = [
            {"entity_name": '"E"', **_node("X", "e", f"chunk-a{GRAPH_FIELD_SEP}chunk-b"), "rank": 1},
            {"entity_name": '"F"', **_node("X", "f", "chunk-c"), "rank": 1},
        ]

        units = await _bare_builder(storages)._find_most_related_text_unit_from_entities(
            node_datas, QueryParam()
        )

        # chunk-c has a neighbor citation too, but its entity was retrieved later.
        assert [u["content"] for u in units] == ["text of chunk-b", "text of chunk-a", "text of chunk-c"]

    @pytest.mark.asyncio
    async def test_local_edges_equal_degree_ordered_by_weight(self, storages):
        graph = storages.graph
        for name in ('"E"', '"A"', '"B"'):
            await graph.upsert_node(name, _node("X", name, "chunk-1"))
        await graph.upsert_edge('"E"', '"A"', _edge(1.0, "light", "chunk-1"))
        await graph.upsert_edge('"E"', '"B"', _edge(5.0, "heavy", "chunk-1"))

        edges = await _bare_builder(storages)._find_most_related_edges_from_entities(
            [{"entity_name": '"E"'}], QueryParam()
        )

        assert [e["description"] for e in edges] == ["heavy", "light"]
        assert edges[0]["rank"] == edges[1]["rank"] == 3

    @pytest.mark.asyncio
    async def test_local_edges_degree_outranks_weight(self, storages):
        graph = storages.graph
        for name in ('"E"', '"A"', '"B"', '"C"'):
            await graph.upsert_node(name, _node("X", name, "chunk-1"))
        await graph.upsert_edge('"E"', '"B"', _edge(9.0, "heavy leaf", "chunk-1"))
        await graph.upsert_edge('"E"', '"A"', _edge(1.0, "light hub", "chunk-1"))
        await graph.upsert_edge('"A"', '"C"', _edge(1.0, "a-c", "chunk-1"))

        edges = await _bare_builder(storages)._find_most_related_edges_from_entities(
            [{"entity_name": '"E"'}], QueryParam()
        )

        assert [e["description"] for e in edges] == ["light hub", "heavy leaf"]

    @pytest.mark.asyncio
    async def test_global_edges_and_chunks_follow_rank_then_weight(self, storages):
        graph = storages.graph
        for name, chunk in (('"P"', "chunk-p"), ('"Q"', "chunk-p"), ('"R"', "chunk-r"), ('"S"', "chunk-r")):
            await graph.upsert_node(name, _node("X", name, chunk))
        await graph.upsert_edge('"P"', '"Q"', _edge(1.0, "weak link", "chunk-p"))
        await graph.upsert_edge('"R"', '"S"', _edge(7.0, "strong link", "chunk-r"))
        await storages.text_chunks.upsert(
            {"chunk-p": {"content": "about p"}, "chunk-r": {"content": "about r"}}
        )
        relationships_vdb = MagicMock()
        # Similarity order puts the weaker edge first.
        relationships_vdb.query = AsyncMock(
            return_value=[{"src_id": '"P"', "tgt_id": '"Q"'}, {"src_id": '"R"', "tgt_id": '"S"'}]
        )

        tables = await _bare_builder(storages, relationships_vdb).get_edge_data(
            "links", QueryParam(mode="global")
        )

        relation_rows = tables.relations.split("\n")[1:]
        assert relation_rows[0].startswith('0,"R","S",strong link')
        assert relation_rows[1].startswith('1,"P","Q",weak link')
        assert tables.text_units.split("\n")[1:] == ["0,about r", "1,about p"]
