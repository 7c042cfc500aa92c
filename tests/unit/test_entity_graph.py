"""
Tests for the graph merge engine and description summarization.

Tests cover:
- Type resolution by frequency with deterministic ties
- Description / source id union across batches
- Relationship weight summation
- Stub creation for missing endpoints
- Order independence of merges
- No-op batches leave storage untouched
- Summarization threshold
"""

import itertools

import pytest

from config.settings import LLMConfig
from conftest import FakeLLM, WhitespaceTokenCounter, is_summary_prompt
from core.description_summarizer import DescriptionSummarizer
from core.entity_graph import GraphMergeEngine, most_common_type, relationship_vector_id
from core.entity_models import EntityData, ExtractionResult, RelationshipData
from core.networkx_graph import NetworkXGraphStorage
from core.utils import GRAPH_FIELD_SEP


def _engine(storages=None, llm=None, summary_tokens=512):
    llm = llm or FakeLLM(lambda *a: "SUMMARY")
    summarizer = DescriptionSummarizer(
        llm,
        LLMConfig(entity_summary_to_max_tokens=summary_tokens),
        WhitespaceTokenCounter(),
    )
    if storages is None:
        return GraphMergeEngine(NetworkXGraphStorage(), None, None, summarizer)
    return GraphMergeEngine(
        storages.graph, storages.entities_vdb, storages.relationships_vdb, summarizer
    )


def _entity(name, entity_type, description, source):
    return EntityData(name, entity_type, description, source)


def _rel(src, tgt, description, keywords, source, weight):
    return RelationshipData(src, tgt, description, keywords, source, weight)


class TestMostCommonType:
    def test_majority_wins(self):
        assert most_common_type(["PERSON", "ORG", "PERSON"]) == "PERSON"

    def test_tie_resolves_lexicographically(self):
        assert most_common_type(["PERSON", "ORG"]) == "ORG"
        assert most_common_type(["ORG", "PERSON"]) == "ORG"

    def test_empty_is_unknown(self):
        assert most_common_type(["", ""]) == "UNKNOWN"


class TestMergeNodes:
    @pytest.mark.asyncio
    async def test_merge_with_existing_node_unions_fields(self):
        engine = _engine()
        await engine.graph.upsert_node(
            '"APPLE"',
            {"entity_type": "ORGANIZATION", "description": "Makes phones.", "source_id": "chunk-1"},
        )

        merged = await engine.merge_nodes_then_upsert(
            '"APPLE"',
            [
                _entity('"APPLE"', "ORGANIZATION", "Based in Cupertino.", "chunk-2"),
                _entity('"APPLE"', "COMPANY", "Makes phones.", "chunk-2"),
            ],
        )

        assert merged.entity_type == "ORGANIZATION"
        assert merged.description.split(GRAPH_FIELD_SEP) == ["Based in Cupertino.", "Makes phones."]
        assert merged.source_id.split(GRAPH_FIELD_SEP) == ["chunk-1", "chunk-2"]
        node = await engine.graph.get_node('"APPLE"')
        assert node["description"] == merged.description

    @pytest.mark.asyncio
    async def test_merge_order_independent(self):
        candidates = [
            _entity('"X"', "PERSON", "alpha", "c1"),
            _entity('"X"', "ORG", "beta", "c2"),
            _entity('"X"', "EVENT", "gamma", "c3"),
        ]
        results = set()
        for perm in itertools.permutations(candidates):
            engine = _engine()
            # Split each ordering into two batches to also vary batch boundaries.
            await engine.merge_nodes_then_upsert('"X"', list(perm[:1]))
            await engine.merge_nodes_then_upsert('"X"', list(perm[1:]))
            node = await engine.graph.get_node('"X"')
            results.add((node["entity_type"], node["description"], node["source_id"]))
        assert len(results) == 1


class TestMergeEdges:
    @pytest.mark.asyncio
    async def test_weights_sum_across_batches(self):
        engine = _engine()
        await engine.merge_edges_then_upsert('"A"', '"B"', [_rel('"A"', '"B"', "d1", "k1", "c1", 2.0)])
        merged = await engine.merge_edges_then_upsert(
            '"A"', '"B"', [_rel('"A"', '"B"', "d2", "k1", "c2", 3.5)]
        )
        assert merged.weight == pytest.approx(5.5)
        assert merged.keywords == "k1"
        assert merged.description.split(GRAPH_FIELD_SEP) == ["d1", "d2"]

    @pytest.mark.asyncio
    async def test_missing_endpoints_become_unknown_stubs(self):
        engine = _engine()
        await engine.merge_edges_then_upsert(
            '"A"', '"B"', [_rel('"A"', '"B"', "A knows B", "social", "c1", 1.0)]
        )
        for name in ('"A"', '"B"'):
            node = await engine.graph.get_node(name)
            assert node["entity_type"] == "UNKNOWN"
            assert node["description"] == "A knows B"
            assert node["source_id"] == "c1"

    @pytest.mark.asyncio
    async def test_existing_endpoint_not_overwritten(self):
        engine = _engine()
        await engine.graph.upsert_node(
            '"A"', {"entity_type": "PERSON", "description": "Real", "source_id": "c0"}
        )
        await engine.merge_edges_then_upsert('"A"', '"B"', [_rel('"A"', '"B"', "d", "k", "c1", 1.0)])
        node = await engine.graph.get_node('"A"')
        assert node["entity_type"] == "PERSON"


class TestMergeExtraction:
    @pytest.mark.asyncio
    async def test_no_relationships_is_noop_before_writes(self, storages):
        engine = _engine(storages)
        extraction = ExtractionResult()
        extraction.add_entity(_entity('"A"', "PERSON", "a", "c1"))

        assert await engine.merge_extraction(extraction) is None
        assert not await storages.graph.has_node('"A"')
        assert await storages.entities_vdb.query("a", top_k=5) == []

    @pytest.mark.asyncio
    async def test_no_entities_is_noop(self, storages):
        engine = _engine(storages)
        extraction = ExtractionResult()
        extraction.add_relationship(_rel('"A"', '"B"', "d", "k", "c1", 1.0))

        assert await engine.merge_extraction(extraction) is None
        assert not await storages.graph.has_node('"A"')

    @pytest.mark.asyncio
    async def test_merge_extraction_writes_graph_and_vectors(self, storages):
        engine = _engine(storages)
        extraction = ExtractionResult()
        extraction.add_entity(_entity('"APPLE"', "ORGANIZATION", "Apple makes phones", "c1"))
        extraction.add_entity(_entity('"TIM COOK"', "PERSON", "Tim Cook runs Apple", "c1"))
        extraction.add_relationship(_rel('"TIM COOK"', '"APPLE"', "CEO of Apple", "leadership", "c1", 9))

        entities, relationships = await engine.merge_extraction(extraction)

        assert {e.entity_name for e in entities} == {'"APPLE"', '"TIM COOK"'}
        assert relationships[0].weight == 9.0
        assert await storages.graph.has_edge('"APPLE"', '"TIM COOK"')

        hits = await storages.entities_vdb.query("tim cook", top_k=1)
        assert hits[0]["entity_name"] == '"TIM COOK"'
        rel_hits = await storages.relationships_vdb.query("leadership", top_k=1)
        assert rel_hits[0]["id"] == relationship_vector_id('"TIM COOK"', '"APPLE"')
        assert (rel_hits[0]["src_id"], rel_hits[0]["tgt_id"]) == ('"TIM COOK"', '"APPLE"')


class TestDescriptionSummarizer:
    @pytest.mark.asyncio
    async def test_below_threshold_passes_through(self):
        llm = FakeLLM(lambda *a: "SUMMARY")
        summarizer = DescriptionSummarizer(
            llm, LLMConfig(entity_summary_to_max_tokens=10), WhitespaceTokenCounter()
        )
        assert await summarizer.summarize('"A"', "short text") == "short text"
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_at_threshold_triggers_one_call(self):
        llm = FakeLLM(lambda *a: "SUMMARY")
        summarizer = DescriptionSummarizer(
            llm,
            LLMConfig(entity_summary_to_max_tokens=4, llm_model_max_token_size=5),
            WhitespaceTokenCounter(),
        )
        description = GRAPH_FIELD_SEP.join(["one two", "three four five six seven eight"])

        result = await summarizer.summarize_with_result(('"A"', '"B"'), description)

        assert result.summarized is True
        assert result.summarized_description == "SUMMARY"
        assert len(llm.calls) == 1
        call = llm.calls[0]
        assert is_summary_prompt(call["prompt"])
        assert '"A", "B"' in call["prompt"]
        assert call["options"]["max_tokens"] == 4
        # Input truncated to the model window before summarizing; the joined
        # "two<SEP>three" counts as a single whitespace token.
        assert "seven" not in call["prompt"]

    @pytest.mark.asyncio
    async def test_repeat_is_served_from_cache(self):
        llm = FakeLLM(lambda *a: "SUMMARY")
        summarizer = DescriptionSummarizer(
            llm, LLMConfig(entity_summary_to_max_tokens=2), WhitespaceTokenCounter()
        )
        await summarizer.summarize('"A"', "a b c")
        await summarizer.summarize('"A"', "a b c")
        assert len(llm.calls) == 1
        assert summarizer.get_stats()["cache_hits"] == 1

    @pytest.mark.asyncio
    async def test_merge_summarizes_long_descriptions(self):
        llm = FakeLLM(lambda prompt, *a: "SHORT" if is_summary_prompt(prompt) else "")
        engine = _engine(llm=llm, summary_tokens=3)
        merged = await engine.merge_nodes_then_upsert(
            '"A"',
            [_entity('"A"', "PERSON", "alpha beta", "c1"), _entity('"A"', "PERSON", "gamma delta", "c2")],
        )
        assert merged.description == "SHORT"
        assert merged.source_id == f"c1{GRAPH_FIELD_SEP}c2"
