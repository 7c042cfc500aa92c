"""
GraphRAG pipeline facade: ingestion and mode-dispatched querying over one
set of storages.
"""

import logging
import os
import time
from typing import Any, AsyncIterable, Dict, List, Optional, Union

from config.settings import LLMConfig, QueryMode, QueryParam, Settings, settings as default_settings
from core.base import BaseGraphStorage, BaseKVStorage, StorageBundle
from core.cache import DiskKVStorage, InMemoryKVStorage
from core.description_summarizer import DescriptionSummarizer
from core.embeddings import OpenAIEmbeddingClient
from core.entity_extraction import EntityExtractor
from core.entity_graph import GraphMergeEngine
from core.graph_db import Neo4jGraphStorage
from core.llm import BaseLLMClient, OpenAILLMClient
from core.networkx_graph import NetworkXGraphStorage
from core.prompts import PROMPTS
from core.token_counter import TokenCounter
from core.vector_db import EmbeddingFunc, InMemoryVectorStorage
from ingestion.document_processor import DocumentProcessor, IngestResult
from rag.nodes.generation import generate_response
from rag.nodes.query_analysis import extract_keywords
from rag.retriever import ContextBuilder

logger = logging.getLogger(__name__)


def _build_kv(namespace: str, source: Settings) -> BaseKVStorage:
    if source.kv_storage == "disk":
        return DiskKVStorage(namespace, source.working_dir)
    return InMemoryKVStorage(namespace)


def _build_graph(source: Settings) -> BaseGraphStorage:
    if source.graph_storage == "neo4j":
        graph = Neo4jGraphStorage(
            uri=source.neo4j_uri,
            username=source.neo4j_username,
            password=source.neo4j_password,
            database=source.neo4j_database,
            max_connection_pool_size=source.neo4j_max_connection_pool_size,
        )
        graph.ensure_connected()
        return graph
    return NetworkXGraphStorage("chunk_entity_relation", working_dir=source.working_dir)


def build_storages(
    source: Settings,
    embedding_func: EmbeddingFunc,
    persist: bool = True,
) -> StorageBundle:
    """Instantiate the configured storage backends."""
    working_dir = source.working_dir if persist else None
    if working_dir:
        os.makedirs(working_dir, exist_ok=True)

    def _vdb(namespace: str, meta_fields) -> InMemoryVectorStorage:
        return InMemoryVectorStorage(
            namespace,
            embedding_func,
            meta_fields=meta_fields,
            embedding_batch_num=source.embedding_batch_num,
            cosine_better_than_threshold=source.cosine_better_than_threshold,
            working_dir=working_dir,
        )

    return StorageBundle(
        full_docs=_build_kv("full_docs", source),
        text_chunks=_build_kv("text_chunks", source),
        graph=_build_graph(source),
        entities_vdb=_vdb("entities", {"entity_name"}),
        relationships_vdb=_vdb("relationships", {"src_id", "tgt_id"}),
        chunks_vdb=_vdb("chunks", {"full_doc_id"}),
        llm_response_cache=_build_kv("llm_response_cache", source) if source.enable_llm_cache else None,
    )


class GraphRAG:
    """Knowledge-graph RAG pipeline orchestrator."""

    def __init__(
        self,
        storages: StorageBundle,
        llm: BaseLLMClient,
        config: Optional[LLMConfig] = None,
        query_defaults: Optional[QueryParam] = None,
        counter: Optional[TokenCounter] = None,
        stream_max_concurrency: int = 5,
    ):
        self.storages = storages
        self.llm = llm
        self.config = config or LLMConfig()
        self.query_defaults = query_defaults or QueryParam()
        self.counter = counter or TokenCounter(self.config.tiktoken_model_name)
        self.stream_max_concurrency = stream_max_concurrency

        self.extractor = EntityExtractor(llm, self.config)
        self.summarizer = DescriptionSummarizer(llm, self.config, self.counter)
        self.merge_engine = GraphMergeEngine(
            storages.graph,
            storages.entities_vdb,
            storages.relationships_vdb,
            self.summarizer,
        )
        self.processor = DocumentProcessor(
            storages, self.extractor, self.merge_engine, self.counter, self.config
        )
        self.context_builder = ContextBuilder(
            storages.graph,
            storages.entities_vdb,
            storages.relationships_vdb,
            storages.chunks_vdb,
            storages.text_chunks,
            self.counter,
        )

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "GraphRAG":
        """Wire OpenAI clients and the configured backends from application settings."""
        source = source or default_settings
        embedder = OpenAIEmbeddingClient(
            model=source.embedding_model,
            embedding_dim=source.embedding_dim,
            api_key=source.openai_api_key,
            base_url=source.openai_base_url,
            proxy=source.openai_proxy,
        )
        storages = build_storages(source, embedder)
        llm = OpenAILLMClient(
            model=source.openai_model,
            api_key=source.openai_api_key,
            base_url=source.openai_base_url,
            proxy=source.openai_proxy,
            hashing_kv=storages.llm_response_cache,
        )
        logger.info(
            f"GraphRAG initialized (graph={source.graph_storage}, kv={source.kv_storage}, "
            f"model={source.openai_model})"
        )
        return cls(
            storages,
            llm,
            config=LLMConfig.from_settings(source),
            query_defaults=QueryParam.from_settings(source),
            stream_max_concurrency=source.stream_max_concurrency,
        )

    # ------------------------------------------------------------------
    # ingestion
    # ------------------------------------------------------------------

    async def insert(self, docs: Union[str, List[str]]) -> IngestResult:
        return await self.processor.insert(docs)

    async def insert_custom_kg(self, custom_kg: Dict[str, Any]) -> IngestResult:
        return await self.processor.insert_custom_kg(custom_kg)

    async def delete_by_entity(self, entity_name: str) -> None:
        await self.processor.delete_by_entity(entity_name)

    async def process_stream(
        self, stream: AsyncIterable[str], max_concurrency: Optional[int] = None
    ) -> List[IngestResult]:
        return await self.processor.process_stream(
            stream, max_concurrency=max_concurrency or self.stream_max_concurrency
        )

    # ------------------------------------------------------------------
    # querying
    # ------------------------------------------------------------------

    def resolve_param(self, param: Optional[QueryParam] = None, **overrides: Any) -> QueryParam:
        """Merge per-call overrides onto the given or default parameters."""
        return (param or self.query_defaults).merged(overrides)

    async def query(self, query: str, param: Optional[QueryParam] = None, **overrides: Any) -> str:
        """
        Answer a query in the requested mode.

        Raises InvalidQueryModeError for an empty or unknown mode. Returns the
        fail response when no keywords or no context could be found.
        """
        param = self.resolve_param(param, **overrides)
        mode = QueryMode.parse(param.mode)
        start_time = time.time()

        if mode == QueryMode.NAIVE:
            context = await self.context_builder.build_naive_context(query, param)
            if context is None:
                return PROMPTS["fail_response"]
            if param.only_need_context:
                return context
            response = await generate_response(query, context, param, self.llm, naive=True)
        else:
            keywords = await extract_keywords(query, self.llm, self.config)
            if keywords is None:
                return PROMPTS["fail_response"]
            missing = keywords.missing_for(mode)
            if missing:
                logger.warning(f"{missing} is empty for {mode.value} query")
                return PROMPTS["fail_response"]

            context = await self.context_builder.build_query_context(
                keywords.low_level_text, keywords.high_level_text, param
            )
            if param.only_need_context:
                return context if context is not None else PROMPTS["fail_response"]
            response = await generate_response(query, context, param, self.llm)

        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Query ({mode.value}) completed in {duration_ms}ms")
        return response

    def close(self) -> None:
        """Release backend connections."""
        for storage in self.storages.all():
            close = getattr(storage, "close", None)
            if callable(close):
                close()
