"""
Configuration management for the knowledge-graph RAG pipeline.

`Settings` is read from the environment once, at process bootstrap. Core code
never touches it; it receives explicit `LLMConfig` / `QueryParam` values that
are built from the settings and merged with caller overrides at the call
boundary.
"""

import logging
import os
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from core.exceptions import InvalidQueryModeError

logger = logging.getLogger(__name__)


class QueryMode(Enum):
    """Retrieval modes supported by the query orchestrator."""

    NAIVE = "naive"
    LOCAL = "local"
    GLOBAL = "global"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, value: Union[str, "QueryMode", None]) -> "QueryMode":
        """Resolve a user-supplied mode, rejecting empty or unknown values."""
        if isinstance(value, cls):
            return value
        if not value or not str(value).strip():
            raise InvalidQueryModeError("Query mode must not be empty")
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise InvalidQueryModeError(
                f"Unknown query mode '{value}' (expected one of: {allowed})"
            ) from None

    @property
    def uses_low_level(self) -> bool:
        return self in (QueryMode.LOCAL, QueryMode.HYBRID)

    @property
    def uses_high_level(self) -> bool:
        return self in (QueryMode.GLOBAL, QueryMode.HYBRID)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # CORS Configuration
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:3001"],
        description="Allowed origins for CORS"
    )

    # OpenAI Configuration
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(default=None, description="OpenAI base URL")
    openai_model: str = Field(default="gpt-4o-mini", description="OpenAI model name")
    openai_proxy: Optional[str] = Field(default=None, description="OpenAI proxy URL")
    embedding_model: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    embedding_dim: int = Field(default=1536, description="Embedding vector dimension")
    embedding_batch_num: int = Field(
        default=32, description="Number of texts sent per embedding request"
    )

    # LLM behaviour
    llm_model_max_token_size: int = Field(
        default=4096, description="Context window used when truncating descriptions for summarization"
    )
    llm_model_max_async: int = Field(
        default=16, description="Maximum concurrent LLM calls per ingestion batch"
    )
    tiktoken_model_name: str = Field(
        default="gpt-4", description="Model name used to resolve the tiktoken encoding"
    )
    entity_summary_to_max_tokens: int = Field(
        default=512, description="Merged descriptions at or above this token count are summarized"
    )
    entity_extract_max_gleaning: int = Field(
        default=3, description="Extra continuation passes per chunk (0 disables gleaning)"
    )
    enable_llm_cache: bool = Field(
        default=True, description="Memoize LLM responses in the KV cache"
    )
    language: str = Field(default="English", description="Output language for extraction prompts")

    # Chunking
    chunk_token_size: int = Field(default=1024, description="Maximum tokens per chunk")
    chunk_overlap_token_size: int = Field(default=128, description="Tokens shared between neighbouring chunks")

    # Query defaults
    default_query_mode: str = Field(default="local", description="Default retrieval mode")
    top_k: int = Field(default=5, description="Vector hits fetched per query")
    max_token_for_text_unit: int = Field(default=1024, description="Token budget for source chunks")
    max_token_for_global_context: int = Field(default=512, description="Token budget for relationship rows")
    max_token_for_local_context: int = Field(default=512, description="Token budget for entity rows")
    response_type: str = Field(default="Multiple Paragraphs", description="Target response format")

    # Storage backends
    working_dir: str = Field(default="./rag_storage", description="Directory for persisted storage files")
    graph_storage: str = Field(default="networkx", description="Graph backend: networkx or neo4j")
    kv_storage: str = Field(default="memory", description="KV backend: memory or disk")
    cosine_better_than_threshold: float = Field(
        default=0.2, description="Minimum cosine similarity for a vector hit"
    )
    stream_max_concurrency: int = Field(
        default=5, description="In-flight inserts allowed while ingesting a stream"
    )

    # Neo4j Configuration
    neo4j_uri: str = Field(default="bolt://localhost:7687", description="Neo4j URI")
    neo4j_username: str = Field(default="neo4j", description="Neo4j username")
    neo4j_password: str = Field(default="password", description="Neo4j password")
    neo4j_database: Optional[str] = Field(default=None, description="Neo4j database name")
    neo4j_max_connection_pool_size: int = Field(
        default=50, description="Neo4j connection pool size"
    )

    # Application Configuration
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


class LLMConfig(BaseModel):
    """Explicit LLM / extraction parameters passed through ingestion."""

    llm_model_name: str = "gpt-4o-mini"
    llm_model_max_token_size: int = 4096
    llm_model_max_async: int = 16
    tiktoken_model_name: str = "gpt-4"
    entity_summary_to_max_tokens: int = 512
    entity_extract_max_gleaning: int = 3
    chunk_token_size: int = 1024
    chunk_overlap_token_size: int = 128
    embedding_batch_num: int = 32
    enable_llm_cache: bool = True
    language: str = "English"
    entity_types: List[str] = Field(
        default_factory=lambda: ["organization", "person", "geo", "event"]
    )
    example_number: Optional[int] = None

    @classmethod
    def from_settings(cls, source: Settings) -> "LLMConfig":
        return cls(
            llm_model_name=source.openai_model,
            llm_model_max_token_size=source.llm_model_max_token_size,
            llm_model_max_async=source.llm_model_max_async,
            tiktoken_model_name=source.tiktoken_model_name,
            entity_summary_to_max_tokens=source.entity_summary_to_max_tokens,
            entity_extract_max_gleaning=source.entity_extract_max_gleaning,
            chunk_token_size=source.chunk_token_size,
            chunk_overlap_token_size=source.chunk_overlap_token_size,
            embedding_batch_num=source.embedding_batch_num,
            enable_llm_cache=source.enable_llm_cache,
            language=source.language,
        )

    def merged(self, overrides: Optional[Dict[str, Any]] = None) -> "LLMConfig":
        """Return a copy with caller overrides applied."""
        if not overrides:
            return self
        return self.model_copy(update=overrides)


class QueryParam(BaseModel):
    """Explicit per-query parameters."""

    mode: QueryMode = QueryMode.LOCAL
    only_need_context: bool = False
    only_need_prompt: bool = False
    response_type: str = "Multiple Paragraphs"
    top_k: int = 5
    max_token_for_text_unit: int = 1024
    max_token_for_global_context: int = 512
    max_token_for_local_context: int = 512

    @classmethod
    def from_settings(cls, source: Settings) -> "QueryParam":
        return cls(
            mode=QueryMode.parse(source.default_query_mode),
            response_type=source.response_type,
            top_k=source.top_k,
            max_token_for_text_unit=source.max_token_for_text_unit,
            max_token_for_global_context=source.max_token_for_global_context,
            max_token_for_local_context=source.max_token_for_local_context,
        )

    def merged(self, overrides: Optional[Dict[str, Any]] = None) -> "QueryParam":
        """Return a copy with caller overrides applied; the mode is validated."""
        if not overrides:
            return self
        update = {k: v for k, v in overrides.items() if v is not None}
        if "mode" in update:
            update["mode"] = QueryMode.parse(update["mode"])
        return self.model_copy(update=update)


# Global settings instance - will read from environment or use defaults
settings = Settings()

# If Docker Compose provided NEO4J_AUTH (format: user/password), prefer it
# when explicit NEO4J_USERNAME/NEO4J_PASSWORD were not set in the environment.
if os.environ.get("NEO4J_AUTH"):
    if (not os.environ.get("NEO4J_USERNAME")) and (not os.environ.get("NEO4J_PASSWORD")):
        auth = os.environ.get("NEO4J_AUTH", "")
        if "/" in auth:
            u, p = auth.split("/", 1)
            settings.neo4j_username = u
            settings.neo4j_password = p
            logger.info("Applied NEO4J_AUTH to settings (username from NEO4J_AUTH)")

if settings.graph_storage not in ("networkx", "neo4j"):
    logger.warning(f"Invalid graph_storage '{settings.graph_storage}', defaulting to 'networkx'")
    settings.graph_storage = "networkx"

if settings.kv_storage not in ("memory", "disk"):
    logger.warning(f"Invalid kv_storage '{settings.kv_storage}', defaulting to 'memory'")
    settings.kv_storage = "memory"
