"""
Pydantic models for API requests and responses.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class InsertDocumentsRequest(BaseModel):
    """Request model for document ingestion."""

    documents: List[str] = Field(..., description="Raw document texts to ingest")

    @field_validator("documents")
    @classmethod
    def validate_documents(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("At least one document is required")
        return v


class IngestResponse(BaseModel):
    """Outcome of an ingestion call."""

    status: str
    document_ids: List[str] = Field(default_factory=list)
    chunk_count: int = 0
    entity_count: int = 0
    relationship_count: int = 0


class CustomChunk(BaseModel):
    content: str
    source_id: Optional[str] = None


class CustomEntity(BaseModel):
    entity_name: str
    entity_type: Optional[str] = None
    description: Optional[str] = None
    source_id: Optional[str] = None


class CustomRelationship(BaseModel):
    src_id: str
    tgt_id: str
    description: Optional[str] = None
    keywords: Optional[str] = None
    weight: Optional[float] = None
    source_id: Optional[str] = None


class CustomKGRequest(BaseModel):
    """Caller-built graph written without extraction."""

    chunks: List[CustomChunk] = Field(default_factory=list)
    entities: List[CustomEntity] = Field(default_factory=list)
    relationships: List[CustomRelationship] = Field(default_factory=list)


class QueryRequest(BaseModel):
    """Request model for the query endpoint."""

    query: str = Field(..., description="User question")
    mode: Optional[str] = Field(None, description="naive, local, global or hybrid")
    only_need_context: Optional[bool] = Field(None, description="Return the context instead of an answer")
    only_need_prompt: Optional[bool] = Field(None, description="Return the filled system prompt")
    response_type: Optional[str] = Field(None, description="Target response format")
    top_k: Optional[int] = Field(None, gt=0, description="Vector hits fetched per query")
    max_token_for_text_unit: Optional[int] = Field(None, gt=0)
    max_token_for_global_context: Optional[int] = Field(None, gt=0)
    max_token_for_local_context: Optional[int] = Field(None, gt=0)


class QueryResponse(BaseModel):
    """Response model for the query endpoint."""

    response: str
    mode: str


class DeleteEntityResponse(BaseModel):
    status: str
    entity_name: str
