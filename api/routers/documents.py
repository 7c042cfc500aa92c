"""Document ingestion routes."""

import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from neo4j.exceptions import ServiceUnavailable

from api.dependencies import get_rag
from api.models import CustomKGRequest, IngestResponse, InsertDocumentsRequest
from api.utils.db_exceptions import map_service_unavailable
from rag.graph_rag import GraphRAG

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=IngestResponse)
@map_service_unavailable
async def insert_documents(
    request: InsertDocumentsRequest,
    rag: GraphRAG = Depends(get_rag),
) -> IngestResponse:
    """Chunk, extract and merge the given documents into the graph."""
    try:
        result = await rag.insert(request.documents)
        return IngestResponse(**asdict(result))
    except HTTPException:
        raise
    except Exception as exc:
        if isinstance(exc, ServiceUnavailable):
            raise
        logger.error("Failed to insert %d documents: %s", len(request.documents), exc)
        raise HTTPException(status_code=500, detail="Failed to insert documents") from exc


@router.post("/custom-kg", response_model=IngestResponse)
@map_service_unavailable
async def insert_custom_kg(
    request: CustomKGRequest,
    rag: GraphRAG = Depends(get_rag),
) -> IngestResponse:
    """Write a caller-built graph without running extraction."""
    try:
        result = await rag.insert_custom_kg(request.model_dump(exclude_none=True))
        return IngestResponse(**asdict(result))
    except HTTPException:
        raise
    except Exception as exc:
        if isinstance(exc, ServiceUnavailable):
            raise
        logger.error("Failed to insert custom graph: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to insert custom graph") from exc
