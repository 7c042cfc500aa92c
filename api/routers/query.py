"""Query endpoint."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_rag
from api.models import QueryRequest, QueryResponse
from api.utils.db_exceptions import map_service_unavailable
from core.exceptions import InvalidQueryModeError
from rag.graph_rag import GraphRAG

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=QueryResponse)
@map_service_unavailable
async def query(request: QueryRequest, rag: GraphRAG = Depends(get_rag)) -> QueryResponse:
    """Answer a question over the knowledge graph."""
    overrides = request.model_dump(exclude={"query"}, exclude_none=True)
    try:
        param = rag.resolve_param(**overrides)
    except InvalidQueryModeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    logger.info(f"Query received (mode={param.mode.value}): {request.query[:200]}")
    response = await rag.query(request.query, param)
    return QueryResponse(response=response, mode=param.mode.value)
