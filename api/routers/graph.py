"""Graph maintenance endpoints."""

import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_rag
from api.models import DeleteEntityResponse
from api.utils.db_exceptions import map_service_unavailable
from core.utils import normalize_entity_name
from rag.graph_rag import GraphRAG

logger = logging.getLogger(__name__)

router = APIRouter()


@router.delete("/entities/{entity_name}", response_model=DeleteEntityResponse)
@map_service_unavailable
async def delete_entity(entity_name: str, rag: GraphRAG = Depends(get_rag)) -> DeleteEntityResponse:
    """Delete an entity with its incident relationships and vector records."""
    await rag.delete_by_entity(entity_name)
    return DeleteEntityResponse(status="deleted", entity_name=normalize_entity_name(entity_name))
