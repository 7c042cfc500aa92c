"""Shared FastAPI dependencies."""

from fastapi import HTTPException, Request

from rag.graph_rag import GraphRAG


def get_rag(request: Request) -> GraphRAG:
    """Return the pipeline created at startup."""
    rag = getattr(request.app.state, "rag", None)
    if rag is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return rag
