"""
FastAPI backend for the knowledge-graph RAG pipeline.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi import Request
from fastapi.responses import JSONResponse
from neo4j.exceptions import ServiceUnavailable

from api.routers import documents, graph, query
from config.settings import settings
from core.exceptions import InvalidQueryModeError
from rag.graph_rag import GraphRAG

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    logger.info("Starting GraphRAG API...")
    logger.info(
        f"Storage backends: graph={settings.graph_storage}, kv={settings.kv_storage}, "
        f"working_dir={settings.working_dir}"
    )
    app.state.rag = GraphRAG.from_settings(settings)

    yield
    logger.info("Shutting down GraphRAG API...")
    app.state.rag.close()


app = FastAPI(
    title="GraphRAG API",
    description="Knowledge-graph retrieval-augmented generation API",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(ServiceUnavailable)
async def neo4j_service_unavailable_handler(request: Request, exc: ServiceUnavailable):
    logger.error("Graph DB unavailable (global handler): %s", exc)
    return JSONResponse(status_code=503, content={"detail": "Graph database unavailable"})


@app.exception_handler(InvalidQueryModeError)
async def invalid_query_mode_handler(request: Request, exc: InvalidQueryModeError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
app.include_router(graph.router, prefix="/api/graph", tags=["graph"])
app.include_router(query.router, prefix="/api/query", tags=["query"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": "1.0.0",
        "graph_storage": settings.graph_storage,
        "kv_storage": settings.kv_storage,
        "llm_model": settings.openai_model,
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "GraphRAG API",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        loop="asyncio",
        log_level=settings.log_level.lower(),
    )
