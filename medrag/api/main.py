"""
FastAPI application - main entry point.

``create_app`` wires an already-built RAGService so tests can inject fakes.
``build_app`` is the uvicorn factory that builds everything from config:

    uvicorn medrag.api.main:build_app --factory
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from medrag.analytics import AnalyticsDispatcher
from medrag.api.chat import router as chat_router
from medrag.errors import ErrorHandler, MedRAGError
from medrag.rag.service import RAGService

logger = logging.getLogger(__name__)

SERVICE_NAME = "Medical RAG API"
VERSION = "1.0.0"


def create_app(
    service: RAGService,
    dispatcher: Optional[AnalyticsDispatcher] = None,
    error_handler: Optional[ErrorHandler] = None,
) -> FastAPI:
    error_handler = error_handler or ErrorHandler()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {SERVICE_NAME}...")
        if dispatcher is not None:
            await dispatcher.start()
        try:
            yield
        finally:
            logger.info(f"Shutting down {SERVICE_NAME}...")
            if dispatcher is not None:
                await dispatcher.close()

    app = FastAPI(
        title=SERVICE_NAME,
        description="Retrieval-augmented answers over curated medical sources",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.dispatcher = dispatcher
    app.state.error_handler = error_handler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MedRAGError)
    async def medrag_error_handler(request: Request, exc: MedRAGError):
        payload = error_handler.handle_exception(exc, {"path": request.url.path})
        return JSONResponse(status_code=ErrorHandler.status_code(exc), content=payload)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}" for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": "invalid_query", "message": details or "Invalid request"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        payload = error_handler.handle_exception(exc, {"path": request.url.path})
        return JSONResponse(status_code=500, content=payload)

    @app.get("/", tags=["Health"])
    async def root():
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "collections": sorted(service.topics),
            "endpoints": {
                "health": "GET /health",
                "query": "POST /api/chat/query",
                "stream": "POST /api/chat/query/stream",
                "documents": "POST /api/chat/documents",
            },
        }

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "connected_collections": sorted(name for name in service.topics if service.is_connected(name)),
            "timestamp": datetime.now().isoformat(),
        }

    app.include_router(chat_router)
    return app


def build_app() -> FastAPI:
    """Build the service from config/rag_config.yml and environment variables."""
    from dotenv import load_dotenv

    from medrag.rag.providers import embedder_from_config, generator_from_config, store_factory_from_config
    from medrag.utils.config_loader import load_rag_config
    from medrag.utils.logging_setup import setup_logging

    load_dotenv()
    setup_logging()
    cfg = load_rag_config()
    service = RAGService(
        embedder=embedder_from_config(cfg),
        generator=generator_from_config(cfg),
        store_factory=store_factory_from_config(cfg),
        topics=cfg.topics,
        default_k=cfg.retrieval.top_k,
    )
    return create_app(service, AnalyticsDispatcher())
