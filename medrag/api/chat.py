"""
Chat endpoints: blocking query, streaming query (SSE) and raw document retrieval.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from medrag.analytics import AnalyticsDispatcher, QueryAnalyticsEvent
from medrag.errors import ErrorHandler
from medrag.models import RetrievedDocument
from medrag.rag.grounding import is_answer_grounded
from medrag.rag.service import RAGService
from medrag.utils.logging_setup import log_query

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["Chat"])


class QueryRequest(BaseModel):
    question: Optional[str] = None
    k: int = Field(default=4, ge=1, le=20, description="Number of chunks to retrieve")
    collection: str = Field(default="menopause", description="Topic key or collection name")


def _service(request: Request) -> RAGService:
    return request.app.state.service


def _dispatcher(request: Request) -> Optional[AnalyticsDispatcher]:
    return getattr(request.app.state, "dispatcher", None)


def _error_handler(request: Request) -> ErrorHandler:
    return request.app.state.error_handler


def _sources(documents: List[RetrievedDocument]) -> List[Dict[str, Any]]:
    return [doc.to_source(i) for i, doc in enumerate(documents, start=1)]


def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def _model_name(service: RAGService) -> str:
    return getattr(service.generator, "model", "") or ""


def _submit(request: Request, event: QueryAnalyticsEvent) -> None:
    dispatcher = _dispatcher(request)
    if dispatcher is not None:
        dispatcher.submit(event)


@router.post("/query")
async def query(body: QueryRequest, request: Request):
    """Answer a question from the selected collection, with attributed sources."""
    service = _service(request)
    started = time.monotonic()
    try:
        result = await service.answer(body.question, body.collection, body.k)
    except Exception as e:
        duration_ms = (time.monotonic() - started) * 1000
        log_query(body.question or "unknown", duration_ms=duration_ms, collection=body.collection, error=str(e))
        _submit(
            request,
            QueryAnalyticsEvent.build(
                collection=body.collection,
                question=body.question or "",
                model=_model_name(service),
                total_ms=duration_ms,
                error=e,
            ),
        )
        raise

    grounded = is_answer_grounded(result.answer)
    sources = _sources(result.documents) if grounded else []
    if not grounded:
        logger.info("Answer not grounded in retrieved context; withholding sources")

    duration_ms = (time.monotonic() - started) * 1000
    log_query(
        body.question,
        answer=result.answer,
        sources=len(sources),
        duration_ms=duration_ms,
        collection=result.collection,
    )
    _submit(
        request,
        QueryAnalyticsEvent.build(
            collection=result.collection,
            question=body.question,
            documents=result.documents,
            sources_returned=len(sources),
            answer=result.answer,
            prompt=result.prompt,
            model=_model_name(service),
            timings=result.timings,
            total_ms=duration_ms,
            answered_from_context=grounded,
        ),
    )
    return {"answer": result.answer, "sources": sources}


@router.post("/query/stream")
async def query_stream(body: QueryRequest, request: Request):
    """
    Stream the answer as Server-Sent Events.

    Input and collection errors are raised before the response starts and map
    to regular JSON errors. Once streaming, a failure ends the stream with a
    single ``error`` event instead of ``done``.
    """
    service = _service(request)
    error_handler = _error_handler(request)
    started = time.monotonic()
    try:
        stream = await service.query_stream(body.question, body.collection, body.k)
    except Exception as e:
        log_query(
            body.question or "unknown",
            duration_ms=(time.monotonic() - started) * 1000,
            collection=body.collection,
            error=str(e),
        )
        raise

    async def events():
        parts: List[str] = []
        sources: List[Dict[str, Any]] = []
        grounded = False
        error: Optional[Exception] = None
        try:
            async for fragment in stream:
                if await request.is_disconnected():
                    logger.info("Client disconnected; stopping stream")
                    break
                parts.append(fragment)
                yield _sse({"type": "chunk", "content": fragment})
            else:
                grounded = is_answer_grounded("".join(parts))
                sources = _sources(stream.documents) if grounded else []
                yield _sse({"type": "sources", "sources": sources})
                yield _sse({"type": "done"})
        except Exception as e:
            error = e
            payload = error_handler.handle_exception(e, {"collection": body.collection, "streaming": True})
            yield _sse({"type": "error", "kind": payload["error"], "message": payload["message"]})
        finally:
            # Also reached on client disconnect; stop the producer before anything else.
            stream.cancel()
            answer = "".join(parts)
            duration_ms = (time.monotonic() - started) * 1000
            log_query(
                body.question,
                answer=answer,
                sources=len(sources),
                duration_ms=duration_ms,
                collection=body.collection,
                error=str(error) if error else None,
            )
            _submit(
                request,
                QueryAnalyticsEvent.build(
                    collection=body.collection,
                    question=body.question,
                    documents=stream.documents,
                    sources_returned=len(sources),
                    answer=answer,
                    prompt=stream.prompt,
                    model=_model_name(service),
                    timings=stream.timings,
                    total_ms=duration_ms,
                    answered_from_context=grounded,
                    is_streaming=True,
                    error=error,
                ),
            )

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/documents")
async def documents(body: QueryRequest, request: Request):
    """Retrieve relevant chunks without generating an answer."""
    docs = await _service(request).get_relevant_documents(body.question, body.collection, body.k)
    return {"documents": _sources(docs)}
