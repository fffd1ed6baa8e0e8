"""
Best-effort query analytics.

Events are handed to a bounded queue and written to a sink by a single
background worker. Nothing here may slow down or fail a user request: a full
queue drops the event and sink errors are logged and swallowed.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

from medrag.models import RetrievedDocument

logger = logging.getLogger(__name__)
analytics_logger = logging.getLogger("medrag.analytics")

DEFAULT_QUEUE_SIZE = 1000


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token."""
    return (len(text or "") + 3) // 4


@dataclass
class QueryAnalyticsEvent:
    collection: str
    question: str
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    event_time: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    question_length: int = 0
    embedding_ms: float = 0.0
    vector_search_ms: float = 0.0
    generation_ms: float = 0.0
    total_ms: float = 0.0
    sources_retrieved: int = 0
    sources_returned: int = 0
    avg_relevance_score: Optional[float] = None
    top_relevance_score: Optional[float] = None
    model: str = ""
    tokens_prompt: int = 0
    tokens_completion: int = 0
    response_length: int = 0
    answered_from_context: bool = False
    is_streaming: bool = False
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if not self.question_length:
            self.question_length = len(self.question or "")

    @classmethod
    def build(
        cls,
        *,
        collection: str,
        question: str,
        documents: Sequence[RetrievedDocument] = (),
        sources_returned: Optional[int] = None,
        answer: str = "",
        prompt: str = "",
        model: str = "",
        timings=None,
        total_ms: float = 0.0,
        answered_from_context: bool = False,
        is_streaming: bool = False,
        error: Optional[BaseException] = None,
    ) -> "QueryAnalyticsEvent":
        scores = [d.score for d in documents]
        event = cls(
            collection=collection,
            question=question,
            total_ms=total_ms,
            sources_retrieved=len(documents),
            sources_returned=len(documents) if sources_returned is None else sources_returned,
            avg_relevance_score=(sum(scores) / len(scores)) if scores else None,
            top_relevance_score=max(scores) if scores else None,
            model=model,
            tokens_prompt=estimate_tokens(prompt),
            tokens_completion=estimate_tokens(answer),
            response_length=len(answer or ""),
            answered_from_context=answered_from_context,
            is_streaming=is_streaming,
        )
        if timings is not None:
            event.embedding_ms = timings.embedding_ms
            event.vector_search_ms = timings.vector_search_ms
            event.generation_ms = timings.generation_ms
        if error is not None:
            event.error_type = type(error).__name__
            event.error_message = str(error)
        return event


class AnalyticsSink(Protocol):
    async def write(self, event: QueryAnalyticsEvent) -> None: ...


class LoggingAnalyticsSink:
    """Writes each event as one JSON line on the medrag.analytics logger."""

    async def write(self, event: QueryAnalyticsEvent) -> None:
        analytics_logger.info(json.dumps(asdict(event), default=str))


class AnalyticsDispatcher:
    def __init__(self, sink: Optional[AnalyticsSink] = None, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.sink = sink or LoggingAnalyticsSink()
        self.maxsize = maxsize
        self.dropped = 0
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.maxsize)
        self._worker = asyncio.create_task(self._run())
        logger.info("Analytics dispatcher started")

    def submit(self, event: QueryAnalyticsEvent) -> bool:
        """Enqueue without blocking. Returns False if the event was dropped."""
        if self._queue is None:
            logger.debug("Analytics dispatcher not started; dropping event")
            self.dropped += 1
            return False
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Analytics queue full ({self.maxsize}); dropping event {event.message_id}")
            return False

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.sink.write(event)
            except Exception as e:
                logger.warning(f"Analytics sink failed: {type(e).__name__}: {e}")
            finally:
                self._queue.task_done()

    async def close(self, timeout: float = 5.0) -> None:
        """Drain pending events (bounded by timeout) and stop the worker."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out draining analytics queue")
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None
        logger.info("Analytics dispatcher stopped")
