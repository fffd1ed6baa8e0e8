"""
Query-time retrieval and generation over per-topic collections.

RAGService holds the shared, cached per-collection store handles and takes the
target collection explicitly on every call. RAGSession is the per-request (or
per logical conversation) object that carries an "active collection" pointer;
sessions are never shared between concurrent callers, so one caller switching
collections cannot redirect another caller's query.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from medrag.errors import CollectionUnavailableError, InvalidQueryError, NoActiveCollectionError
from medrag.models import Chunk, ChunkMetadata, RetrievedDocument
from medrag.rag.embeddings.embedder import Embedder
from medrag.rag.generate import Generator
from medrag.rag.prompts import build_grounding_prompt
from medrag.rag.streaming import FragmentStream
from medrag.utils.config_loader import TopicConfig

logger = logging.getLogger(__name__)

DEFAULT_K = 4


def normalize_question(question: Any) -> str:
    if not isinstance(question, str) or not question.strip():
        raise InvalidQueryError("Question must be a non-empty string")
    return question.strip()


@dataclass
class QueryTimings:
    embedding_ms: float = 0.0
    vector_search_ms: float = 0.0
    generation_ms: float = 0.0


@dataclass
class RAGAnswer:
    answer: str
    documents: List[RetrievedDocument]
    collection: str
    timings: QueryTimings = field(default_factory=QueryTimings)
    prompt: str = ""


@dataclass
class Retrieval:
    documents: List[RetrievedDocument]
    timings: QueryTimings


class RAGService:
    def __init__(
        self,
        *,
        embedder: Embedder,
        generator: Generator,
        store_factory: Callable[[str], Any],
        topics: Mapping[str, TopicConfig],
        default_k: int = DEFAULT_K,
    ):
        self.embedder = embedder
        self.generator = generator
        self.store_factory = store_factory
        self.topics = dict(topics)
        self.default_k = default_k
        self._stores: Dict[str, Any] = {}
        self._lock = threading.Lock()

    # -- collections ---------------------------------------------------------

    def resolve_topic(self, collection: str) -> TopicConfig:
        if isinstance(collection, str):
            key = collection.strip().lower().replace("-", "_")
            if key in self.topics:
                return self.topics[key]
            for topic in self.topics.values():
                if topic.collection == collection:
                    return topic
        raise CollectionUnavailableError(str(collection), "unknown collection")

    def is_connected(self, collection: str) -> bool:
        try:
            topic = self.resolve_topic(collection)
        except CollectionUnavailableError:
            return False
        with self._lock:
            return topic.name in self._stores

    async def connect(self, collection: str):
        """Return the cached store handle for a collection, connecting on first use."""
        topic = self.resolve_topic(collection)
        with self._lock:
            store = self._stores.get(topic.name)
        if store is not None:
            return store

        logger.info(f"Connecting to collection: {topic.name} ({topic.collection})")
        store = self.store_factory(topic.collection)
        try:
            exists = await asyncio.to_thread(store.exists)
        except Exception as e:
            logger.error(f"Failed to connect to collection {topic.collection}: {type(e).__name__}: {e}")
            raise CollectionUnavailableError(topic.name) from e
        if not exists:
            raise CollectionUnavailableError(topic.name)

        with self._lock:
            store = self._stores.setdefault(topic.name, store)
        logger.info(f"Connected to collection: {topic.name}")
        return store

    def session(self) -> "RAGSession":
        return RAGSession(self)

    # -- retrieval -----------------------------------------------------------

    async def _retrieve(self, question: str, collection: str, k: int) -> Retrieval:
        if not isinstance(k, int) or k < 1:
            raise InvalidQueryError("k must be a positive integer")
        store = await self.connect(collection)
        timings = QueryTimings()

        embed_start = time.monotonic()
        qvec = await asyncio.to_thread(self.embedder.embed_query, question)
        timings.embedding_ms = (time.monotonic() - embed_start) * 1000

        vector_start = time.monotonic()
        hits = await asyncio.to_thread(lambda: store.search(query_vector=qvec, limit=k))
        timings.vector_search_ms = (time.monotonic() - vector_start) * 1000

        documents = [
            RetrievedDocument(
                content=(h.get("payload") or {}).get("text", ""),
                metadata=ChunkMetadata.from_payload(h.get("payload") or {}),
                score=float(h.get("score") or 0.0),
            )
            for h in hits
        ]
        logger.info(
            "Retrieval metrics: collection=%s hits=%s embed_ms=%.1f vector_ms=%.1f",
            collection,
            len(documents),
            timings.embedding_ms,
            timings.vector_search_ms,
        )
        return Retrieval(documents=documents, timings=timings)

    async def get_relevant_documents(
        self, question: str, collection: str, k: Optional[int] = None
    ) -> List[RetrievedDocument]:
        question = normalize_question(question)
        retrieval = await self._retrieve(question, collection, self.default_k if k is None else k)
        return retrieval.documents

    # -- generation ----------------------------------------------------------

    async def answer(self, question: str, collection: str, k: Optional[int] = None) -> RAGAnswer:
        """Retrieve, build the grounding prompt and generate a full (blocking) answer."""
        question = normalize_question(question)
        topic = self.resolve_topic(collection)
        retrieval = await self._retrieve(question, topic.name, self.default_k if k is None else k)
        prompt = build_grounding_prompt(question, retrieval.documents, topic.label)

        gen_start = time.monotonic()
        text = await self.generator.generate(prompt)
        retrieval.timings.generation_ms = (time.monotonic() - gen_start) * 1000
        logger.info(f"Generated answer for {topic.name} ({len(text)} chars, {len(retrieval.documents)} sources)")
        return RAGAnswer(
            answer=text,
            documents=retrieval.documents,
            collection=topic.name,
            timings=retrieval.timings,
            prompt=prompt,
        )

    async def query(self, question: str, collection: str) -> str:
        return (await self.answer(question, collection)).answer

    async def query_stream(self, question: str, collection: str, k: Optional[int] = None) -> FragmentStream:
        """
        Retrieve and build the prompt eagerly, then return a stream over the
        generated fragments. Retrieval errors surface here, before streaming starts.
        """
        question = normalize_question(question)
        topic = self.resolve_topic(collection)
        retrieval = await self._retrieve(question, topic.name, self.default_k if k is None else k)
        prompt = build_grounding_prompt(question, retrieval.documents, topic.label)
        return FragmentStream(
            lambda cancel: self.generator.stream(prompt, cancel),
            retrieval.documents,
            prompt=prompt,
            timings=retrieval.timings,
        )

    # -- writes --------------------------------------------------------------

    async def add_documents(self, chunks: Sequence[Chunk], collection: str) -> int:
        """Embed and append pre-chunked documents; no validation or deduplication."""
        if not chunks:
            return 0
        topic = self.resolve_topic(collection)
        store = await self.connect(topic.name)
        chunks = [chunk.model_copy(deep=True) for chunk in chunks]
        for chunk in chunks:
            chunk.metadata.collection = topic.collection
        vectors = await asyncio.to_thread(self.embedder.embed_texts, [c.content for c in chunks])
        await asyncio.to_thread(
            lambda: store.upsert(
                ids=[c.chunk_id for c in chunks],
                vectors=vectors,
                payloads=[c.to_payload() for c in chunks],
            )
        )
        logger.info(f"Added {len(chunks)} documents to {topic.collection}")
        return len(chunks)


class RAGSession:
    """Per-request view of RAGService with a switchable active collection."""

    def __init__(self, service: RAGService):
        self.service = service
        self.active_collection: Optional[str] = None

    async def switch_collection(self, name: str) -> None:
        topic = self.service.resolve_topic(name)
        if self.active_collection == topic.name and self.service.is_connected(topic.name):
            logger.debug(f"Already using collection: {topic.name}")
            return
        await self.service.connect(topic.name)
        self.active_collection = topic.name

    def _require_active(self) -> str:
        if self.active_collection is None:
            raise NoActiveCollectionError()
        return self.active_collection

    async def query(self, question: str) -> str:
        return await self.service.query(question, self._require_active())

    async def answer(self, question: str, k: Optional[int] = None) -> RAGAnswer:
        return await self.service.answer(question, self._require_active(), k)

    async def query_stream(self, question: str, k: Optional[int] = None) -> FragmentStream:
        return await self.service.query_stream(question, self._require_active(), k)

    async def get_relevant_documents(self, question: str, k: Optional[int] = None) -> List[RetrievedDocument]:
        return await self.service.get_relevant_documents(question, self._require_active(), k)

    async def add_documents(self, chunks: Sequence[Chunk]) -> int:
        return await self.service.add_documents(chunks, self._require_active())
