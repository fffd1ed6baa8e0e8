"""
Construct embedders, generators and vector stores from RAGConfig.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Callable

from medrag.utils.config_loader import RAGConfig

if TYPE_CHECKING:
    from medrag.rag.integrations.qdrant_store import QdrantVectorStore

logger = logging.getLogger(__name__)


def embedder_from_config(cfg: RAGConfig):
    from medrag.rag.embeddings.embedder import OpenAIEmbedder, SentenceTransformersEmbedder

    p = cfg.embeddings.provider.lower()
    if p == "sentence_transformers":
        return SentenceTransformersEmbedder(model_name=cfg.embeddings.model)
    if p == "openai":
        return OpenAIEmbedder(model=cfg.embeddings.model, timeout_s=cfg.embeddings.timeout_s)
    raise ValueError(f"Unknown embeddings provider: {cfg.embeddings.provider}")


def generator_from_config(cfg: RAGConfig):
    from medrag.rag.generate import GeminiGenerator, OpenAIGenerator

    g = cfg.generation
    if g.backend == "openai":
        return OpenAIGenerator(
            model=g.model,
            temperature=g.temperature,
            max_tokens=g.max_tokens,
            timeout_s=g.timeout_s,
            max_attempts=g.max_attempts,
        )
    if g.backend == "gemini":
        return GeminiGenerator(
            model=g.model,
            temperature=g.temperature,
            max_tokens=g.max_tokens,
            timeout_s=g.timeout_s,
            max_attempts=g.max_attempts,
            api_key_env=g.api_key_env,
        )
    raise ValueError(f"Unknown generation backend: {g.backend}")


def store_factory_from_config(cfg: RAGConfig) -> Callable[[str], QdrantVectorStore]:
    """Return a callable mapping a collection name to a store handle; all handles share one client."""
    from medrag.rag.integrations.qdrant_store import QdrantVectorStore, make_client

    vs = cfg.vector_store
    if vs.provider == "qdrant_local":
        client = make_client(path=vs.path)
    else:
        url = os.environ.get(vs.url_env)
        if not url:
            raise RuntimeError(f"{vs.url_env} is required when vector_store.provider is qdrant_http")
        client = make_client(url=url, api_key=os.environ.get(vs.api_key_env), timeout=vs.timeout_s)
    logger.info(f"Initialized Qdrant client ({vs.provider})")

    def factory(collection: str) -> QdrantVectorStore:
        return QdrantVectorStore(collection=collection, client=client)

    return factory
