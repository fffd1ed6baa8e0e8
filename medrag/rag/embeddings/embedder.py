"""
Text embedders for chunk ingestion and query retrieval.

Chunks and questions must go through the same model: a collection built with
one embedder is only searchable with query vectors from that embedder.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Protocol, Sequence

from medrag.errors import EmbeddingError

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]: ...

    def embed_query(self, text: str) -> List[float]: ...

    @property
    def dim(self) -> int: ...


class SentenceTransformersEmbedder:
    """Local embedder; vectors are L2-normalized so cosine and dot scores agree."""

    def __init__(self, model_name: str, model=None):
        if model is None:
            from sentence_transformers import SentenceTransformer

            model = SentenceTransformer(model_name)
        self.model_name = model_name
        self._model = model
        self._dim = int(self._model.get_sentence_embedding_dimension())

    @property
    def dim(self) -> int:
        return self._dim

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        if not texts:
            return []
        vectors = self._model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        return [v.tolist() for v in vectors]

    def embed_query(self, text: str) -> List[float]:
        return self.embed_texts([text])[0]


class OpenAIEmbedder:
    """
    Embeds chunk batches and questions through the OpenAI embeddings API.

    Ingestion batches are split into requests of at most ``request_size``
    inputs. Provider failures are raised as EmbeddingError so the API layer
    reports them as a server-side failure without leaking SDK details.
    """

    def __init__(
        self,
        model: str = "text-embedding-ada-002",
        timeout_s: float = 30.0,
        max_retries: int = 2,
        request_size: int = 100,
        api_key_env: str = "OPENAI_API_KEY",
        client=None,
    ):
        if client is None:
            from openai import OpenAI

            api_key = os.environ.get(api_key_env)
            if not api_key:
                raise RuntimeError(f"{api_key_env} environment variable is required")
            client = OpenAI(api_key=api_key, timeout=timeout_s, max_retries=max_retries)
        self.client = client
        self.model = model
        self.request_size = max(1, request_size)
        self._dim: Optional[int] = None

    @property
    def dim(self) -> int:
        if self._dim is None:
            raise RuntimeError("Embedding dimension is unknown until the first embedding call")
        return self._dim

    def _create(self, inputs: List[str]) -> List[List[float]]:
        try:
            resp = self.client.embeddings.create(model=self.model, input=inputs)
        except Exception as e:
            logger.error(f"Embedding request failed ({len(inputs)} inputs): {type(e).__name__}: {e}")
            raise EmbeddingError(f"Embedding failed: {type(e).__name__}") from e
        vectors = [d.embedding for d in resp.data]
        if len(vectors) != len(inputs):
            raise EmbeddingError(f"Embedding failed: expected {len(inputs)} vectors, got {len(vectors)}")
        if vectors and self._dim is None:
            self._dim = len(vectors[0])
        return vectors

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.request_size):
            vectors.extend(self._create(texts[start:start + self.request_size]))
        return vectors

    def embed_query(self, text: str) -> List[float]:
        return self._create([text])[0]
