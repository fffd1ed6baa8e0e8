"""
Qdrant vector store wrapper, bound to one collection.

A single QdrantClient may back many QdrantVectorStore handles; the client is
safe for concurrent reads, which the query service relies on when several
requests search the same cached handle.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.http import models as qm


def make_client(
    *,
    url: Optional[str] = None,
    api_key: Optional[str] = None,
    path: Optional[str] = None,
    timeout: int = 30,
) -> QdrantClient:
    if path:
        return QdrantClient(path=path)
    return QdrantClient(url=url, api_key=api_key, timeout=timeout)


@dataclass
class QdrantVectorStore:
    collection: str
    client: QdrantClient

    def exists(self) -> bool:
        return bool(self.client.collection_exists(collection_name=self.collection))

    def ensure_collection(self, vector_size: int) -> bool:
        """Create the collection if absent. Returns True when it was created."""
        if self.exists():
            return False
        self.client.create_collection(
            collection_name=self.collection,
            vectors_config=qm.VectorParams(size=vector_size, distance=qm.Distance.COSINE),
        )
        return True

    def upsert(
        self,
        *,
        ids: List[str],
        vectors: List[List[float]],
        payloads: List[dict],
    ) -> None:
        # Qdrant point ids must be UUIDs or ints; map stable chunk ids onto UUIDv5.
        point_ids = [str(uuid.uuid5(uuid.NAMESPACE_URL, _id)) for _id in ids]
        points = [
            qm.PointStruct(id=_id, vector=vec, payload=payload)
            for _id, vec, payload in zip(point_ids, vectors, payloads, strict=True)
        ]
        self.client.upsert(collection_name=self.collection, points=points, wait=True)

    def search(
        self,
        *,
        query_vector: List[float],
        limit: int = 4,
    ) -> list[dict[str, Any]]:
        """
        Search for similar vectors.

        Returns hits ordered by descending similarity, each
        {"id", "score", "payload"}.
        """
        res = self.client.query_points(
            collection_name=self.collection,
            query=query_vector,
            limit=limit,
            with_payload=True,
        )
        out: list[dict[str, Any]] = []
        for p in res.points:
            payload = p.payload or {}
            out.append(
                {
                    # Prefer the original chunk id over the Qdrant point id (UUID).
                    "id": str(payload.get("chunk_id") or p.id),
                    "score": float(p.score),
                    "payload": payload,
                }
            )
        return out
