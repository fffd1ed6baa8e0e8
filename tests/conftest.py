"""Pytest fixtures: in-memory embedder, vector store and generator fakes."""

from datetime import date, datetime, timezone
from typing import Dict, List

import pytest

from medrag.models import Chunk, ChunkMetadata, SourceEntry, SourceMetadata
from medrag.rag.service import RAGService
from medrag.utils.config_loader import TopicConfig

MENOPAUSE_ORGS = ["The Menopause Society", "ACOG", "MedlinePlus/NIH", "UCLA Health"]


class DummyEmbedder:
    dim = 3

    def __init__(self):
        self.text_calls: List[List[str]] = []
        self.query_calls = 0

    def embed_texts(self, texts):
        self.text_calls.append(list(texts))
        return [[0.1, 0.2, 0.3] for _ in texts]

    def embed_query(self, text):
        self.query_calls += 1
        return [0.1, 0.2, 0.3]


class DummyStore:
    def __init__(self, collection, exists=False, hits=None, fail_on_upsert=None):
        self.collection = collection
        self.created = exists
        self.hits = hits or []
        self.fail_on_upsert = fail_on_upsert
        self.ensure_calls = 0
        self.upserts: List[int] = []
        self.points: Dict[str, dict] = {}
        self.search_calls = 0
        self.exists_calls = 0

    def exists(self):
        self.exists_calls += 1
        return self.created

    def ensure_collection(self, vector_size):
        self.ensure_calls += 1
        if self.created:
            return False
        self.created = True
        return True

    def upsert(self, *, ids, vectors, payloads):
        if self.fail_on_upsert is not None and len(self.upserts) + 1 == self.fail_on_upsert:
            raise RuntimeError("qdrant unavailable")
        self.upserts.append(len(ids))
        for pid, payload in zip(ids, payloads):
            self.points[pid] = payload

    def search(self, *, query_vector, limit=4):
        self.search_calls += 1
        return self.hits[:limit]


class StoreRegistry:
    """store_factory stand-in that hands out one DummyStore per collection."""

    def __init__(self, **stores):
        self.stores = dict(stores)
        self.requested: List[str] = []

    def __call__(self, collection):
        self.requested.append(collection)
        if collection not in self.stores:
            self.stores[collection] = DummyStore(collection)
        return self.stores[collection]


class DummyGenerator:
    model = "dummy-model"

    def __init__(self, answer="Perimenopause is the transition to menopause [1].", fragments=None, fail_after=None):
        self.answer = answer
        self.fragments = fragments if fragments is not None else ["Perimenopause ", "is ", "the transition [1]."]
        self.fail_after = fail_after
        self.prompts: List[str] = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        return self.answer

    def stream(self, prompt, cancel=None):
        self.prompts.append(prompt)
        for i, fragment in enumerate(self.fragments):
            if self.fail_after is not None and i == self.fail_after:
                raise RuntimeError("provider stream dropped")
            if cancel is not None and cancel.is_set():
                return
            yield fragment


def make_hits(orgs=MENOPAUSE_ORGS, collection="menopause_knowledge"):
    return [
        {
            "id": f"id-{i}",
            "score": 0.9 - i * 0.1,
            "payload": {
                "text": f"Perimenopause content from {org}.",
                "organization": org,
                "category": "Professional Medical Society",
                "credibility": "high",
                "source": f"https://example.org/{i}",
                "collection": collection,
                "chunk_index": 0,
                "chunk_id": f"chunk-{i}",
            },
        }
        for i, org in enumerate(orgs)
    ]


@pytest.fixture
def topics():
    return {
        "menopause": TopicConfig(
            name="menopause",
            collection="menopause_knowledge",
            label="menopause",
            keywords=["menopause", "hormone", "estrogen", "perimenopause", "symptom", "treatment", "therapy", "health"],
            sources_file="config/sources/menopause.yml",
        ),
        "breast_cancer": TopicConfig(
            name="breast_cancer",
            collection="breast_cancer_knowledge",
            label="breast cancer",
            keywords=["breast", "cancer", "screening"],
            sources_file="config/sources/breast_cancer.yml",
        ),
    }


@pytest.fixture
def embedder():
    return DummyEmbedder()


@pytest.fixture
def generator():
    return DummyGenerator()


@pytest.fixture
def stores():
    return StoreRegistry(menopause_knowledge=DummyStore("menopause_knowledge", exists=True, hits=make_hits()))


@pytest.fixture
def service(embedder, generator, stores, topics):
    return RAGService(embedder=embedder, generator=generator, store_factory=stores, topics=topics)


@pytest.fixture
def sources():
    meta = SourceMetadata(
        organization="The Menopause Society",
        category="Professional Medical Society",
        credibility="high",
        last_verified=date(2025, 11, 10),
    )
    return [SourceEntry(url=f"https://example.org/page-{i}", metadata=meta) for i in range(3)]


def make_chunk(content, organization="ACOG", source="https://example.org/a"):
    return Chunk(
        content=content,
        metadata=ChunkMetadata(
            organization=organization,
            source=source,
            scraped_at=datetime(2025, 11, 10, tzinfo=timezone.utc),
        ),
    )
