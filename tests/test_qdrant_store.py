from qdrant_client import QdrantClient

from medrag.rag.integrations.qdrant_store import QdrantVectorStore


def _store(collection="menopause_knowledge"):
    return QdrantVectorStore(collection=collection, client=QdrantClient(":memory:"))


def test_ensure_collection_creates_once():
    store = _store()
    assert not store.exists()
    assert store.ensure_collection(vector_size=3) is True
    assert store.exists()
    assert store.ensure_collection(vector_size=3) is False


def test_upsert_and_search_round_trip():
    store = _store()
    store.ensure_collection(vector_size=3)
    store.upsert(
        ids=["chunk-a", "chunk-b"],
        vectors=[[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]],
        payloads=[
            {"text": "Estrogen declines.", "organization": "ACOG", "chunk_id": "chunk-a"},
            {"text": "Bone density.", "organization": "UCLA Health", "chunk_id": "chunk-b"},
        ],
    )

    hits = store.search(query_vector=[1.0, 0.1, 0.0], limit=2)

    assert [h["id"] for h in hits] == ["chunk-a", "chunk-b"]
    assert hits[0]["score"] >= hits[1]["score"]
    assert hits[0]["payload"]["organization"] == "ACOG"


def test_same_chunk_id_overwrites_point():
    store = _store()
    store.ensure_collection(vector_size=3)
    for text in ("old text", "new text"):
        store.upsert(ids=["chunk-a"], vectors=[[1.0, 0.0, 0.0]], payloads=[{"text": text, "chunk_id": "chunk-a"}])

    hits = store.search(query_vector=[1.0, 0.0, 0.0], limit=10)
    assert len(hits) == 1
    assert hits[0]["payload"]["text"] == "new text"


def test_collections_are_isolated():
    client = QdrantClient(":memory:")
    a = QdrantVectorStore(collection="menopause_knowledge", client=client)
    b = QdrantVectorStore(collection="pcos_knowledge", client=client)
    a.ensure_collection(vector_size=3)
    assert a.exists()
    assert not b.exists()
