import json

import pytest
from conftest import MENOPAUSE_ORGS, DummyGenerator, StoreRegistry
from fastapi import Request
from fastapi.testclient import TestClient

from medrag.analytics import AnalyticsDispatcher
from medrag.api.main import create_app
from medrag.errors import GenerationError
from medrag.rag.service import RAGService


class RecordingSink:
    def __init__(self):
        self.events = []

    async def write(self, event):
        self.events.append(event)


class FailingGenerator(DummyGenerator):
    async def generate(self, prompt):
        raise GenerationError("Generation failed: APITimeoutError")


def _client(service, sink=None):
    dispatcher = AnalyticsDispatcher(sink) if sink is not None else None
    return TestClient(create_app(service, dispatcher))


def _events(body):
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def test_root_and_health(service):
    with _client(service) as client:
        root = client.get("/")
        health = client.get("/health")
    assert root.status_code == 200
    assert root.json()["collections"] == ["breast_cancer", "menopause"]
    assert health.json()["status"] == "healthy"


def test_query_returns_answer_and_ordered_sources(service):
    sink = RecordingSink()
    with _client(service, sink) as client:
        resp = client.post("/api/chat/query", json={"question": "What is perimenopause?", "k": 4, "collection": "menopause"})

    assert resp.status_code == 200
    data = resp.json()
    assert data["answer"]
    assert [s["ordinal"] for s in data["sources"]] == [1, 2, 3, 4]
    assert [s["organization"] for s in data["sources"]] == MENOPAUSE_ORGS
    assert data["sources"][0]["url"] == "https://example.org/0"
    assert data["sources"][0]["metadata"]["organization"] == "The Menopause Society"

    assert len(sink.events) == 1
    event = sink.events[0]
    assert event.collection == "menopause"
    assert event.sources_returned == 4
    assert event.answered_from_context is True
    assert event.is_streaming is False


def test_default_collection_is_menopause(service):
    with _client(service) as client:
        resp = client.post("/api/chat/query", json={"question": "What is perimenopause?"})
    assert resp.status_code == 200
    assert len(resp.json()["sources"]) == 4


def test_ungrounded_answer_withholds_sources(embedder, stores, topics):
    generator = DummyGenerator(answer="I'm sorry, that detail was Not Found In The Context provided.")
    service = RAGService(embedder=embedder, generator=generator, store_factory=stores, topics=topics)
    with _client(service) as client:
        resp = client.post("/api/chat/query", json={"question": "Dosage of drug X?"})
    assert resp.status_code == 200
    assert resp.json()["sources"] == []


@pytest.mark.parametrize("body", [{"question": ""}, {"question": "   "}, {}, {"question": 42}, {"question": "q", "k": 0}])
def test_invalid_input_is_400(service, embedder, body):
    with _client(service) as client:
        resp = client.post("/api/chat/query", json=body)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_query"
    assert embedder.query_calls == 0


@pytest.mark.parametrize("collection", ["breast_cancer", "osteoporosis"])
def test_unavailable_collection_is_404(service, collection):
    with _client(service) as client:
        resp = client.post("/api/chat/query", json={"question": "q", "collection": collection})
    assert resp.status_code == 404
    assert resp.json()["error"] == "collection_unavailable"


def test_generation_failure_is_500_without_internals(embedder, stores, topics):
    service = RAGService(embedder=embedder, generator=FailingGenerator(), store_factory=stores, topics=topics)
    with _client(service) as client:
        resp = client.post("/api/chat/query", json={"question": "What is perimenopause?"})
    assert resp.status_code == 500
    assert resp.json()["error"] == "generation_failed"
    assert "APITimeoutError" not in resp.json()["message"]


def test_documents_endpoint(service, generator):
    with _client(service) as client:
        resp = client.post("/api/chat/documents", json={"question": "What is perimenopause?", "k": 2})
    docs = resp.json()["documents"]
    assert [d["organization"] for d in docs] == MENOPAUSE_ORGS[:2]
    assert generator.prompts == []


def test_stream_event_order(service):
    sink = RecordingSink()
    with _client(service, sink) as client:
        resp = client.post("/api/chat/query/stream", json={"question": "What is perimenopause?"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = _events(resp.text)
    kinds = [e["type"] for e in events]
    assert kinds == ["chunk", "chunk", "chunk", "sources", "done"]
    assert "".join(e["content"] for e in events if e["type"] == "chunk") == "Perimenopause is the transition [1]."
    assert [s["ordinal"] for s in events[3]["sources"]] == [1, 2, 3, 4]

    assert sink.events[0].is_streaming is True
    assert sink.events[0].response_length == len("Perimenopause is the transition [1].")


def test_stream_ungrounded_sends_empty_sources(embedder, stores, topics):
    generator = DummyGenerator(fragments=["The context ", "does not contain ", "that."])
    service = RAGService(embedder=embedder, generator=generator, store_factory=stores, topics=topics)
    with _client(service) as client:
        resp = client.post("/api/chat/query/stream", json={"question": "q"})
    events = _events(resp.text)
    assert events[-2] == {"type": "sources", "sources": []}
    assert events[-1] == {"type": "done"}


def test_stream_error_mid_generation_ends_with_error_event(embedder, stores, topics):
    service = RAGService(embedder=embedder, generator=DummyGenerator(fail_after=1), store_factory=stores, topics=topics)
    with _client(service) as client:
        resp = client.post("/api/chat/query/stream", json={"question": "What is perimenopause?"})
    events = _events(resp.text)
    assert [e["type"] for e in events] == ["chunk", "error"]
    assert events[-1]["kind"] == "internal_error"
    assert "provider stream dropped" not in events[-1]["message"]


def test_stream_validation_errors_are_plain_json(service):
    with _client(service) as client:
        empty = client.post("/api/chat/query/stream", json={"question": ""})
        missing = client.post("/api/chat/query/stream", json={"question": "q", "collection": "breast_cancer"})
    assert empty.status_code == 400
    assert missing.status_code == 404
    assert missing.json()["error"] == "collection_unavailable"


def test_collections_are_independent_per_request(embedder, topics):
    from conftest import DummyStore, make_hits

    stores = StoreRegistry(
        menopause_knowledge=DummyStore("menopause_knowledge", exists=True, hits=make_hits()),
        breast_cancer_knowledge=DummyStore(
            "breast_cancer_knowledge", exists=True, hits=make_hits(["American Cancer Society (ACS)"], "breast_cancer_knowledge")
        ),
    )
    service = RAGService(embedder=embedder, generator=DummyGenerator(), store_factory=stores, topics=topics)
    with _client(service) as client:
        bc = client.post("/api/chat/query", json={"question": "q", "collection": "breast_cancer"})
        meno = client.post("/api/chat/query", json={"question": "q"})
    assert bc.json()["sources"][0]["organization"] == "American Cancer Society (ACS)"
    assert meno.json()["sources"][0]["organization"] == "The Menopause Society"


class CancelRecordingGenerator(DummyGenerator):
    def __init__(self):
        super().__init__(fragments=[f"part{i} " for i in range(200)])
        self.cancel_event = None

    def stream(self, prompt, cancel=None):
        self.cancel_event = cancel
        yield from super().stream(prompt, cancel)


def test_stream_stops_and_cancels_on_client_disconnect(embedder, stores, topics, monkeypatch):
    checks = []

    async def is_disconnected(self):
        checks.append(True)
        return len(checks) > 1

    monkeypatch.setattr(Request, "is_disconnected", is_disconnected)
    generator = CancelRecordingGenerator()
    service = RAGService(embedder=embedder, generator=generator, store_factory=stores, topics=topics)
    with _client(service) as client:
        resp = client.post("/api/chat/query/stream", json={"question": "What is perimenopause?"})

    events = _events(resp.text)
    assert events == [{"type": "chunk", "content": "part0 "}]
    assert generator.cancel_event is not None
    assert generator.cancel_event.is_set()
