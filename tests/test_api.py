import pytest
from fastapi.testclient import TestClient

from conftest import D1_TEXT, D2_TEXT
from docrecall import api as api_module
from docrecall.api import create_app


@pytest.fixture
def client(orchestrator):
    return TestClient(create_app(orchestrator=orchestrator))


def upload(client, name, text, content_type="text/plain", **form):
    return client.post(
        "/analyze",
        files={"file": (name, text.encode("utf-8"), content_type)},
        data=form,
    )


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy", "service": "docrecall"}


def test_analyze_generates_then_reuses(client, store):
    r = upload(client, "d1.txt", D1_TEXT)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["source"] == "generated"
    assert body["from_cache"] is False
    assert body["result"] == "summary #1"
    assert r.headers["X-RAG-Source"] == "generated"
    assert r.headers["X-RAG-Exact-Match"] == "false"
    assert "X-RAG-Reference-Document" not in r.headers

    r = upload(client, "d1.txt", D1_TEXT)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["source"] == "exact_match"
    assert body["result"] == "summary #1"
    assert body["matched_document"]["filename"] == "d1.txt"
    assert r.headers["X-RAG-Exact-Match"] == "true"
    assert r.headers["X-RAG-Similarity-Score"] == "1.0000"
    assert r.headers["X-RAG-Reference-Document"] == "d1.txt"
    assert store.count() == 1


def test_analyze_similar_document(client):
    upload(client, "d1.txt", D1_TEXT)

    r = upload(client, "d2.txt", D2_TEXT, action="summarize")

    assert r.status_code == 200, r.text
    assert r.json()["source"] == "similar_match"
    assert r.headers["X-RAG-Source"] == "similar_match"
    assert float(r.headers["X-RAG-Similarity-Score"]) == pytest.approx(0.90, abs=1e-3)
    assert r.headers["X-RAG-Reference-Document"] == "d1.txt"


def test_analyze_rejects_unsupported_type(client):
    r = upload(client, "archive.zip", "PK", content_type="application/zip")
    assert r.status_code == 400


def test_analyze_rejects_unknown_action(client):
    r = upload(client, "d1.txt", D1_TEXT, action="translate")
    assert r.status_code == 400


def test_analyze_generation_failure_is_502(client, generator, store):
    generator.fail = True

    r = upload(client, "d1.txt", D1_TEXT)

    assert r.status_code == 502
    assert store.count() == 0


def test_analyze_degraded_response(client, embedder):
    embedder.fail = True

    r = upload(client, "d1.txt", D1_TEXT)

    assert r.status_code == 200
    assert r.json()["degraded_reason"] == "embedding unavailable"


def test_rag_status(client):
    upload(client, "d1.txt", D1_TEXT)

    r = client.get("/rag/status")

    assert r.status_code == 200
    body = r.json()
    assert body["document_count"] == 1
    assert body["enabled"] is True
    assert body["embedding_model"] == "fake-embed"
    assert "hits" in body["cache_stats"]


def test_rag_search(client):
    upload(client, "d1.txt", D1_TEXT)

    r = client.post("/rag/search", json={"query": D2_TEXT, "limit": 5})

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["count"] == 1
    assert body["results"][0]["filename"] == "d1.txt"
    assert body["results"][0]["similarity_score"] == pytest.approx(0.90, abs=1e-3)


def test_rag_search_short_query_is_400(client):
    r = client.post("/rag/search", json={"query": "hi"})
    assert r.status_code == 400


def test_rag_search_embedding_failure_is_503(client, embedder):
    embedder.fail = True
    r = client.post("/rag/search", json={"query": D1_TEXT})
    assert r.status_code == 503


def test_purge_cache(client):
    r = client.post("/rag/purge-cache")
    assert r.status_code == 200
    assert r.json() == {"deleted": 0, "max_age_hours": 24}


def test_clear_embedding_cache(client):
    r = client.post("/cache/clear")
    assert r.status_code == 200
    assert r.json()["cleared"] is True


def test_analyze_action_must_match_file_type(client):
    r = upload(client, "d1.txt", D1_TEXT, action="describe")
    assert r.status_code == 400

    r = client.post(
        "/analyze",
        files={"file": ("photo.png", b"not really a png", "image/png")},
        data={"action": "summarize"},
    )
    assert r.status_code == 400


def test_analyze_describes_image(client):
    r = client.post(
        "/analyze",
        files={"file": ("photo.png", b"not really a png", "image/png")},
        data={"action": "describe"},
    )

    assert r.status_code == 200, r.text
    assert r.json()["result"] == "image description #1"
    assert r.json()["warnings"] == []


def test_analyze_warns_about_scanned_pdf(client, monkeypatch):
    monkeypatch.setattr(api_module, "extract_text", lambda data, mime_type: "")

    r = client.post(
        "/analyze",
        files={"file": ("scan.pdf", b"%PDF-1.4 " + b"\x00" * 2000, "application/pdf")},
    )

    assert r.status_code == 200, r.text
    (warning,) = r.json()["warnings"]
    assert "OCR" in warning
