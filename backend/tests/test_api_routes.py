from fastapi.testclient import TestClient

from backend.replyrag.main import create_app


def _client():
    return TestClient(create_app())


def test_health_reports_loaded_resources(fakes):
    response = _client().get("/api/v1/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["resources"]["document_store"] is True


def test_context_and_pool_routes(fakes):
    client = _client()
    put = client.put(
        "/api/v1/contexts/v1",
        json={"context_id": "v1", "category_tags": ["Notebook"]},
    )
    assert put.status_code == 200
    assert client.get("/api/v1/contexts/v1").json()["category_tags"] == ["Notebook"]

    assert client.post("/api/v1/pools/missing", json={}).status_code == 404
    pool = client.post("/api/v1/pools/v1", json={"overwrite": True})
    assert pool.status_code == 200
    assert pool.json()["pool_size"] == 0


def test_service_errors_map_to_status_codes(fakes):
    client = _client()

    blank = client.post("/api/v1/replies", json={"comment_text": "   ", "context_id": "v1"})
    assert blank.status_code == 422

    assert client.get("/api/v1/replies/drafts/nope").status_code == 404
    assert client.post("/api/v1/search", json={"query": ""}).status_code == 422


def test_search_route_returns_tier(fakes):
    client = _client()
    client.post(
        "/api/v1/ingest/comments",
        json={"comments": [{"comment_id": "c1", "video_id": "v1", "text": "gaming notebook please"}]},
    )

    response = client.post(
        "/api/v1/search",
        json={"query": "gaming notebook", "source_type": "comment", "min_score": 0.0},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["tier"] == "full_scan"
    assert body["results"][0]["source_id"] == "c1"


def test_metrics_endpoint(fakes):
    response = _client().get("/metrics")
    assert response.status_code == 200
    assert "replyrag_http_requests_total" in response.text
