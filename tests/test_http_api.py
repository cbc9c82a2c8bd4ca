import pytest
from fastapi.testclient import TestClient

from server.http_api import create_app


@pytest.fixture
def client(service):
    with TestClient(create_app(service)) as test_client:
        yield test_client


def test_health(client):
    """Test the health endpoint returns OK status."""
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["initialized"] is False


def test_root(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["tools"] == "/tools"


def test_list_tools(client):
    r = client.get("/tools")
    assert r.status_code == 200
    assert len(r.json()["tools"]) == 9


def test_call_tool(client):
    r = client.post("/tools/list_categories", json={"withCount": True})
    assert r.status_code == 200
    assert r.json()["totalCategories"] == 3
    assert client.get("/health").json()["initialized"] is True


def test_call_tool_without_body(client):
    r = client.post("/tools/list_tags")
    assert r.status_code == 200
    assert "database" in r.json()["tags"]


def test_semantic_search(client):
    r = client.post("/tools/semantic_search", json={"query": "postg"})
    assert r.status_code == 200
    assert r.json()["results"][0]["service"]["name"] == "Postgres Cloud"


def test_invalid_parameters(client):
    r = client.post("/tools/get_service", json={})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid parameters"


def test_unknown_tool(client):
    r = client.post("/tools/drop_tables", json={})
    assert r.status_code == 404


def test_catalog_unavailable(failing_fetcher, make_service):
    with TestClient(create_app(make_service(failing_fetcher))) as client:
        r = client.post("/tools/list_tags")
        assert r.status_code == 503


def test_metrics_endpoint(client):
    client.get("/health")
    r = client.get("/metrics")
    assert r.status_code == 200
    assert "freetier_http_requests_total" in r.text


def test_shutdown_closes_service(service, fetcher):
    with TestClient(create_app(service)):
        pass
    assert fetcher.closed


def test_preload(service, fetcher):
    with TestClient(create_app(service, preload=True)) as client:
        assert fetcher.calls == 1
        assert client.get("/health").json()["initialized"] is True
