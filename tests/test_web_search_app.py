# Tests for the standalone /search endpoint.

import httpx
import pytest
from fastapi.testclient import TestClient

from aira_relay.applications.web_search.web_search_app import app


@pytest.fixture
def client(upstream, api_keys):
    with TestClient(app) as c:
        yield c


class TestSearchEndpoint:
    def test_success(self, client, upstream):
        resp = client.post("/search", json={"query": "latest AI news"})
        assert resp.status_code == 200
        assert resp.json() == {
            "content": "Bitcoin trades at $100,000.",
            "citations": ["https://example.com/btc"],
        }
        body = upstream.search_bodies()[0]
        assert body["model"] == "sonar"
        assert body["search_recency_filter"] == "day"
        assert body["messages"][1] == {"role": "user", "content": "latest AI news"}

    def test_upstream_error_is_500(self, client, upstream):
        upstream.search_status = 502
        resp = client.post("/search", json={"query": "q"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Search failed"}

    def test_network_error_is_500(self, client, upstream):
        upstream.search_exception = httpx.ConnectError("no route")
        resp = client.post("/search", json={"query": "q"})
        assert resp.status_code == 500
        assert resp.json()["error"]

    def test_missing_credential(self, upstream, api_keys, monkeypatch):
        monkeypatch.delenv("PERPLEXITY_API_KEY")
        with TestClient(app) as client:
            resp = client.post("/search", json={"query": "q"})
        assert resp.status_code == 500
        assert resp.json() == {"error": "Search API is not configured"}
        assert upstream.requests == []

    def test_missing_query_is_400(self, client):
        resp = client.post("/search", json={})
        assert resp.status_code == 400
        assert resp.json()["error"]

    def test_options_is_empty_200(self, client):
        resp = client.options("/search")
        assert resp.status_code == 200
        assert resp.content == b""

    def test_browser_preflight_is_empty_200(self, client):
        resp = client.options(
            "/search",
            headers={"Origin": "https://aira.example", "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 200
        assert resp.content == b""
        assert resp.headers["access-control-allow-origin"] == "*"
