# Tests for WebSearchAgent (standalone search and best-effort context).

import httpx
import pytest

from aira_relay.applications.web_search.web_search_agent import SearchFailedError, WebSearchAgent
from aira_relay.applications.web_search.web_search_prompt import (
    SEARCH_CONTEXT_SYSTEM_MESSAGE,
    WEB_SEARCH_SYSTEM_MESSAGE,
)


@pytest.fixture
def agent(upstream):
    return WebSearchAgent(api_key="test-perplexity-key")


class TestFetchContext:
    async def test_success_returns_first_choice(self, agent, upstream):
        context = await agent.fetch_context("bitcoin price today")
        assert context == "Bitcoin trades at $100,000."

        body = upstream.search_bodies()[0]
        assert body["model"] == "sonar"
        assert body["messages"] == [
            {"role": "system", "content": SEARCH_CONTEXT_SYSTEM_MESSAGE},
            {"role": "user", "content": "bitcoin price today"},
        ]
        assert "stream" not in body or body["stream"] is False
        assert upstream.requests[0].headers["authorization"] == "Bearer test-perplexity-key"

    @pytest.mark.parametrize("status", [400, 401, 429, 500, 503])
    async def test_non_2xx_degrades_to_empty(self, agent, upstream, status):
        upstream.search_status = status
        upstream.search_json = {"error": "nope"}
        assert await agent.fetch_context("news") == ""
        # single shot, no retries
        assert len(upstream.search_bodies()) == 1

    async def test_network_error_degrades_to_empty(self, agent, upstream):
        upstream.search_exception = httpx.ConnectError("connection refused")
        assert await agent.fetch_context("news") == ""

    async def test_malformed_body_degrades_to_empty(self, agent, upstream):
        upstream.search_json = {"unexpected": True}
        assert await agent.fetch_context("news") == ""

    async def test_unconfigured_skips_call(self, upstream, monkeypatch):
        monkeypatch.delenv("PERPLEXITY_API_KEY", raising=False)
        agent = WebSearchAgent()
        assert agent.is_llm_configured is False
        assert await agent.fetch_context("news") == ""
        assert upstream.requests == []


class TestRun:
    async def test_returns_content_and_citations(self, agent, upstream):
        result = await agent.run("latest AI news")
        assert result.content == "Bitcoin trades at $100,000."
        assert result.citations == ["https://example.com/btc"]

        body = upstream.search_bodies()[0]
        assert body["search_recency_filter"] == "day"
        assert body["messages"][0] == {"role": "system", "content": WEB_SEARCH_SYSTEM_MESSAGE}

    async def test_explicit_recency_filter(self, agent, upstream):
        await agent.run("q", recency_filter="week")
        assert upstream.search_bodies()[0]["search_recency_filter"] == "week"

    async def test_defaults_when_fields_missing(self, agent, upstream):
        upstream.search_json = {"choices": []}
        result = await agent.run("q")
        assert result.content == "No results found"
        assert result.citations == []

    async def test_upstream_error_raises_search_failed(self, agent, upstream):
        upstream.search_status = 500
        with pytest.raises(SearchFailedError, match="Search failed"):
            await agent.run("q")

    async def test_unconfigured_raises(self, upstream, monkeypatch):
        monkeypatch.delenv("PERPLEXITY_API_KEY", raising=False)
        with pytest.raises(ValueError, match="Search API is not configured"):
            await WebSearchAgent().run("q")
        assert upstream.requests == []

    def test_key_from_environment(self, monkeypatch):
        monkeypatch.setenv("PERPLEXITY_API_KEY", "env-key")
        agent = WebSearchAgent()
        assert agent.is_llm_configured is True
        assert agent.get_config_status()["init_config"]["api_key"] == "***"
