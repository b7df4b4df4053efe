# Shared fixtures: fake upstream APIs installed on the shared HTTP client.

import json

import httpx
import pytest

from aira_relay.utils.http_factory import GlobalHTTPFactory

COMPLETION_HOST = "ai.gateway.lovable.dev"
SEARCH_HOST = "api.perplexity.ai"

SSE_BODY = (
    b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
    b'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
    b"data: [DONE]\n\n"
)


class FakeUpstream:
    """Records outbound requests and answers them per host."""

    def __init__(self):
        self.requests = []
        self.completion_status = 200
        self.completion_body = SSE_BODY
        self.search_status = 200
        self.search_json = {
            "choices": [{"message": {"content": "Bitcoin trades at $100,000."}}],
            "citations": ["https://example.com/btc"],
        }
        self.search_exception = None
        self.completion_exception = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == SEARCH_HOST:
            if self.search_exception is not None:
                raise self.search_exception
            return httpx.Response(self.search_status, json=self.search_json)
        if request.url.host == COMPLETION_HOST:
            if self.completion_exception is not None:
                raise self.completion_exception
            if self.completion_status != 200:
                return httpx.Response(self.completion_status, text="upstream exploded: secret detail")
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=self.completion_body,
            )
        return httpx.Response(404)

    def bodies(self, host):
        return [json.loads(r.content) for r in self.requests if r.url.host == host]

    def completion_bodies(self):
        return self.bodies(COMPLETION_HOST)

    def search_bodies(self):
        return self.bodies(SEARCH_HOST)


@pytest.fixture
def upstream():
    fake = FakeUpstream()
    GlobalHTTPFactory.set_async_http_client(httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)))
    yield fake
    GlobalHTTPFactory.set_async_http_client(None)


@pytest.fixture
def api_keys(monkeypatch):
    monkeypatch.setenv("LOVABLE_API_KEY", "test-lovable-key")
    monkeypatch.setenv("PERPLEXITY_API_KEY", "test-perplexity-key")
    for name in ("CHAT_BASE_URL", "CHAT_MODEL", "SEARCH_BASE_URL", "SEARCH_MODEL", "SEARCH_RECENCY_FILTER"):
        monkeypatch.delenv(name, raising=False)
