"""
Integration tests for the /chat and /health endpoints.

The real gateway and prompts are used; only the OpenAI-compatible client is
faked, so request parsing, error mapping and response shaping are exercised
end to end.
"""

import httpx
import openai
import pytest
from conftest import FakeOpenAIClient
from fastapi.testclient import TestClient

from whytree.api.server import (
    API_KEY_MISSING_MESSAGE,
    GEMINI_API_ERROR_MESSAGE,
    INVALID_REQUEST_MESSAGE,
    create_app,
)
from whytree.clients.gemini_client import ModelGateway
from whytree.core.exchange import COMPLETION_NOTICE

DIALOGUE = [
    {"id": "m1", "role": "user", "content": "I keep missing deadlines", "timestamp": 1000},
    {"id": "m2", "role": "assistant", "content": "Why do you think that is?", "timestamp": 2000},
    {"id": "m3", "role": "user", "content": "I say yes to everything", "timestamp": 3000},
]


def make_client(settings, *outcomes):
    fake = FakeOpenAIClient(outcomes)
    client = TestClient(create_app(ModelGateway(settings, client=fake)))
    return client, fake


class TestChatSuccess:
    def test_counselor_reply(self, settings):
        client, fake = make_client(settings, "Why do you find it hard to say no?")

        resp = client.post("/chat", json={"messages": DIALOGUE})

        assert resp.status_code == 200
        data = resp.json()
        assert data["message"]["role"] == "assistant"
        assert data["message"]["content"] == "Why do you find it hard to say no?"
        assert data["message"]["id"]
        assert data["message"]["timestamp"] > 0
        assert "mermaidCode" not in data
        assert len(fake.completions.calls) == 1

    def test_tree_reply(self, settings):
        client, _ = make_client(settings, '{"diagram": "graph TD;\\n  A[Deadlines] --> B[Saying yes];"}')

        resp = client.post("/chat", json={"messages": DIALOGUE, "shouldGenerateTree": True})

        assert resp.status_code == 200
        data = resp.json()
        assert data["mermaidCode"] == "graph TD;\n  A[Deadlines] --> B[Saying yes];"
        assert data["message"]["content"] == COMPLETION_NOTICE

    def test_tree_reply_without_diagram(self, settings):
        client, _ = make_client(settings, "I could not draw a tree.")

        resp = client.post("/chat", json={"messages": DIALOGUE, "shouldGenerateTree": True})

        assert resp.status_code == 200
        data = resp.json()
        assert "mermaidCode" not in data
        assert data["message"]["content"] == "I could not draw a tree."

    def test_tree_flag_defaults_to_false(self, settings):
        client, _ = make_client(settings, '{"diagram": "graph TD; A-->B"}')
        resp = client.post("/chat", json={"messages": DIALOGUE})
        assert resp.status_code == 200
        assert "mermaidCode" not in resp.json()


class TestChatErrors:
    def test_missing_key_checked_before_body(self, settings_without_key):
        client, fake = make_client(settings_without_key)

        resp = client.post("/chat", content=b"not even json", headers={"Content-Type": "application/json"})

        assert resp.status_code == 400
        assert resp.json() == {"error": API_KEY_MISSING_MESSAGE, "code": "API_KEY_MISSING"}
        assert fake.completions.calls == []

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"messages": []},
            {"messages": "hello"},
            {"messages": [{"id": "m1", "role": "model", "content": "x", "timestamp": 1}]},
            {"messages": [{"id": "m1", "role": "user", "content": "x"}]},
            ["not", "an", "object"],
        ],
    )
    def test_invalid_body(self, settings, body):
        client, fake = make_client(settings)

        resp = client.post("/chat", json=body)

        assert resp.status_code == 400
        assert resp.json() == {"error": INVALID_REQUEST_MESSAGE, "code": "INVALID_REQUEST"}
        assert fake.completions.calls == []

    def test_unparseable_body(self, settings):
        client, _ = make_client(settings)
        resp = client.post("/chat", content=b"{broken", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "INVALID_REQUEST"

    def test_model_failure(self, settings):
        error = openai.APIConnectionError(request=httpx.Request("POST", "https://example.test"))
        client, _ = make_client(settings, error)

        resp = client.post("/chat", json={"messages": DIALOGUE})

        assert resp.status_code == 500
        assert resp.json() == {"error": GEMINI_API_ERROR_MESSAGE, "code": "GEMINI_API_ERROR"}

    def test_empty_model_reply(self, settings):
        client, _ = make_client(settings, "")
        resp = client.post("/chat", json={"messages": DIALOGUE})
        assert resp.status_code == 500
        assert resp.json()["code"] == "GEMINI_API_ERROR"


class TestHealth:
    def test_health(self, settings):
        client, _ = make_client(settings)
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "model": "gemini-test", "api_key_configured": True}

    def test_health_without_key(self, settings_without_key):
        client, _ = make_client(settings_without_key)
        assert client.get("/health").json()["api_key_configured"] is False
