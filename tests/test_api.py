"""
Tests for the HTTP surface: chat, SSE stream, thread inspection, system routes.
"""

import json

import pytest
from fastapi.testclient import TestClient
from langgraph.checkpoint.memory import MemorySaver

from app.agent.state import ai_message
from app.main import app

from conftest import KB_TOOL, FakeChatModel, FakeRetriever, kb_call, make_agent


@pytest.fixture
def client():
    # No context manager: the lifespan would build the configured agent.
    yield TestClient(app)
    app.state.agent = None


def _use(model, retriever=None):
    app.state.agent = make_agent(model, retriever or FakeRetriever())
    return app.state.agent


def _sse_events(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_health_without_agent(client: TestClient) -> None:
    app.state.agent = None
    data = client.get("/api/health").json()
    assert data["status"] == "healthy"
    assert data["agent_available"] is False
    assert client.get("/health").json() == {"ok": True}


def test_examples(client: TestClient) -> None:
    examples = client.get("/api/examples").json()["examples"]
    assert "How much is the total budget?" in examples


def test_chat_requires_agent(client: TestClient) -> None:
    app.state.agent = None
    r = client.post("/api/chat", json={"message": "hi"})
    assert r.status_code == 503


class TestChat:

    def test_answer_with_thinking(self, client: TestClient) -> None:
        model = FakeChatModel([
            kb_call("total budget"),
            ai_message("<thinking>Chunk 1 has it.</thinking>\n\n\n\nThe total budget is **$4.2B**."),
        ])
        _use(model)
        r = client.post("/api/chat", json={"message": "  How much is the total budget?  "})
        assert r.status_code == 200
        data = r.json()
        assert data["success"] is True
        assert data["response"] == "The total budget is **$4.2B**."
        assert data["thinking"] == ["Chunk 1 has it."]
        assert data["message"] == "How much is the total budget?"
        assert data["thread_id"].startswith("thread_")
        assert data["iterations"] == 2
        assert data["tools_used"] == [KB_TOOL]

    def test_follow_up_on_same_thread(self, client: TestClient) -> None:
        model = FakeChatModel([ai_message("first"), ai_message("second")])
        _use(model)
        thread_id = client.post("/api/chat", json={"message": "one"}).json()["thread_id"]
        data = client.post("/api/chat", json={"message": "two", "thread_id": thread_id}).json()
        assert data["response"] == "second"
        assert data["thread_id"] == thread_id
        assert [m["role"] for m in model.calls[1]["messages"]] == ["system", "human", "ai", "human"]

    @pytest.mark.parametrize("body", [{}, {"message": ""}, {"message": "   "}])
    def test_empty_message(self, client: TestClient, body: dict) -> None:
        model = FakeChatModel()
        _use(model)
        r = client.post("/api/chat", json=body)
        assert r.status_code == 400
        assert r.json()["error"] == "No message provided"
        assert model.calls == []

    def test_blank_thread_id(self, client: TestClient) -> None:
        _use(FakeChatModel())
        r = client.post("/api/chat", json={"message": "q", "thread_id": "  "})
        assert r.status_code == 400

    def test_model_failure(self, client: TestClient) -> None:
        _use(FakeChatModel(error=RuntimeError("quota exceeded")))
        r = client.post("/api/chat", json={"message": "q"})
        assert r.status_code == 500
        body = r.json()
        assert body["error"] == "Processing error"
        assert body["response"].startswith("I apologize, but I encountered an error processing your request:")
        assert "quota exceeded" in body["response"]


class TestStream:

    def test_event_stream(self, client: TestClient) -> None:
        _use(FakeChatModel([kb_call("q", call_id="c1"), ai_message("<thinking>t</thinking>Answer.")]))
        r = client.post("/api/chat/stream", json={"message": "q", "thread_id": "t-sse"})
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/event-stream")
        events = _sse_events(r.text)
        assert [e for e, _ in events] == ["tool_start", "tool_end", "token", "done"]
        assert events[0][1]["arguments"] == {"query": "q"}
        done = events[-1][1]
        assert done["answer"] == "Answer."
        assert done["thinking"] == ["t"]
        assert done["thread_id"] == "t-sse"
        assert done["tools_used"] == [KB_TOOL]

    def test_empty_message_is_rejected_before_streaming(self, client: TestClient) -> None:
        _use(FakeChatModel())
        r = client.post("/api/chat/stream", json={"message": ""})
        assert r.status_code == 400
        assert r.headers["content-type"].startswith("application/json")

    def test_failure_becomes_error_event(self, client: TestClient) -> None:
        _use(FakeChatModel(error=RuntimeError("boom")))
        r = client.post("/api/chat/stream", json={"message": "q"})
        events = _sse_events(r.text)
        assert events[-1][0] == "error"
        assert "boom" in events[-1][1]["message"]


class TestThreads:

    def test_state_and_history(self, client: TestClient) -> None:
        _use(FakeChatModel([kb_call("q"), ai_message("a")]))
        client.post("/api/chat", json={"message": "q", "thread_id": "t-api"})

        state = client.get("/api/threads/t-api").json()
        assert state["thread_id"] == "t-api"
        assert [m["role"] for m in state["state"]["messages"]] == ["human", "ai", "tool", "ai"]
        assert state["state"]["iterations"] == 2

        history = client.get("/api/threads/t-api/history").json()["history"]
        assert history[0]["state"] == state["state"]
        assert history[0]["next"] == []

    def test_unknown_thread(self, client: TestClient) -> None:
        _use(FakeChatModel())
        assert client.get("/api/threads/nope").status_code == 404
        assert client.get("/api/threads/nope/history").status_code == 404


def test_store_write_failure_is_503(client: TestClient) -> None:
    class FullDiskSaver(MemorySaver):
        def put(self, config, checkpoint, metadata, new_versions):
            raise RuntimeError("disk full")

    app.state.agent = make_agent(FakeChatModel(), FakeRetriever(), checkpointer=FullDiskSaver())
    r = client.post("/api/chat", json={"message": "q"})
    assert r.status_code == 503
    assert r.json()["error"] == "Service unavailable"
    assert "disk full" in r.json()["response"]


def test_error_body_is_documented(client: TestClient) -> None:
    paths = client.get("/openapi.json").json()["paths"]
    for path, statuses in (("/api/chat", ("400", "500", "503")), ("/api/chat/stream", ("400", "503"))):
        responses = paths[path]["post"]["responses"]
        for status in statuses:
            assert responses[status]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorResponse")
