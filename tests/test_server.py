from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from spurchat.api.server import create_app
from spurchat.clients.llm_client import CompletionClient, CompletionResult, FailureKind
from spurchat.core.reply import CONFIG_ERROR_TEXT
from spurchat.memory.db import StorageError


@pytest.fixture
def client_factory(settings):
    def _make(llm):
        app = create_app(settings=settings, llm_client=llm)
        return app, TestClient(app)
    return _make


def _details(resp):
    body = resp.json()
    assert body["error"] == "Validation error"
    return {d["field"]: d["message"] for d in body["details"]}


def test_health(settings, fake_llm):
    with TestClient(create_app(settings=settings, llm_client=fake_llm)) as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_first_message_then_history(client_factory, fake_llm_factory):
    llm = fake_llm_factory(CompletionResult(text="Hello! How can I help you today?"))
    _, test_client = client_factory(llm)

    with test_client as client:
        resp = client.post("/chat/message", json={"message": "Hi"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["sessionId"]
        assert body["reply"] == "Hello! How can I help you today?"
        assert "error" not in body

        history = client.get(f"/chat/history/{body['sessionId']}")

    assert history.status_code == 200
    payload = history.json()
    assert payload["sessionId"] == body["sessionId"]
    assert [m["sender"] for m in payload["messages"]] == ["user", "ai"]
    assert payload["messages"][0]["text"] == "Hi"
    assert payload["messages"][0]["conversation_id"] == body["sessionId"]
    assert set(payload["messages"][0]) == {"id", "conversation_id", "sender", "text", "timestamp"}


def test_follow_up_reuses_session(client_factory, fake_llm):
    _, test_client = client_factory(fake_llm)

    with test_client as client:
        first = client.post("/chat/message", json={"message": "Hi"}).json()
        second = client.post(
            "/chat/message", json={"message": "Do you ship to the USA?", "sessionId": first["sessionId"]}
        ).json()
        history = client.get(f"/chat/history/{first['sessionId']}").json()

    assert second["sessionId"] == first["sessionId"]
    assert len(history["messages"]) == 4
    # The model saw the earlier exchange
    assert [m["role"] for m in fake_llm.calls[-1]] == ["system", "user", "assistant", "user"]


def test_message_is_trimmed_before_storing(client_factory, fake_llm):
    _, test_client = client_factory(fake_llm)

    with test_client as client:
        body = client.post("/chat/message", json={"message": "   Hi there   "}).json()
        history = client.get(f"/chat/history/{body['sessionId']}").json()

    assert history["messages"][0]["text"] == "Hi there"


@pytest.mark.parametrize("message", ["", "    "])
def test_empty_message_is_rejected(client_factory, fake_llm, message):
    _, test_client = client_factory(fake_llm)

    with test_client as client:
        resp = client.post("/chat/message", json={"message": message})

    assert resp.status_code == 400
    assert "message" in _details(resp)
    assert fake_llm.calls == []


def test_missing_message_is_rejected(client_factory, fake_llm):
    _, test_client = client_factory(fake_llm)

    with test_client as client:
        resp = client.post("/chat/message", json={})

    assert resp.status_code == 400
    assert "message" in _details(resp)


def test_too_long_message_is_rejected(client_factory, fake_llm, settings):
    _, test_client = client_factory(fake_llm)

    with test_client as client:
        resp = client.post("/chat/message", json={"message": "x" * (settings.max_message_length + 1)})

    assert resp.status_code == 400
    assert str(settings.max_message_length) in _details(resp)["message"]
    assert fake_llm.calls == []


def test_invalid_session_id_is_rejected(client_factory, fake_llm):
    _, test_client = client_factory(fake_llm)

    with test_client as client:
        resp = client.post("/chat/message", json={"message": "Hi", "sessionId": "not-a-uuid"})

    assert resp.status_code == 400
    assert "sessionId" in _details(resp)


def test_empty_session_id_starts_new_conversation(client_factory, fake_llm):
    _, test_client = client_factory(fake_llm)

    with test_client as client:
        resp = client.post("/chat/message", json={"message": "Hi", "sessionId": ""})

    assert resp.status_code == 200
    assert resp.json()["sessionId"]


def test_unknown_session_gets_new_id(client_factory, fake_llm):
    _, test_client = client_factory(fake_llm)
    stale = str(uuid.uuid4())

    with test_client as client:
        resp = client.post("/chat/message", json={"message": "Hi", "sessionId": stale})

    assert resp.status_code == 200
    assert resp.json()["sessionId"] != stale


def test_rate_limit_is_a_graceful_reply(client_factory, fake_llm_factory, make_failure):
    llm = fake_llm_factory(make_failure(FailureKind.RATE_LIMIT, "429 Too Many Requests"))
    _, test_client = client_factory(llm)

    with test_client as client:
        resp = client.post("/chat/message", json={"message": "Where is my order?"})
        body = resp.json()
        history = client.get(f"/chat/history/{body['sessionId']}").json()

    assert resp.status_code == 200
    assert body["error"] is True
    assert "high demand" in body["reply"]
    assert [m["sender"] for m in history["messages"]] == ["user", "ai"]
    assert "high demand" in history["messages"][1]["text"]


def test_empty_completion_is_flagged(client_factory, fake_llm_factory, make_failure):
    llm = fake_llm_factory(make_failure(FailureKind.EMPTY, "Empty response from the model."))
    _, test_client = client_factory(llm)

    with test_client as client:
        body = client.post("/chat/message", json={"message": "Hello"}).json()

    assert body["error"] is True
    assert body["reply"].strip()


def test_missing_api_key_answers_with_configuration_error(client_factory):
    _, test_client = client_factory(CompletionClient(api_key="", model="test-model"))

    with test_client as client:
        resp = client.post("/chat/message", json={"message": "Hi"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["error"] is True
    assert CONFIG_ERROR_TEXT in body["reply"]


def test_unknown_history_is_404(client_factory, fake_llm):
    _, test_client = client_factory(fake_llm)

    with test_client as client:
        resp = client.get(f"/chat/history/{uuid.uuid4()}")

    assert resp.status_code == 404
    assert resp.json() == {"error": "Conversation not found"}


def test_storage_failure_is_500(client_factory, fake_llm, monkeypatch):
    app, test_client = client_factory(fake_llm)

    async def broken(*args, **kwargs):
        raise StorageError("database is locked")

    monkeypatch.setattr(app.state.store, "create_conversation", broken)

    with test_client as client:
        resp = client.post("/chat/message", json={"message": "Hi"})

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "Internal server error"
    assert body["message"]
    assert fake_llm.calls == []


def test_history_storage_failure_is_500(client_factory, fake_llm, monkeypatch):
    app, test_client = client_factory(fake_llm)

    async def broken(*args, **kwargs):
        raise StorageError("disk I/O error")

    monkeypatch.setattr(app.state.store, "require_conversation", broken)

    with test_client as client:
        resp = client.get(f"/chat/history/{uuid.uuid4()}")

    assert resp.status_code == 500


def test_shutdown_closes_completion_client(settings, fake_llm):
    with TestClient(create_app(settings=settings, llm_client=fake_llm)) as client:
        client.get("/health")
        assert fake_llm.closed is False

    assert fake_llm.closed is True
