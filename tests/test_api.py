"""HTTP session API."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from agentloop.api.app import create_app
from agentloop.core.retry import BackendError

from conftest import (
    ScriptedBackend,
    text_response,
    tool_response,
)


@pytest.fixture
def client(make_settings):
    scripts = [
        [
            tool_response(("c1", "write_file", {"path": "out.txt", "content": "hello"})),
            text_response("Wrote the file."),
        ],
        [BackendError("upstream down", status_code=503)],
    ]
    app = create_app(make_settings(), backend_factory=lambda: ScriptedBackend(scripts.pop(0)))
    with TestClient(app) as test_client:
        yield test_client


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_session_lifecycle(client: TestClient, tmp_path: Path) -> None:
    created = client.post("/sessions").json()
    session_id = created["session_id"]
    assert created["tools"] == ["edit_file", "read_file", "write_file"]
    assert client.get("/sessions").json() == [session_id]

    reply = client.post(f"/sessions/{session_id}/messages", json={"message": "write hello"})
    assert reply.status_code == 200
    body = reply.json()
    assert body["reply"] == "Wrote the file."
    assert body["steps"] == 1
    assert body["messages"] == 5
    assert (tmp_path / "out.txt").read_text(encoding="utf-8") == "hello"

    closed = client.delete(f"/sessions/{session_id}")
    assert closed.json() == {"status": "closed", "session_id": session_id}
    assert client.get("/sessions").json() == []
    assert client.post(f"/sessions/{session_id}/messages", json={"message": "x"}).status_code == 404


def test_tools_endpoints(client: TestClient, tmp_path: Path) -> None:
    session_id = client.post("/sessions").json()["session_id"]

    tools = client.get(f"/sessions/{session_id}/tools").json()["tools"]
    assert [t["name"] for t in tools] == ["read_file", "write_file", "edit_file"]

    (tmp_path / "in.txt").write_text("content", encoding="utf-8")
    result = client.post(f"/sessions/{session_id}/tools/read_file", json={"arguments": {"path": "in.txt"}})
    assert result.json() == {"success": True, "content": "content", "error": None}

    failed = client.post(f"/sessions/{session_id}/tools/read_file", json={"arguments": {}})
    assert failed.json()["success"] is False

    missing = client.post(f"/sessions/{session_id}/tools/nope", json={})
    assert missing.status_code == 404


def test_backend_failure_maps_to_502(client: TestClient) -> None:
    client.post("/sessions")  # consumes the first script
    session_id = client.post("/sessions").json()["session_id"]

    response = client.post(f"/sessions/{session_id}/messages", json={"message": "hi"})
    assert response.status_code == 502
    assert "upstream down" in response.json()["detail"]


def test_validation_and_unknown_session(client: TestClient) -> None:
    assert client.post("/sessions/missing/messages", json={"message": "hi"}).status_code == 404
    session_id = client.post("/sessions").json()["session_id"]
    assert client.post(f"/sessions/{session_id}/messages", json={"message": ""}).status_code == 422


def test_reset_clears_history_and_steps(client: TestClient) -> None:
    session_id = client.post("/sessions").json()["session_id"]
    reply = client.post(f"/sessions/{session_id}/messages", json={"message": "write hello"})
    assert reply.json()["steps"] == 1

    reset = client.post(f"/sessions/{session_id}/reset")
    assert reset.json() == {"status": "reset", "session_id": session_id, "steps": 0, "messages": 1}
    assert client.post("/sessions/missing/reset").status_code == 404


def test_mcp_tools_across_requests(make_settings, ping_server_config: Path) -> None:
    config = make_settings(ENABLE_MCP=True, MCP_CONFIG_PATH=str(ping_server_config))
    app = create_app(config, backend_factory=lambda: ScriptedBackend([]))
    with TestClient(app) as test_client:
        first = test_client.post("/sessions").json()
        second = test_client.post("/sessions").json()
        assert "ping" in first["tools"]
        assert "ping" in second["tools"]

        called = test_client.post(
            f"/sessions/{first['session_id']}/tools/ping", json={"arguments": {"text": "x"}}
        )
        assert called.status_code == 200
        assert called.json() == {"success": True, "content": "pong:x", "error": None}

        assert test_client.delete(f"/sessions/{first['session_id']}").status_code == 200
        again = test_client.post(
            f"/sessions/{second['session_id']}/tools/ping", json={"arguments": {"text": "y"}}
        )
        assert again.json()["content"] == "pong:y"
        assert test_client.delete(f"/sessions/{second['session_id']}").status_code == 200
