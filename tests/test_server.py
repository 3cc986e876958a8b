import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from entrybook.config import Settings
from entrybook.server import _authorized, create_app
from tests.conftest import (
    INITIALIZE_PARAMS,
    FailingChatModel,
    ScriptedChatModel,
    as_dict,
    make_message,
    make_tool_call,
    rpc,
)

WIDE_RANGE = {"from": "1970-01-01T00:00:00.000Z", "to": "2100-01-01T00:00:00.000Z"}


@pytest.fixture
def settings(tmp_path):
    return Settings(db_path=tmp_path / "server.sqlite")


def make_client(settings, model=None):
    return TestClient(create_app(settings, model=model))


def test_store_then_list_and_sum(settings):
    with make_client(settings) as client:
        stored = client.post("/api/tools/store", json={"value": 7, "description": "demo"})
        assert stored.status_code == 200
        entry = stored.json()
        assert entry["value"] == 7
        assert entry["description"] == "demo"
        assert entry["created_at"].endswith("Z")

        client.post("/api/tools/store", json={"value": 3, "description": "more"})

        page = client.get("/api/entries").json()
        assert page["total"] == 2
        assert page["pages"] == 1
        assert [item["value"] for item in page["items"]] == [3, 7]

        total = client.get("/api/tools/sum", params=WIDE_RANGE)
        assert total.json() == {"total": 10}


def test_entries_paging_is_clamped(settings):
    with make_client(settings) as client:
        for value in range(3):
            client.post("/api/tools/store", json={"value": value, "description": f"v{value}"})
        page = client.get("/api/entries", params={"page": "0", "pageSize": "2"}).json()
        assert (page["page"], page["pageSize"], page["pages"]) == (1, 2, 2)

        fallback = client.get("/api/entries", params={"page": "abc", "pageSize": "xyz"}).json()
        assert (fallback["page"], fallback["pageSize"]) == (1, 10)


def test_empty_store_has_one_page(settings):
    with make_client(settings) as client:
        page = client.get("/api/entries").json()
    assert page == {"items": [], "page": 1, "pageSize": 10, "total": 0, "pages": 1}


@pytest.mark.parametrize(
    "body, message",
    [
        ({"value": 3.5, "description": "x"}, "value must be an integer"),
        ({"value": "7", "description": "x"}, "value must be an integer"),
        ({"value": 1, "description": "   "}, "description is required"),
        ({"value": 1}, "description is required"),
    ],
)
def test_store_validation(settings, body, message):
    with make_client(settings) as client:
        response = client.post("/api/tools/store", json=body)
        assert response.status_code == 400
        assert response.json() == {"error": message}
        assert client.get("/api/entries").json()["total"] == 0


def test_sum_requires_both_bounds(settings):
    with make_client(settings) as client:
        response = client.get("/api/tools/sum", params={"from": WIDE_RANGE["from"]})
    assert response.status_code == 400
    assert response.json() == {"error": "from and to are required (ISO datetime)"}


def test_healthz_reports_open_sessions(settings):
    app = create_app(settings)
    with TestClient(app) as client:
        app.state.sessions.accept()
        assert client.get("/healthz").json() == {"status": "ok", "sessions": 1}


def test_messages_requires_session_id(settings):
    with make_client(settings) as client:
        response = client.post("/messages", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
    assert response.status_code == 400
    assert response.json() == {"error": "Bad session id"}


def test_messages_unknown_session(settings):
    with make_client(settings) as client:
        response = client.post(
            "/messages",
            params={"sessionId": "never-issued"},
            json={"jsonrpc": "2.0", "id": 1, "method": "ping"},
        )
    assert response.status_code == 400
    assert response.json() == {"error": "No transport for sessionId"}


def test_messages_reply_lands_on_session_stream(settings):
    app = create_app(settings)
    sessions = app.state.sessions
    with TestClient(app) as client:
        session = sessions.accept()
        served = client.portal.start_task_soon(sessions.serve, session)

        def post(message):
            return client.post("/messages", params={"sessionId": session.session_id}, json=message)

        assert post(rpc("initialize", INITIALIZE_PARAMS, msg_id=0)).status_code == 202
        initialized = as_dict(client.portal.call(session.next_message))
        assert initialized["result"]["serverInfo"]["name"] == "mcp-sqlite-server"
        assert post(rpc("notifications/initialized", msg_id=None)).status_code == 202

        response = post(rpc("tools/call", {"name": "sum", "arguments": WIDE_RANGE}, msg_id=4))
        assert response.status_code == 202
        assert response.text == "Accepted"
        reply = as_dict(client.portal.call(session.next_message))

        client.portal.call(sessions.release, session.session_id)
        served.result(timeout=5)
    assert reply["id"] == 4
    assert reply["result"]["content"][0]["text"] == "0"


@pytest.mark.parametrize(
    "payload",
    [
        {"jsonrpc": "2.0", "id": 1, "method": ["x"]},
        {"jsonrpc": "1.0", "id": 1, "method": "ping"},
        [1, 2, 3],
    ],
)
def test_messages_rejects_non_jsonrpc_payload(settings, payload):
    app = create_app(settings)
    with TestClient(app) as client:
        session = app.state.sessions.accept()
        response = client.post("/messages", params={"sessionId": session.session_id}, json=payload)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON-RPC message"}
        assert session.session_id in app.state.sessions


def test_messages_rejects_bad_json(settings):
    app = create_app(settings)
    with TestClient(app) as client:
        session = app.state.sessions.accept()
        response = client.post(
            "/messages",
            params={"sessionId": session.session_id},
            content=b"{not json",
            headers={"content-type": "application/json"},
        )
    assert response.status_code == 400
    assert response.json() == {"error": "request body must be valid JSON"}


def test_sse_requires_token_when_configured(tmp_path):
    settings = Settings(db_path=tmp_path / "auth.sqlite", auth_token="secret")
    with make_client(settings) as client:
        response = client.get("/sse")
        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized"}
        assert client.get("/sse", params={"token": "wrong"}).status_code == 401


def _request(headers=None, query=b""):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/sse",
        "headers": [(key.encode(), value.encode()) for key, value in (headers or {}).items()],
        "query_string": query,
    }
    return Request(scope)


def test_authorized_accepts_bearer_or_query_token():
    assert _authorized(_request(), None)
    assert _authorized(_request({"authorization": "Bearer secret"}), "secret")
    assert _authorized(_request(query=b"token=secret"), "secret")
    assert not _authorized(_request({"authorization": "Bearer nope"}), "secret")
    assert not _authorized(_request(), "secret")


def test_chat_runs_tools_and_returns_logs(settings):
    model = ScriptedChatModel(
        [
            make_message(None, [make_tool_call("call_1", "store", {"value": 7, "description": "demo"})]),
            make_message("Stored it."),
        ]
    )
    app = create_app(settings, model=model)
    with TestClient(app) as client:
        response = client.post("/api/chat", json={"message": "store 7 called demo"})
        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "assistant"
        assert body["content"] == "Stored it."
        assert body["model"] == "dummy-model"
        assert [log["name"] for log in body["toolLogs"]] == ["store"]
        assert client.get("/api/entries").json()["total"] == 1
        assert len(app.state.sessions) == 0


def test_chat_rejects_bad_body(settings):
    with make_client(settings, model=ScriptedChatModel([])) as client:
        response = client.post("/api/chat", json={"messages": []})
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


def test_chat_model_failure_is_bad_gateway(settings):
    with make_client(settings, model=FailingChatModel(ConnectionError("provider down"))) as client:
        response = client.post("/api/chat", json={"message": "hi"})
    assert response.status_code == 502
    assert response.json()["error"] == "upstream_failure"


def test_chat_without_api_key_is_unavailable(settings, monkeypatch):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    with make_client(settings) as client:
        response = client.post("/api/chat", json={"message": "hi"})
    assert response.status_code == 503
    assert "GROQ_API_KEY" in response.json()["detail"]


def test_cors_preflight_allows_configured_origin(tmp_path):
    settings = Settings(db_path=tmp_path / "cors.sqlite", cors_origins=("http://dashboard.local",))
    with make_client(settings) as client:
        response = client.options(
            "/api/tools/store",
            headers={"Origin": "http://dashboard.local", "Access-Control-Request-Method": "POST"},
        )
        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://dashboard.local"

        denied = client.options(
            "/api/tools/store",
            headers={"Origin": "http://elsewhere.example", "Access-Control-Request-Method": "POST"},
        )
        assert denied.status_code == 400


def test_cors_defaults_to_any_origin(settings):
    with make_client(settings) as client:
        response = client.get("/healthz", headers={"Origin": "http://dashboard.local"})
    assert response.headers["access-control-allow-origin"] == "*"
