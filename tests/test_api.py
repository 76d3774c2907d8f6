import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from chat.core.transcript import TranscriptManager
from chat.inference import WorkersAIBackend
from chat.storage import CloudflareKVStore
from config.settings import Settings
from tests.fakes import RecordingStore, ScriptedBackend


@pytest.fixture
def client(manager) -> TestClient:
    return TestClient(create_app(manager=manager, settings=Settings()))


def test_chat_returns_reply_and_history(client) -> None:
    response = client.post("/api/chat", json={"sessionId": "s1", "message": "Explain TCP handshakes"})

    assert response.status_code == 200
    body = response.json()
    assert body["reply"] == "reply-1"
    assert body["history"] == [
        {"role": "system", "content": "Be a study buddy."},
        {"role": "user", "content": "Explain TCP handshakes"},
        {"role": "assistant", "content": "reply-1"},
    ]


def test_chat_history_persists_between_requests(client) -> None:
    client.post("/api/chat", json={"sessionId": "s1", "message": "one"})
    body = client.post("/api/chat", json={"sessionId": "s1", "message": "two"}).json()
    assert [turn["role"] for turn in body["history"]] == ["system", "user", "assistant", "user", "assistant"]


@pytest.mark.parametrize(
    "payload",
    [
        {"message": "hi"},
        {"sessionId": "", "message": "hi"},
        {"sessionId": 123, "message": "hi"},
        {},
        ["not", "an", "object"],
        {"sessionId": None},
    ],
)
def test_bad_session_id_is_a_400(client, store, backend, payload) -> None:
    response = client.post("/api/chat", json=payload)
    assert response.status_code == 400
    assert response.json() == {"error": "Missing or invalid sessionId"}
    assert store.gets == []
    assert backend.calls == []


@pytest.mark.parametrize(
    "payload",
    [
        {"sessionId": "s1"},
        {"sessionId": "s1", "message": ""},
        {"sessionId": "s1", "message": ["hi"]},
        {"sessionId": "s1", "message": "   "},
    ],
)
def test_bad_message_is_a_400(client, store, backend, payload) -> None:
    response = client.post("/api/chat", json=payload)
    assert response.status_code == 400
    assert response.json() == {"error": "Missing or invalid message"}
    assert store.gets == []
    assert backend.calls == []


def test_unreadable_body_is_a_400(client) -> None:
    response = client.post(
        "/api/chat",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON body"}


def test_inference_failure_is_an_opaque_500(config, caplog) -> None:
    store = RecordingStore()
    manager = TranscriptManager(store, ScriptedBackend(error=RuntimeError("secret upstream detail")), config)
    client = TestClient(create_app(manager=manager, settings=Settings()))

    with caplog.at_level("ERROR", logger="studybuddy"):
        response = client.post("/api/chat", json={"sessionId": "s1", "message": "hi"})

    assert response.status_code == 500
    assert response.json() == {"error": "Internal error"}
    assert "secret" not in response.text
    assert store.data == {}
    assert "Chat processing failed for session=s1" in caplog.text
    assert "secret upstream detail" in caplog.text


def test_missing_backend_credentials_only_fail_valid_requests(monkeypatch) -> None:
    for name in ("CLOUDFLARE_ACCOUNT_ID", "CLOUDFLARE_API_TOKEN", "INFERENCE_PROVIDER", "STORAGE_BACKEND"):
        monkeypatch.delenv(name, raising=False)
    client = TestClient(create_app(settings=Settings()))

    assert client.post("/api/chat", json={"message": "hi"}).status_code == 400
    response = client.post("/api/chat", json={"sessionId": "s1", "message": "hi"})
    assert response.status_code == 500
    assert response.json() == {"error": "Internal error"}


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_cors_preflight_is_answered(client) -> None:
    response = client.options(
        "/api/chat",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


def test_unknown_path_is_404(client) -> None:
    assert client.get("/nope").status_code == 404


def test_shutdown_closes_store_and_backend_clients(backend, config) -> None:
    store = RecordingStore()
    client = TestClient(create_app(manager=TranscriptManager(store, backend, config), settings=Settings()))

    with client:
        client.post("/api/chat", json={"sessionId": "s1", "message": "hi"})
        assert store.closed is False

    assert store.closed is True


def test_manager_close_closes_http_clients(config) -> None:
    kv_client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
    ai_client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    manager = TranscriptManager(
        CloudflareKVStore("acct", "ns", "token", client=kv_client),
        WorkersAIBackend("acct", "token", client=ai_client),
        config,
    )

    manager.close()

    assert kv_client.is_closed and ai_client.is_closed
