import time

import pytest
from fastapi.testclient import TestClient

from conftest import make_settings
from fakes import FakeAPIError, FakeBackend, SleepRecorder
from ragchat.main import app, get_services
from ragchat.services import build_services

USER = {"X-User-Id": "user-1"}


@pytest.fixture
def api(tmp_path):
    backend = FakeBackend()
    svc = build_services(make_settings(tmp_path), backend=backend, sleep=SleepRecorder())
    app.dependency_overrides[get_services] = lambda: svc
    with TestClient(app) as client:
        yield client, backend, svc
    app.dependency_overrides.clear()


def _upload(client, name="notes.txt", data=b"x" * 500, mime="text/plain", headers=USER):
    return client.post("/upload", files={"file": (name, data, mime)}, headers=headers)


def _wait_for_ready(client, expected, attempts=200):
    body = {}
    for _ in range(attempts):
        body = client.get("/upload/status", headers=USER).json()
        if body["readyCount"] == expected:
            return body
        time.sleep(0.01)
    return body


def test_health(api):
    client, _, _ = api
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "mockMode": False}


def test_upload_dedup_and_status(api):
    client, backend, _ = api

    first = _upload(client)
    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["isDuplicate"] is False
    assert body["processingStatus"] == "processing"
    assert body["storeName"] == "fileSearchStores/store-1"

    second = _upload(client)
    assert second.status_code == 200
    assert second.json()["isDuplicate"] is True
    assert second.json()["storeName"] == body["storeName"]
    assert "already exists" in second.json()["message"]
    assert len(backend.uploads) == 1

    status = _wait_for_ready(client, expected=1)
    assert status["totalFiles"] == 1
    assert status["allReady"] is True
    assert status["processingCount"] == 0
    assert status["files"][0]["fileName"] == "notes.txt"
    assert status["files"][0]["status"] == "ready"
    assert status["files"][0]["size"] == 500
    assert status["pollIntervalSec"] == 3.0
    assert status["maxPolls"] == 40


def test_status_for_new_user_is_empty(api):
    client, _, _ = api
    body = client.get("/upload/status", headers={"X-User-Id": "someone-else"}).json()
    assert body["files"] == []
    assert body["totalFiles"] == 0
    assert body["allReady"] is False


def test_upload_sanitizes_name(api):
    client, backend, _ = api
    response = _upload(client, name="my:notes?.txt")
    assert response.json()["fileName"] == "my_notes_.txt"
    assert backend.uploads[0]["display_name"] == "my_notes_.txt"


def test_upload_rejects_bad_extension(api):
    client, backend, _ = api
    response = _upload(client, name="run.exe", mime="application/octet-stream")
    assert response.status_code == 400
    assert response.json()["detail"].startswith("File type not allowed")
    assert backend.uploads == []


def test_upload_backend_failure_is_bad_gateway(api):
    client, backend, svc = api
    backend.operation_error = {"message": "unsupported content"}

    response = _upload(client)

    assert response.status_code == 502
    assert "unsupported content" in response.json()["detail"]
    status = client.get("/upload/status", headers=USER).json()
    assert status["errorCount"] == 1
    assert "unsupported content" in status["files"][0]["errorMessage"]

    backend.operation_error = None
    again = _upload(client)
    assert again.status_code == 200
    assert again.json()["isDuplicate"] is True
    assert again.json()["processingStatus"] == "error"
    assert "failed" in again.json()["message"]
    status = client.get("/upload/status", headers=USER).json()
    assert [f["status"] for f in status["files"]] == ["error"]
    assert len(backend.uploads) == 1


def test_upload_rate_limit(api):
    client, _, _ = api
    for i in range(5):
        assert _upload(client, name=f"file-{i}.txt").status_code == 200

    response = _upload(client, name="file-6.txt")

    assert response.status_code == 429
    assert "Upload rate limit exceeded" in response.json()["detail"]


@pytest.mark.parametrize(
    "method, path, kwargs",
    [
        ("post", "/chat", {"json": {"message": "hi"}}),
        ("get", "/upload/status", {}),
        ("post", "/upload", {"files": {"file": ("notes.txt", b"x", "text/plain")}}),
    ],
)
def test_anonymous_requests_rejected(api, method, path, kwargs):
    client, _, _ = api
    response = getattr(client, method)(path, **kwargs)
    assert response.status_code == 401
    assert response.json()["detail"].startswith("Unauthorized")


def test_chat_streams_answer(api):
    client, backend, _ = api
    backend.streams["gemini-2.5-flash"] = ["Your notes ", "mention ", "apples."]

    response = client.post("/chat", json={"message": "What fruit?"}, headers=USER)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == "Your notes mention apples."


def test_chat_diagnostic_is_streamed_as_text(api):
    client, backend, _ = api
    backend.streams["gemini-2.5-flash"] = FakeAPIError(429, "quota")

    response = client.post("/chat", json={"message": "hello"}, headers=USER)

    assert response.status_code == 200
    assert response.text.startswith("**Rate Limit Exceeded**")


@pytest.mark.parametrize("message", ["", "   ", "<script>x</script>"])
def test_chat_rejects_invalid_message(api, message):
    client, backend, _ = api
    response = client.post("/chat", json={"message": message}, headers=USER)
    assert response.status_code == 400
    assert backend.stream_calls == []


def test_mock_mode_upload_and_chat(tmp_path):
    backend = FakeBackend()
    svc = build_services(make_settings(tmp_path, GOOGLE_API_KEY="dempy"), backend=backend)
    app.dependency_overrides[get_services] = lambda: svc
    try:
        with TestClient(app) as client:
            assert client.get("/health").json()["mockMode"] is True
            upload = _upload(client)
            assert upload.json()["processingStatus"] == "ready"
            chat = client.post("/chat", json={"message": "hi"}, headers=USER)
            assert chat.text.startswith("**Mock Mode Active**")
    finally:
        app.dependency_overrides.clear()
    assert backend.uploads == []
