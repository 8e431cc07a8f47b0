import json
from typing import Any, Dict, List
from unittest import mock

import pytest
from fastapi.testclient import TestClient

from elara.backend import BackendClient
from elara.errors import BackendError
from elara.llm import ChatCompletionsClient
from elara.session import AuthSession
from elara.settings import SettingsManager


@pytest.fixture
def make_client(tmp_path, monkeypatch):
    monkeypatch.setenv("ELARA_DATA_DIR", str(tmp_path))
    monkeypatch.delenv("BACKEND_API_URL", raising=False)
    from elara import main

    def _make(**backend: Any) -> TestClient:
        path = tmp_path / "settings.json"
        path.write_text(
            json.dumps({"backend": {"base_url": "http://backend.test", **backend}}),
            encoding="utf-8",
        )
        monkeypatch.setattr(main, "settings_manager", SettingsManager(path))
        return TestClient(main.app)

    return _make


def _events(text: str) -> List[Dict[str, Any]]:
    return [
        json.loads(frame[len("data:"):])
        for frame in (part.strip() for part in text.split("\n\n"))
        if frame.startswith("data:")
    ]


def test_recipe_relays_backend_response_unchanged(make_client) -> None:
    client = make_client()
    payload = {
        "output": {"recipeName": "Nettle Soup", "ingredients": ["nettles"], "instructions": "Simmer."},
        "source": "kitchen",
    }
    with mock.patch.object(BackendClient, "get_recipe", return_value=payload) as get_recipe:
        response = client.post(
            "/api/recipe",
            json={"plantName": "Nettle", "scientificName": "Urtica dioica"},
            headers={"Authorization": "Bearer tok"},
        )
    assert response.status_code == 200
    assert response.json() == payload
    get_recipe.assert_called_once_with("Nettle", "Urtica dioica", None, AuthSession(token="tok"))


def test_recipe_without_fallback_reports_backend_failure(make_client) -> None:
    client = make_client(mock_fallback=False)
    with mock.patch.object(
        BackendClient, "get_recipe", side_effect=BackendError("Backend returned 503", status_code=503)
    ):
        response = client.post(
            "/api/recipe", json={"plantName": "Sage", "scientificName": "Salvia officinalis"}
        )
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to fetch recipe from backend"}


@pytest.mark.parametrize("body", [{}, {"messages": []}, {"messages": [{"role": "tool"}]}, None])
def test_malformed_chat_never_reaches_model_or_backend(make_client, body) -> None:
    client = make_client()
    with mock.patch.object(BackendClient, "request") as backend_call, mock.patch.object(
        ChatCompletionsClient, "_post"
    ) as model_call:
        if body is None:
            response = client.post(
                "/api/chat", content=b"{broken", headers={"Content-Type": "application/json"}
            )
        else:
            response = client.post("/api/chat", json=body)
    assert response.status_code == 400
    backend_call.assert_not_called()
    model_call.assert_not_called()


def test_chat_stream_hides_reasoning_markup(make_client) -> None:
    client = make_client()
    chunks = [
        {"type": "text", "text": "<thi"},
        {"type": "text", "text": "nk>the user wants tea</think>Try "},
        {"type": "text", "text": "chamomile."},
        {
            "type": "message",
            "message": {"role": "assistant", "content": "<think>the user wants tea</think>Try chamomile."},
            "finish_reason": "stop",
        },
    ]
    with mock.patch.object(ChatCompletionsClient, "stream_chat", side_effect=lambda **_: iter(chunks)):
        response = client.post("/api/chat", json={"messages": [{"role": "user", "content": "tea?"}]})
    events = _events(response.text)
    assert "".join(event["text"] for event in events if event["type"] == "text") == "Try chamomile."
    assert events[-1] == {"type": "finish", "finishReason": "stop", "steps": 1}


def test_verify_email_expired_link(make_client) -> None:
    client = make_client()
    with mock.patch.object(
        BackendClient, "verify_email", side_effect=BackendError("Backend returned 410", status_code=410)
    ):
        response = client.post("/api/auth/verify-email", json={"token": "old"})
    assert response.status_code == 410
    assert response.json()["status"] == "expired"

    with mock.patch.object(BackendClient, "verify_email", return_value={}) as verify:
        response = client.post("/api/auth/verify-email", json={"token": "fresh"})
    assert response.json()["status"] == "success"
    verify.assert_called_once_with("fresh")


def test_resend_and_email_lookup(make_client) -> None:
    client = make_client()
    with mock.patch.object(
        BackendClient, "resend_verification", return_value={"message": "sent"}
    ) as resend:
        response = client.post("/api/auth/resend-verification", json={"email": "ada@example.com"})
    assert response.json() == {"success": True, "message": "sent"}
    resend.assert_called_once_with("ada@example.com")

    with mock.patch.object(
        BackendClient, "email_for_username", return_value={"email": "ada@example.com"}
    ):
        response = client.post("/api/auth/email-for-username", json={"username": "ada"})
    assert response.json() == {"email": "ada@example.com"}


def test_verify_email_page_reads_token_from_query(make_client) -> None:
    client = make_client()
    response = client.get("/verify-email", params={"token": "abc"})
    assert response.status_code == 200
    assert 'params.get("token")' in response.text


def test_login_passes_backend_rejection_through(make_client) -> None:
    client = make_client()
    rejection = BackendError(
        "Backend returned 401",
        status_code=401,
        detail=json.dumps({"detail": "Incorrect username or password"}),
    )
    with mock.patch.object(BackendClient, "login", side_effect=rejection):
        response = client.post("/api/auth/login", json={"username": "ada", "password": "secret1"})
    assert response.status_code == 401
    assert response.json() == {"error": "Incorrect username or password"}
