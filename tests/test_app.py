import json
import multiprocessing
import random
import socket
import string
import time
from pathlib import Path
from typing import Dict, List, Tuple
import sys

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import uvicorn  # noqa: E402


def _find_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _run_server(port: int, project_root: Path, env: Dict[str, str]) -> None:
    import os
    import sys

    sys.path.insert(0, str(project_root))
    os.chdir(project_root)
    os.environ.update(env)
    # A forked child may inherit an app already imported with other settings.
    for name in [name for name in sys.modules if name == "elara" or name.startswith("elara.")]:
        del sys.modules[name]

    from elara.main import app  # local import so the environment is honoured

    uvicorn.run(
        app,
        host="127.0.0.1",
        port=port,
        log_level="error",
    )


@pytest.fixture(scope="module")
def http_session(tmp_path_factory) -> Tuple[requests.Session, str]:
    data_dir = tmp_path_factory.mktemp("elara-data")
    # Nothing listens on these ports, so the backend and the model are both offline.
    dead_backend = f"http://127.0.0.1:{_find_free_port()}"
    dead_llm = f"http://127.0.0.1:{_find_free_port()}/v1/chat/completions"
    (data_dir / "settings.json").write_text(
        json.dumps({"llm": {"base_url": dead_llm}, "backend": {"timeout_seconds": 2}}),
        encoding="utf-8",
    )
    env = {"ELARA_DATA_DIR": str(data_dir), "BACKEND_API_URL": dead_backend}

    port = _find_free_port()
    # Fork so the child does not have to re-import this module by name.
    process = multiprocessing.get_context("fork").Process(
        target=_run_server,
        args=(port, PROJECT_ROOT, env),
        daemon=False,
    )
    process.start()

    session = requests.Session()
    base_url = f"http://127.0.0.1:{port}"
    deadline = time.time() + 10
    while time.time() < deadline:
        try:
            response = session.get(base_url, timeout=1)
        except requests.RequestException:
            time.sleep(0.1)
            continue
        if response.status_code == 200:
            break
    else:
        process.terminate()
        process.join(timeout=2)
        pytest.fail("Server did not start within timeout.")

    yield session, base_url

    session.close()
    process.terminate()
    process.join(timeout=2)


def _events(response: requests.Response) -> List[Dict]:
    events = []
    for frame in response.text.split("\n\n"):
        frame = frame.strip()
        if frame.startswith("data:"):
            events.append(json.loads(frame[len("data:"):]))
    return events


def test_chat_page_served(http_session: Tuple[requests.Session, str]) -> None:
    session, base_url = http_session
    response = session.get(base_url, timeout=2)
    assert response.status_code == 200
    assert "<!DOCTYPE html>" in response.text
    assert "Elara" in response.text


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"messages": "hello"},
        {"messages": None},
        {"messages": []},
        {"messages": [{"role": "wizard", "content": "hi"}]},
        {"edibleMode": True},
    ],
)
def test_chat_rejects_malformed_messages(http_session, body) -> None:
    session, base_url = http_session
    response = session.post(f"{base_url}/api/chat", json=body, timeout=5)
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid request: messages array is required"}


def test_chat_rejects_non_json_body(http_session) -> None:
    session, base_url = http_session
    response = session.post(
        f"{base_url}/api/chat",
        data="not json",
        headers={"Content-Type": "application/json"},
        timeout=5,
    )
    assert response.status_code == 400
    assert "error" in response.json()


def test_chat_streams_even_when_model_is_offline(http_session) -> None:
    session, base_url = http_session
    response = session.post(
        f"{base_url}/api/chat",
        json={"messages": [{"role": "user", "content": "I can't sleep"}], "edibleMode": True},
        headers={"Authorization": "Bearer token-123"},
        timeout=10,
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _events(response)
    assert events[-1]["type"] == "finish"
    assert events[-1]["finishReason"] == "error"
    assert events[-1]["steps"] <= 5
    assert any(event["type"] == "error" for event in events)


def test_recipe_falls_back_to_generic_infusion(http_session) -> None:
    session, base_url = http_session
    response = session.post(
        f"{base_url}/api/recipe",
        json={"plantName": "Sage", "scientificName": "Salvia officinalis"},
        timeout=10,
    )
    assert response.status_code == 200
    recipe = response.json()["output"]
    assert recipe["recipeName"] == "Simple Sage Infusion"
    assert len(recipe["ingredients"]) == 2
    assert "\n" in recipe["instructions"]


def test_recipe_falls_back_to_known_plant(http_session) -> None:
    session, base_url = http_session
    response = session.post(
        f"{base_url}/api/recipe",
        json={
            "plantName": "Chamomile",
            "scientificName": "Matricaria chamomilla",
            "edibleUses": "Flowers used in teas.",
        },
        timeout=10,
    )
    assert response.status_code == 200
    recipe = response.json()["output"]
    assert recipe["recipeName"] == "Classic Chamomile Tea"
    assert len(recipe["ingredients"]) == 3


def test_recipe_validates_body(http_session) -> None:
    session, base_url = http_session
    response = session.post(f"{base_url}/api/recipe", json={"plantName": "Sage"}, timeout=5)
    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Invalid request body"
    assert any(detail["loc"] == ["scientificName"] for detail in data["details"])


def test_recipe_box_reports_backend_failure(http_session) -> None:
    session, base_url = http_session
    headers = {"Authorization": "Bearer token-123"}

    listing = session.get(f"{base_url}/api/recipes", headers=headers, timeout=10)
    assert listing.status_code == 502
    assert listing.json()["savedRecipes"] == []
    assert listing.json()["error"]

    saved = session.post(
        f"{base_url}/api/recipes",
        json={
            "symptom": "sleep issues",
            "recipeName": "Classic Chamomile Tea",
            "ingredients": ["chamomile", "water", "honey"],
            "instructions": "Steep.",
        },
        headers=headers,
        timeout=10,
    )
    assert saved.status_code == 502
    assert saved.json()["success"] is False

    deleted = session.delete(f"{base_url}/api/recipes/42", headers=headers, timeout=10)
    assert deleted.json()["success"] is False


def test_auth_proxies(http_session) -> None:
    session, base_url = http_session
    login = session.post(
        f"{base_url}/api/auth/login", json={"username": "ada", "password": "secret1"}, timeout=10
    )
    assert login.status_code == 502
    assert "error" in login.json()

    missing = session.post(f"{base_url}/api/auth/login", json={"username": "ada"}, timeout=5)
    assert missing.status_code == 400

    short = session.post(
        f"{base_url}/api/auth/register",
        json={"email": "ada@example.com", "username": "ada", "password": "123"},
        timeout=5,
    )
    assert short.status_code == 400
    assert short.json()["error"] == "Password must be at least 6 characters long"

    mismatch = session.post(
        f"{base_url}/api/auth/register",
        json={
            "email": "ada@example.com",
            "username": "ada",
            "password": "secret1",
            "confirmPassword": "secret2",
        },
        timeout=5,
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["error"] == "Passwords do not match"


def test_verify_email_page_served(http_session) -> None:
    session, base_url = http_session
    response = session.get(f"{base_url}/verify-email", params={"token": "abc"}, timeout=2)
    assert response.status_code == 200
    assert "<!DOCTYPE html>" in response.text
    for path in ("/api/auth/verify-email", "/api/auth/resend-verification", "/api/auth/email-for-username"):
        assert path in response.text


def test_verify_email_reports_offline_backend(http_session) -> None:
    session, base_url = http_session
    response = session.post(f"{base_url}/api/auth/verify-email", json={"token": "abc"}, timeout=10)
    assert response.status_code == 502
    assert response.json() == {"status": "error", "error": "Email verification failed"}

    missing = session.post(f"{base_url}/api/auth/verify-email", json={}, timeout=5)
    assert missing.status_code == 400
    assert missing.json()["error"] == "Invalid verification link"


def test_backend_health_reports_offline(http_session) -> None:
    session, base_url = http_session
    response = session.get(f"{base_url}/health/backend", timeout=5)
    assert response.json() == {"status": "warn", "label": "Backend Offline"}


def _random_text(length: int) -> str:
    alphabet = string.ascii_letters + string.digits + " -_.,?"
    return "".join(random.choice(alphabet) for _ in range(random.randint(0, length)))


def _random_value():
    return random.choice([None, 7, 1.5, True, [], {}, _random_text(12), [_random_text(4)]])


def test_api_fuzz(http_session) -> None:
    random.seed(1)
    session, base_url = http_session

    for _ in range(25):
        action = random.choice(["chat", "recipe", "register"])
        if action == "chat":
            body = {"messages": _random_value()}
            resp = session.post(f"{base_url}/api/chat", json=body, timeout=5)
            assert resp.status_code == 400
        elif action == "recipe":
            body = {"plantName": _random_value(), "scientificName": _random_value()}
            resp = session.post(f"{base_url}/api/recipe", json=body, timeout=10)
            assert resp.status_code in (200, 400)
            if resp.status_code == 200:
                assert resp.json()["output"]["recipeName"]
        else:
            body = {"email": _random_text(20), "username": _random_text(8), "password": _random_text(10)}
            resp = session.post(f"{base_url}/api/auth/register", json=body, timeout=10)
            assert resp.status_code < 500 or resp.status_code == 502
