from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from neighborly.main import app
from neighborly.services.conversation_service import ConversationService, get_conversation_service


@pytest.fixture
def client(service: ConversationService) -> Iterator[TestClient]:
    app.dependency_overrides[get_conversation_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _start(client: TestClient, user_id: str, other_user_id: str) -> str:
    response = client.post(f"/conversations?user_id={user_id}", json={"other_user_id": other_user_id})
    assert response.status_code == 200
    return response.json()["conversation_id"]


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_unknown_user_is_rejected(client: TestClient) -> None:
    response = client.get("/conversations", params={"user_id": "mallory"})

    assert response.status_code == 401
    assert response.json()["error_type"] == "AuthenticationRequired"


def test_conversation_flow(client: TestClient) -> None:
    conversation_id = _start(client, "alice", "bob")
    again = client.post("/conversations?user_id=bob", json={"other_user_id": "alice"}).json()
    assert again == {"conversation_id": conversation_id, "created": False}

    sent = client.post(
        f"/conversations/{conversation_id}/messages",
        params={"user_id": "alice"},
        json={"text": "Could you water my plants this weekend?"},
    )
    assert sent.status_code == 200
    assert sent.json()["sent"] is True

    rows = client.get("/conversations", params={"user_id": "bob"}).json()
    assert len(rows) == 1
    assert rows[0]["other_user_name"] == "Alice"
    assert rows[0]["last_message"] == "Could you water my plants this weekend?"
    assert rows[0]["is_unread"] is True

    badge = client.get("/conversations/unread-count", params={"user_id": "bob"}).json()
    assert badge == {"count": 1, "badge": 1}

    seen = client.post(f"/conversations/{conversation_id}/seen", params={"user_id": "bob"})
    assert seen.json() == {"marked": [conversation_id]}

    badge = client.get("/conversations/unread-count", params={"user_id": "bob"}).json()
    assert badge == {"count": 0, "badge": None}


def test_mark_all_seen(client: TestClient) -> None:
    first = _start(client, "alice", "bob")
    second = _start(client, "carol", "bob")
    for conversation_id, sender in ((first, "alice"), (second, "carol")):
        client.post(
            f"/conversations/{conversation_id}/messages",
            params={"user_id": sender},
            json={"text": "ping"},
        )

    response = client.post("/conversations/seen", params={"user_id": "bob"})

    assert sorted(response.json()["marked"]) == sorted([first, second])
    rows = client.get("/conversations", params={"user_id": "bob"}).json()
    assert not any(row["is_unread"] for row in rows)


def test_blank_message_is_not_sent(client: TestClient) -> None:
    conversation_id = _start(client, "alice", "bob")

    response = client.post(
        f"/conversations/{conversation_id}/messages",
        params={"user_id": "alice"},
        json={"text": "    "},
    )

    assert response.json() == {"sent": False, "message": None}


def test_conversation_detail_access(client: TestClient) -> None:
    conversation_id = _start(client, "alice", "bob")

    detail = client.get(f"/conversations/{conversation_id}", params={"user_id": "bob"})
    assert detail.status_code == 200
    assert detail.json()["other_user"]["uid"] == "alice"

    forbidden = client.get(f"/conversations/{conversation_id}", params={"user_id": "carol"})
    assert forbidden.status_code == 403

    missing = client.get("/conversations/nope", params={"user_id": "bob"})
    assert missing.status_code == 404


def test_image_upload(client: TestClient) -> None:
    conversation_id = _start(client, "alice", "bob")

    response = client.post(
        f"/conversations/{conversation_id}/images",
        params={"user_id": "alice"},
        files={"file": ("lamp.png", b"\x89PNG fake image", "image/png")},
    )
    body = response.json()
    assert response.status_code == 200
    assert body["sent"] is True
    assert body["message"]["type"] == "image"

    rejected = client.post(
        f"/conversations/{conversation_id}/images",
        params={"user_id": "alice"},
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )
    assert rejected.status_code == 422
    assert rejected.json()["detail"] == "Please upload only images"


def test_conversation_stream_sends_initial_state(client: TestClient) -> None:
    conversation_id = _start(client, "alice", "bob")
    client.post(
        f"/conversations/{conversation_id}/messages",
        params={"user_id": "alice"},
        json={"text": "hello"},
    )

    with client.websocket_connect("/ws/conversations?user_id=bob") as websocket:
        payload = websocket.receive_json()

    assert payload["unread_count"] == 1
    assert payload["conversations"][0]["id"] == conversation_id


def test_timeline_stream_sends_messages(client: TestClient) -> None:
    conversation_id = _start(client, "alice", "bob")

    with client.websocket_connect(f"/ws/conversations/{conversation_id}?user_id=alice") as websocket:
        first = websocket.receive_json()
        assert first["conversation_id"] == conversation_id
        assert first["other_user"]["uid"] == "bob"

        websocket.send_json({"text": "On my way"})
        for _ in range(10):
            frame = websocket.receive_json()
            if frame.get("messages"):
                break

    assert frame["messages"][-1]["text"] == "On my way"


def test_stream_rejects_unknown_user(client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws/conversations?user_id=mallory") as websocket:
            websocket.receive_json()


def test_message_length_is_checked_after_trimming(client: TestClient) -> None:
    conversation_id = _start(client, "alice", "bob")
    padded = "   " + "x" * 2000 + "   "

    accepted = client.post(
        f"/conversations/{conversation_id}/messages",
        params={"user_id": "alice"},
        json={"text": padded},
    )
    too_long = client.post(
        f"/conversations/{conversation_id}/messages",
        params={"user_id": "alice"},
        json={"text": "x" * 2001},
    )

    assert accepted.status_code == 200
    assert accepted.json()["message"]["text"] == "x" * 2000
    assert too_long.status_code == 422
    assert too_long.json()["error_type"] == "ValidationError"
