# tests/v1/test_messages.py
"""Tests for message endpoints."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import status

from duet.models.chat import REQUEST_STATUS_ACCEPTED


def _post(client, chat_id, headers, **body):
    return client.post(f"/api/v1/chats/{chat_id}/messages", json=body, headers=headers)


def test_send_message(client, make_chat, test_user, other_user, auth_token) -> None:
    """Sending a text message returns the stored message."""
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)

    response = _post(client, chat.id, auth_token, content="  Hello Bob  ")

    assert response.status_code == status.HTTP_201_CREATED
    message = response.json()["message"]
    assert message["content"] == "Hello Bob"
    assert message["type"] == "text"
    assert message["chat_id"] == chat.id
    assert message["sender"] == {
        "id": test_user.id,
        "name": "Alice",
        "avatar_url": "https://cdn.example.com/alice.png",
    }


def test_send_image_and_confession(
    client, make_chat, test_user, other_user, auth_token, confession
) -> None:
    """Image and confession messages carry their attachments."""
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)

    image = _post(
        client, chat.id, auth_token, type="image", image_url="https://cdn.example.com/cat.png"
    )
    assert image.status_code == status.HTTP_201_CREATED
    assert image.json()["message"]["image_url"] == "https://cdn.example.com/cat.png"

    shared = _post(client, chat.id, auth_token, type="confession_share", confession_id=confession.id)
    assert shared.status_code == status.HTTP_201_CREATED
    assert shared.json()["message"]["confession"] == {
        "id": confession.id,
        "content": "I still sleep with a night light",
        "like_count": 12,
        "comment_count": 3,
    }


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ({"content": "   "}, status.HTTP_400_BAD_REQUEST),
        ({"content": "z" * 1001}, status.HTTP_400_BAD_REQUEST),
        ({"type": "image"}, status.HTTP_400_BAD_REQUEST),
        ({"content": "hi", "type": "video"}, 422),
    ],
)
def test_send_invalid_message(
    client, make_chat, test_user, other_user, auth_token, body, expected
) -> None:
    """Invalid message content is rejected before anything is stored."""
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)

    response = _post(client, chat.id, auth_token, **body)

    assert response.status_code == expected
    listing = client.get(f"/api/v1/chats/{chat.id}/messages", headers=auth_token).json()
    assert listing["total_messages"] == 0


def test_message_pages(client, make_chat, test_user, other_user, auth_token) -> None:
    """Pages are newest first and walk the whole history without gaps."""
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    sent = [
        _post(client, chat.id, auth_token, content=f"message {index}").json()["message"]["id"]
        for index in range(7)
    ]

    first = client.get(
        f"/api/v1/chats/{chat.id}/messages", params={"page": 1, "limit": 5}, headers=auth_token
    ).json()
    second = client.get(
        f"/api/v1/chats/{chat.id}/messages", params={"page": 2, "limit": 5}, headers=auth_token
    ).json()

    assert first["total_messages"] == 7
    assert first["total_pages"] == 2
    assert first["has_next"] is True
    assert first["next_cursor"] is not None
    assert second["has_next"] is False
    assert second["has_prev"] is True
    ids = [message["id"] for message in first["messages"] + second["messages"]]
    assert ids == list(reversed(sent))


def test_message_cursor(client, make_chat, test_user, other_user, auth_token) -> None:
    """Following next_cursor returns strictly older messages."""
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    for index in range(5):
        _post(client, chat.id, auth_token, content=f"message {index}")

    first = client.get(
        f"/api/v1/chats/{chat.id}/messages", params={"limit": 3}, headers=auth_token
    ).json()
    older = client.get(
        f"/api/v1/chats/{chat.id}/messages",
        params={"limit": 3, "before": first["next_cursor"]},
        headers=auth_token,
    ).json()

    assert [message["content"] for message in first["messages"]] == [
        "message 4", "message 3", "message 2",
    ]
    assert [message["content"] for message in older["messages"]] == ["message 1", "message 0"]
    assert older["next_cursor"] is None


def test_legacy_history_is_served(client, make_chat, test_user, other_user, auth_token) -> None:
    """Chats without dedicated rows read their embedded history."""
    start = datetime(2024, 3, 1, tzinfo=UTC)
    legacy = [
        {
            "sender": other_user.id if index % 2 else test_user.id,
            "content": f"legacy {index}",
            "type": "text",
            "isRead": True,
            "timestamp": (start + timedelta(minutes=index)).isoformat(),
        }
        for index in range(7)
    ]
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED, legacy_messages=legacy)

    first = client.get(
        f"/api/v1/chats/{chat.id}/messages", params={"page": 1, "limit": 5}, headers=auth_token
    ).json()
    second = client.get(
        f"/api/v1/chats/{chat.id}/messages", params={"page": 2, "limit": 5}, headers=auth_token
    ).json()

    assert [message["content"] for message in first["messages"]] == [
        f"legacy {index}" for index in (6, 5, 4, 3, 2)
    ]
    assert [message["content"] for message in second["messages"]] == ["legacy 1", "legacy 0"]
    assert first["messages"][0]["sender"]["name"] == "Alice"
    assert first["messages"][1]["sender"]["name"] == "Bob"
    assert first["next_cursor"] is None
