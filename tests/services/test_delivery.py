"""Tests for the send path and its delivery fan-out."""

import pytest
from sqlalchemy.exc import OperationalError

from duet.core.errors import (
    AccessDeniedError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from duet.models import Message, NotificationToken
from duet.models.chat import REQUEST_STATUS_ACCEPTED, REQUEST_STATUS_REJECTED
from duet.services.delivery import DeliveryEngine
from duet.services.directory import summarize_user
from duet.services.realtime import chat_room, user_room


@pytest.fixture()
def bob_token(db_session, other_user) -> NotificationToken:
    token = NotificationToken(user_id=other_user.id, token="ExponentPushToken[bob-1]", platform="ios")
    db_session.add(token)
    db_session.commit()
    return token


@pytest.mark.asyncio
async def test_offline_recipient_gets_exactly_one_truncated_push(
    db_session, fanout, outbound, gateway, make_chat, test_user, other_user, bob_token
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    text = "x" * 250

    outcome = await DeliveryEngine(db_session, fanout).send_message(
        summarize_user(test_user), chat.id, text
    )
    await outbound.join()

    assert outcome.push_queued is True
    assert len(gateway.dispatches) == 1
    tokens, payload = gateway.dispatches[0]
    assert tokens == [bob_token.token]
    assert payload.title == "Alice"
    assert payload.body == text[:100]
    assert len(payload.body) <= 100
    assert payload.data == {
        "type": "message",
        "chatId": chat.id,
        "messageId": outcome.message.id,
        "senderId": test_user.id,
    }


@pytest.mark.asyncio
async def test_online_recipient_gets_no_push(
    db_session, fanout, outbound, gateway, hub, socket_factory,
    make_chat, test_user, other_user, bob_token,
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    hub.join(user_room(other_user.id), socket_factory())

    outcome = await DeliveryEngine(db_session, fanout).send_message(
        summarize_user(test_user), chat.id, "are you there?"
    )
    await outbound.join()

    assert outcome.push_queued is False
    assert gateway.dispatches == []


@pytest.mark.asyncio
async def test_message_is_emitted_to_chat_room(
    db_session, fanout, hub, socket_factory, make_chat, test_user, other_user
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    viewer = socket_factory()
    hub.join(chat_room(chat.id), viewer)

    first = await DeliveryEngine(db_session, fanout).send_message(
        summarize_user(test_user), chat.id, "  first  "
    )
    second = await DeliveryEngine(db_session, fanout).send_message(
        summarize_user(other_user), chat.id, "second"
    )

    events = viewer.events("message:new")
    assert [event["id"] for event in events] == [first.message.id, second.message.id]
    assert events[0]["content"] == "first"
    assert events[0]["sender"] == {
        "id": test_user.id,
        "name": "Alice",
        "avatarUrl": "https://cdn.example.com/alice.png",
    }
    assert events[0]["chatId"] == chat.id


@pytest.mark.asyncio
async def test_sender_room_gets_chat_summary(
    db_session, fanout, outbound, hub, socket_factory, make_chat, test_user, other_user
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    alice_inbox, bob_inbox = socket_factory(), socket_factory()
    hub.join(user_room(test_user.id), alice_inbox)
    hub.join(user_room(other_user.id), bob_inbox)

    outcome = await DeliveryEngine(db_session, fanout).send_message(
        summarize_user(test_user), chat.id, "see you at eight"
    )
    await outbound.join()

    assert alice_inbox.events("chat:updated") == [
        {
            "chatId": chat.id,
            "lastMessage": "see you at eight",
            "lastMessageAt": outcome.message.created_at.isoformat(),
        }
    ]
    assert bob_inbox.events("chat:updated") == []


@pytest.mark.asyncio
async def test_realtime_failure_does_not_fail_send(
    db_session, fanout, hub, outbound, make_chat, test_user, other_user, mocker
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    mocker.patch.object(hub, "publish", side_effect=ConnectionError("transport down"))
    mocker.patch.object(hub, "subscribers", side_effect=ConnectionError("transport down"))

    outcome = await DeliveryEngine(db_session, fanout).send_message(
        summarize_user(test_user), chat.id, "still stored"
    )

    assert db_session.get(Message, outcome.message.id) is not None
    # A failed presence probe counts as offline.
    assert outcome.push_queued is True


@pytest.mark.asyncio
async def test_push_gateway_feedback_deactivates_dead_tokens(
    db_session, fanout, outbound, gateway, make_chat, test_user, other_user, bob_token
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    gateway.errors = {bob_token.token: "DeviceNotRegistered"}

    await DeliveryEngine(db_session, fanout).send_message(
        summarize_user(test_user), chat.id, "ping"
    )
    await outbound.join()

    db_session.refresh(bob_token)
    assert bob_token.is_active is False
    assert bob_token.failure_count == 1


@pytest.mark.asyncio
async def test_persistence_failure_aborts_send(
    db_session, fanout, outbound, gateway, hub, socket_factory,
    make_chat, test_user, other_user, mocker,
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    viewer = socket_factory()
    hub.join(chat_room(chat.id), viewer)
    mocker.patch.object(
        db_session,
        "commit",
        side_effect=OperationalError("INSERT INTO message", {}, Exception("disk full")),
    )
    rollback = mocker.patch.object(db_session, "rollback")

    with pytest.raises(PersistenceError):
        await DeliveryEngine(db_session, fanout).send_message(
            summarize_user(test_user), chat.id, "lost"
        )
    await outbound.join()

    rollback.assert_called_once()
    assert viewer.frames == []
    assert gateway.dispatches == []


@pytest.mark.asyncio
async def test_send_requires_participant(
    db_session, fanout, make_chat, test_user, other_user, third_user
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    with pytest.raises(AccessDeniedError):
        await DeliveryEngine(db_session, fanout).send_message(
            summarize_user(third_user), chat.id, "let me in"
        )


@pytest.mark.asyncio
async def test_send_to_unknown_chat(db_session, fanout, test_user) -> None:
    with pytest.raises(NotFoundError):
        await DeliveryEngine(db_session, fanout).send_message(
            summarize_user(test_user), "0" * 32, "hello?"
        )


@pytest.mark.asyncio
async def test_send_into_rejected_chat_is_blocked(
    db_session, fanout, make_chat, test_user, other_user
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_REJECTED, is_active=False)
    with pytest.raises(InvalidStateError):
        await DeliveryEngine(db_session, fanout).send_message(
            summarize_user(test_user), chat.id, "please"
        )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("content", "kwargs"),
    [
        ("   ", {}),
        ("y" * 1001, {}),
        ("", {"message_type": "image"}),
        ("", {"message_type": "confession_share"}),
        ("hi", {"message_type": "video"}),
    ],
)
async def test_invalid_content_is_rejected(
    db_session, fanout, make_chat, test_user, other_user, content, kwargs
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    with pytest.raises(ValidationError):
        await DeliveryEngine(db_session, fanout).send_message(
            summarize_user(test_user), chat.id, content, **kwargs
        )
    assert db_session.query(Message).count() == 0


@pytest.mark.asyncio
async def test_confession_share_carries_summary(
    db_session, fanout, hub, socket_factory, make_chat, test_user, other_user, confession
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    viewer = socket_factory()
    hub.join(chat_room(chat.id), viewer)

    outcome = await DeliveryEngine(db_session, fanout).send_message(
        summarize_user(test_user),
        chat.id,
        "",
        message_type="confession_share",
        confession_id=confession.id,
    )

    assert outcome.message.confession_id == confession.id
    assert viewer.events("message:new")[0]["confession"]["likeCount"] == 12
    assert chat.last_message == "Shared a confession"


@pytest.mark.asyncio
async def test_sharing_unknown_confession_fails(
    db_session, fanout, make_chat, test_user, other_user
) -> None:
    chat = make_chat(test_user, other_user, REQUEST_STATUS_ACCEPTED)
    with pytest.raises(NotFoundError):
        await DeliveryEngine(db_session, fanout).send_message(
            summarize_user(test_user),
            chat.id,
            "",
            message_type="confession_share",
            confession_id="f" * 32,
        )
