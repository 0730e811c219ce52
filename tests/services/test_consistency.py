"""Tests for keyed locks and versioned chat writes."""

import asyncio

import pytest
from sqlalchemy.orm.exc import StaleDataError

from duet.core.errors import NotFoundError, PersistenceError
from duet.services.consistency import KeyedLocks, apply_chat_change, pair_key


def test_pair_key_is_order_independent() -> None:
    assert pair_key("b", "a") == pair_key("a", "b") == "pair:a:b"


@pytest.mark.asyncio
async def test_keyed_locks_serialize_and_clean_up() -> None:
    locks = KeyedLocks()
    order: list[str] = []

    async def worker(name: str) -> None:
        async with locks.hold("chat-1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0


def test_apply_chat_change_commits(db_session, make_chat, test_user, other_user) -> None:
    chat = make_chat(test_user, other_user)
    version = chat.version

    updated, outcome = apply_chat_change(db_session, chat.id, lambda c: c.participant_ids)

    assert outcome == [test_user.id, other_user.id]
    assert updated.version == version + 1


def test_apply_chat_change_unknown_chat(db_session) -> None:
    with pytest.raises(NotFoundError):
        apply_chat_change(db_session, "0" * 32, lambda chat: None)


def test_apply_chat_change_replays_on_stale_data(
    db_session, make_chat, test_user, other_user, mocker
) -> None:
    chat = make_chat(test_user, other_user)
    real_commit = db_session.commit
    failures = [StaleDataError("lost race")]

    def flaky_commit() -> None:
        if failures:
            raise failures.pop()
        real_commit()

    mocker.patch.object(db_session, "commit", side_effect=flaky_commit)
    mocker.patch.object(db_session, "rollback")
    calls: list[int] = []

    apply_chat_change(db_session, chat.id, lambda c: calls.append(1))

    assert len(calls) == 2


def test_apply_chat_change_gives_up_after_retries(
    db_session, make_chat, test_user, other_user, mocker
) -> None:
    chat = make_chat(test_user, other_user)
    mocker.patch.object(db_session, "commit", side_effect=StaleDataError("lost race"))
    rollback = mocker.patch.object(db_session, "rollback")

    with pytest.raises(PersistenceError):
        apply_chat_change(db_session, chat.id, lambda c: None, attempts=2)
    assert rollback.call_count == 2
