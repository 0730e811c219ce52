"""Serialization points for read-modify-write sequences on a chat.

Two layers keep chat transitions single-fire under concurrent requests:

- ``KeyedLocks`` serializes writers inside this process, one lock per chat id
  (or per user id for token registration).
- ``Chat.version`` is SQLAlchemy's version counter. A writer in another
  process that loses the race gets a ``StaleDataError``; ``apply_chat_change``
  rolls back, reloads the chat and replays the mutation.

Mutations must not publish anything themselves. They return an outcome
describing what to announce, and the caller publishes once the commit has
succeeded, so a replayed attempt never emits twice.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from duet.core.errors import NotFoundError, PersistenceError
from duet.core.settings import settings
from duet.db.time import utcnow
from duet.models import Chat

logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyedLocks:
    """Registry of asyncio locks keyed by an identifier.

    Locks are created on first use and dropped once nobody holds or waits on
    them, so the registry does not grow with the number of chats ever touched.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] <= 0:
                self._holders.pop(key, None)
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


chat_locks = KeyedLocks()
token_locks = KeyedLocks()


def pair_key(user_a: str, user_b: str) -> str:
    """Return an order-independent lock key for a pair of users."""
    first, second = sorted((user_a, user_b))
    return f"pair:{first}:{second}"


def apply_chat_change(
    db: Session,
    chat_id: str,
    mutate: Callable[[Chat], T],
    *,
    attempts: int | None = None,
) -> tuple[Chat, T]:
    """Load a chat, apply ``mutate`` and commit, replaying on version conflicts.

    ``mutate`` receives a freshly loaded chat and must raise before touching
    any state when the change is not allowed. Its return value is handed back
    to the caller together with the committed chat.

    Raises:
        NotFoundError: If the chat does not exist.
        PersistenceError: If the commit fails or every attempt lost a race.
    """
    max_attempts = max(1, attempts if attempts is not None else settings.chat_write_retries)
    for attempt in range(1, max_attempts + 1):
        chat = db.get(Chat, chat_id, populate_existing=True)
        if chat is None:
            raise NotFoundError("Chat not found")

        outcome = mutate(chat)
        # Always touch the row so the version check guards participant-only changes too.
        chat.updated_at = utcnow()
        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            logger.warning(
                "Concurrent update on chat %s (attempt %d/%d)", chat_id, attempt, max_attempts
            )
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Failed to persist chat %s: %s", chat_id, exc)
            raise PersistenceError("Could not save chat changes") from exc
        return chat, outcome

    raise PersistenceError("Chat was modified concurrently, please retry")
