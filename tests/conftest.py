# tests/conftest.py
from __future__ import annotations

import os
import uuid
from collections.abc import AsyncIterator, Callable, Generator, Iterator
from contextlib import contextmanager
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("SECRET_KEY", "duet-test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PUSH_ENABLED", "false")

from duet.core.security import create_access_token
from duet.db.session import Base
from duet.db.session import get_db as app_get_session
from duet.db.session import get_session_factory as app_get_session_factory
from duet.db.time import utcnow
from duet.main import app as fastapi_app
from duet.models import Chat, ChatParticipant, Confession, UserProfile
from duet.models.chat import REQUEST_STATUS_PENDING
from duet.services.fanout import FanOut
from duet.services.outbound import OutboundQueue
from duet.services.push import DispatchResult, PushPayload, TokenResult
from duet.services.realtime import RealtimeHub

TEST_DB_URL = "sqlite://"


class FakeSocket:
    """Stand-in for a WebSocket subscriber that records every frame."""

    def __init__(self, fail: bool = False) -> None:
        self.frames: list[dict[str, Any]] = []
        self.fail = fail

    async def send_json(self, data: Any) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(data)

    def events(self, name: str) -> list[dict[str, Any]]:
        return [frame["data"] for frame in self.frames if frame["event"] == name]


class RecordingGateway:
    """Push gateway double that accepts every token and records each dispatch."""

    def __init__(self, enabled: bool = True, errors: dict[str, str] | None = None) -> None:
        self.enabled = enabled
        self.errors = errors or {}
        self.dispatches: list[tuple[list[str], PushPayload]] = []

    async def dispatch(self, tokens: list[str], payload: PushPayload) -> DispatchResult:
        self.dispatches.append((list(tokens), payload))
        return DispatchResult(
            results=[
                TokenResult(token=token, ok=token not in self.errors, error=self.errors.get(token))
                for token in tokens
            ]
        )

    async def close(self) -> None:
        return None


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def session_factory(db_session: Session) -> Callable[[], Any]:
    """Factory handing background jobs the test session instead of a new one."""

    @contextmanager
    def _factory() -> Iterator[Session]:
        yield db_session

    return _factory


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(
    app: FastAPI,
    db_session: Session,
    session_factory: Callable[[], Any],
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[app_get_session_factory] = lambda: session_factory
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(app_get_session_factory, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., UserProfile]:
    """Return a factory persisting user profiles."""

    def _make(display_name: str, avatar_url: str | None = None) -> UserProfile:
        user = UserProfile(
            id=uuid.uuid4().hex,
            display_name=display_name,
            avatar_url=avatar_url,
        )
        db_session.add(user)
        db_session.flush()
        return user

    return _make


@pytest.fixture()
def test_user(make_user: Callable[..., UserProfile]) -> UserProfile:
    """Create and return the primary test user."""
    return make_user("Alice", "https://cdn.example.com/alice.png")


@pytest.fixture()
def other_user(make_user: Callable[..., UserProfile]) -> UserProfile:
    """Create and return a second persisted user."""
    return make_user("Bob")


@pytest.fixture()
def third_user(make_user: Callable[..., UserProfile]) -> UserProfile:
    """Create a user who takes part in no chat by default."""
    return make_user("Mallory")


@pytest.fixture()
def auth_token(test_user: UserProfile) -> dict[str, str]:
    """Return authorization headers for the primary test user."""
    return {"Authorization": f"Bearer {create_access_token(test_user.id)}"}


@pytest.fixture()
def other_auth_token(other_user: UserProfile) -> dict[str, str]:
    """Return authorization headers for the secondary test user."""
    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


@pytest.fixture()
def third_auth_token(third_user: UserProfile) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(third_user.id)}"}


@pytest.fixture()
def make_chat(db_session: Session) -> Callable[..., Chat]:
    """Return a factory persisting a chat between two users.

    The first user is the requester and holds participant position 0.
    """

    def _make(
        requester: UserProfile,
        other: UserProfile,
        status: str = REQUEST_STATUS_PENDING,
        *,
        is_active: bool = True,
        legacy_messages: list[dict[str, Any]] | None = None,
    ) -> Chat:
        chat = Chat(
            is_active=is_active,
            request_status=status,
            requested_by_id=requester.id,
            requested_at=utcnow(),
            legacy_messages=legacy_messages,
            participants=[
                ChatParticipant(user_id=requester.id, position=0),
                ChatParticipant(user_id=other.id, position=1),
            ],
        )
        db_session.add(chat)
        db_session.commit()
        return chat

    return _make


@pytest.fixture()
def confession(db_session: Session, third_user: UserProfile) -> Confession:
    """Create a confession that can be shared into chats."""
    record = Confession(
        id=uuid.uuid4().hex,
        content="I still sleep with a night light",
        author_id=third_user.id,
        like_count=12,
        comment_count=3,
    )
    db_session.add(record)
    db_session.flush()
    return record


@pytest.fixture()
def hub() -> RealtimeHub:
    return RealtimeHub()


@pytest.fixture()
def gateway() -> RecordingGateway:
    return RecordingGateway()


@pytest.fixture()
def socket_factory() -> Callable[..., FakeSocket]:
    return FakeSocket


@pytest_asyncio.fixture()
async def outbound() -> AsyncIterator[OutboundQueue]:
    queue = OutboundQueue(maxsize=100, workers=2)
    await queue.start()
    try:
        yield queue
    finally:
        await queue.stop(drain=False)


@pytest.fixture()
def fanout(
    hub: RealtimeHub,
    outbound: OutboundQueue,
    gateway: RecordingGateway,
    session_factory: Callable[[], Any],
) -> FanOut:
    return FanOut(hub, outbound, gateway, session_factory)  # type: ignore[arg-type]
