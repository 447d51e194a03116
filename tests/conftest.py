"""Shared fixtures: in-memory database, a user, and fakes for Google's endpoints."""

from __future__ import annotations

import os

# Settings are read at import time; pin them before anything imports the app.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["CLIENT_URL"] = "http://testserver"
os.environ["GOOGLE_CALENDAR_CLIENT_ID"] = "client-id-123.apps.googleusercontent.com"
os.environ["GOOGLE_CALENDAR_CLIENT_SECRET"] = "super-secret-xyz"

from datetime import datetime, timedelta  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from journal_backend import models  # noqa: E402,F401
from journal_backend.models import GoogleCalendarToken, User, utcnow  # noqa: E402
from journal_backend.services.credential_store import CredentialStore  # noqa: E402
from journal_backend.services.google_oauth import TokenGrant  # noqa: E402


class FakeOAuthClient:
    """Stands in for GoogleOAuthClient and records every provider call."""

    def __init__(self) -> None:
        self.exchange_calls: list[tuple[str, str]] = []
        self.refresh_calls: list[str] = []
        self.exchange_error: Exception | None = None
        self.refresh_error: Exception | None = None
        self.refresh_grant = TokenGrant(access_token="refreshed-access", expires_in=3600)

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        return f"https://accounts.example/auth?state={state}&redirect_uri={redirect_uri}"

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        self.exchange_calls.append((code, redirect_uri))
        if self.exchange_error:
            raise self.exchange_error
        return TokenGrant(access_token=f"access-{code}", refresh_token=f"refresh-{code}", expires_in=3600)

    async def refresh(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error:
            raise self.refresh_error
        return self.refresh_grant


def make_calendar_service(event: dict | None = None, error: Exception | None = None) -> MagicMock:
    """Build a fake googleapiclient Calendar service."""
    service = MagicMock()
    execute = service.events.return_value.insert.return_value.execute
    if error is not None:
        execute.side_effect = error
    else:
        execute.return_value = event if event is not None else {"id": "evt_123", "htmlLink": "https://cal/evt_123"}
    return service


@pytest.fixture()
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture()
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture()
async def user(session) -> User:
    user = User(email="dreamer@example.com", display_name="Dreamer")
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture()
def store(session) -> CredentialStore:
    return CredentialStore(session)


@pytest.fixture()
def fake_oauth() -> FakeOAuthClient:
    return FakeOAuthClient()


@pytest.fixture()
def store_credential(store):
    async def _store(
        user_id: int,
        *,
        expires_in: timedelta = timedelta(hours=1),
        access_token: str = "stored-access",
        refresh_token: str | None = "stored-refresh",
    ) -> GoogleCalendarToken:
        expires_at: datetime = utcnow() + expires_in
        return await store.upsert(user_id, access_token, refresh_token, expires_at)

    return _store
