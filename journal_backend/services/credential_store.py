# journal_backend/services/credential_store.py
"""Persistence for the per-user Google Calendar credential.

One row per user in ``google_calendar_tokens``. Callers get a plain
get/upsert/update/delete contract; the store never decides anything about
token validity.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from journal_backend.models import GoogleCalendarToken, utcnow

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: int) -> Optional[GoogleCalendarToken]:
        statement = select(GoogleCalendarToken).where(GoogleCalendarToken.user_id == user_id)
        result = await self.session.execute(statement)
        return result.scalar_one_or_none()

    async def exists(self, user_id: int) -> bool:
        statement = select(GoogleCalendarToken.id).where(GoogleCalendarToken.user_id == user_id)
        result = await self.session.execute(statement)
        return result.first() is not None

    async def upsert(
        self,
        user_id: int,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime,
    ) -> GoogleCalendarToken:
        """Insert the user's credential or overwrite the existing row in place."""
        try:
            return await self._write(user_id, access_token, refresh_token, expires_at)
        except IntegrityError:
            # Another request inserted the row between our select and insert.
            await self.session.rollback()
            logger.info("Credential row for user %s appeared concurrently; updating instead", user_id)
            return await self._write(user_id, access_token, refresh_token, expires_at)

    async def _write(
        self,
        user_id: int,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime,
    ) -> GoogleCalendarToken:
        row = await self.get(user_id)
        now = utcnow()
        if row:
            row.access_token = access_token
            row.refresh_token = refresh_token
            row.expires_at = expires_at
            row.updated_at = now
        else:
            row = GoogleCalendarToken(
                user_id=user_id, access_token=access_token, refresh_token=refresh_token,
                expires_at=expires_at, created_at=now, updated_at=now,
            )
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)
        return row

    async def update(
        self,
        user_id: int,
        access_token: str,
        expires_at: datetime,
        refresh_token: Optional[str] = None,
    ) -> Optional[GoogleCalendarToken]:
        """Rewrite an existing row after a refresh.

        Returns ``None`` when the user has no row (e.g. disconnected meanwhile).
        A missing ``refresh_token`` keeps the stored one.
        """
        row = await self.get(user_id)
        if row is None:
            return None
        row.access_token = access_token
        row.expires_at = expires_at
        if refresh_token:
            row.refresh_token = refresh_token
        row.updated_at = utcnow()
        self.session.add(row)
        await self.session.commit()
        await self.session.refresh(row)
        return row

    async def delete(self, user_id: int) -> bool:
        row = await self.get(user_id)
        if row is None:
            return False
        await self.session.delete(row)
        await self.session.commit()
        return True
