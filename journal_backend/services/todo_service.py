# journal_backend/services/todo_service.py
"""Saving a to-do, optionally mirrored to Google Calendar.

The todo row is committed before any calendar work starts and nothing after
that commit is allowed to raise out of ``create_todo``.
"""
import enum
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from journal_backend.models import Todo, utcnow
from journal_backend.services.calendar_service import SYNC_WARNING, EventSyncExecutor, TaskDescription
from journal_backend.services.connection import ConnectionStateNotifier
from journal_backend.services.credential_store import CredentialStore
from journal_backend.services.token_refresh import TokenRefreshManager

logger = logging.getLogger(__name__)


class SyncStatus(str, enum.Enum):
    NOT_REQUESTED = "not_requested"
    NOT_CONNECTED = "not_connected"
    TOKEN_UNAVAILABLE = "token_unavailable"
    FAILED = "failed"
    SYNCED = "synced"


class TodoCreate(BaseModel):
    task: str = Field(min_length=1, max_length=2000)
    entry_date: date
    important: bool = False


@dataclass
class PendingSyncRequest:
    """Lives for exactly one save."""

    task: TaskDescription
    sync_requested: bool


@dataclass
class TaskSaveResult:
    todo: Todo
    sync_status: SyncStatus
    warning: Optional[str] = None


class TodoService:
    def __init__(
        self,
        session: AsyncSession,
        store: CredentialStore,
        refresh_manager: TokenRefreshManager,
        executor: EventSyncExecutor,
        notifier: ConnectionStateNotifier,
    ):
        self.session = session
        self.store = store
        self.refresh_manager = refresh_manager
        self.executor = executor
        self.notifier = notifier

    async def list_todos(self, user_id: int, entry_date: Optional[date] = None) -> List[Todo]:
        statement = select(Todo).where(Todo.user_id == user_id)
        if entry_date is not None:
            statement = statement.where(Todo.entry_date == entry_date)
        statement = statement.order_by(Todo.entry_date, Todo.id)
        result = await self.session.execute(statement)
        return list(result.scalars().all())

    async def create_todo(self, user_id: int, data: TodoCreate, sync_to_calendar: bool = False) -> TaskSaveResult:
        todo = Todo(user_id=user_id, task=data.task.strip(), entry_date=data.entry_date, important=data.important)
        self.session.add(todo)
        await self.session.commit()
        await self.session.refresh(todo)

        request = PendingSyncRequest(
            task=TaskDescription(task=todo.task, entry_date=todo.entry_date, important=todo.important),
            sync_requested=sync_to_calendar,
        )
        if not request.sync_requested:
            return TaskSaveResult(todo=todo, sync_status=SyncStatus.NOT_REQUESTED)

        # Detached copy of the committed row, returned if the sync phase blows up.
        saved = Todo.model_validate(todo.model_dump())
        try:
            return await self._sync(user_id, todo, request)
        except Exception:
            logger.exception("Calendar sync for todo %s failed unexpectedly", saved.id)
            try:
                await self.session.rollback()
            except Exception:
                logger.exception("Rollback after failed calendar sync failed")
            return TaskSaveResult(todo=saved, sync_status=SyncStatus.FAILED, warning=SYNC_WARNING)

    async def _sync(self, user_id: int, todo: Todo, request: PendingSyncRequest) -> TaskSaveResult:
        if not await self.notifier.is_connected(self.store, user_id):
            return TaskSaveResult(todo=todo, sync_status=SyncStatus.NOT_CONNECTED)

        credential = await self.store.get(user_id)
        if credential is None:
            return TaskSaveResult(todo=todo, sync_status=SyncStatus.NOT_CONNECTED)

        # The token must be settled before any event is created.
        access_token = await self.refresh_manager.ensure_valid_access_token(credential)
        if access_token is None:
            return TaskSaveResult(todo=todo, sync_status=SyncStatus.TOKEN_UNAVAILABLE, warning=SYNC_WARNING)

        result = await self.executor.sync_task_to_calendar(request.task, access_token)
        if not result.synced:
            return TaskSaveResult(todo=todo, sync_status=SyncStatus.FAILED, warning=result.warning)

        todo.google_calendar_event_id = result.event_id
        todo.updated_at = utcnow()
        self.session.add(todo)
        await self.session.commit()
        await self.session.refresh(todo)
        logger.info("Todo %s linked to Google Calendar event %s", todo.id, result.event_id)
        return TaskSaveResult(todo=todo, sync_status=SyncStatus.SYNCED)
