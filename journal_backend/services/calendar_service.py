# journal_backend/services/calendar_service.py
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

EVENT_DESCRIPTION = "Task from your Daily Journal to-do list."
IMPORTANT_MARKER = "⭐ Important"
SYNC_WARNING = "Task created, but it could not be synced to Google Calendar."


@dataclass
class TaskDescription:
    task: str
    entry_date: date
    important: bool = False


@dataclass
class SyncResult:
    event_id: Optional[str] = None
    warning: Optional[str] = None

    @property
    def synced(self) -> bool:
        return self.event_id is not None


def get_calendar_service(access_token: str):
    """Builds a Google Calendar API service object that only carries a bearer token."""
    creds = Credentials(token=access_token)
    return build('calendar', 'v3', credentials=creds, cache_discovery=False)


def build_event_payload(task: TaskDescription) -> Dict[str, Any]:
    description = EVENT_DESCRIPTION
    if task.important:
        description = f"{description}\n\n{IMPORTANT_MARKER}"
    # All-day event; Google treats end.date as exclusive.
    return {
        'summary': task.task,
        'description': description,
        'start': {'date': task.entry_date.isoformat()},
        'end': {'date': (task.entry_date + timedelta(days=1)).isoformat()},
        'reminders': {'useDefault': True},
    }


class EventSyncExecutor:
    """Creates one Google Calendar event per task save. Never raises, never retries."""

    def __init__(self, calendar_id: str = 'primary', service_factory: Callable[[str], Any] = get_calendar_service):
        self.calendar_id = calendar_id
        self.service_factory = service_factory

    def _insert(self, access_token: str, body: Dict[str, Any]) -> Dict[str, Any]:
        service = self.service_factory(access_token)
        return service.events().insert(calendarId=self.calendar_id, body=body).execute()

    async def sync_task_to_calendar(self, task: TaskDescription, access_token: str) -> SyncResult:
        body = build_event_payload(task)
        try:
            created_event = await run_in_threadpool(self._insert, access_token, body)
        except HttpError as error:
            logger.warning("Google Calendar rejected event for %s: HTTP %s", task.entry_date, error.resp.status)
            return SyncResult(warning=SYNC_WARNING)
        except Exception:
            logger.exception("Creating Google Calendar event failed")
            return SyncResult(warning=SYNC_WARNING)

        event_id = created_event.get('id') if isinstance(created_event, dict) else None
        if not event_id:
            logger.warning("Google Calendar returned an event without an id")
            return SyncResult(warning=SYNC_WARNING)
        logger.info("Event created: %s", created_event.get('htmlLink') or event_id)
        return SyncResult(event_id=event_id)
