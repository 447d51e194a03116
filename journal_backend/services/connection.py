# journal_backend/services/connection.py
import logging
from typing import Awaitable, Callable, List, Union

from journal_backend.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

ConnectionListener = Callable[[int, bool], Union[None, Awaitable[None]]]


class ConnectionStateNotifier:
    """Answers "is a calendar connected?" and tells subscribers whenever it is asked or changes.

    Only the presence of a credential row counts; whether its token still works
    is decided at use time by the refresh manager.
    """

    def __init__(self):
        self._listeners: List[ConnectionListener] = []

    def subscribe(self, listener: ConnectionListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ConnectionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def is_connected(self, store: CredentialStore, user_id: int) -> bool:
        connected = await store.exists(user_id)
        await self.publish(user_id, connected)
        return connected

    async def publish(self, user_id: int, connected: bool) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(user_id, connected)
                if result is not None:
                    await result
            except Exception:
                logger.exception("Connection listener %r failed for user %s", listener, user_id)
