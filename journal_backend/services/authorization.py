# journal_backend/services/authorization.py
"""Connecting a user's Google Calendar through a popup window.

The opener asks for an authorization URL and opens it in a popup. Google
redirects the popup to ``/auth/google/callback`` on the opener's own origin;
that page hands the code (or error) to the server and posts it to
``window.opener``, then closes. The opener long-polls the attempt by its
``state`` until it is connected, failed, or cancelled.

Every attempt is a one-shot future keyed by ``state``. Nothing waits
indefinitely: closing the popup cancels the attempt and stale attempts are
pruned.
"""
import asyncio
import enum
import html
import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional
from urllib.parse import urlsplit

from journal_backend.models import utcnow
from journal_backend.services.connection import ConnectionStateNotifier
from journal_backend.services.credential_store import CredentialStore
from journal_backend.services.google_oauth import GoogleOAuthClient, TokenExchangeError

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/auth/google/callback"


class AuthorizationError(Exception):
    """Connecting Google Calendar failed; the message is safe to show to the user."""


class UnknownAuthorizationAttempt(Exception):
    """No pending attempt matches the given state for this user."""


class MessageType(str, enum.Enum):
    SUCCESS = "GOOGLE_AUTH_SUCCESS"
    ERROR = "GOOGLE_AUTH_ERROR"


class AuthorizationStatus(str, enum.Enum):
    CONNECTED = "connected"
    PENDING = "pending"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AuthorizationMessage:
    type: MessageType
    code: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_query(cls, code: Optional[str], error: Optional[str]) -> "AuthorizationMessage":
        if code:
            return cls(type=MessageType.SUCCESS, code=code)
        return cls(type=MessageType.ERROR, error=error or "missing_code")

    def to_dict(self) -> Dict[str, str]:
        if self.type is MessageType.SUCCESS:
            return {"type": self.type.value, "code": self.code or ""}
        return {"type": self.type.value, "error": self.error or ""}


@dataclass
class AuthorizationAttempt:
    state: str
    user_id: int
    callback_origin: str
    redirect_uri: str
    auth_url: str = ""
    created_at: datetime = field(default_factory=utcnow)
    # Resolves to an AuthorizationMessage, or None when the attempt is cancelled.
    future: "asyncio.Future[Optional[AuthorizationMessage]]" = field(
        default_factory=lambda: asyncio.get_running_loop().create_future(), repr=False,
    )


def _short(state: str) -> str:
    return state[:8]


def _host(origin: str) -> str:
    # A TLS-terminating proxy changes the scheme the app sees, not the host.
    return urlsplit(origin).netloc.lower()


class PendingAuthorizations:
    """In-process registry of popup attempts awaiting their callback.

    Attempts older than ``ttl_seconds`` are resolved as cancelled and dropped
    the next time the registry is touched.
    """

    def __init__(self, ttl_seconds: float = 600):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._attempts: Dict[str, AuthorizationAttempt] = {}

    def __len__(self) -> int:
        return len(self._attempts)

    def get(self, state: str) -> Optional[AuthorizationAttempt]:
        self.prune()
        return self._attempts.get(state)

    def register(self, user_id: int, callback_origin: str, redirect_uri: str) -> AuthorizationAttempt:
        self.prune()
        # One in-flight attempt per user.
        for existing in [a for a in self._attempts.values() if a.user_id == user_id]:
            logger.info("Superseding authorization attempt %s for user %s", _short(existing.state), user_id)
            self.abandon(existing.state)

        attempt = AuthorizationAttempt(
            state=secrets.token_urlsafe(24),
            user_id=user_id,
            callback_origin=callback_origin,
            redirect_uri=redirect_uri,
        )
        self._attempts[attempt.state] = attempt
        return attempt

    def _expired(self, attempt: AuthorizationAttempt, now: datetime) -> bool:
        return now - attempt.created_at >= self.ttl

    def prune(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        stale = [s for s, a in self._attempts.items() if self._expired(a, now)]
        for state in stale:
            logger.info("Authorization attempt %s expired", _short(state))
            self.abandon(state)
        return len(stale)

    def deliver(self, state: str, message: AuthorizationMessage, origin: str) -> bool:
        attempt = self.get(state)
        if attempt is None:
            logger.warning("Discarding authorization message for unknown attempt %s", _short(state))
            return False
        if _host(origin) != _host(attempt.callback_origin):
            logger.warning(
                "Discarding authorization message for attempt %s from foreign origin %s",
                _short(state), origin,
            )
            return False
        if attempt.future.done():
            logger.info("Authorization attempt %s already resolved", _short(state))
            return False
        attempt.future.set_result(message)
        return True

    def abandon(self, state: str) -> bool:
        attempt = self._attempts.pop(state, None)
        if attempt is None:
            return False
        if not attempt.future.done():
            attempt.future.set_result(None)
        return True

    async def wait(self, state: str, user_id: int, timeout: float) -> Optional[AuthorizationMessage]:
        """Wait for the attempt's message.

        Raises ``asyncio.TimeoutError`` if nothing arrived within *timeout*;
        the attempt then stays pending. Returns ``None`` if it was cancelled
        or expired while waiting.
        """
        attempt = self.get(state)
        if attempt is None or attempt.user_id != user_id:
            raise UnknownAuthorizationAttempt(state)
        remaining = (attempt.created_at + self.ttl - utcnow()).total_seconds()
        try:
            message = await asyncio.wait_for(asyncio.shield(attempt.future), max(min(timeout, remaining), 0))
        except asyncio.TimeoutError:
            if remaining <= timeout and not attempt.future.done():
                logger.info("Authorization attempt %s expired", _short(state))
                self.abandon(state)
            if not attempt.future.done():
                raise
            message = attempt.future.result()
        # One-shot: only the waiter that removes the attempt gets its message.
        if self._attempts.get(state) is attempt:
            del self._attempts[state]
        elif message is not None:
            raise UnknownAuthorizationAttempt(state)
        return message


class AuthorizationFlowController:
    def __init__(
        self,
        store: CredentialStore,
        oauth_client: GoogleOAuthClient,
        pending: PendingAuthorizations,
        allowed_origins: Iterable[str],
        notifier: Optional[ConnectionStateNotifier] = None,
    ):
        self.store = store
        self.oauth_client = oauth_client
        self.pending = pending
        self.allowed_origins = {o.rstrip("/") for o in allowed_origins}
        self.notifier = notifier

    def begin_authorization(self, user_id: int, callback_origin: str) -> AuthorizationAttempt:
        origin = callback_origin.rstrip("/")
        if origin not in self.allowed_origins:
            logger.warning("Rejected authorization for user %s from origin %s", user_id, origin)
            raise AuthorizationError(f"Origin {origin} is not allowed to connect Google Calendar")
        attempt = self.pending.register(user_id, origin, f"{origin}{CALLBACK_PATH}")
        attempt.auth_url = self.oauth_client.authorization_url(attempt.redirect_uri, attempt.state)
        logger.info("Started Google Calendar authorization %s for user %s", _short(attempt.state), user_id)
        return attempt

    def relay_callback(self, state: str, message: AuthorizationMessage, origin: str) -> bool:
        return self.pending.deliver(state, message, origin.rstrip("/"))

    def cancel_authorization(self, user_id: int, state: str) -> bool:
        attempt = self.pending.get(state)
        if attempt is None or attempt.user_id != user_id:
            return False
        logger.info("Authorization %s cancelled by user %s", _short(state), user_id)
        return self.pending.abandon(state)

    async def await_authorization(self, user_id: int, state: str, timeout: float) -> AuthorizationStatus:
        attempt = self.pending.get(state)
        if attempt is None or attempt.user_id != user_id:
            raise UnknownAuthorizationAttempt(state)
        try:
            message = await self.pending.wait(state, user_id, timeout)
        except asyncio.TimeoutError:
            return AuthorizationStatus.PENDING

        if message is None:
            return AuthorizationStatus.CANCELLED
        if message.type is MessageType.ERROR:
            logger.warning("Google authorization for user %s failed: %s", user_id, message.error)
            raise AuthorizationError(f"Google authorization failed: {message.error}")
        await self.complete_authorization(user_id, message.code or "", attempt.redirect_uri)
        return AuthorizationStatus.CONNECTED

    async def complete_authorization(self, user_id: int, code: str, redirect_uri: str):
        """Exchange *code* server-side and store the resulting credential.

        Upserts, since a user may reconnect after losing their refresh token.
        Nothing is written when the exchange fails.
        """
        if not code:
            raise AuthorizationError("Google did not return an authorization code")
        try:
            grant = await self.oauth_client.exchange_code(code, redirect_uri)
        except TokenExchangeError as exc:
            raise AuthorizationError(str(exc)) from exc

        if not grant.refresh_token:
            logger.warning("Google did not issue a refresh token for user %s", user_id)
        credential = await self.store.upsert(
            user_id,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            expires_at=grant.expires_at(utcnow()),
        )
        logger.info("Google Calendar connected for user %s", user_id)
        if self.notifier:
            await self.notifier.publish(user_id, True)
        return credential

    async def disconnect(self, user_id: int) -> bool:
        deleted = await self.store.delete(user_id)
        if deleted:
            logger.info("Google Calendar disconnected for user %s", user_id)
        if self.notifier:
            await self.notifier.publish(user_id, False)
        return deleted


_CALLBACK_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body>
<p>{title}</p>
<script>
(function () {{
  var message = {payload};
  if (window.opener) {{
    window.opener.postMessage(message, window.location.origin);
  }}
  window.close();
}})();
</script>
</body>
</html>
"""


def render_callback_page(message: AuthorizationMessage) -> str:
    """HTML for the popup: post *message* to a same-origin opener, then always close."""
    payload = json.dumps(message.to_dict())
    # Keep the JSON from terminating the <script> element.
    payload = payload.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
    title = "Completing authentication..." if message.type is MessageType.SUCCESS else "Authentication failed"
    return _CALLBACK_PAGE.format(title=html.escape(title), payload=payload)
