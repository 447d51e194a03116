# journal_backend/services/token_refresh.py
"""Just-in-time refresh of the stored Google access token.

There is no background refresher: whichever request needs a token pays for
the refresh. Two requests racing past expiry may both refresh; the last write
wins and a loser simply ends up without a synced event.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from journal_backend.models import GoogleCalendarToken, as_utc, utcnow
from journal_backend.services.credential_store import CredentialStore
from journal_backend.services.google_oauth import GoogleOAuthClient, TokenRefreshError

logger = logging.getLogger(__name__)


class TokenRefreshManager:
    def __init__(
        self,
        store: CredentialStore,
        oauth_client: GoogleOAuthClient,
        leeway_seconds: int = 0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.oauth_client = oauth_client
        self.leeway = timedelta(seconds=leeway_seconds)
        self.clock = clock

    def is_expired(self, credential: GoogleCalendarToken, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        # Valid only while expires_at is strictly in the future.
        return as_utc(credential.expires_at) - self.leeway <= now

    async def ensure_valid_access_token(self, credential: GoogleCalendarToken) -> Optional[str]:
        """Return a usable access token for *credential*, refreshing it if needed.

        ``None`` means no token can be produced for this attempt: the token is
        expired and either there is no refresh token or Google refused it. The
        stored row is left as it was in that case.
        """
        now = self.clock()
        if not self.is_expired(credential, now):
            return credential.access_token

        user_id = credential.user_id
        if not credential.refresh_token:
            logger.warning(
                "Google Calendar token for user %s expired and no refresh token is stored; "
                "the user has to reconnect", user_id,
            )
            return None

        try:
            grant = await self.oauth_client.refresh(credential.refresh_token)
        except TokenRefreshError as exc:
            logger.warning("Could not refresh Google Calendar token for user %s: %s", user_id, exc)
            return None

        updated = await self.store.update(
            user_id,
            access_token=grant.access_token,
            expires_at=grant.expires_at(self.clock()),
            refresh_token=grant.refresh_token,
        )
        if updated is None:
            logger.warning("Google Calendar credential for user %s disappeared during refresh", user_id)
            return None
        logger.info("Refreshed Google Calendar token for user %s (expires %s)", user_id, updated.expires_at)
        return updated.access_token
