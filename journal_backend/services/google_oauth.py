# journal_backend/services/google_oauth.py
"""Thin wrapper around Authlib's async OAuth2 client for Google's endpoints.

The client secret only ever lives here, on the server.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZATION_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
]
DEFAULT_EXPIRES_IN = 3600


class TokenExchangeError(Exception):
    """The authorization code could not be exchanged for tokens."""


class TokenRefreshError(Exception):
    """The refresh token could not be exchanged for a new access token."""


class TokenGrant(BaseModel):
    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
    expires_in: int = DEFAULT_EXPIRES_IN

    def expires_at(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.expires_in)

    def __repr__(self) -> str:
        return (
            f"TokenGrant(access_token=<REDACTED>, "
            f"refresh_token={'<REDACTED>' if self.refresh_token else None}, "
            f"expires_in={self.expires_in!r})"
        )

    __str__ = __repr__


def _grant_from_payload(payload: Dict[str, Any]) -> TokenGrant:
    expires_in = payload.get("expires_in")
    return TokenGrant(
        access_token=payload.get("access_token") or "",
        refresh_token=payload.get("refresh_token") or None,
        expires_in=int(expires_in) if expires_in is not None else DEFAULT_EXPIRES_IN,
    )


class GoogleOAuthClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        authorization_endpoint: str = GOOGLE_AUTHORIZATION_URL,
        token_endpoint: str = GOOGLE_TOKEN_URL,
        scopes: Optional[list] = None,
        timeout: float = 20.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self._client_secret = client_secret
        self.authorization_endpoint = authorization_endpoint
        self.token_endpoint = token_endpoint
        self.scopes = scopes or list(CALENDAR_SCOPES)
        self.timeout = timeout
        self._transport = transport

    def _client(self, redirect_uri: Optional[str] = None) -> AsyncOAuth2Client:
        kwargs: Dict[str, Any] = {"timeout": self.timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self._client_secret,
            token_endpoint_auth_method="client_secret_post",
            redirect_uri=redirect_uri,
            **kwargs,
        )

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        # access_type=offline asks for a refresh token; prompt=consent makes Google re-issue one.
        return prepare_grant_uri(
            self.authorization_endpoint,
            client_id=self.client_id,
            response_type="code",
            redirect_uri=redirect_uri,
            scope=" ".join(self.scopes),
            state=state,
            access_type="offline",
            prompt="consent",
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        async with self._client(redirect_uri=redirect_uri) as client:
            try:
                payload = await client.fetch_token(
                    self.token_endpoint, code=code, grant_type="authorization_code",
                )
            except OAuthError as exc:
                logger.warning("Google code exchange rejected: %s", exc.error)
                raise TokenExchangeError(f"Google rejected the authorization code ({exc.error})") from exc
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Google code exchange failed: %s", type(exc).__name__)
                raise TokenExchangeError("Failed to exchange code for tokens") from exc
        try:
            return _grant_from_payload(dict(payload))
        except (ValidationError, TypeError, ValueError) as exc:
            raise TokenExchangeError("Google returned an unusable token response") from exc

    async def refresh(self, refresh_token: str) -> TokenGrant:
        async with self._client() as client:
            try:
                payload = await client.refresh_token(self.token_endpoint, refresh_token=refresh_token)
            except OAuthError as exc:
                logger.warning("Google token refresh rejected: %s", exc.error)
                raise TokenRefreshError(f"Google rejected the refresh token ({exc.error})") from exc
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Google token refresh failed: %s", type(exc).__name__)
                raise TokenRefreshError("Failed to refresh access token") from exc
        try:
            grant = _grant_from_payload(dict(payload))
        except (ValidationError, TypeError, ValueError) as exc:
            raise TokenRefreshError("Google returned an unusable refresh response") from exc
        # Authlib copies the old refresh token into the result when Google omits it.
        if grant.refresh_token == refresh_token:
            grant.refresh_token = None
        return grant
