"""Tests for the Google OAuth client wrapper (URL building, code exchange, refresh)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from journal_backend.services.google_oauth import (
    CALENDAR_SCOPES,
    GOOGLE_TOKEN_URL,
    GoogleOAuthClient,
    TokenExchangeError,
    TokenGrant,
    TokenRefreshError,
)

REDIRECT_URI = "http://testserver/auth/google/callback"


def _client_with(handler) -> GoogleOAuthClient:
    return GoogleOAuthClient("cid", "csecret", transport=httpx.MockTransport(handler))


def _form(request: httpx.Request) -> dict[str, list[str]]:
    return parse_qs(request.read().decode())


class TestAuthorizationUrl:
    def test_url_requests_offline_access_with_forced_consent(self) -> None:
        client = GoogleOAuthClient("cid", "csecret")
        url = client.authorization_url(REDIRECT_URI, "state-abc")

        parts = urlsplit(url)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://accounts.google.com/o/oauth2/v2/auth"
        query = parse_qs(parts.query)
        assert query["client_id"] == ["cid"]
        assert query["redirect_uri"] == [REDIRECT_URI]
        assert query["response_type"] == ["code"]
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert query["state"] == ["state-abc"]
        assert query["scope"][0].split(" ") == CALENDAR_SCOPES

    def test_url_never_contains_client_secret(self) -> None:
        url = GoogleOAuthClient("cid", "csecret").authorization_url(REDIRECT_URI, "s")
        assert "csecret" not in url


class TestExchangeCode:
    async def test_posts_form_body_and_returns_grant(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(
                200,
                json={"access_token": "ya29.new", "refresh_token": "1//refresh", "expires_in": 3599,
                      "token_type": "Bearer"},
            )

        grant = await _client_with(handler).exchange_code("auth-code", REDIRECT_URI)

        assert grant.access_token == "ya29.new"
        assert grant.refresh_token == "1//refresh"
        assert grant.expires_in == 3599

        assert len(captured) == 1
        request = captured[0]
        assert request.method == "POST"
        assert str(request.url) == GOOGLE_TOKEN_URL
        form = _form(request)
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["auth-code"]
        assert form["redirect_uri"] == [REDIRECT_URI]
        assert form["client_id"][0] == "cid"
        assert form["client_secret"][0] == "csecret"

    async def test_missing_expires_in_defaults_to_an_hour(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "ya29.new", "token_type": "Bearer"})

        grant = await _client_with(handler).exchange_code("auth-code", REDIRECT_URI)
        assert grant.expires_in == 3600
        assert grant.refresh_token is None

    async def test_rejected_code_raises_exchange_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Bad Request"})

        with pytest.raises(TokenExchangeError):
            await _client_with(handler).exchange_code("used-code", REDIRECT_URI)

    async def test_network_failure_raises_exchange_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TokenExchangeError) as excinfo:
            await _client_with(handler).exchange_code("auth-code", REDIRECT_URI)
        assert "csecret" not in str(excinfo.value)


class TestRefresh:
    async def test_posts_refresh_grant(self) -> None:
        captured: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json={"access_token": "ya29.fresh", "expires_in": 3600,
                                             "token_type": "Bearer"})

        grant = await _client_with(handler).refresh("1//refresh")

        assert grant.access_token == "ya29.fresh"
        assert grant.expires_in == 3600
        form = _form(captured[0])
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["1//refresh"]
        assert form["client_id"][0] == "cid"
        assert form["client_secret"][0] == "csecret"

    async def test_omitted_refresh_token_is_reported_as_none(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "ya29.fresh", "expires_in": 3600,
                                             "token_type": "Bearer"})

        grant = await _client_with(handler).refresh("1//refresh")
        assert grant.refresh_token is None

    async def test_rotated_refresh_token_is_returned(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "ya29.fresh", "refresh_token": "1//rotated",
                                             "expires_in": 3600, "token_type": "Bearer"})

        grant = await _client_with(handler).refresh("1//refresh")
        assert grant.refresh_token == "1//rotated"

    async def test_revoked_refresh_token_raises_refresh_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400, json={"error": "invalid_grant", "error_description": "Token has been expired or revoked."},
            )

        with pytest.raises(TokenRefreshError):
            await _client_with(handler).refresh("1//revoked")

    async def test_network_failure_raises_refresh_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TokenRefreshError):
            await _client_with(handler).refresh("1//refresh")


class TestTokenGrant:
    def test_expires_at_adds_expires_in(self) -> None:
        now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        grant = TokenGrant(access_token="a", expires_in=3600)
        assert grant.expires_at(now) == now + timedelta(hours=1)

    def test_repr_redacts_tokens(self) -> None:
        grant = TokenGrant(access_token="ya29.secret", refresh_token="1//secret")
        assert "ya29.secret" not in repr(grant)
        assert "1//secret" not in str(grant)
