"""Tests for the GitHub profile lookup."""

from __future__ import annotations

import httpx
import pytest

from nimbus.auth.github import (
    GITHUB_API_URL,
    complete_github_auth,
    fetch_github_email,
    fetch_github_user,
)
from nimbus.exceptions import AuthError

USER = {
    "login": "octocat",
    "name": "The Octocat",
    "email": None,
    "avatar_url": "https://avatars.githubusercontent.com/u/583231",
}


def _github(user_status: int = 200, emails: object = None, emails_status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/user":
            return httpx.Response(user_status, json=USER)
        if request.url.path == "/user/emails":
            return httpx.Response(emails_status, json=emails if emails is not None else [])
        return httpx.Response(404)

    return handler


class TestFetchUser:
    def test_headers(self, mock_http) -> None:
        client, transport = mock_http(_github(), base_url=GITHUB_API_URL)
        assert fetch_github_user("gho_tok", client)["login"] == "octocat"

        headers = transport.requests[0].headers
        assert headers["Authorization"] == "Bearer gho_tok"
        assert headers["Accept"] == "application/vnd.github.v3+json"
        assert headers["User-Agent"] == "Nimbus-CLI"

    def test_non_2xx_raises(self, mock_http) -> None:
        client, _ = mock_http(_github(user_status=401), base_url=GITHUB_API_URL)
        with pytest.raises(AuthError, match="401"):
            fetch_github_user("bad", client)


class TestFetchEmail:
    def test_primary_verified_preferred(self, mock_http) -> None:
        emails = [
            {"email": "old@example.com", "primary": False, "verified": True},
            {"email": "unverified@example.com", "primary": True, "verified": False},
            {"email": "me@example.com", "primary": True, "verified": True},
        ]
        client, _ = mock_http(_github(emails=emails), base_url=GITHUB_API_URL)
        assert fetch_github_email("tok", client) == "me@example.com"

    def test_falls_back_to_first(self, mock_http) -> None:
        emails = [{"email": "first@example.com", "primary": False, "verified": False}]
        client, _ = mock_http(_github(emails=emails), base_url=GITHUB_API_URL)
        assert fetch_github_email("tok", client) == "first@example.com"

    def test_empty_list(self, mock_http) -> None:
        client, _ = mock_http(_github(emails=[]), base_url=GITHUB_API_URL)
        assert fetch_github_email("tok", client) is None

    def test_error_status_returns_none(self, mock_http) -> None:
        client, _ = mock_http(_github(emails_status=403), base_url=GITHUB_API_URL)
        assert fetch_github_email("tok", client) is None


class TestCompleteAuth:
    def test_builds_identity(self, mock_http) -> None:
        emails = [{"email": "me@example.com", "primary": True, "verified": True}]
        client, _ = mock_http(_github(emails=emails), base_url=GITHUB_API_URL)

        identity = complete_github_auth("gho_tok", client)

        assert identity.username == "octocat"
        assert identity.name == "The Octocat"
        assert identity.email == "me@example.com"
        assert identity.avatar_url == USER["avatar_url"]
        assert identity.access_token == "gho_tok"
        assert identity.authenticated_at.tzinfo is not None

    def test_user_failure_propagates(self, mock_http) -> None:
        client, _ = mock_http(_github(user_status=500), base_url=GITHUB_API_URL)
        with pytest.raises(AuthError):
            complete_github_auth("tok", client)
