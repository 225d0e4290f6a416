"""Turn a GitHub bearer token into an :class:`~nimbus.models.Identity`.

Called once the device flow in :mod:`nimbus.auth.device_flow` has produced
an access token. The profile comes from ``GET /user``; the email from
``GET /user/emails``, because ``/user`` only reports a public email.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from nimbus.exceptions import AuthError
from nimbus.models import Identity, utcnow

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
USER_AGENT = "Nimbus-CLI"

_TIMEOUT = 15.0


def _headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github.v3+json",
        "User-Agent": USER_AGENT,
    }


def _client(client: Optional[httpx.Client]) -> tuple[httpx.Client, bool]:
    if client is not None:
        return client, False
    return httpx.Client(base_url=GITHUB_API_URL, timeout=_TIMEOUT), True


def fetch_github_user(token: str, client: Optional[httpx.Client] = None) -> dict[str, Any]:
    """Fetch the authenticated user's profile.

    Args:
        token: GitHub OAuth access token.
        client: Optional client whose ``base_url`` is the GitHub API.

    Returns:
        The decoded ``/user`` JSON object (``login``, ``name``,
        ``avatar_url``, ...).

    Raises:
        AuthError: On a non-2xx response or a network failure.
    """
    http, owns = _client(client)
    try:
        response = http.get("/user", headers=_headers(token))
    except httpx.HTTPError as exc:
        raise AuthError(f"Failed to fetch GitHub user: {exc}") from exc
    finally:
        if owns:
            http.close()

    if not response.is_success:
        raise AuthError(f"Failed to fetch GitHub user: {response.status_code}")
    return response.json()


def fetch_github_email(token: str, client: Optional[httpx.Client] = None) -> Optional[str]:
    """Return the user's primary verified email, falling back to the first one.

    The email scope is optional, so any failure here yields ``None`` rather
    than an error.
    """
    http, owns = _client(client)
    try:
        response = http.get("/user/emails", headers=_headers(token))
    except httpx.HTTPError as exc:
        logger.debug("Could not fetch GitHub emails: %s", exc)
        return None
    finally:
        if owns:
            http.close()

    if not response.is_success:
        logger.debug("GitHub emails endpoint returned %s", response.status_code)
        return None

    try:
        emails = response.json()
    except ValueError:
        return None
    if not isinstance(emails, list) or not emails:
        return None

    for entry in emails:
        if entry.get("primary") and entry.get("verified"):
            return entry.get("email")
    return emails[0].get("email")


def complete_github_auth(token: str, client: Optional[httpx.Client] = None) -> Identity:
    """Build an :class:`~nimbus.models.Identity` for *token*.

    Raises:
        AuthError: If the profile cannot be fetched.
    """
    user = fetch_github_user(token, client)
    email = fetch_github_email(token, client) or user.get("email")

    return Identity(
        username=user["login"],
        name=user.get("name"),
        email=email,
        avatar_url=user.get("avatar_url"),
        access_token=token,
        authenticated_at=utcnow(),
    )
