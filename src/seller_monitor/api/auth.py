"""Discogs request authentication."""
from __future__ import annotations

import json
import os
from typing import Optional, Protocol

import requests
from requests.auth import AuthBase
from requests_oauthlib import OAuth1

from ..errors import ConfigurationError

PERSONAL_TOKEN_PREFIX = "Discogs token="


class TokenProvider(Protocol):
    """Supplies the stored Discogs credential, or ``None`` when unauthenticated."""

    def get_discogs_token(self) -> Optional[str]: ...


class EnvTokenProvider:
    """Reads the credential from the ``DISCOGS_TOKEN`` environment variable.

    A bare personal access token is accepted and prefixed with ``Discogs token=``.
    """

    def __init__(self, variable: str = "DISCOGS_TOKEN") -> None:
        self._variable = variable

    def get_discogs_token(self) -> Optional[str]:
        value = os.getenv(self._variable, "").strip()
        if not value:
            return None
        if value.startswith(PERSONAL_TOKEN_PREFIX) or value.startswith("{"):
            return value
        return f"{PERSONAL_TOKEN_PREFIX}{value}"


class StaticTokenProvider:
    """Returns a fixed credential."""

    def __init__(self, token: Optional[str]) -> None:
        self._token = token

    def get_discogs_token(self) -> Optional[str]:
        return self._token


class PersonalTokenAuth(AuthBase):
    """Adds a static ``Authorization: Discogs token=...`` header."""

    def __init__(self, header_value: str) -> None:
        self.header_value = header_value

    def __call__(self, request: requests.PreparedRequest) -> requests.PreparedRequest:
        request.headers["Authorization"] = self.header_value
        return request


def build_auth(token: Optional[str], consumer_key: str = "", consumer_secret: str = "") -> AuthBase:
    """Pick the authentication scheme matching the stored credential's shape.

    Personal access tokens are sent as a static header; anything else must be a
    JSON OAuth credential (``{"key": ..., "secret": ...}``) and every request is
    signed with OAuth 1.0a.
    """

    if not token:
        raise ConfigurationError("No Discogs token available. Please authenticate first.")

    if token.startswith(PERSONAL_TOKEN_PREFIX):
        return PersonalTokenAuth(token)

    try:
        credential = json.loads(token)
    except ValueError as exc:
        raise ConfigurationError(f"Corrupted Discogs OAuth token: {exc}") from exc

    if not isinstance(credential, dict) or not credential.get("key") or not credential.get("secret"):
        raise ConfigurationError("Corrupted Discogs OAuth token: missing key or secret")

    return OAuth1(
        consumer_key,
        client_secret=consumer_secret,
        resource_owner_key=str(credential["key"]),
        resource_owner_secret=str(credential["secret"]),
        signature_method="HMAC-SHA1",
    )
