"""Process-wide credential cache for the AI backend."""
from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional, Sequence

import google.auth
import google.auth.exceptions
from google.auth.transport.requests import Request

from ..errors import AuthFailure
from ..telemetry import emit_credential_refresh

LOGGER = logging.getLogger(__name__)

# Credentials this close to expiry are treated as already expired.
EXPIRY_SKEW_SECONDS = 30.0

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class AuthScheme(str, Enum):
    """How the backend presents a token."""

    API_KEY = "api_key"
    BEARER = "bearer"


@dataclass(frozen=True, slots=True)
class Credential:
    token: str
    expires_at: Optional[float] = None
    scheme: AuthScheme = AuthScheme.API_KEY

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at - EXPIRY_SKEW_SECONDS


class CredentialProvider(ABC):
    """Source of fresh credentials (API key, token endpoint, ...)."""

    @abstractmethod
    async def fetch(self) -> Credential:
        ...


class StaticTokenProvider(CredentialProvider):
    """Provider returning a fixed API key that never expires."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise AuthFailure("An API key is required")
        self._api_key = api_key

    async def fetch(self) -> Credential:
        return Credential(token=self._api_key)


def _expiry_timestamp(expiry: Optional[datetime]) -> Optional[float]:
    if expiry is None:
        return None
    # google-auth reports expiry as naive UTC.
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry.timestamp()


class GoogleAuthProvider(CredentialProvider):
    """OAuth access tokens from Application Default Credentials.

    Credentials are discovered once through ``google.auth.default`` and
    refreshed on every fetch. Both steps block, so they run in a worker thread.
    """

    def __init__(self, scopes: Sequence[str] = (CLOUD_PLATFORM_SCOPE,)) -> None:
        self.scopes = tuple(scopes)
        self.project_id: Optional[str] = None
        self._credentials: Any = None

    def _refresh(self) -> Credential:
        if self._credentials is None:
            self._credentials, self.project_id = google.auth.default(scopes=list(self.scopes))
        self._credentials.refresh(Request())
        return Credential(
            token=self._credentials.token,
            expires_at=_expiry_timestamp(self._credentials.expiry),
            scheme=AuthScheme.BEARER,
        )

    async def fetch(self) -> Credential:
        try:
            credential = await asyncio.to_thread(self._refresh)
        except google.auth.exceptions.GoogleAuthError as error:
            raise AuthFailure(f"Google credential refresh failed: {error}", cause=error) from error
        LOGGER.info("Fetched Google access token (project=%s)", self.project_id)
        return credential


class CredentialCache:
    """Lazily acquired credential shared by every query.

    The first caller fetches; later callers reuse the cached value until it
    expires. ``refresh(stale)`` replaces the credential only if ``stale`` is
    still the cached one, so concurrent callers that were all rejected with
    the same credential trigger a single fetch.
    """

    def __init__(self, provider: CredentialProvider, clock: Callable[[], float] = time.time) -> None:
        self._provider = provider
        self._clock = clock
        self._lock = asyncio.Lock()
        self._credential: Optional[Credential] = None

    @property
    def provider(self) -> CredentialProvider:
        return self._provider

    async def get(self) -> Credential:
        async with self._lock:
            credential = self._credential
            if credential is None:
                return await self._fetch("initial")
            if credential.is_expired(self._clock()):
                return await self._fetch("expired")
            return credential

    async def refresh(self, stale: Optional[Credential] = None) -> Credential:
        async with self._lock:
            if self._credential is not None and self._credential is not stale:
                return self._credential
            return await self._fetch("rejected")

    async def _fetch(self, reason: str) -> Credential:
        try:
            credential = await self._provider.fetch()
        except AuthFailure:
            raise
        except Exception as error:
            raise AuthFailure(f"Credential acquisition failed: {error}", cause=error) from error
        self._credential = credential
        emit_credential_refresh(reason=reason, expires_at=credential.expires_at)
        return credential
