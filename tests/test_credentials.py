from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List

import google.auth.exceptions
import pytest

from docinsight.ai import credentials as credentials_module
from docinsight.ai.credentials import (
    CLOUD_PLATFORM_SCOPE,
    AuthScheme,
    Credential,
    CredentialCache,
    CredentialProvider,
    GoogleAuthProvider,
    StaticTokenProvider,
)
from docinsight.errors import AuthFailure


@dataclass
class _CountingProvider(CredentialProvider):
    lifetime: float | None = 100.0
    now: List[float] = field(default_factory=lambda: [0.0])
    calls: int = 0

    async def fetch(self) -> Credential:
        self.calls += 1
        await asyncio.sleep(0)
        expires = None if self.lifetime is None else self.now[0] + self.lifetime
        return Credential(token=f"token-{self.calls}", expires_at=expires)


def test_credential_is_fetched_lazily_and_cached() -> None:
    provider = _CountingProvider()
    cache = CredentialCache(provider, clock=lambda: provider.now[0])
    assert provider.calls == 0

    async def _run():
        return await asyncio.gather(*(cache.get() for _ in range(5)))

    credentials = asyncio.run(_run())

    assert provider.calls == 1
    assert {c.token for c in credentials} == {"token-1"}


def test_expired_credential_is_refreshed() -> None:
    provider = _CountingProvider(lifetime=100.0)
    cache = CredentialCache(provider, clock=lambda: provider.now[0])

    first = asyncio.run(cache.get())
    provider.now[0] = 99.0
    second = asyncio.run(cache.get())

    assert first.token == "token-1"
    assert second.token == "token-2"


def test_refresh_only_replaces_the_stale_credential() -> None:
    provider = _CountingProvider(lifetime=None)
    cache = CredentialCache(provider)

    async def _run():
        stale = await cache.get()
        return await asyncio.gather(cache.refresh(stale), cache.refresh(stale))

    refreshed = asyncio.run(_run())

    assert provider.calls == 2
    assert [c.token for c in refreshed] == ["token-2", "token-2"]


def test_provider_errors_surface_as_auth_failure() -> None:
    class _Broken(CredentialProvider):
        async def fetch(self) -> Credential:
            raise OSError("token endpoint unreachable")

    with pytest.raises(AuthFailure):
        asyncio.run(CredentialCache(_Broken()).get())


def test_static_provider_requires_key() -> None:
    with pytest.raises(AuthFailure):
        StaticTokenProvider("")
    assert asyncio.run(StaticTokenProvider("abc").fetch()) == Credential(token="abc")


class _FakeGoogleCredentials:
    """Stands in for ``google.auth`` credentials; each refresh issues a new token."""

    def __init__(self, lifetime: timedelta) -> None:
        self.lifetime = lifetime
        self.refreshes = 0
        self.token = None
        self.expiry = None

    def refresh(self, request) -> None:
        self.refreshes += 1
        self.token = f"ya29.token-{self.refreshes}"
        self.expiry = datetime(2026, 1, 1, 12, 0) + self.lifetime * self.refreshes


@pytest.fixture
def google_default(monkeypatch):
    fake = _FakeGoogleCredentials(timedelta(hours=1))
    calls: list = []

    def _default(scopes=None):
        calls.append(scopes)
        return fake, "lease-project"

    monkeypatch.setattr(credentials_module.google.auth, "default", _default)
    monkeypatch.setattr(credentials_module, "Request", lambda: object())
    return fake, calls


def test_google_provider_maps_token_and_expiry(google_default) -> None:
    fake, calls = google_default
    provider = GoogleAuthProvider()

    credential = asyncio.run(provider.fetch())

    assert credential.token == "ya29.token-1"
    assert credential.scheme is AuthScheme.BEARER
    assert credential.expires_at == datetime(2026, 1, 1, 13, 0, tzinfo=timezone.utc).timestamp()
    assert calls == [[CLOUD_PLATFORM_SCOPE]]
    assert provider.project_id == "lease-project"


def test_google_token_is_refreshed_once_it_expires(google_default) -> None:
    fake, calls = google_default
    now = [datetime(2026, 1, 1, 12, 30, tzinfo=timezone.utc).timestamp()]
    cache = CredentialCache(GoogleAuthProvider(), clock=lambda: now[0])

    async def _run():
        first = await cache.get()
        again = await cache.get()
        now[0] = first.expires_at
        renewed = await cache.get()
        return first, again, renewed

    first, again, renewed = asyncio.run(_run())

    assert first is again
    assert renewed.token == "ya29.token-2"
    assert fake.refreshes == 2
    assert len(calls) == 1


def test_google_auth_errors_become_auth_failure(monkeypatch) -> None:
    def _default(scopes=None):
        raise google.auth.exceptions.DefaultCredentialsError("no application default credentials")

    monkeypatch.setattr(credentials_module.google.auth, "default", _default)

    with pytest.raises(AuthFailure) as excinfo:
        asyncio.run(GoogleAuthProvider().fetch())

    assert isinstance(excinfo.value.__cause__, google.auth.exceptions.DefaultCredentialsError)
