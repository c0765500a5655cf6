"""AI backends answering a fully built prompt."""
from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from ..errors import AuthFailure, PermanentBackendError, TransientBackendError
from .credentials import AuthScheme, Credential

LOGGER = logging.getLogger(__name__)

_TRANSIENT_STATUSES = {408, 429}
_AUTH_STATUSES = {401, 403}


class AIBackend(ABC):
    """Transport-agnostic completion capability.

    Implementations signal failures with :class:`TransientBackendError`,
    :class:`PermanentBackendError` or :class:`AuthFailure`; the query engine
    decides what to retry.
    """

    name: str = "backend"

    @abstractmethod
    async def complete(self, prompt: str, credential: Credential) -> str:
        ...

    async def aclose(self) -> None:
        return None


class MockAIBackend(AIBackend):
    """Deterministic backend for development and tests."""

    name = "mock"

    async def complete(self, prompt: str, credential: Credential) -> str:
        del credential
        digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:12]
        question = prompt.rstrip().rsplit("\n", 1)[-1]
        return f"MOCK_ANSWER[{digest}]: {question[:100]}"


class GeminiBackend(AIBackend):
    """Google Gemini ``generateContent`` over HTTPS."""

    name = "gemini"

    def __init__(
        self,
        model: str = "gemini-pro",
        base_url: str = "https://generativelanguage.googleapis.com",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def complete(self, prompt: str, credential: Credential) -> str:
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        try:
            response = await self._get_client().post(
                self.endpoint,
                json=payload,
                headers=_auth_headers(credential),
            )
        except httpx.TimeoutException as error:
            raise TransientBackendError(f"Gemini request timed out: {error}", cause=error) from error
        except httpx.TransportError as error:
            raise TransientBackendError(f"Gemini transport error: {error}", cause=error) from error

        self._raise_for_status(response)
        try:
            body = response.json()
        except ValueError as error:
            raise PermanentBackendError("Gemini returned a non-JSON body", cause=error) from error
        return self._extract_text(body)

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = response.text[:200]
        if status in _AUTH_STATUSES:
            raise AuthFailure(f"Gemini rejected the credential ({status}): {detail}")
        if status in _TRANSIENT_STATUSES or status >= 500:
            raise TransientBackendError(
                f"Gemini temporarily unavailable ({status}): {detail}",
                retry_after=_retry_after(response),
            )
        raise PermanentBackendError(f"Gemini rejected the request ({status}): {detail}")

    @staticmethod
    def _extract_text(body: dict[str, Any]) -> str:
        feedback = body.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise PermanentBackendError(f"Prompt blocked by content policy: {feedback['blockReason']}")

        candidates = body.get("candidates") or []
        if not candidates:
            raise PermanentBackendError("Gemini returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(str(part.get("text", "")) for part in parts)
        if not text.strip():
            reason = candidates[0].get("finishReason", "unknown")
            raise PermanentBackendError(f"Gemini returned an empty answer (finishReason={reason})")
        return text

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def _auth_headers(credential: Credential) -> dict[str, str]:
    if credential.scheme is AuthScheme.BEARER:
        return {"Authorization": f"Bearer {credential.token}"}
    return {"x-goog-api-key": credential.token}


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        LOGGER.debug("Ignoring non-numeric Retry-After header %r", value)
        return None
