"""Capability provider backed by an HTTP endpoint."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from .types import ProviderResult, normalize_provider_result

__all__ = ["HttpToolProvider"]

LOGGER = logging.getLogger(__name__)


class HttpToolProvider:
    """POSTs tool parameters as JSON and returns the response body.

    JSON responses go through :func:`normalize_provider_result`, so a service
    may answer with plain text, ``{"text": ...}`` or MCP-style content blocks.
    Non-2xx responses raise, which the dispatcher reports as a failed outcome.
    """

    def __init__(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not url:
            raise ValueError("Provider URL is required")
        self.url = url
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def invoke(self, parameters: Mapping[str, Any]) -> ProviderResult:
        client = self._get_client()
        LOGGER.debug("POST %s", self.url)
        response = await client.post(self.url, json=dict(parameters), headers=self._headers)
        if response.is_error:
            detail = response.text.strip() or response.reason_phrase
            raise RuntimeError(f"HTTP {response.status_code}: {detail}")

        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return normalize_provider_result(response.json())
            except ValueError:
                LOGGER.debug("Response from %s was not usable JSON; returning raw text", self.url)
        return ProviderResult(text=response.text)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
