"""Async HTTP client for OpenAI-compatible secondary endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

import httpx

from .errors import CallError
from .extractors import extract_model_names

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to talk to the secondary endpoint."""

    api_url: str
    api_key: str = ""
    model_endpoint: str = "/models"
    request_timeout: float | None = None
    debug_logging: bool = False

    @property
    def models_url(self) -> str:
        base = self.api_url[:-1] if self.api_url.endswith("/") else self.api_url
        return f"{base}{self.model_endpoint}"


class SecondaryAPIClient:
    """Issues single-shot chat completion and model listing requests.

    No retries are attempted: a failed request raises :class:`CallError` and
    the caller decides what to do with it.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or self._build_client(settings, transport)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    def headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.api_key:
            headers["Authorization"] = f"Bearer {self._settings.api_key}"
        return headers

    async def complete(self, payload: Mapping[str, Any]) -> Any:
        """POST ``payload`` to the completion endpoint and return the decoded body.

        Bodies that are not valid JSON are returned as the raw response text.
        """

        LOGGER.debug(
            "Starting secondary chat completion via %s with %s message(s)",
            payload.get("model"),
            len(payload.get("messages") or ()),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        try:
            response = await self._client.post(
                self._settings.api_url,
                headers=self.headers(),
                json=dict(payload),
            )
        except httpx.HTTPError as exc:
            raise CallError.from_transport(exc) from exc

        if not response.is_success:
            raise CallError.from_status(response.status_code, response.text)
        return self._decode(response)

    async def list_models(self) -> List[str]:
        """Return the model identifiers published by the listing endpoint."""

        url = self._settings.models_url
        try:
            response = await self._client.get(url, headers=self.headers())
        except httpx.HTTPError as exc:
            raise CallError.from_transport(exc) from exc

        if not response.is_success:
            raise CallError(
                message=f"Model list request failed: {response.status_code} - {response.text}",
                status=response.status_code,
                body=response.text,
            )
        payload = self._decode(response)
        LOGGER.debug("Models response: %s", payload)
        return extract_model_names(payload)

    def _build_client(
        self, settings: ClientSettings, transport: httpx.AsyncBaseTransport | None
    ) -> httpx.AsyncClient:
        if settings.request_timeout is None:
            return httpx.AsyncClient(transport=transport)
        return httpx.AsyncClient(transport=transport, timeout=settings.request_timeout)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload.get("messages"), ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Secondary prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Secondary prompt messages:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying HTTP client when this instance created it."""

        if not self._owns_client:
            return
        close = getattr(self._client, "aclose", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    async def __aenter__(self) -> "SecondaryAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
