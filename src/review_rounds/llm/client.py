from __future__ import annotations

import logging
from typing import Any, AsyncIterator

import httpx

from review_rounds.core.errors import BackendRequestError
from review_rounds.core.types import (
    BackendSettings,
    GenerationContext,
    ProbeKind,
    RunSettings,
    StreamFormat,
)
from review_rounds.llm.prompts import build_generation_prompt, build_review_prompt

logger = logging.getLogger(__name__)


class BackendResponse:
    """An open backend response. Close it (or use ``async with``) once decoded."""

    def __init__(self, response: httpx.Response, stream_format: StreamFormat, backend: str) -> None:
        self._response = response
        self.stream_format = stream_format
        self.backend = backend

    @property
    def status_code(self) -> int:
        return self._response.status_code

    async def aiter_chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            raise BackendRequestError(f"{self.backend} stream interrupted: {e}") from e

    async def aclose(self) -> None:
        await self._response.aclose()

    async def __aenter__(self) -> BackendResponse:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class BackendClient:
    def __init__(
        self,
        settings: BackendSettings,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 300.0,
    ) -> None:
        self.settings = settings
        self.name = settings.name
        self.model = settings.model
        self.stream_format = settings.stream_format
        self.availability_reason = ""
        self._base_url = settings.url.rstrip("/")
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def check_availability(self) -> bool:
        """Probe the backend and, for the tags probe, confirm the model is pulled.

        Never raises; the failure reason is logged and kept in ``availability_reason``.
        """
        path = "/api/tags" if self.settings.probe is ProbeKind.TAGS else "/api/version"
        try:
            response = await self._http.get(self._url(path))
        except httpx.HTTPError as e:
            return self._unavailable(f"{self.name} not reachable at {self._base_url}: {e}")

        if not response.is_success:
            return self._unavailable(
                f"{self.name} probe {path} returned {response.status_code} {response.reason_phrase}"
            )

        if self.settings.probe is ProbeKind.TAGS:
            try:
                data = response.json()
            except ValueError:
                return self._unavailable(f"{self.name} returned invalid JSON from {path}")
            if not _has_model(_model_names(data), self.model):
                return self._unavailable(
                    f"Model {self.model} not found on {self.name}. "
                    f"Please run: ollama pull {self.model}"
                )

        self.availability_reason = ""
        logger.debug("%s available at %s", self.name, self._base_url)
        return True

    def _unavailable(self, reason: str) -> bool:
        self.availability_reason = reason
        logger.warning("Connection check failed: %s", reason)
        return False

    async def generate(self, context: GenerationContext, streaming: bool = True) -> BackendResponse:
        system, user = build_generation_prompt(context)
        logger.debug("=== GENERATION (%s, revision=%s) ===", self.name, context.is_revision)
        logger.debug("SYSTEM PROMPT:\n%s", system)
        logger.debug("USER PROMPT:\n%s", user)
        return await self._send(user, system, streaming, action="Solution generation")

    async def review(
        self, problem: str, solution: str, round_number: int, streaming: bool = True
    ) -> BackendResponse:
        prompt = build_review_prompt(problem, solution, round_number)
        logger.debug("=== REVIEW (%s, round %d) ===", self.name, round_number)
        logger.debug("PROMPT:\n%s", prompt)
        return await self._send(prompt, None, streaming, action="Review generation")

    def build_payload(
        self, prompt: str, system: str | None, streaming: bool
    ) -> tuple[str, dict[str, Any]]:
        if self.stream_format is StreamFormat.CHAT:
            messages = []
            if system:
                messages.append({"role": "system", "content": system})
            messages.append({"role": "user", "content": prompt})
            return "/api/chat", {"model": self.model, "messages": messages, "stream": streaming}

        payload: dict[str, Any] = {"model": self.model, "prompt": prompt, "stream": streaming}
        if system:
            payload["system"] = system
        return "/api/generate", payload

    async def _send(
        self, prompt: str, system: str | None, streaming: bool, action: str
    ) -> BackendResponse:
        path, payload = self.build_payload(prompt, system, streaming)
        request = self._http.build_request("POST", self._url(path), json=payload)
        try:
            response = await self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            raise BackendRequestError(f"{action} failed: {e}") from e

        if not response.is_success:
            detail = await _error_detail(response)
            raise BackendRequestError(
                f"{action} failed: {self.name} API error: "
                f"{response.status_code} {response.reason_phrase}{detail}",
                status_code=response.status_code,
            )
        return BackendResponse(response, self.stream_format, self.name)


def build_backends(
    settings: RunSettings, http_client: httpx.AsyncClient | None = None
) -> tuple[BackendClient, BackendClient]:
    solver = BackendClient(settings.solver, http_client, timeout=settings.request_timeout)
    reviewer = BackendClient(settings.reviewer, http_client, timeout=settings.request_timeout)
    return solver, reviewer


def _model_names(data: Any) -> list[str]:
    if not isinstance(data, dict):
        return []
    models = data.get("models") or []
    return [m.get("name", "") for m in models if isinstance(m, dict)]


def _has_model(names: list[str], model: str) -> bool:
    if model in names:
        return True
    # Ollama reports untagged pulls as "<name>:latest".
    return ":" not in model and f"{model}:latest" in names


async def _error_detail(response: httpx.Response) -> str:
    try:
        await response.aread()
    except httpx.HTTPError as e:
        logger.debug("Could not read error body: %s", e)
        return ""
    finally:
        await response.aclose()
    body = response.text.strip()
    return f" ({body[:200]})" if body else ""
