"""Text-completion client used by the provider adapter.

Anything awaitable with this signature can stand in for the backend:

    async def __call__(self, stage: str, prompt: str, *, temperature: float | None = None) -> str: ...

`stage` names the generation step ("scaffold", "regenerate_movement",
"expand_movement", "refine_movement") and only shows up in logs.

HttpLLM speaks three wire formats, chosen with provider_format. It also sorts
failures into the two kinds the retry loop in provider.py cares about:

    LLMTransientError  connection refused or dropped, timeout, HTTP 429, HTTP 5xx
    LLMError           any other 4xx, non-JSON body, unexpected envelope
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Literal, Protocol

import httpx

from daggergm.errors import LLMError, LLMTransientError

logger = logging.getLogger(__name__)


class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str, *, temperature: float | None = None) -> str: ...


ProviderFormat = Literal["koboldcpp", "openai", "openai_chat"]


def _kobold_text(data: dict[str, Any]) -> str:
    return data["results"][0]["text"]


def _completion_text(data: dict[str, Any]) -> str:
    return data["choices"][0]["text"]


def _chat_text(data: dict[str, Any]) -> str:
    return data["choices"][0]["message"]["content"] or ""


# format -> (endpoint path, text extractor, human-readable backend name)
_FORMATS: dict[str, tuple[str, Callable[[dict[str, Any]], str], str]] = {
    "koboldcpp": ("/api/v1/generate", _kobold_text, "KoboldCpp"),
    "openai": ("/v1/completions", _completion_text, "OpenAI-compatible"),
    "openai_chat": ("/v1/chat/completions", _chat_text, "OpenAI-compatible chat"),
}


class HttpLLM:
    """Async client for KoboldCpp and OpenAI-compatible backends.

    Request bodies:
      koboldcpp    {"prompt": ...}
      openai       {"prompt": ..., "model": ...}
      openai_chat  {"messages": [{"role": "user", "content": ...}], "model": ...}

    `temperature` is added to the body when given. `model` is never sent to
    KoboldCpp, which serves whatever model it was started with.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 120.0,
    ) -> None:
        if provider_format not in _FORMATS:
            raise ValueError(f"Unknown provider format: {provider_format!r}")
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout

    @property
    def endpoint(self) -> str:
        return self._base_url + _FORMATS[self._format][0]

    def _body(self, prompt: str, temperature: float | None) -> dict[str, Any]:
        if self._format == "openai_chat":
            body: dict[str, Any] = {"messages": [{"role": "user", "content": prompt}]}
        else:
            body = {"prompt": prompt}
        if self._model and self._format != "koboldcpp":
            body["model"] = self._model
        if temperature is not None:
            body["temperature"] = temperature
        return body

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.endpoint, json=body, headers=headers)
                resp.raise_for_status()
                return resp
        except httpx.ConnectError as e:
            raise LLMTransientError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise LLMTransientError(f"LLM backend timed out after {self._timeout}s") from e
        except httpx.TransportError as e:
            raise LLMTransientError(f"Connection to LLM backend failed: {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                raise LLMTransientError(f"LLM backend returned HTTP {status}") from e
            raise LLMError(f"LLM backend returned HTTP {status}") from e

    async def __call__(self, stage: str, prompt: str, *, temperature: float | None = None) -> str:
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, self.endpoint, len(prompt))
        resp = await self._post(self._body(prompt, temperature))

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("LLM backend returned a non-JSON envelope") from e

        _, extract, name = _FORMATS[self._format]
        try:
            text = extract(data)
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Unexpected response format from {name} backend") from e

        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text
