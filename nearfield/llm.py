"""LLM client for generated NPC dialogue.

The generative dialogue provider injects an LLM callable matching:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` names the caller ("npc_dialogue", "scene_narration"); it is used
for logging only.

    HttpLLM   HTTP client for KoboldCpp or OpenAI-compatible completion
                 backends, selected by provider_format.
    EchoLLM   returns the prompt unchanged, for wiring checks without a
                 running model.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)


class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai"]


class HttpLLM:
    """Async completion client.

      "koboldcpp"  POST /api/v1/generate  {"prompt", "max_length", "temperature"}
                     Response: {"results": [{"text": "..."}]}
      "openai"     POST /v1/completions   {"model", "prompt", "max_tokens", "temperature"}
                     Response: {"choices": [{"text": "..."}]}
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 60.0,
        max_tokens: int = 400,
        temperature: float = 0.8,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._temperature = temperature

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str) -> tuple[str, dict]:
        if self._format == "openai":
            body: dict = {
                "prompt": prompt,
                "max_tokens": self._max_tokens,
                "temperature": self._temperature,
            }
            if self._model:
                body["model"] = self._model
            return f"{self._base_url}/v1/completions", body

        return f"{self._base_url}/api/v1/generate", {
            "prompt": prompt,
            "max_length": self._max_tokens,
            "temperature": self._temperature,
        }

    def _parse_response(self, data: dict) -> str:
        key = "choices" if self._format == "openai" else "results"
        items = data.get(key)
        if not items or "text" not in items[0]:
            raise LLMError(f"Unexpected response format from {self._format} backend")
        return items[0]["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body = self._build_request(prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM backend at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(f"LLM backend returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM backend timed out after {self._timeout}s") from e

        text = self._parse_response(resp.json())
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


class EchoLLM:
    async def __call__(self, stage: str, prompt: str) -> str:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        return prompt
