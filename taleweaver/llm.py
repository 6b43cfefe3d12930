"""LLM client for the story stages.

GenerationClient calls any async callable with this shape:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` is one of STAGES. HttpLLM uses it to choose a model tier and a
completion length: short chatty stages go to the lightweight model, story
prose to the primary one. Callables that don't care can ignore it.

    HttpLLM   KoboldCpp or OpenAI-compatible completion endpoint.
    EchoLLM   hands the prompt back; wiring smoke tests only.

Tests use ScriptedLLM (conftest.py) for controlled responses.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Protocol

import httpx

logger = logging.getLogger(__name__)

STAGES = ("warmup_reply", "story_beat", "character_traits", "story_ending")

Tier = Literal["primary", "lightweight"]
ProviderFormat = Literal["koboldcpp", "openai"]

# stage -> (model tier, max completion tokens)
STAGE_PROFILES: dict[str, tuple[Tier, int]] = {
    "warmup_reply": ("lightweight", 120),
    "character_traits": ("lightweight", 200),
    "story_beat": ("primary", 500),
    "story_ending": ("primary", 500),
}
DEFAULT_PROFILE: tuple[Tier, int] = ("primary", 500)


class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


class LLMError(RuntimeError):
    """The backend was unreachable, failed, or answered in an unknown shape."""


class HttpLLM:
    """Completion client for a self-hosted or OpenAI-compatible backend.

      koboldcpp  POST {url}/api/v1/generate  {"prompt", "max_length"}
                 -> {"results": [{"text": ...}]}
      openai     POST {url}/v1/completions   {"prompt", "max_tokens", "model"?}
                 -> {"choices": [{"text": ...}]}

    `model` serves the primary tier; `lightweight_model` the lightweight tier
    and falls back to `model` when empty. KoboldCpp serves whatever model it
    loaded, so the tier only changes the completion length there.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        lightweight_model: str = "",
        timeout: float = 120.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._models: dict[Tier, str] = {
            "primary": model,
            "lightweight": lightweight_model or model,
        }
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> HttpLLM:
        conn = config["llm_connection"]
        return cls(
            provider_url=conn["provider_url"],
            api_key=conn.get("api_key", ""),
            provider_format=conn.get("provider_format", "koboldcpp"),
            model=conn.get("model", ""),
            lightweight_model=conn.get("lightweight_model", ""),
            timeout=float(config.get("llm_timeout", 120.0)),
        )

    def model_for(self, stage: str) -> str:
        tier, _ = STAGE_PROFILES.get(stage, DEFAULT_PROFILE)
        return self._models[tier]

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _request(self, stage: str, prompt: str) -> tuple[str, dict[str, Any]]:
        _, max_tokens = STAGE_PROFILES.get(stage, DEFAULT_PROFILE)
        if self._format == "openai":
            body: dict[str, Any] = {"prompt": prompt, "max_tokens": max_tokens}
            model = self.model_for(stage)
            if model:
                body["model"] = model
            return f"{self._base_url}/v1/completions", body
        return f"{self._base_url}/api/v1/generate", {"prompt": prompt, "max_length": max_tokens}

    def _completion_text(self, data: dict[str, Any]) -> str:
        key, backend = (
            ("choices", "OpenAI-compatible") if self._format == "openai" else ("results", "KoboldCpp")
        )
        entries = data.get(key)
        if not entries or "text" not in entries[0]:
            raise LLMError(f"Unexpected response format from {backend} backend")
        return entries[0]["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body = self._request(stage, prompt)
        logger.debug(
            "llm call stage=%s url=%s model=%s prompt_len=%d",
            stage, url, body.get("model", "-"), len(prompt),
        )
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

        text = self._completion_text(resp.json())
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


class EchoLLM:
    """Returns the prompt unchanged.

    Not valid JSON, so structured stages report a parse failure.
    """

    async def __call__(self, stage: str, prompt: str) -> str:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        return prompt
