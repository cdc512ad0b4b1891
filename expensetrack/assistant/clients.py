"""OpenAI-compatible chat clients used as the assistant's model capability."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, List, Mapping, MutableMapping, Optional, Protocol, Sequence

from openai import AsyncOpenAI, OpenAIError

from ..errors import ConfigError, ToolArgumentsError, UpstreamError
from .schemas import ChatMessage, ModelReply, ToolCall

logger = logging.getLogger(__name__)


class ModelCapability(Protocol):
    """Given a history and a tool catalog, produce a reply or tool calls."""

    async def invoke(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[Mapping[str, Any]],
    ) -> ModelReply:
        ...


@dataclass(frozen=True)
class ProviderPreset:
    base_url: Optional[str]
    api_key_env: str
    default_model: str


PROVIDERS: Mapping[str, ProviderPreset] = {
    "openai": ProviderPreset(
        base_url=None,
        api_key_env="OPENAI_API_KEY",
        default_model="gpt-4o-mini",
    ),
    "gemini": ProviderPreset(
        base_url="https://generativelanguage.googleapis.com/v1beta/openai/",
        api_key_env="GEMINI_API_KEY",
        default_model="gemini-1.5-flash",
    ),
    "groq": ProviderPreset(
        base_url="https://api.groq.com/openai/v1",
        api_key_env="GROQ_API_KEY",
        default_model="llama-3.3-70b-versatile",
    ),
}


class LLMClient:
    """Thin wrapper over :class:`openai.AsyncOpenAI` with provider defaults."""

    def __init__(
        self,
        *,
        provider: str = "openai",
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        temperature: float = 0.2,
        timeout: float = 30.0,
        max_retries: int = 2,
    ) -> None:
        provider_key = provider.lower()
        preset = PROVIDERS.get(provider_key)
        if preset is None:
            raise ConfigError(
                f"Unsupported provider '{provider}'. Valid options: {', '.join(sorted(PROVIDERS))}"
            )

        if api_key is None:
            api_key = os.environ.get(preset.api_key_env) or ""

        self._client = AsyncOpenAI(
            base_url=base_url or preset.base_url,
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
        )
        self.provider = provider_key
        self.model = model or preset.default_model
        self.temperature = temperature

    # ------------------------------------------------------------------
    # Chat completions
    # ------------------------------------------------------------------
    async def invoke(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        tools: Sequence[Mapping[str, Any]],
    ) -> ModelReply:
        payload: MutableMapping[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [{"role": "system", "content": system_prompt}]
            + [message.to_payload() for message in messages],
        }
        if tools:
            payload["tools"] = list(tools)

        logger.debug("Dispatching chat request: %s", payload)
        try:
            response = await self._client.chat.completions.create(**payload)
        except OpenAIError as exc:
            raise UpstreamError(f"{self.provider} chat completion failed: {exc}") from exc
        logger.debug("Chat raw response: %s", response)

        if not response.choices:
            raise UpstreamError(f"{self.provider} returned no choices")
        message = response.choices[0].message
        return ModelReply(
            text=getattr(message, "content", "") or "",
            tool_calls=self._parse_tool_calls(getattr(message, "tool_calls", None) or []),
        )

    def info(self) -> Mapping[str, str]:
        return {"provider": self.provider, "model": self.model}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _parse_tool_calls(raw_calls: Sequence[Any]) -> List[ToolCall]:
        calls: List[ToolCall] = []
        for index, raw in enumerate(raw_calls):
            function = raw.function
            arguments = function.arguments or "{}"
            try:
                parsed = json.loads(arguments)
            except json.JSONDecodeError as exc:
                raise ToolArgumentsError(function.name, f"arguments are not valid JSON: {exc}") from exc
            if not isinstance(parsed, dict):
                raise ToolArgumentsError(function.name, "arguments must be a JSON object")
            calls.append(ToolCall(id=raw.id or f"call_{index}", name=function.name, arguments=parsed))
        return calls


def create_llm_client(
    provider: str,
    *,
    model: str | None = None,
    api_key: str | None = None,
    temperature: float = 0.2,
    timeout: float = 30.0,
    max_retries: int = 2,
) -> LLMClient:
    """Build the model capability for the configured provider.

    Called once at startup; the returned client is shared by every owner.
    """

    client = LLMClient(
        provider=provider,
        model=model,
        api_key=api_key,
        temperature=temperature,
        timeout=timeout,
        max_retries=max_retries,
    )
    logger.info("LLM provider: %s (%s)", client.provider, client.model)
    return client


__all__ = ["LLMClient", "ModelCapability", "PROVIDERS", "ProviderPreset", "create_llm_client"]
