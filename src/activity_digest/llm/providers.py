"""Text-generation backends with tool calling.

Each backend exposes two async entry points:

* ``generate_text(prompt)``: one-shot completion, used when the agent is
  disabled.
* ``complete_with_tools(system, messages, tools)``: one model turn of a
  tool-calling conversation, returned as a provider-neutral ``ModelTurn``.

Usage::

    from activity_digest.llm.providers import get_backend

    backend = get_backend(settings.llm)
    turn = await backend.complete_with_tools(system, messages, declarations)

OpenAI, Ollama and Gemini share the OpenAI chat-completions wire format
(Ollama and Gemini through their OpenAI-compatible endpoints); Anthropic
uses its Messages API.  Retries are left to the SDK clients.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Literal, Optional, Union

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from ..config import LLMSettings
from ..exceptions import ConfigurationError

logger = logging.getLogger("activity.llm.providers")

# ── Defaults ──────────────────────────────────────────────────────────────

DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 4096

# Provider → default model
_DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-20250514",
    "gemini": "gemini-2.0-flash",
    "ollama": "llama3.1",
}

_DEFAULT_BASE_URLS: dict[str, str] = {
    "ollama": "http://localhost:11434/v1",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
}


# ══════════════════════════════════════════════════════════════════════════
# Provider-neutral conversation types
# ══════════════════════════════════════════════════════════════════════════


class ToolDeclaration(BaseModel):
    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class ToolRequest(BaseModel):
    """A tool call emitted by the model."""

    id: str
    name: str
    # dict from Anthropic, raw JSON string from OpenAI-style APIs
    arguments: Union[dict[str, Any], str, None] = None

    def arguments_dict(self) -> dict[str, Any]:
        if isinstance(self.arguments, dict):
            return self.arguments
        if isinstance(self.arguments, str) and self.arguments:
            try:
                parsed = json.loads(self.arguments)
            except json.JSONDecodeError:
                return {}
            return parsed if isinstance(parsed, dict) else {}
        return {}

    def arguments_json(self) -> str:
        if isinstance(self.arguments, str):
            return self.arguments
        return json.dumps(self.arguments or {})


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "tool"]
    content: str = ""
    tool_requests: list[ToolRequest] = Field(default_factory=list)
    tool_call_id: Optional[str] = None      # role == "tool"
    name: Optional[str] = None              # tool name, role == "tool"


class ModelTurn(BaseModel):
    """Everything the model emitted in one turn, in order."""

    text: list[str] = Field(default_factory=list)
    tool_requests: list[ToolRequest] = Field(default_factory=list)

    @property
    def joined_text(self) -> str:
        return "".join(self.text)


# ══════════════════════════════════════════════════════════════════════════
# Base class
# ══════════════════════════════════════════════════════════════════════════


class TextBackend(ABC):
    """Abstract base for all text-generation backends."""

    provider = ""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self.api_key = api_key
        self.model = model or _DEFAULT_MODELS.get(self.provider, "")
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens

    @abstractmethod
    async def generate_text(self, prompt: str) -> str:
        """Single user prompt → plain text."""

    @abstractmethod
    async def complete_with_tools(
        self,
        system: str,
        messages: list[ChatMessage],
        tools: list[ToolDeclaration],
    ) -> ModelTurn:
        """One turn of a tool-calling conversation."""

    async def close(self) -> None:
        client = getattr(self, "_client", None)
        if client is not None:
            await client.close()


# ══════════════════════════════════════════════════════════════════════════
# OpenAI (and OpenAI-compatible: Ollama, Gemini)
# ══════════════════════════════════════════════════════════════════════════


class OpenAIBackend(TextBackend):
    """OpenAI chat completions; also used for OpenAI-compatible servers."""

    provider = "openai"

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        if not self.api_key and not self.base_url:
            raise ConfigurationError(
                "No OpenAI API key found. Set llm.api_key or OPENAI_API_KEY."
            )
        ctor_kwargs: dict[str, Any] = {"api_key": self.api_key or "not-needed"}
        if self.base_url:
            ctor_kwargs["base_url"] = self.base_url
        self._client = AsyncOpenAI(**ctor_kwargs)

    async def generate_text(self, prompt: str) -> str:
        resp = await self._client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": prompt}],
        )
        return resp.choices[0].message.content or ""

    async def complete_with_tools(
        self,
        system: str,
        messages: list[ChatMessage],
        tools: list[ToolDeclaration],
    ) -> ModelTurn:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "system", "content": system}]
                        + [self._to_wire(m) for m in messages],
        }
        if tools:
            kwargs["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description,
                        "parameters": t.parameters,
                    },
                }
                for t in tools
            ]
        resp = await self._client.chat.completions.create(**kwargs)

        msg = resp.choices[0].message
        turn = ModelTurn()
        if msg.content:
            turn.text.append(msg.content)
        for tc in msg.tool_calls or []:
            turn.tool_requests.append(ToolRequest(
                id=tc.id, name=tc.function.name, arguments=tc.function.arguments,
            ))
        return turn

    @staticmethod
    def _to_wire(m: ChatMessage) -> dict[str, Any]:
        if m.role == "tool":
            return {"role": "tool", "tool_call_id": m.tool_call_id, "content": m.content}
        if m.role == "assistant" and m.tool_requests:
            return {
                "role": "assistant",
                "content": m.content or None,
                "tool_calls": [
                    {
                        "id": r.id,
                        "type": "function",
                        "function": {"name": r.name, "arguments": r.arguments_json()},
                    }
                    for r in m.tool_requests
                ],
            }
        return {"role": m.role, "content": m.content}


class OllamaBackend(OpenAIBackend):
    """Ollama local inference through its OpenAI-compatible endpoint."""

    provider = "ollama"

    def __init__(self, **kwargs: Any):
        kwargs["base_url"] = kwargs.get("base_url") or _DEFAULT_BASE_URLS["ollama"]
        kwargs["api_key"] = kwargs.get("api_key") or "ollama"  # ignored by Ollama
        super().__init__(**kwargs)


class GeminiBackend(OpenAIBackend):
    """Google Gemini through its OpenAI-compatible endpoint."""

    provider = "gemini"

    def __init__(self, **kwargs: Any):
        if not kwargs.get("api_key"):
            raise ConfigurationError(
                "No Google API key found. Set llm.api_key or GOOGLE_API_KEY."
            )
        kwargs["base_url"] = kwargs.get("base_url") or _DEFAULT_BASE_URLS["gemini"]
        super().__init__(**kwargs)


# ══════════════════════════════════════════════════════════════════════════
# Anthropic (Claude)
# ══════════════════════════════════════════════════════════════════════════


class AnthropicBackend(TextBackend):
    """Anthropic Messages API."""

    provider = "anthropic"

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        if not self.api_key:
            raise ConfigurationError(
                "No Anthropic API key found. Set llm.api_key or ANTHROPIC_API_KEY."
            )
        ctor_kwargs: dict[str, Any] = {"api_key": self.api_key}
        if self.base_url:
            ctor_kwargs["base_url"] = self.base_url
        self._client = AsyncAnthropic(**ctor_kwargs)

    async def generate_text(self, prompt: str) -> str:
        resp = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(b.text for b in resp.content if b.type == "text")

    async def complete_with_tools(
        self,
        system: str,
        messages: list[ChatMessage],
        tools: list[ToolDeclaration],
    ) -> ModelTurn:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": system,
            "messages": self._to_wire(messages),
        }
        if tools:
            kwargs["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]
        resp = await self._client.messages.create(**kwargs)

        turn = ModelTurn()
        for block in resp.content:
            if block.type == "text":
                turn.text.append(block.text)
            elif block.type == "tool_use":
                turn.tool_requests.append(ToolRequest(
                    id=block.id, name=block.name, arguments=block.input,
                ))
        return turn

    @staticmethod
    def _to_wire(messages: list[ChatMessage]) -> list[dict[str, Any]]:
        """Map neutral messages to content blocks.

        Consecutive tool results are grouped into one user message, as the
        API requires every ``tool_use`` to be answered in the next turn.
        """
        wire: list[dict[str, Any]] = []
        for m in messages:
            if m.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": m.tool_call_id,
                    "content": m.content,
                }
                last = wire[-1] if wire else None
                if (last and last["role"] == "user" and isinstance(last["content"], list)
                        and last["content"] and last["content"][0]["type"] == "tool_result"):
                    last["content"].append(block)
                else:
                    wire.append({"role": "user", "content": [block]})
            elif m.role == "assistant":
                blocks: list[dict[str, Any]] = []
                if m.content:
                    blocks.append({"type": "text", "text": m.content})
                for r in m.tool_requests:
                    blocks.append({
                        "type": "tool_use", "id": r.id, "name": r.name,
                        "input": r.arguments_dict(),
                    })
                wire.append({"role": "assistant", "content": blocks})
            else:
                wire.append({"role": "user", "content": m.content})
        return wire


# ══════════════════════════════════════════════════════════════════════════
# Factory
# ══════════════════════════════════════════════════════════════════════════

_BACKENDS: dict[str, type[TextBackend]] = {
    "openai": OpenAIBackend,
    "anthropic": AnthropicBackend,
    "gemini": GeminiBackend,
    "ollama": OllamaBackend,
}


def get_backend(settings: LLMSettings) -> TextBackend:
    """Build the backend named by ``settings.provider``.

    Raises
    ------
    ConfigurationError
        Unknown provider or missing credentials.
    """
    cls = _BACKENDS.get(settings.provider)
    if cls is None:
        raise ConfigurationError(
            f"Unknown LLM provider {settings.provider!r}. "
            f"Available: {', '.join(sorted(_BACKENDS))}"
        )
    backend = cls(
        api_key=settings.resolve_api_key() or None,
        model=settings.model or None,
        base_url=settings.base_url,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )
    logger.info("Using %s backend (model=%s)", settings.provider, backend.model)
    return backend
