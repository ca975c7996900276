"""Tests for the text backends (mocked OpenAI / Anthropic clients)."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from activity_digest.config import LLMSettings
from activity_digest.exceptions import ConfigurationError
from activity_digest.llm.providers import (
    AnthropicBackend,
    ChatMessage,
    GeminiBackend,
    OllamaBackend,
    OpenAIBackend,
    ToolDeclaration,
    ToolRequest,
    get_backend,
)


# ---- Fixtures ----

@pytest.fixture
def declarations() -> list[ToolDeclaration]:
    return [ToolDeclaration(
        name="get_author_stats",
        description="stats",
        parameters={"type": "object", "properties": {"author_name": {"type": "string"}},
                    "required": ["author_name"]},
    )]


@pytest.fixture
def conversation() -> list[ChatMessage]:
    return [
        ChatMessage(role="user", content="Summarize"),
        ChatMessage(role="assistant", content="Checking.", tool_requests=[
            ToolRequest(id="t1", name="get_author_stats", arguments={"author_name": "Ann"}),
            ToolRequest(id="t2", name="get_author_stats", arguments='{"author_name": "Bo"}'),
        ]),
        ChatMessage(role="tool", tool_call_id="t1", name="get_author_stats", content='{"total_commits": 3}'),
        ChatMessage(role="tool", tool_call_id="t2", name="get_author_stats", content='{"total_commits": 0}'),
    ]


def _openai_response(content, tool_calls=None):
    msg = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=msg)])


def _openai_tool_call(call_id, name, arguments):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


@pytest.fixture
def mock_openai():
    with patch("activity_digest.llm.providers.AsyncOpenAI") as cls:
        client = MagicMock()
        client.chat.completions.create = AsyncMock()
        client.close = AsyncMock()
        cls.return_value = client
        yield cls, client


@pytest.fixture
def mock_anthropic():
    with patch("activity_digest.llm.providers.AsyncAnthropic") as cls:
        client = MagicMock()
        client.messages.create = AsyncMock()
        cls.return_value = client
        yield cls, client


# ---- OpenAI-style ----

class TestOpenAIBackend:

    def test_requires_key(self, mock_openai):
        with pytest.raises(ConfigurationError):
            OpenAIBackend()

    def test_default_model(self, mock_openai):
        assert OpenAIBackend(api_key="sk-test").model == "gpt-4o-mini"

    @pytest.mark.asyncio
    async def test_generate_text(self, mock_openai):
        _, client = mock_openai
        client.chat.completions.create.return_value = _openai_response("A summary.")
        backend = OpenAIBackend(api_key="sk-test", model="gpt-4o")
        assert await backend.generate_text("hi") == "A summary."
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_tool_turn(self, mock_openai, declarations, conversation):
        _, client = mock_openai
        client.chat.completions.create.return_value = _openai_response(
            "Let me look.",
            [_openai_tool_call("c9", "get_commit_diff", '{"commit_sha": "abc", "reason": "vague"}')],
        )
        turn = await OpenAIBackend(api_key="sk-test").complete_with_tools("sys", conversation, declarations)

        assert turn.text == ["Let me look."]
        assert turn.tool_requests[0].id == "c9"
        assert turn.tool_requests[0].arguments_dict() == {"commit_sha": "abc", "reason": "vague"}

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["tools"][0] == {
            "type": "function",
            "function": {
                "name": "get_author_stats",
                "description": "stats",
                "parameters": declarations[0].parameters,
            },
        }
        wire = kwargs["messages"]
        assert wire[0] == {"role": "system", "content": "sys"}
        assert wire[1] == {"role": "user", "content": "Summarize"}
        assert wire[2]["role"] == "assistant"
        assert [tc["id"] for tc in wire[2]["tool_calls"]] == ["t1", "t2"]
        assert json.loads(wire[2]["tool_calls"][0]["function"]["arguments"]) == {"author_name": "Ann"}
        assert wire[2]["tool_calls"][1]["function"]["arguments"] == '{"author_name": "Bo"}'
        assert wire[3] == {"role": "tool", "tool_call_id": "t1", "content": '{"total_commits": 3}'}

    @pytest.mark.asyncio
    async def test_text_only_turn(self, mock_openai):
        _, client = mock_openai
        client.chat.completions.create.return_value = _openai_response("Done.")
        turn = await OpenAIBackend(api_key="sk-test").complete_with_tools(
            "sys", [ChatMessage(role="user", content="x")], [],
        )
        assert turn.joined_text == "Done."
        assert turn.tool_requests == []
        assert "tools" not in client.chat.completions.create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_close(self, mock_openai):
        _, client = mock_openai
        await OpenAIBackend(api_key="sk-test").close()
        client.close.assert_awaited_once()

    def test_ollama_needs_no_key(self, mock_openai):
        cls, _ = mock_openai
        backend = OllamaBackend()
        assert backend.model == "llama3.1"
        assert cls.call_args.kwargs["base_url"] == "http://localhost:11434/v1"

    def test_gemini_requires_key(self, mock_openai):
        with pytest.raises(ConfigurationError):
            GeminiBackend()

    def test_gemini_uses_compatible_endpoint(self, mock_openai):
        cls, _ = mock_openai
        backend = GeminiBackend(api_key="g-key")
        assert backend.model == "gemini-2.0-flash"
        assert "generativelanguage.googleapis.com" in cls.call_args.kwargs["base_url"]


# ---- Anthropic ----

class TestAnthropicBackend:

    def test_requires_key(self, mock_anthropic):
        with pytest.raises(ConfigurationError):
            AnthropicBackend()

    @pytest.mark.asyncio
    async def test_generate_text_joins_text_blocks(self, mock_anthropic):
        _, client = mock_anthropic
        client.messages.create.return_value = SimpleNamespace(content=[
            SimpleNamespace(type="text", text="Part one. "),
            SimpleNamespace(type="text", text="Part two."),
        ])
        backend = AnthropicBackend(api_key="sk-ant")
        assert await backend.generate_text("hi") == "Part one. Part two."

    @pytest.mark.asyncio
    async def test_tool_turn(self, mock_anthropic, declarations, conversation):
        _, client = mock_anthropic
        client.messages.create.return_value = SimpleNamespace(content=[
            SimpleNamespace(type="text", text="Need a diff."),
            SimpleNamespace(type="tool_use", id="tu_1", name="get_commit_diff",
                            input={"commit_sha": "abc", "reason": "vague"}),
        ])
        turn = await AnthropicBackend(api_key="sk-ant").complete_with_tools(
            "sys", conversation, declarations,
        )
        assert turn.text == ["Need a diff."]
        assert turn.tool_requests[0].name == "get_commit_diff"
        assert turn.tool_requests[0].arguments == {"commit_sha": "abc", "reason": "vague"}

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["tools"][0]["input_schema"] == declarations[0].parameters
        wire = kwargs["messages"]
        assert [m["role"] for m in wire] == ["user", "assistant", "user"]
        assert wire[1]["content"][0] == {"type": "text", "text": "Checking."}
        assert wire[1]["content"][2]["input"] == {"author_name": "Bo"}
        # both tool results travel in a single user message
        assert [b["tool_use_id"] for b in wire[2]["content"]] == ["t1", "t2"]


# ---- Factory ----

class TestGetBackend:

    def test_openai_from_settings(self, mock_openai):
        backend = get_backend(LLMSettings(provider="openai", api_key="sk-test", model="gpt-4o"))
        assert isinstance(backend, OpenAIBackend)
        assert backend.model == "gpt-4o"

    def test_key_from_environment(self, mock_anthropic, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
        backend = get_backend(LLMSettings(provider="anthropic"))
        assert isinstance(backend, AnthropicBackend)
        assert backend.api_key == "from-env"

    def test_missing_key(self, mock_anthropic, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
            get_backend(LLMSettings(provider="anthropic"))

    def test_ollama_without_key(self, mock_openai):
        assert isinstance(get_backend(LLMSettings(provider="ollama")), OllamaBackend)

    def test_unknown_provider(self):
        settings = LLMSettings.model_construct(provider="watson")
        with pytest.raises(ConfigurationError, match="Unknown LLM provider"):
            get_backend(settings)
