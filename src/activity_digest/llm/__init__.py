"""Text-generation backends."""

from .providers import (
    AnthropicBackend,
    ChatMessage,
    GeminiBackend,
    ModelTurn,
    OllamaBackend,
    OpenAIBackend,
    TextBackend,
    ToolDeclaration,
    ToolRequest,
    get_backend,
)

__all__ = [
    "AnthropicBackend",
    "ChatMessage",
    "GeminiBackend",
    "ModelTurn",
    "OllamaBackend",
    "OpenAIBackend",
    "TextBackend",
    "ToolDeclaration",
    "ToolRequest",
    "get_backend",
]
