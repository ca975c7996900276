"""Uniform entry point between the model's tool requests and the adapters.

``ToolGateway.invoke`` never raises for anything the model can get wrong:
unknown tools, unparsable or mistyped arguments and collaborator failures
all come back as payloads with an ``error`` key so the loop can carry on.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from ...exceptions import ToolExecutionError
from ...git.repository import GitRepository
from ..base import ToolCall, ToolCallStatus, ToolResult
from ..budget import BudgetTracker
from .adapters import (
    DENIED_MARKER,
    AuthorStatsTool,
    CommitDiffFullTool,
    CommitDiffTool,
    FullCommitMessageTool,
)
from .contracts import TOOL_REGISTRY, ToolContract, ToolName

logger = logging.getLogger("activity.agent.tools")

_ADAPTER_TYPES: dict[str, type] = {
    ToolName.COMMIT_DIFF.value: CommitDiffTool,
    ToolName.COMMIT_DIFF_FULL.value: CommitDiffFullTool,
    ToolName.FULL_COMMIT_MESSAGE.value: FullCommitMessageTool,
    ToolName.AUTHOR_STATS.value: AuthorStatsTool,
}

# Parameters echoed back in error payloads so the model can correlate them.
_CONTEXT_KEYS = ("commit_sha", "author_name")


class ToolGateway:
    """Validates and dispatches tool calls for one agent run."""

    def __init__(self, git: GitRepository, budget: BudgetTracker) -> None:
        self.budget = budget
        self._adapters: dict[str, Any] = {
            name: cls(git, budget) if TOOL_REGISTRY[name].budgeted else cls(git)
            for name, cls in _ADAPTER_TYPES.items()
        }

    @property
    def contracts(self) -> list[ToolContract]:
        return [TOOL_REGISTRY[name] for name in self._adapters]

    def register_adapter(self, tool_name: str, adapter: Any) -> None:
        """Replace the adapter for a registered tool."""
        if tool_name not in TOOL_REGISTRY:
            raise KeyError(f"No contract registered for tool: {tool_name}")
        self._adapters[tool_name] = adapter

    async def invoke(self, name: str, arguments: Any) -> ToolResult:
        """Run one tool call and return its payload."""
        call = ToolCall(tool_name=name)
        await self.dispatch(call, arguments)
        payload = call.result if call.result is not None else {"error": call.error}
        return ToolResult(tool_name=name, payload=payload, status=call.status)

    async def dispatch(self, call: ToolCall, arguments: Any) -> None:
        """Fill in ``call.status``/``call.result`` for a model tool request."""

        # 1. Decode arguments
        params, problem = _decode_arguments(arguments)
        if problem:
            self._fail(call, problem)
            return
        call.parameters = params

        # 2. Validate against contract
        contract = TOOL_REGISTRY.get(call.tool_name)
        adapter = self._adapters.get(call.tool_name)
        if contract is None or adapter is None:
            self._fail(call, f"unknown tool: {call.tool_name}")
            return
        errors = contract.validate_params(params)
        if errors:
            self._fail(call, "; ".join(errors))
            return

        # 3. Execute
        try:
            result = await adapter.execute(params)
        except ToolExecutionError as exc:
            context = {k: params[k] for k in _CONTEXT_KEYS if k in params}
            self._fail(call, str(exc), context)
            return

        if result.pop(DENIED_MARKER, False):
            call.status = ToolCallStatus.DENIED
            call.error = result.get("error")
        elif "error" in result:
            call.status = ToolCallStatus.FAILED
            call.error = result["error"]
        else:
            call.status = ToolCallStatus.SUCCESS
        call.result = result

    @staticmethod
    def _fail(call: ToolCall, message: str, context: dict[str, Any] | None = None) -> None:
        logger.debug("tool %s failed: %s", call.tool_name, message)
        call.status = ToolCallStatus.FAILED
        call.error = message
        call.result = {"error": message, **(context or {})}


def _decode_arguments(arguments: Any) -> tuple[dict[str, Any], str]:
    """Accept a dict or a JSON object string; return ``(params, error)``."""
    if arguments is None:
        return {}, ""
    if isinstance(arguments, (str, bytes)):
        try:
            arguments = json.loads(arguments) if arguments else {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {}, "invalid arguments format"
    if not isinstance(arguments, dict):
        return {}, "invalid arguments type"
    return arguments, ""
