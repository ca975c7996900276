"""Shared agent data models: tool calls, loop state and run results."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..models import BudgetMetadata


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ToolCallStatus(str, Enum):
    """Outcome of a single tool invocation."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"          # the payload carries an "error" key
    DENIED = "denied"          # budget exhausted or diff too large


class AgentState(str, Enum):
    """Phases of one summarization run."""
    PROMPTING = "prompting"
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOL = "executing_tool"
    DONE = "done"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Tool call model
# ---------------------------------------------------------------------------

class ToolCall(BaseModel):
    """A tool invocation requested by the model, filled in by the gateway."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None


class ToolResult(BaseModel):
    """What the gateway hands back for one invocation."""

    tool_name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status != ToolCallStatus.SUCCESS


# ---------------------------------------------------------------------------
# Run result
# ---------------------------------------------------------------------------

class AgentRunResult(BaseModel):
    """Final summary text plus an audit trail of tool calls."""

    summary: str = ""
    state: AgentState = AgentState.DONE
    turns: int = 0
    tool_calls: list[ToolCall] = Field(default_factory=list)
    budget: Optional[BudgetMetadata] = None

    @property
    def tool_usage(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for tc in self.tool_calls:
            counts[tc.tool_name] = counts.get(tc.tool_name, 0) + 1
        return counts
