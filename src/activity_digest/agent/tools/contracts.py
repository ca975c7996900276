"""Tool contract definitions and registry.

Each tool the model may call is described by a ``ToolContract`` with its
name, description and parameter schema.  ``TOOL_REGISTRY`` maps tool
names → contracts so the gateway can reject malformed calls before they
reach an adapter, and so providers can advertise the tools.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from ...git.repository import SHA_PATTERN


class ToolName(str, Enum):
    """The closed set of tools available to the summarizer."""
    COMMIT_DIFF = "get_commit_diff"
    COMMIT_DIFF_FULL = "get_commit_diff_full"
    FULL_COMMIT_MESSAGE = "get_full_commit_message"
    AUTHOR_STATS = "get_author_stats"


_PY_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list,),
}


# ---------------------------------------------------------------------------
# Parameter & contract models
# ---------------------------------------------------------------------------

class ToolParameter(BaseModel):
    """Schema for a single parameter of a tool."""
    name: str
    type: str = "string"            # JSON-schema type name
    description: str = ""
    required: bool = True
    pattern: str | None = None      # full-match regex for string values


class ToolContract(BaseModel):
    """JSON-schema-style contract for one tool."""
    name: str
    description: str = ""
    parameters: list[ToolParameter] = Field(default_factory=list)
    budgeted: bool = False          # charges the diff budget

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """Return a list of validation errors (empty = valid)."""
        errors: list[str] = []
        for p in self.parameters:
            if p.name not in params:
                if p.required:
                    errors.append(f"{p.name} is required")
                continue
            expected = _PY_TYPES.get(p.type)
            value = params[p.name]
            # bool is an int subclass; never accept it for numbers
            if expected and (not isinstance(value, expected) or
                             (isinstance(value, bool) and bool not in expected)):
                errors.append(f"{p.name} must be a {p.type}")
            elif p.pattern and isinstance(value, str) and not re.fullmatch(p.pattern, value):
                errors.append(f"{p.name} has an invalid format")
        return errors

    def to_schema(self) -> dict[str, Any]:
        """JSON schema of the parameters object."""
        return {
            "type": "object",
            "properties": {
                p.name: _property_schema(p) for p in self.parameters
            },
            "required": [p.name for p in self.parameters if p.required],
        }


def _property_schema(param: ToolParameter) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": param.type, "description": param.description}
    if param.pattern:
        schema["pattern"] = f"^{param.pattern}$"
    return schema


# ---------------------------------------------------------------------------
# Tool registry
# ---------------------------------------------------------------------------

TOOL_REGISTRY: dict[str, ToolContract] = {}


def register_tool(contract: ToolContract) -> ToolContract:
    """Register a tool contract in the global registry."""
    TOOL_REGISTRY[contract.name] = contract
    return contract


_SHA = ToolParameter(
    name="commit_sha", description="The commit SHA (full or abbreviated)",
    pattern=SHA_PATTERN,
)
_REASON = ToolParameter(
    name="reason", description="Why this diff is needed to understand the change",
)

COMMIT_DIFF = register_tool(ToolContract(
    name=ToolName.COMMIT_DIFF.value,
    description=(
        "Get the diff for a commit with vendored directories and lock files "
        "filtered out. Use only when the commit message is unclear. "
        "Limited number of calls per analysis."
    ),
    parameters=[_SHA, _REASON],
    budgeted=True,
))

COMMIT_DIFF_FULL = register_tool(ToolContract(
    name=ToolName.COMMIT_DIFF_FULL.value,
    description=(
        "Get the complete, unfiltered diff for a commit, including vendored "
        "code and lock files. Counts against the same diff limit."
    ),
    parameters=[_SHA, _REASON],
    budgeted=True,
))

FULL_COMMIT_MESSAGE = register_tool(ToolContract(
    name=ToolName.FULL_COMMIT_MESSAGE.value,
    description="Get the complete commit message when the summary shown was truncated.",
    parameters=[_SHA],
))

AUTHOR_STATS = register_tool(ToolContract(
    name=ToolName.AUTHOR_STATS.value,
    description="Get commit count and first/last commit dates for an author.",
    parameters=[ToolParameter(name="author_name", description="Exact author name")],
))
