"""Error taxonomy shared by every layer.

Budget exhaustion has no exception class: it is reported to the model as a
tool payload, never raised.
"""

from __future__ import annotations


class ActivityError(Exception):
    """Base class for all activity-digest errors."""


class ConfigurationError(ActivityError):
    """Missing or invalid configuration (credentials, provider, paths)."""


class WeekFormatError(ActivityError, ValueError):
    """A week label did not match ``YYYY-Www`` or the week is out of range."""


class GitCommandError(ActivityError):
    """A git subprocess exited non-zero or could not be started."""

    def __init__(self, args: list[str], stderr: str = "", returncode: int | None = None):
        self.command = args
        self.stderr = stderr.strip()
        self.returncode = returncode
        cmd = " ".join(args)
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"git command failed ({cmd}){detail}")


class RangeResolutionError(ActivityError):
    """Commits for a range or week could not be enumerated."""


class ToolExecutionError(ActivityError):
    """A tool adapter could not reach its collaborator."""


class AgentExecutionError(ActivityError):
    """The model or its transport failed; the run is abandoned."""


class ReportPersistenceError(ActivityError):
    """A read or write against the report store failed."""


class RepositoryNotFoundError(ActivityError):
    """No repository with the requested name is registered."""
