"""Version-control access: the git collaborator and the commit range resolver."""

from .repository import EXCLUDED_PATHSPECS, GitRepository, run_in_thread
from .resolver import CommitRangeResolver

__all__ = ["CommitRangeResolver", "EXCLUDED_PATHSPECS", "GitRepository", "run_in_thread"]
