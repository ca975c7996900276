"""activity-digest: budgeted, agent-driven summaries of git activity.

The engine resolves which commits belong to a range or an ISO week, lets a
tool-calling model pull extra context (diffs, full messages, author stats)
under a hard spend budget, and persists one report per repository and week.
"""

__version__ = "0.1.0"
