"""Spend accounting for diff fetches during one agent run."""

from __future__ import annotations

import logging

from ..models import BudgetMetadata, DiffFetchRecord

logger = logging.getLogger("activity.agent.budget")

DEFAULT_MAX_DIFF_FETCHES = 5
DEFAULT_MAX_DIFF_BYTES = 10 * 1024
DEFAULT_MAX_TOKENS = 100_000

# Rough heuristic: one token per four bytes of diff text.
BYTES_PER_TOKEN = 4


class BudgetTracker:
    """Counts diff fetches, bytes and estimated tokens against hard limits.

    Counters only ever grow.  ``record_fetch`` trusts its caller to have
    checked ``can_fetch_more`` first; ``try_record_fetch`` does both in one
    step and is what the tool gateway uses.
    """

    def __init__(
        self,
        max_fetches: int = DEFAULT_MAX_DIFF_FETCHES,
        max_bytes_per_fetch: int = DEFAULT_MAX_DIFF_BYTES,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self.max_fetches = max_fetches
        self._max_bytes_per_fetch = max_bytes_per_fetch
        self.max_tokens = max_tokens

        self._fetch_count = 0
        self._total_bytes = 0
        self._estimated_tokens = 0
        self._fetch_log: list[DiffFetchRecord] = []

    # -- Queries ------------------------------------------------------------

    def can_fetch_more(self) -> tuple[bool, str]:
        """Return ``(allowed, reason)``; ``reason`` is empty when allowed."""
        if self._fetch_count >= self.max_fetches:
            return False, f"reached maximum diff fetches ({self.max_fetches})"
        if self._estimated_tokens >= self.max_tokens:
            return False, f"reached maximum estimated tokens ({self.max_tokens})"
        return True, ""

    @property
    def fetch_count(self) -> int:
        return self._fetch_count

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    @property
    def estimated_tokens(self) -> int:
        return self._estimated_tokens

    @property
    def max_bytes_per_fetch(self) -> int:
        return self._max_bytes_per_fetch

    # -- Mutations ----------------------------------------------------------

    def record_fetch(self, sha: str, size_bytes: int, reason: str) -> None:
        """Charge one fetch of ``size_bytes`` (no limit check)."""
        self._fetch_count += 1
        self._total_bytes += size_bytes
        self._estimated_tokens += size_bytes // BYTES_PER_TOKEN
        self._fetch_log.append(
            DiffFetchRecord(sha=sha, size_bytes=size_bytes, reason=reason)
        )
        logger.debug(
            "Diff fetch %d/%d: %s (%d bytes, ~%d tokens total)",
            self._fetch_count, self.max_fetches, sha[:8], size_bytes,
            self._estimated_tokens,
        )

    def try_record_fetch(self, sha: str, size_bytes: int, reason: str) -> tuple[bool, str]:
        """Check the limits and charge the fetch only if allowed."""
        allowed, why = self.can_fetch_more()
        if allowed:
            self.record_fetch(sha, size_bytes, reason)
        return allowed, why

    def snapshot(self) -> BudgetMetadata:
        return BudgetMetadata(
            fetch_count=self._fetch_count,
            total_bytes=self._total_bytes,
            estimated_tokens=self._estimated_tokens,
            fetch_log=[r.model_copy() for r in self._fetch_log],
        )
