"""Reconnect policy.

Linear backoff with a hard attempt ceiling. No jitter and no cap other than
the ceiling.
"""

from __future__ import annotations

from pymarks.state.events import FeedStatus


def backoff_delay(attempt: int, *, step_seconds: float) -> float:
    """Seconds to wait before retry number *attempt* (1-based)."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return attempt * step_seconds


def should_retry(attempt: int, *, max_retries: int) -> bool:
    """Whether retry number *attempt* is still allowed."""
    return attempt <= max_retries


def is_connection_failure(status: FeedStatus) -> bool:
    return status in (FeedStatus.CHANNEL_ERROR, FeedStatus.TIMED_OUT, FeedStatus.CLOSED)
