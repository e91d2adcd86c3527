"""Custom exception hierarchy for pymarks."""

from __future__ import annotations


class MarksError(Exception):
    """Base exception for all pymarks errors."""


class MarksConfigError(MarksError):
    """Invalid or missing configuration."""


class MarksTransportError(MarksError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class FetchError(MarksError):
    """Loading the bookmark snapshot failed.

    The record store is left empty. There is no automatic retry; the user
    triggers a re-fetch through :meth:`pymarks.client.BookmarkClient.refresh`.
    """

    def __init__(self, message: str, *, owner_id: str | None = None) -> None:
        self.owner_id = owner_id
        super().__init__(message)


class FeedConnectionError(MarksError):
    """The live change feed dropped or failed to connect.

    Retried with linear backoff up to ``MarksConfig.max_retries`` times.
    """

    def __init__(self, message: str, *, attempt: int = 0, handle: str = "") -> None:
        self.attempt = attempt
        self.handle = handle
        super().__init__(message)


class ScopeMismatchError(MarksError):
    """An insert event belongs to another owner and was discarded.

    Never surfaced to the user.
    """

    def __init__(self, *, expected: str, received: str) -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"Insert event for owner {received!r} discarded by subscription for {expected!r}")


class MutationError(MarksError):
    """A one-shot insert or delete against the backing store failed."""

    def __init__(self, message: str, *, operation: str = "") -> None:
        self.operation = operation
        super().__init__(message)
