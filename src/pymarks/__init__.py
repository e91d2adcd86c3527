"""pymarks - Async Python client for live-synced personal bookmarks."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pymarks")
except PackageNotFoundError:
    __version__ = "0+local"
from pymarks._client.feed import ChangeFeedSubscriber
from pymarks.client import BookmarkClient
from pymarks.config import MarksConfig
from pymarks.exceptions import (
    FeedConnectionError,
    FetchError,
    MarksConfigError,
    MarksError,
    MarksTransportError,
    MutationError,
    ScopeMismatchError,
)
from pymarks.models import Bookmark, BookmarkDraft
from pymarks.notify import LoggingNotifier, Notifier, Severity
from pymarks.session import Session, SessionHolder, SessionProvider
from pymarks.state.events import FeedStatus, SubscriptionStatus
from pymarks.state.store import RecordStore

__all__ = [
    "__version__",
    "Bookmark",
    "BookmarkClient",
    "BookmarkDraft",
    "ChangeFeedSubscriber",
    "FeedConnectionError",
    "FeedStatus",
    "FetchError",
    "LoggingNotifier",
    "MarksConfig",
    "MarksConfigError",
    "MarksError",
    "MarksTransportError",
    "MutationError",
    "Notifier",
    "RecordStore",
    "ScopeMismatchError",
    "Session",
    "SessionHolder",
    "SessionProvider",
    "Severity",
    "SubscriptionStatus",
]
