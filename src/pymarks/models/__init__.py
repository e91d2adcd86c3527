"""Data models for backing-store rows."""

from pymarks.models._base import MarksBaseModel, MarksTimestamp, parse_marks_timestamp
from pymarks.models.bookmark import INVALID_URL_MESSAGE, Bookmark, BookmarkDraft, is_web_url

__all__ = [
    "INVALID_URL_MESSAGE",
    "Bookmark",
    "BookmarkDraft",
    "MarksBaseModel",
    "MarksTimestamp",
    "is_web_url",
    "parse_marks_timestamp",
]
