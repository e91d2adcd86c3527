"""Bookmark models."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit

from pydantic import AliasChoices, Field, field_validator

from pymarks.models._base import MarksBaseModel, MarksTimestamp

_ALLOWED_SCHEMES = frozenset({"http", "https"})

INVALID_URL_MESSAGE = "Please enter a valid URL (must start with http:// or https://)"


def is_web_url(value: str) -> bool:
    """Return ``True`` for absolute ``http``/``https`` URLs with a host."""
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme.lower() in _ALLOWED_SCHEMES and bool(parts.netloc)


class Bookmark(MarksBaseModel):
    """A bookmark row owned by one user.

    Fields are mapped from the ``bookmarks`` table columns.
    """

    id: str = Field(..., validation_alias=AliasChoices("id", "record_id"))
    """Identifier assigned by the backing store at creation."""
    owner_id: str = Field(..., validation_alias=AliasChoices("user_id", "owner_id"))
    """Owner identity; never changes."""
    title: str = Field(..., min_length=1)
    """Display title."""
    url: str
    """Absolute ``http``/``https`` URL."""
    created_at: MarksTimestamp
    """Creation time; the list sort key."""

    @field_validator("id", "owner_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        # Integer primary keys are kept opaque.
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not is_web_url(value):
            raise ValueError(INVALID_URL_MESSAGE)
        return value

    @property
    def hostname(self) -> str:
        """Host part of the URL without a leading ``www.``."""
        host = urlsplit(self.url).hostname or self.url
        return host.removeprefix("www.")


class BookmarkDraft(MarksBaseModel):
    """Validated input for creating a bookmark."""

    title: str
    url: str

    @field_validator("title")
    @classmethod
    def _require_title(cls, value: str) -> str:
        if not value:
            raise ValueError("Title is required")
        return value

    @field_validator("url")
    @classmethod
    def _require_url(cls, value: str) -> str:
        if not value:
            raise ValueError("URL is required")
        if not is_web_url(value):
            raise ValueError(INVALID_URL_MESSAGE)
        return value

    def to_row(self, owner_id: str) -> dict[str, str]:
        """Row payload for the backing store insert."""
        return {"user_id": owner_id, "title": self.title, "url": self.url}
