"""Tests for row parsing with MarksBaseModel + MarksTimestamp."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from pymarks.models import Bookmark, BookmarkDraft
from pymarks.models._base import parse_marks_timestamp
from pymarks.models.bookmark import INVALID_URL_MESSAGE, is_web_url
from pymarks.session import Session

# ------------------------------------------------------------------
# Timestamps
# ------------------------------------------------------------------


class TestTimestamps:
    def test_iso_with_offset(self) -> None:
        parsed = parse_marks_timestamp("2026-01-01T12:00:00+00:00")
        assert parsed == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def test_iso_with_z_suffix(self) -> None:
        parsed = parse_marks_timestamp("2026-01-01T12:00:00.123456Z")
        assert parsed.tzinfo is not None
        assert parsed.microsecond == 123456

    def test_naive_is_utc(self) -> None:
        parsed = parse_marks_timestamp("2026-01-01 12:00:00")
        assert parsed == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def test_epoch_seconds_and_millis_agree(self) -> None:
        assert parse_marks_timestamp(1767268800) == parse_marks_timestamp(1767268800000)

    def test_unparseable_is_passed_through(self) -> None:
        assert parse_marks_timestamp("yesterday") == "yesterday"
        assert parse_marks_timestamp(True) is True


# ------------------------------------------------------------------
# Bookmark
# ------------------------------------------------------------------


class TestBookmark:
    def _row(self, **overrides: object) -> dict[str, object]:
        row: dict[str, object] = {
            "id": "b1",
            "user_id": "user-1",
            "title": " Python ",
            "url": "https://www.python.org/downloads/",
            "created_at": "2026-01-01T12:00:00+00:00",
            "description": "extra column",
        }
        row.update(overrides)
        return row

    def test_parses_wire_row(self) -> None:
        bookmark = Bookmark.model_validate(self._row())
        assert bookmark.id == "b1"
        assert bookmark.owner_id == "user-1"
        assert bookmark.title == "Python"
        assert bookmark.created_at == datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
        assert bookmark.hostname == "python.org"

    def test_accepts_field_names(self) -> None:
        bookmark = Bookmark(
            id="b1",
            owner_id="user-1",
            title="T",
            url="http://example.com",
            created_at=datetime(2026, 1, 1, tzinfo=UTC),
        )
        assert bookmark.owner_id == "user-1"

    def test_integer_id_is_string(self) -> None:
        assert Bookmark.model_validate(self._row(id=17)).id == "17"

    def test_is_frozen(self) -> None:
        bookmark = Bookmark.model_validate(self._row())
        with pytest.raises(ValidationError):
            bookmark.title = "changed"  # type: ignore[misc]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"url": "javascript:alert(1)"},
            {"url": "example.com"},
            {"title": "   "},
            {"created_at": "not a date"},
            {"user_id": None},
        ],
    )
    def test_rejects_invalid_rows(self, overrides: dict[str, object]) -> None:
        with pytest.raises(ValidationError):
            Bookmark.model_validate(self._row(**overrides))


# ------------------------------------------------------------------
# BookmarkDraft
# ------------------------------------------------------------------


class TestBookmarkDraft:
    def test_to_row_trims_and_scopes(self) -> None:
        draft = BookmarkDraft(title="  Docs ", url=" https://docs.python.org ")
        assert draft.to_row("user-1") == {
            "user_id": "user-1",
            "title": "Docs",
            "url": "https://docs.python.org",
        }

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("https://example.com", True),
            ("HTTP://EXAMPLE.COM/path?q=1", True),
            ("ftp://example.com", False),
            ("https://", False),
            ("mailto:someone@example.com", False),
            ("http://[::1", False),
        ],
    )
    def test_is_web_url(self, value: str, expected: bool) -> None:
        assert is_web_url(value) is expected

    def test_invalid_url_message(self) -> None:
        with pytest.raises(ValidationError) as excinfo:
            BookmarkDraft(title="x", url="www.example.com")
        assert INVALID_URL_MESSAGE in str(excinfo.value)


# ------------------------------------------------------------------
# Session
# ------------------------------------------------------------------


def test_session_is_frozen_and_strict() -> None:
    session = Session(user_id=" user-1 ", access_token="t")
    assert session.user_id == "user-1"
    with pytest.raises(ValidationError):
        session.access_token = "other"  # type: ignore[misc]
    with pytest.raises(ValidationError):
        Session(user_id="user-1", access_token="t", ttl=60)  # type: ignore[call-arg]


def test_session_requires_user() -> None:
    with pytest.raises(ValidationError):
        Session(user_id=" ", access_token="t")
