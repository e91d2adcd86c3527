"""One-shot create/delete intents for :class:`pymarks.client.BookmarkClient`.

Each call makes a single attempt against the backing store and reports the
outcome to the notification sink. The record store is never touched here:
the resulting insert or delete comes back through the change feed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from pymarks.exceptions import MarksTransportError, MutationError
from pymarks.models.bookmark import BookmarkDraft
from pymarks.notify import Severity

if TYPE_CHECKING:
    from pymarks.client import BookmarkClient

_logger = logging.getLogger(__name__)

ADDED_MESSAGE = "Bookmark added successfully!"
DELETED_MESSAGE = "Bookmark deleted"
DELETE_FAILED_MESSAGE = "Failed to delete bookmark"
NOT_AUTHENTICATED_MESSAGE = "User not authenticated"
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred"


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    message = str(errors[0].get("msg", exc))
    return message.removeprefix("Value error, ")


async def add_bookmark(client: BookmarkClient, *, title: str, url: str) -> None:
    """Validate and insert a bookmark owned by the current identity.

    Raises
    ------
    MutationError
        Validation failed, nobody is signed in, or the insert was rejected.
        The sink has already been notified.
    """
    notifier = client._notifier
    try:
        draft = BookmarkDraft(title=title, url=url)
    except ValidationError as exc:
        message = _first_error(exc)
        notifier.notify(message, Severity.ERROR)
        raise MutationError(message, operation="insert") from exc

    owner_id = client.identity
    if owner_id is None:
        notifier.notify(NOT_AUTHENTICATED_MESSAGE, Severity.ERROR)
        raise MutationError(NOT_AUTHENTICATED_MESSAGE, operation="insert")

    backend = client._require_backend()
    try:
        await backend.insert_record(draft.to_row(owner_id))
    except MarksTransportError as exc:
        _logger.debug("Bookmark insert failed", exc_info=True)
        notifier.notify(str(exc), Severity.ERROR)
        raise MutationError(str(exc), operation="insert") from exc
    except Exception as exc:
        _logger.warning("Unexpected error inserting bookmark", exc_info=True)
        notifier.notify(UNEXPECTED_ERROR_MESSAGE, Severity.ERROR)
        raise MutationError(UNEXPECTED_ERROR_MESSAGE, operation="insert") from exc

    notifier.notify(ADDED_MESSAGE, Severity.SUCCESS)


async def delete_bookmark(client: BookmarkClient, *, record_id: str) -> None:
    """Delete a bookmark by id.

    Raises
    ------
    MutationError
        The delete was rejected. The sink has already been notified.
    """
    notifier = client._notifier
    if client.identity is None:
        notifier.notify(NOT_AUTHENTICATED_MESSAGE, Severity.ERROR)
        raise MutationError(NOT_AUTHENTICATED_MESSAGE, operation="delete")

    backend = client._require_backend()
    try:
        await backend.delete_record(record_id)
    except MarksTransportError as exc:
        _logger.debug("Bookmark delete failed id=%s", record_id, exc_info=True)
        notifier.notify(DELETE_FAILED_MESSAGE, Severity.ERROR)
        raise MutationError(DELETE_FAILED_MESSAGE, operation="delete") from exc
    except Exception as exc:
        _logger.warning("Unexpected error deleting bookmark id=%s", record_id, exc_info=True)
        notifier.notify(UNEXPECTED_ERROR_MESSAGE, Severity.ERROR)
        raise MutationError(UNEXPECTED_ERROR_MESSAGE, operation="delete") from exc

    notifier.notify(DELETED_MESSAGE, Severity.INFO)
