"""Typed change feed events.

The transport callbacks convert raw feed messages into these events and put
them on the subscriber's queue. Only the reconciliation loop consumes them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FeedStatus(StrEnum):
    """Channel status reported by the change feed transport."""

    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


class SubscriptionStatus(StrEnum):
    """Subscriber state machine."""

    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    ERRORED = "errored"
    CLOSED = "closed"


class _FeedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    handle_serial: int = Field(..., description="Serial of the handle that delivered the event")


class RecordInserted(_FeedEvent):
    """A row was inserted. ``row`` is the raw new record."""

    row: dict[str, Any] = Field(default_factory=dict)


class RecordDeleted(_FeedEvent):
    """A row was deleted."""

    record_id: str


class StatusChanged(_FeedEvent):
    status: FeedStatus
    detail: str = ""


FeedEvent = RecordInserted | RecordDeleted | StatusChanged
