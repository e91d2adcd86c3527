"""User-facing notification sink."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Protocol

_logger = logging.getLogger(__name__)


class Severity(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class Notifier(Protocol):
    """Receives toast-style messages for the user."""

    def notify(self, message: str, severity: Severity) -> None: ...


class LoggingNotifier:
    """Default sink that writes notifications to the ``pymarks.notify`` logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger

    def notify(self, message: str, severity: Severity) -> None:
        level = logging.WARNING if severity == Severity.ERROR else logging.INFO
        self._logger.log(level, "[%s] %s", severity.value, message)
