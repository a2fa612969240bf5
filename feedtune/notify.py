"""User-facing notifications for FeedTune."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Interface for short user-facing messages."""

    def success(self, message: str) -> None:
        raise NotImplementedError

    def error(self, message: str) -> None:
        raise NotImplementedError


class LoggingNotifier:
    """Notifier that writes messages to the log."""

    def __init__(self):
        self.messages: list[tuple[str, str]] = []

    def success(self, message: str) -> None:
        self.messages.append(("success", message))
        logger.info(message)

    def error(self, message: str) -> None:
        self.messages.append(("error", message))
        logger.error(message)
