"""Progress sinks."""

from __future__ import annotations

import logging

from forgeflow.core.models import ProgressUpdate
from forgeflow.logging import get_logger


class LoggingProgressSink:
    """Forwards progress updates to the ``forgeflow.progress`` logger."""

    def __init__(self, session_id: str | None = None, level: int = logging.INFO):
        self._logger = get_logger("forgeflow.progress")
        self._session_id = session_id
        self._level = level
        self.updates: list[ProgressUpdate] = []

    def report(self, update: ProgressUpdate) -> None:
        self.updates.append(update)
        self._logger.log(self._level, update.message, extra={"session_id": self._session_id})
