from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from oacoder.constants import LOGGER

AUTH_STATUS_CHANGED = "auth-status-changed"
AUTH_SUCCESS = "auth-success"
AUTH_ERROR = "auth-error"
AUTH_SIGNED_OUT = "auth-signed-out"
USAGE_UPDATED = "usage-updated"


class Notifier(ABC):
    """One-way channel to the UI; implementations must not block."""

    @abstractmethod
    def notify(self, event: str, payload: dict | None = None) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def notify(self, event: str, payload: dict | None = None) -> None:
        if event == AUTH_ERROR:
            self._logger.error("[%s] %s", event, (payload or {}).get("message"))
        else:
            self._logger.info("[%s] %s", event, payload or {})


class MemoryNotifier(Notifier):
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def notify(self, event: str, payload: dict | None = None) -> None:
        self.events.append((event, dict(payload or {})))

    def of(self, event: str) -> list[dict]:
        return [payload for name, payload in self.events if name == event]
