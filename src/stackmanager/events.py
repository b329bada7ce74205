from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

from .app_logging import get_logger, log_with_fields

STACK_STATE_CHANGED = "stack_state_changed"
ADDRESS_CHANGED = "address_changed"
IDENTITY_MISSING = "identity_missing"
COORDINATOR_UNREACHABLE = "coordinator_unreachable"
UPDATE_AVAILABLE = "update_available"
NETWORK_UNAVAILABLE = "network_unavailable"
ARTIFACT_INSTALLED = "artifact_installed"
STACK_READY = "stack_ready"
CONTENT_SET_RESPONSE = "content_set_response"
INDEX_PATH_RESPONSE = "index_path_response"

Callback = Callable[..., Any]


class Notifier:
    """Synchronous observer hub; callbacks run on the emitting thread, in order."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or get_logger("events")
        self._subscribers: dict[str, list[Callback]] = defaultdict(list)

    def subscribe(self, event: str, callback: Callback) -> None:
        self._subscribers[event].append(callback)

    def emit(self, event: str, **payload: Any) -> None:
        log_with_fields(self.logger, logging.DEBUG, "event_emitted", event_name=event, **payload)
        for callback in list(self._subscribers.get(event, [])):
            callback(**payload)
