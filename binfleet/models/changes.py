"""In-process change notifications per backend table."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from binfleet.models.schemas import ChangeEvent

LOGGER = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], Any]

ALL_TABLES = "*"


class ChangeFeed:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[ChangeCallback]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, table: str, callback: ChangeCallback) -> Callable[[], None]:
        """Register `callback` for events on `table` (or `*`) and return an unsubscribe handle."""
        with self._lock:
            self._subscribers[table].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(table, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            callbacks = [*self._subscribers.get(event.table, []), *self._subscribers.get(ALL_TABLES, [])]

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                LOGGER.exception("Change subscriber failed for %s %s", event.table, event.event_type)

    def emit(
        self,
        table: str,
        event_type: str,
        *,
        new: dict[str, Any] | None = None,
        old: dict[str, Any] | None = None,
    ) -> None:
        self.publish(ChangeEvent(table=table, event_type=event_type, new=new, old=old))  # type: ignore[arg-type]
