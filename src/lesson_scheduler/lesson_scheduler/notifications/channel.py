from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Tuple

from ..core.enums import ChangeKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    """Something changed in ``table``. Consumers re-fetch instead of applying a delta."""

    table: str
    kind: ChangeKind
    row_id: Optional[str] = None


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    def __init__(self, channel: "ChangeChannel", token: int):
        self._channel = channel
        self._token = token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        """Stop delivery. Safe to call any number of times."""
        if not self._active:
            return
        self._active = False
        self._channel._remove(self._token)


class ChangeChannel:
    """In-process publish/subscribe keyed by table name."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens = itertools.count(1)
        self._subscribers: Dict[int, Tuple[FrozenSet[str], ChangeCallback]] = {}

    def subscribe(self, tables: Iterable[str], callback: ChangeCallback) -> Subscription:
        topics = frozenset(tables)
        if not topics:
            raise ValueError("At least one table is required")
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = (topics, callback)
        return Subscription(self, token)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver to every subscriber of ``event.table``; returns how many were called.

        A failing callback is logged and does not stop delivery to the rest.
        """

        with self._lock:
            targets = [cb for topics, cb in self._subscribers.values() if event.table in topics]

        for callback in targets:
            try:
                callback(event)
            except Exception:
                logger.exception("Change subscriber failed for %s %s", event.table, event.kind.value)
        return len(targets)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def _remove(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)
