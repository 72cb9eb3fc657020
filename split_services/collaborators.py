"""In-memory directory and event bus for tests and single-process use."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable

from split_kernel.logging_config import get_logger
from split_services.ports import DirectoryEntry, ExpenseEvent

logger = get_logger("services.collaborators")


class InMemoryDirectory:
    """Participant directory backed by a dict."""

    def __init__(self, entries: Iterable[DirectoryEntry] = ()):
        self._entries = {e.id: e for e in entries}

    def add(self, participant_id: str, display_name: str) -> None:
        self._entries[participant_id] = DirectoryEntry(participant_id, display_name)

    def get(self, participant_id: str) -> DirectoryEntry | None:
        return self._entries.get(participant_id)

    def search(self, term: str) -> list[DirectoryEntry]:
        needle = term.casefold()
        return sorted(
            (
                e for e in self._entries.values()
                if needle in e.id.casefold() or needle in e.display_name.casefold()
            ),
            key=lambda e: e.id,
        )


class InMemoryEventBus:
    """
    Synchronous event bus.

    Keeps every published event (for inspection) and calls subscribers in
    subscription order.  A failing subscriber is logged and does not stop
    delivery to the others.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[ExpenseEvent] = []
        self._subscribers: list[Callable[[ExpenseEvent], object]] = []

    def subscribe(self, handler: Callable[[ExpenseEvent], object]) -> None:
        with self._lock:
            self._subscribers.append(handler)

    def publish(self, event: ExpenseEvent) -> None:
        with self._lock:
            self._events.append(event)
            subscribers = list(self._subscribers)
        for handler in subscribers:
            try:
                handler(event)
            except Exception:
                logger.error(
                    "event_subscriber_failed",
                    extra={"event_type": event.event_type.value, "event_expense_id": event.expense_id},
                    exc_info=True,
                )

    @property
    def events(self) -> list[ExpenseEvent]:
        with self._lock:
            return list(self._events)
