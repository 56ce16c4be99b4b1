from __future__ import annotations
"""Refresh-epoch bookkeeping and a tiny observer primitive."""
from enum import Enum
import logging
import threading
from typing import Callable, Generic, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
Unsubscribe = Callable[[], None]


class Observable(Generic[T]):
    """Holds a value and notifies subscribers whenever it is replaced."""

    def __init__(self, value: T):
        self._value = value
        self._subscribers: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        for callback in list(self._subscribers):
            callback(value)

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe


class EventStream(Generic[T]):
    """Push-only stream of events with no retained value."""

    def __init__(self):
        self._subscribers: list[Callable[[T], None]] = []

    def emit(self, event: T) -> None:
        for callback in list(self._subscribers):
            callback(event)

    def subscribe(self, callback: Callable[[T], None]) -> Unsubscribe:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe


class MutationKind(str, Enum):
    CREATE_FOLDER = "create_folder"
    RENAME_FOLDER = "rename_folder"
    DELETE_FOLDER = "delete_folder"
    UPLOAD = "upload"
    DELETE_FILES = "delete_files"
    NAVIGATE = "navigate"
    REFRESH = "refresh"


class ViewSynchronizer:
    """Owns ``refresh_epoch``; every bump tells dependent views to refetch.

    Views are never patched locally after a mutation. They observe the epoch
    and fetch again, so what they show always comes from the backend.
    """

    def __init__(self):
        self._epoch = 0
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[int, MutationKind], None]] = []

    @property
    def refresh_epoch(self) -> int:
        return self._epoch

    def subscribe(self, callback: Callable[[int, MutationKind], None]) -> Unsubscribe:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def on_mutation(self, kind: MutationKind) -> int:
        return self._bump(kind)

    def on_navigation(self) -> int:
        return self._bump(MutationKind.NAVIGATE)

    def request_refresh(self) -> int:
        return self._bump(MutationKind.REFRESH)

    def _bump(self, kind: MutationKind) -> int:
        with self._lock:
            self._epoch += 1
            epoch = self._epoch
        LOGGER.debug("Refresh epoch %d (%s)", epoch, kind.value)
        for callback in list(self._subscribers):
            callback(epoch, kind)
        return epoch
