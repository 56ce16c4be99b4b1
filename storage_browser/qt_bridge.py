from __future__ import annotations
"""Qt adapters that deliver session state on the GUI thread."""

import logging
from typing import Callable

from PySide6 import QtCore

from .presenter import BrowserSession

LOGGER = logging.getLogger(__name__)


class QtDispatcher(QtCore.QObject):
    """Queues callables from any thread onto the thread that owns this object."""

    run = QtCore.Signal(object)

    def __init__(self, parent: QtCore.QObject | None = None) -> None:
        super().__init__(parent)
        self.run.connect(self._invoke, QtCore.Qt.ConnectionType.QueuedConnection)

    def __call__(self, func: Callable[[], None]) -> None:
        self.run.emit(func)

    @QtCore.Slot(object)
    def _invoke(self, func: Callable[[], None]) -> None:
        func()


class SessionSignals(QtCore.QObject):
    """Re-emits :class:`BrowserSession` subscribables as Qt signals."""

    listing_changed = QtCore.Signal(object)
    tree_changed = QtCore.Signal(object)
    buckets_changed = QtCore.Signal(object)
    notifications_changed = QtCore.Signal(object)
    progress = QtCore.Signal(str, int)
    configuration_required = QtCore.Signal(str)
    path_changed = QtCore.Signal(str)

    def __init__(
        self,
        session: BrowserSession,
        parent: QtCore.QObject | None = None,
        *,
        dispatcher: QtDispatcher | None = None,
    ) -> None:
        super().__init__(parent)
        self.dispatcher = dispatcher
        self._unsubscribers = [
            session.listing_state.subscribe(self.listing_changed.emit),
            session.tree_state.subscribe(self.tree_changed.emit),
            session.buckets.subscribe(self.buckets_changed.emit),
            session.notifications.subscribe(self.notifications_changed.emit),
            session.progress.subscribe(lambda event: self.progress.emit(event.identity, event.percent)),
            session.configuration_required.subscribe(self.configuration_required.emit),
            session.navigator.subscribe(self.path_changed.emit),
        ]

    def disconnect_session(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        LOGGER.debug("Session signals disconnected")


def create_qt_session(parent: QtCore.QObject | None = None, **kwargs) -> tuple[BrowserSession, SessionSignals]:
    """Build a session whose results are always delivered on the GUI thread."""

    dispatcher = QtDispatcher(parent)
    session = BrowserSession(dispatch=dispatcher, **kwargs)
    signals = SessionSignals(session, parent, dispatcher=dispatcher)
    return session, signals
